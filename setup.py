# setup.py
"""
logicalimager
Setup configuration for installation and distribution.
"""

from setuptools import setup, find_packages
import os

# Read README for long description
this_directory = os.path.abspath(os.path.dirname(__file__))
with open(os.path.join(this_directory, "README.md"), encoding="utf-8") as f:
    long_description = f.read()

# Read requirements from requirements.txt
def read_requirements(filename):
    """Read requirements from file, ignoring comments and empty lines."""
    requirements = []
    path = os.path.join(this_directory, filename)
    if os.path.exists(path):
        with open(path, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith("#"):
                    requirements.append(line)
    return requirements

setup(
    name="logicalimager",
    version="0.1.0",
    description="Ingest logical imager acquisitions into a forensic case: rules, VHD and extracted-file import, interesting-file tagging",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="logicalimager developers",
    license="MIT",
    packages=find_packages(where="src") + ["scripts"],
    package_dir={
        "": "src",
        "scripts": "scripts"
    },
    python_requires=">=3.10",
    install_requires=read_requirements("requirements.txt"),
    extras_require={
        "dev": read_requirements("requirements-dev.txt"),
    },
    entry_points={
        "console_scripts": [
            "logicalimager-ingest=scripts.logicalimager_ingest:main",
            "logicalimager-rules=scripts.logicalimager_rules:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Information Technology",
        "Intended Audience :: Legal Industry",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Security",
        "Topic :: System :: Forensics",
    ],
    keywords="forensics logical-imager triage incident-response",
    zip_safe=False,
)
