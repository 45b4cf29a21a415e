# src/logicalimager/__init__.py

"""
logicalimager
Ingests logical-imager acquisitions into a case repository and tags the
files flagged by the collection tool as interesting-file hits.
"""

__version__ = "0.1.0"
__author__ = "logicalimager developers"

# No direct exports from root; subpackages are accessed explicitly
# e.g., from logicalimager.core import LogicalImageProcessor
