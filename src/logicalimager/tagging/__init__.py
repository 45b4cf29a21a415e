# src/logicalimager/tagging/__init__.py

"""
Interesting-file tagging for logicalimager.
Posts the collection tool's search results to the blackboard.
"""

from .interesting_files import InterestingFileTagger, tag_interesting_files

__all__ = [
    "InterestingFileTagger",
    "tag_interesting_files",
]
