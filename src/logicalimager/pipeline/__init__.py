# src/logicalimager/pipeline/__init__.py

"""
Orchestration of a complete logical-imager acquisition ingest.
"""

from .orchestrator import IngestionPhase, LogicalImageIngestTask, LogicalImageProcessor

__all__ = [
    "IngestionPhase",
    "LogicalImageIngestTask",
    "LogicalImageProcessor",
]
