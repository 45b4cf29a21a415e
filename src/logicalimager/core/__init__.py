# src/logicalimager/core/__init__.py

"""
Core building blocks for logicalimager.
Configuration, error taxonomy, cancellation and result types.
"""

from .cancellation import CancellationToken
from .config import LogicalImagerConfig, load_config
from .results import IngestOutcome, IngestResult

__all__ = [
    "CancellationToken",
    "LogicalImagerConfig",
    "load_config",
    "IngestOutcome",
    "IngestResult",
]
