# src/logicalimager/case/__init__.py

"""
Case repository for logicalimager.
SQLite-backed storage of data sources, files, reports and blackboard artifacts.
"""

from .blackboard import Blackboard
from .database import CaseDatabase, CaseDbTransaction
from .models import (
    AbstractFile,
    Artifact,
    ArtifactType,
    Attribute,
    AttributeType,
    DataSource,
    DataSourceType,
    Report,
)

__all__ = [
    "Blackboard",
    "CaseDatabase",
    "CaseDbTransaction",
    "AbstractFile",
    "Artifact",
    "ArtifactType",
    "Attribute",
    "AttributeType",
    "DataSource",
    "DataSourceType",
    "Report",
]
