# src/logicalimager/core/errors.py

"""Exception taxonomy shared by the parser, the importers and the orchestrator."""

from typing import Optional


class LogicalImagerError(Exception):
    """Base class for all logicalimager errors."""


class ConfigError(LogicalImagerError, ValueError):
    """Malformed or schema-violating rule configuration."""


class ManifestFormatError(LogicalImagerError):
    """SearchResults.txt is missing or has a row with the wrong field count."""

    def __init__(
        self,
        message: str,
        line_number: Optional[int] = None,
        actual: Optional[int] = None,
        expected: Optional[int] = None,
    ):
        super().__init__(message)
        self.line_number = line_number
        self.actual = actual
        self.expected = expected


class RepositoryError(LogicalImagerError):
    """Lookup or write failure against the case repository."""


class BlackboardError(RepositoryError):
    """Artifact creation or posting failed."""


class CopyError(LogicalImagerError):
    """Copying the acquisition to its destination failed."""


class TaggingError(LogicalImagerError):
    """Interesting files could not be tagged; the data source stays valid."""


class IngestionCancelled(LogicalImagerError):
    """Raised at a cancellation check point after cleanup has been done."""
