# src/logicalimager/core/results.py
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List

from logicalimager.case.models import DataSource


class IngestResult(str, Enum):
    NO_ERRORS = "no_errors"
    NONCRITICAL_ERRORS = "noncritical_errors"
    # The data source was not created; returned data sources must not be used.
    CRITICAL_ERRORS = "critical_errors"


@dataclass
class IngestOutcome:
    result: IngestResult
    errors: List[str] = field(default_factory=list)
    data_sources: List[DataSource] = field(default_factory=list)


ProgressSink = Callable[[str], None]
CompletionCallback = Callable[[IngestResult, List[str], List[DataSource]], None]
