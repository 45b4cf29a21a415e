# src/logicalimager/rules/matcher.py

import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Generator, Optional, Tuple, Union

from logicalimager.case.models import AbstractFile
from logicalimager.rules.model import Configuration, DateRange, Rule, RuleSet

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


def _latest_timestamp(file: AbstractFile) -> int:
    return max(file.crtime or 0, file.mtime or 0, file.atime or 0, file.ctime or 0)


def _date_matches(date_range: DateRange, file: AbstractFile, now: datetime) -> bool:
    latest = _latest_timestamp(file)

    if date_range.has_bounds:
        latest_day = latest // SECONDS_PER_DAY
        in_range = (date_range.min is None or latest_day >= date_range.min) and (
            date_range.max is None or latest_day <= date_range.max
        )
        if in_range:
            return True

    if date_range.min_days is not None:
        age_seconds = now.timestamp() - latest
        return age_seconds >= date_range.min_days * SECONDS_PER_DAY

    return False


def matches(rule: Rule, file: AbstractFile, now: Optional[datetime] = None) -> bool:
    """
    Check whether a file satisfies every criterion of a rule.

    A rule without criteria matches every file.

    Args:
        rule: Parsed rule
        file: Repository (or local) file record
        now: Reference time for min-days (default: current UTC time)

    Returns:
        True if all present criteria match.
    """
    if rule.extensions is not None and file.extension not in rule.extensions:
        return False

    if rule.folder_names is not None:
        components = [c for c in file.parent_path.split("/") if c]
        if not any(c in rule.folder_names for c in components):
            return False

    if rule.file_names is not None and file.name not in rule.file_names:
        return False

    if rule.full_paths is not None and file.full_path not in rule.full_paths:
        return False

    if rule.size_range is not None and not rule.size_range.contains(file.size or 0):
        return False

    if rule.date_range is not None:
        if now is None:
            now = datetime.now(timezone.utc)
        if not _date_matches(rule.date_range, file, now):
            return False

    return True


def file_record_from_path(path: Union[str, Path], root: Union[str, Path]) -> AbstractFile:
    """Build a file record for a file on the local file system, rooted at root."""
    path = Path(path)
    relative_parent = path.parent.relative_to(Path(root)).as_posix()
    parent_path = "/" if relative_parent == "." else f"/{relative_parent}/"
    st = path.stat()
    return AbstractFile(
        name=path.name,
        parent_path=parent_path,
        size=st.st_size,
        crtime=int(getattr(st, "st_birthtime", 0) or 0),
        mtime=int(st.st_mtime),
        atime=int(st.st_atime),
        ctime=int(st.st_ctime),
        local_path=str(path),
    )


def scan_directory(
    config: Configuration,
    root: Union[str, Path],
    now: Optional[datetime] = None,
) -> Generator[Tuple[RuleSet, Rule, AbstractFile], None, None]:
    """
    Triage a local directory tree against a rule configuration.

    Yields:
        (rule_set, rule, file) for every rule a file matches.
    """
    root = Path(root)
    if not root.is_dir():
        raise NotADirectoryError(f"Not a directory: {root}")

    for dirpath, _dirnames, filenames in os.walk(root):
        for filename in sorted(filenames):
            try:
                record = file_record_from_path(Path(dirpath) / filename, root)
            except OSError as e:
                logger.warning(f"Cannot stat {filename} in {dirpath}: {e}")
                continue
            for rule_set in config.rule_sets:
                for rule in rule_set.rules:
                    if matches(rule, record, now=now):
                        yield rule_set, rule, record
