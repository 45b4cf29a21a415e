# tests/conftest.py

from pathlib import Path
from typing import List, Sequence

import pytest

from logicalimager.case.blackboard import Blackboard
from logicalimager.case.database import CaseDatabase

MANIFEST_HEADER = (
    "vhdFilename\tfileSystemOffset\tfileMetaAddress\textractStatus\truleSetName\truleName\t"
    "description\tfilename\tparentPath\textractFilePath\tcrtime\tmtime\tatime\tctime"
)


def manifest_row(
    filename: str = "a.txt",
    parent_path: str = "Users/bob",
    vhd: str = "disk.vhd",
    meta_addr: int = 42,
    rule_set: str = "Set A",
    rule: str = "Rule 1",
    description: str = "flagged",
    extracted_path: str = None,
    times: Sequence[int] = (1000, 2000, 3000, 4000),
) -> List[str]:
    """Build the 14 fields of one SearchResults.txt row."""
    if extracted_path is None:
        extracted_path = f"root/{vhd}/{parent_path}/{filename}"
    return [
        vhd,
        "0",
        str(meta_addr),
        "1",
        rule_set,
        rule,
        description,
        filename,
        parent_path,
        extracted_path,
    ] + [str(t) for t in times]


def write_manifest(path: Path, rows: Sequence[Sequence[str]]) -> Path:
    lines = [MANIFEST_HEADER] + ["\t".join(fields) for fields in rows]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def make_extracted_files(dest: Path, rows: Sequence[Sequence[str]]) -> None:
    """Create the extracted file named by each row below dest."""
    for fields in rows:
        extracted = dest / fields[9]
        extracted.parent.mkdir(parents=True, exist_ok=True)
        extracted.write_bytes(b"x" * 10)


@pytest.fixture
def case_db(tmp_path):
    db = CaseDatabase(tmp_path / "case" / "case.db")
    yield db
    db.close()


@pytest.fixture
def blackboard(case_db):
    return Blackboard(case_db)


@pytest.fixture
def row():
    """Factory for manifest rows."""
    return manifest_row


@pytest.fixture
def manifest():
    """Writer for SearchResults.txt files."""
    return write_manifest


@pytest.fixture
def acquisition(tmp_path):
    """
    Factory for a logical-imager acquisition folder.

    Writes SearchResults.txt (and users.txt when given) and, unless VHD
    names are passed, the extracted files under root/.
    """

    def _build(rows, vhds=(), users=None, name="Logical_Imager_HOST_20190101"):
        source = tmp_path / "usb" / name
        source.mkdir(parents=True)
        write_manifest(source / "SearchResults.txt", rows)
        if users is not None:
            (source / "users.txt").write_text(users, encoding="utf-8")
        if vhds:
            for vhd in vhds:
                (source / vhd).write_bytes(b"\0" * 512)
        else:
            make_extracted_files(source, rows)
        return source

    return _build
