# src/logicalimager/ingest/manifest.py

"""
Reader for the SearchResults.txt triage manifest.

Each row after the header lists one file the collection tool flagged:

    vhdFilename  fsOffset  metaAddress  extractStatus  ruleSetName  ruleName
    description  filename  parentPath  extractedFilePath  crtime  mtime  atime  ctime
"""

import logging
from pathlib import Path
from typing import Generator, Tuple, Union

from pydantic import BaseModel, ConfigDict

from logicalimager.core.errors import ManifestFormatError

logger = logging.getLogger(__name__)

EXPECTED_FIELDS = 14
ROOT_STR = "root"


class ManifestRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    line_number: int
    vhd_filename: str
    fs_offset: str
    meta_address: str
    extract_status: str
    rule_set_name: str
    rule_name: str
    description: str
    filename: str
    parent_path: str
    extracted_file_path: str
    crtime: str
    mtime: str
    atime: str
    ctime: str

    def timestamps(self) -> Tuple[int, int, int, int]:
        """Return (crtime, mtime, atime, ctime) as integers."""
        try:
            return int(self.crtime), int(self.mtime), int(self.atime), int(self.ctime)
        except ValueError as e:
            raise ManifestFormatError(
                f"Invalid timestamp at line {self.line_number}: {e}",
                line_number=self.line_number,
            ) from e

    def meta_addr(self) -> int:
        try:
            return int(self.meta_address)
        except ValueError as e:
            raise ManifestFormatError(
                f"Invalid meta address at line {self.line_number}: {self.meta_address}",
                line_number=self.line_number,
            ) from e


def synthetic_parent_path(vhd_filename: str, parent_path: str) -> str:
    """
    Parent path under which an extracted file is stored in local-file mode.

    Returns '/root/<vhd_filename>/<parent_path>/' with redundant slashes removed.
    """
    parts = [ROOT_STR, vhd_filename] + [p for p in parent_path.replace("\\", "/").split("/") if p]
    return "/" + "/".join(parts) + "/"


def read_manifest(path: Union[str, Path]) -> Generator[ManifestRow, None, None]:
    """
    Iterate the rows of a manifest file, skipping the header line.

    Args:
        path: Path to SearchResults.txt

    Yields:
        ManifestRow per data line.

    Raises:
        ManifestFormatError: If the file is missing or a row does not have 14 fields.
        OSError: If the file cannot be read.
    """
    path = Path(path)
    if not path.is_file():
        raise ManifestFormatError(f"Cannot find {path.name} in {path.parent}")

    # Undecodable bytes are read as U+FFFD
    with open(path, "r", encoding="utf-8", errors="replace", newline="") as f:
        f.readline()  # header
        for line_number, line in enumerate(f, start=2):
            fields = line.rstrip("\r\n").split("\t")
            if len(fields) != EXPECTED_FIELDS:
                raise ManifestFormatError(
                    f"File does not contain enough fields at line {line_number}, "
                    f"got {len(fields)}, expecting {EXPECTED_FIELDS}",
                    line_number=line_number,
                    actual=len(fields),
                    expected=EXPECTED_FIELDS,
                )
            yield ManifestRow(
                line_number=line_number,
                vhd_filename=fields[0],
                fs_offset=fields[1],
                meta_address=fields[2],
                extract_status=fields[3],
                rule_set_name=fields[4],
                rule_name=fields[5],
                description=fields[6],
                filename=fields[7],
                parent_path=fields[8],
                extracted_file_path=fields[9],
                crtime=fields[10],
                mtime=fields[11],
                atime=fields[12],
                ctime=fields[13],
            )
