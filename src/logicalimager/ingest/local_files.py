# src/logicalimager/ingest/local_files.py

import logging
from pathlib import Path
from typing import Dict, Optional, Union

from logicalimager.case.database import CaseDatabase, CaseDbTransaction
from logicalimager.case.models import DataSource
from logicalimager.core.cancellation import CancellationToken
from logicalimager.core.errors import IngestionCancelled, ManifestFormatError, RepositoryError
from logicalimager.ingest.manifest import read_manifest, synthetic_parent_path

logger = logging.getLogger(__name__)


class LocalFileImporter:
    """Adds extracted files under virtual directories inside one transaction."""

    def __init__(self, case_db: CaseDatabase, trans: CaseDbTransaction, data_source: DataSource):
        self.case_db = case_db
        self.trans = trans
        self.data_source = data_source
        # parent_path -> created, so each virtual directory is added once
        self._directories: Dict[str, bool] = {"/": True}

    def _ensure_directory(self, parent_path: str) -> None:
        if parent_path in self._directories:
            return
        trimmed = parent_path.rstrip("/")
        grandparent, _, name = trimmed.rpartition("/")
        grandparent = grandparent + "/"
        self._ensure_directory(grandparent)
        self.case_db.add_virtual_directory(self.data_source.id, name, grandparent, self.trans)
        self._directories[parent_path] = True

    def add_local_file(
        self,
        local_path: Path,
        name: str,
        parent_path: str,
        ctime: int,
        crtime: int,
        atime: int,
        mtime: int,
    ):
        self._ensure_directory(parent_path)
        try:
            size = local_path.stat().st_size
        except OSError:
            logger.warning(f"Extracted file not found: {local_path}")
            size = 0
        return self.case_db.add_file(
            self.data_source.id,
            name,
            parent_path,
            self.trans,
            size=size,
            crtime=crtime,
            mtime=mtime,
            atime=atime,
            ctime=ctime,
            local_path=str(local_path),
        )


def import_local_files(
    case_db: CaseDatabase,
    dest_dir: Union[str, Path],
    manifest_path: Union[str, Path],
    device_id: str,
    data_source_name: str,
    time_zone: str = "",
    cancel_token: Optional[CancellationToken] = None,
) -> DataSource:
    """
    Import the extracted files listed in the manifest as one local-files data source.

    All rows are added in a single transaction: any error or cancellation
    rolls the whole import back.

    Args:
        case_db: Case repository
        dest_dir: Copied acquisition directory holding the extracted files
        manifest_path: SearchResults.txt inside dest_dir
        device_id: Device identifier of the new data source
        data_source_name: Name of the new data source (the acquisition name)
        time_zone: Time zone recorded on the data source
        cancel_token: Checked between manifest rows

    Returns:
        The committed DataSource.

    Raises:
        ManifestFormatError: A row does not have 14 fields or has bad timestamps.
        IngestionCancelled: Cancellation was observed between rows.
        RepositoryError: Writing to the case repository failed.
    """
    dest_dir = Path(dest_dir)
    added = 0
    try:
        with case_db.begin_transaction() as trans:
            data_source = case_db.add_local_files_data_source(
                device_id, data_source_name, time_zone, trans
            )
            importer = LocalFileImporter(case_db, trans, data_source)

            for row in read_manifest(manifest_path):
                if cancel_token is not None and cancel_token.cancelled:
                    logger.info(f"Import of {data_source_name} cancelled after {added} files")
                    raise IngestionCancelled("Ingestion cancelled")
                crtime, mtime, atime, ctime = row.timestamps()
                importer.add_local_file(
                    dest_dir / row.extracted_file_path,
                    row.filename,
                    synthetic_parent_path(row.vhd_filename, row.parent_path),
                    ctime=ctime,
                    crtime=crtime,
                    atime=atime,
                    mtime=mtime,
                )
                added += 1
    except (ManifestFormatError, IngestionCancelled):
        raise
    except RepositoryError as e:
        logger.error(f"Error adding extracted files: {e}")
        raise RepositoryError(f"Error adding extracted files: {e}") from e

    logger.info(f"Added {added} extracted files as data source {data_source.name} (id={data_source.id})")
    return data_source
