# src/logicalimager/ingest/images.py

import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Generator, Iterable, List, Optional

from logicalimager.case.database import CaseDatabase
from logicalimager.case.models import DataSource
from logicalimager.core.cancellation import CancellationToken
from logicalimager.core.errors import IngestionCancelled, RepositoryError
from logicalimager.core.results import IngestOutcome, IngestResult, ProgressSink

logger = logging.getLogger(__name__)


@dataclass
class ImageFileEntry:
    name: str
    parent_path: str
    meta_addr: Optional[int]
    size: int = 0
    crtime: int = 0
    mtime: int = 0
    atime: int = 0
    ctime: int = 0
    is_dir: bool = False


ImageReader = Callable[[str], Iterable[ImageFileEntry]]


def _posix_time(date_time) -> int:
    if date_time is None:
        return 0
    timestamp = date_time.CopyToPosixTimestamp()
    return int(timestamp) if timestamp is not None else 0


def _get_volume_path_specs(image_path: str) -> list:
    """Resolve an image file to the path specs of the file systems it contains."""
    from dfvfs.analyzer import analyzer
    from dfvfs.lib import definitions
    from dfvfs.path import factory as path_spec_factory
    from dfvfs.resolver import resolver

    os_path_spec = path_spec_factory.Factory.NewPathSpec(
        definitions.TYPE_INDICATOR_OS, location=image_path
    )

    # Step 1: Storage media image (VHD, E01, ...)
    image_path_spec = os_path_spec
    type_indicators = analyzer.Analyzer.GetStorageMediaImageTypeIndicators(os_path_spec)
    if type_indicators:
        image_path_spec = path_spec_factory.Factory.NewPathSpec(
            type_indicators[0], parent=os_path_spec
        )

    # Step 2: Volume system (partitions)
    volume_path_specs = [image_path_spec]
    type_indicators = analyzer.Analyzer.GetVolumeSystemTypeIndicators(image_path_spec)
    if type_indicators:
        volume_system_path_spec = path_spec_factory.Factory.NewPathSpec(
            type_indicators[0], location="/", parent=image_path_spec
        )
        volume_system = resolver.Resolver.OpenFileSystem(volume_system_path_spec)
        root_entry = volume_system.GetRootFileEntry()
        volume_path_specs = [entry.path_spec for entry in root_entry.sub_file_entries]

    # Step 3: File system per volume
    file_system_path_specs = []
    for volume_path_spec in volume_path_specs:
        type_indicators = analyzer.Analyzer.GetFileSystemTypeIndicators(volume_path_spec)
        if not type_indicators:
            logger.debug(f"No file system found in {volume_path_spec.comparable}")
            continue
        file_system_path_specs.append(
            path_spec_factory.Factory.NewPathSpec(
                type_indicators[0], location="/", parent=volume_path_spec
            )
        )
    return file_system_path_specs


def _traverse_file_entry(file_entry, parent_path: str) -> Generator[ImageFileEntry, None, None]:
    """Recursively traverse file entries below a directory entry."""
    for sub_entry in file_entry.sub_file_entries:
        path_spec = sub_entry.path_spec
        meta_addr = getattr(path_spec, "inode", None)
        if meta_addr is None:
            meta_addr = getattr(path_spec, "mft_entry", None)
        is_directory = sub_entry.IsDirectory()

        yield ImageFileEntry(
            name=sub_entry.name or "",
            parent_path=parent_path,
            meta_addr=meta_addr,
            size=0 if is_directory else (sub_entry.size or 0),
            crtime=_posix_time(sub_entry.creation_time),
            mtime=_posix_time(sub_entry.modification_time),
            atime=_posix_time(sub_entry.access_time),
            ctime=_posix_time(sub_entry.change_time),
            is_dir=is_directory,
        )

        if is_directory and sub_entry.name not in (".", ".."):
            yield from _traverse_file_entry(sub_entry, f"{parent_path}{sub_entry.name}/")


def read_image_files(image_path: str) -> Generator[ImageFileEntry, None, None]:
    """
    Enumerate the files of a virtual-disk image with dfvfs.

    Args:
        image_path: Path to the image (VHD or any format dfvfs detects)

    Yields:
        ImageFileEntry for every file and directory of every file system.
    """
    from dfvfs.resolver import resolver

    path = Path(image_path)
    if not path.exists():
        raise FileNotFoundError(f"Image not found: {image_path}")

    file_system_path_specs = _get_volume_path_specs(str(path))
    if not file_system_path_specs:
        raise ValueError(f"No supported file system found in {image_path}")

    for path_spec in file_system_path_specs:
        file_system = resolver.Resolver.OpenFileSystem(path_spec)
        root_entry = file_system.GetRootFileEntry()
        if root_entry:
            yield from _traverse_file_entry(root_entry, "/")


class MultiImageIngestTask:
    """
    Adds each image path as an independent image data source.

    Runs on its own worker thread and reports through a single-use future
    that is completed exactly once, after any rollback has finished.
    """

    def __init__(
        self,
        case_db: CaseDatabase,
        device_id: str,
        image_paths: List[str],
        time_zone: str,
        cancel_token: CancellationToken,
        progress: Optional[ProgressSink] = None,
        image_reader: Optional[ImageReader] = None,
    ):
        self.case_db = case_db
        self.device_id = device_id
        self.image_paths = list(image_paths)
        self.time_zone = time_zone
        self.cancel_token = cancel_token
        self.progress = progress or (lambda text: None)
        self.image_reader = image_reader or read_image_files
        self.outcome: "Future[IngestOutcome]" = Future()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> "Future[IngestOutcome]":
        self._thread = threading.Thread(
            target=self.run, name="multi-image-ingest", daemon=True
        )
        self._thread.start()
        return self.outcome

    def cancel(self) -> None:
        self.cancel_token.cancel()

    def _add_image(self, image_path: str) -> DataSource:
        added = 0
        with self.case_db.begin_transaction() as trans:
            data_source = self.case_db.add_image_data_source(
                self.device_id, [image_path], self.time_zone, trans
            )
            for entry in self.image_reader(image_path):
                self.cancel_token.raise_if_cancelled()
                self.case_db.add_file(
                    data_source.id,
                    entry.name,
                    entry.parent_path,
                    trans,
                    meta_addr=entry.meta_addr,
                    size=entry.size,
                    crtime=entry.crtime,
                    mtime=entry.mtime,
                    atime=entry.atime,
                    ctime=entry.ctime,
                    is_dir=entry.is_dir,
                )
                added += 1
        logger.info(f"Added image {image_path} with {added} files (data source {data_source.id})")
        return data_source

    def run(self) -> None:
        errors: List[str] = []
        data_sources: List[DataSource] = []
        critical = False
        try:
            for image_path in self.image_paths:
                if self.cancel_token.cancelled:
                    raise IngestionCancelled("Ingestion cancelled")
                self.progress(f"Adding image {image_path}")
                try:
                    data_sources.append(self._add_image(image_path))
                except IngestionCancelled:
                    raise
                except (OSError, ValueError, RepositoryError) as e:
                    logger.error(f"Failed to add image {image_path}: {e}")
                    errors.append(f"Failed to add image {image_path}: {e}")
                    critical = True
                except Exception as e:
                    # dfvfs raises its own error hierarchy (BackEndError, ScannerError, ...)
                    logger.exception(f"Unexpected error adding image {image_path}")
                    errors.append(f"Failed to add image {image_path}: {e}")
                    critical = True
        except IngestionCancelled:
            logger.info("Multi-image ingest cancelled; image in progress rolled back")
            errors.append("Ingestion cancelled")
            critical = True
        finally:
            result = IngestResult.CRITICAL_ERRORS if critical else IngestResult.NO_ERRORS
            logger.info(f"Multi-image ingest done: {result.value}")
            self.outcome.set_result(IngestOutcome(result, errors, data_sources))
