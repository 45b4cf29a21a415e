# src/logicalimager/pipeline/orchestrator.py

import logging
import shutil
import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from enum import Enum
from pathlib import Path
from typing import List, Optional, Union

from logicalimager.case.blackboard import Blackboard
from logicalimager.case.database import CaseDatabase
from logicalimager.case.models import DataSource
from logicalimager.core.cancellation import CancellationToken
from logicalimager.core.config import IngestOptions
from logicalimager.core.errors import (
    CopyError,
    IngestionCancelled,
    ManifestFormatError,
    RepositoryError,
    TaggingError,
)
from logicalimager.core.results import (
    CompletionCallback,
    IngestOutcome,
    IngestResult,
    ProgressSink,
)
from logicalimager.ingest.images import ImageReader, MultiImageIngestTask
from logicalimager.ingest.local_files import import_local_files
from logicalimager.rules.model import Configuration
from logicalimager.tagging.interesting_files import tag_interesting_files

logger = logging.getLogger(__name__)

INGESTION_CANCELLED = "Ingestion cancelled"


class IngestionPhase(str, Enum):
    PENDING = "pending"
    COPYING = "copying"
    REPORTING = "reporting"
    DETECTING_IMAGE_MODE = "detecting_image_mode"
    INGESTING_VIRTUAL_DISKS = "ingesting_virtual_disks"
    IMPORTING_LOCAL_FILES = "importing_local_files"
    TAGGING_INTERESTING_FILES = "tagging_interesting_files"
    DONE = "done"
    CANCELLED = "cancelled"
    ERROR = "error"


def _log_progress(text: str) -> None:
    logger.info(text)


class LogicalImageIngestTask:
    """
    Adds a logical-imager acquisition to the case.

    Copies the acquisition folder to its destination, registers
    SearchResults.txt and users.txt as reports, adds the VHD images (or the
    extracted files under root/) as data sources and finally tags the
    search results as interesting files.

    run() executes on the caller's thread; cancel() may be called from any
    thread and takes effect at the next check point.
    """

    def __init__(
        self,
        case_db: CaseDatabase,
        device_id: str,
        time_zone: str,
        source_dir: Union[str, Path],
        dest_dir: Union[str, Path],
        progress: Optional[ProgressSink],
        callback: CompletionCallback,
        options: Optional[IngestOptions] = None,
        blackboard: Optional[Blackboard] = None,
        rules: Optional[Configuration] = None,
        image_reader: Optional[ImageReader] = None,
    ):
        self.case_db = case_db
        self.device_id = device_id
        self.time_zone = time_zone
        self.source_dir = Path(source_dir)
        self.dest_dir = Path(dest_dir)
        self.progress = progress or _log_progress
        self.callback = callback
        self.options = options or IngestOptions()
        self.blackboard = blackboard or Blackboard(case_db)
        self.rules = rules
        self.image_reader = image_reader
        self.cancel_token = CancellationToken()

        self._phase = IngestionPhase.PENDING
        self._phase_lock = threading.Lock()
        self._callback_fired = False

    @property
    def phase(self) -> IngestionPhase:
        with self._phase_lock:
            return self._phase

    def _set_phase(self, phase: IngestionPhase) -> None:
        with self._phase_lock:
            self._phase = phase
        logger.debug(f"Ingestion phase: {phase.value}")

    def cancel(self) -> None:
        """Request cancellation. Repeated calls are no-ops."""
        if self.cancel_token.cancel():
            logger.warning(
                f"Logical image ingest cancelled during {self.phase.value}, processing may be incomplete"
            )

    # --- Steps ---

    def _copy_file(self, src: str, dst: str) -> str:
        self.cancel_token.raise_if_cancelled()
        return shutil.copy2(src, dst)

    def _copy_acquisition(self) -> None:
        self.progress(f"Copying image from {self.source_dir} to {self.dest_dir}")
        try:
            shutil.copytree(
                self.source_dir,
                self.dest_dir,
                copy_function=self._copy_file,
                dirs_exist_ok=True,
            )
        except (shutil.Error, OSError) as e:
            logger.error(f"Failed to copy {self.source_dir} to {self.dest_dir}: {e}")
            raise CopyError(
                f"Failed to copy directory {self.source_dir} to {self.dest_dir}"
            ) from e
        self.progress("Done copying")

    def _add_report(self, report_path: Path, report_name: str) -> Optional[str]:
        """Register a report. Returns None on success (or missing file), else the error message."""
        if not report_path.exists():
            logger.debug(f"Report {report_path} not present, skipping")
            return None
        self.progress(f"Adding {report_path.name} to report")
        try:
            self.case_db.add_report(report_path, self.options.report_source_module, report_name)
        except RepositoryError as e:
            logger.error(f"Failed to add report {report_path}. Reason= {e}")
            return f"Failed to add report {report_path}. Reason= {e}"
        self.progress(f"Done adding {report_path.name} to report")
        return None

    def _find_image_paths(self) -> List[str]:
        if not self.dest_dir.is_dir():
            return []
        extension = self.options.virtual_disk_extension
        return sorted(
            str(p.resolve())
            for p in self.dest_dir.iterdir()
            if p.is_file() and p.name.endswith(extension)
        )

    def _delete_destination_directory(self) -> bool:
        try:
            shutil.rmtree(self.dest_dir)
        except FileNotFoundError:
            return True
        except OSError as e:
            logger.warning(f"Cancellation: Failed to delete directory {self.dest_dir}: {e}")
            return False
        logger.info(f"Cancellation: Deleted directory {self.dest_dir}")
        return True

    def _await_sub_task(self, outcome: "Future[IngestOutcome]") -> IngestOutcome:
        """
        Wait for the multi-image sub-task to complete.

        A cancellation seen while waiting is relayed once; the wait goes on
        until the sub-task has rolled back and delivered its outcome.
        """
        relayed = False
        while True:
            try:
                return outcome.result(timeout=self.options.poll_interval_seconds)
            except FutureTimeoutError:
                if self.cancel_token.cancelled and not relayed:
                    relayed = True
                    logger.info("Multi-image ingest cancelled; waiting for it to roll back")

    def _ingest_virtual_disks(self, image_paths: List[str]) -> IngestOutcome:
        sub_task = MultiImageIngestTask(
            self.case_db,
            self.device_id,
            image_paths,
            self.time_zone,
            self.cancel_token,
            progress=self.progress,
            image_reader=self.image_reader,
        )
        return self._await_sub_task(sub_task.start())

    # --- Outcomes ---

    def _critical(self, errors: List[str]) -> IngestOutcome:
        self._set_phase(IngestionPhase.CANCELLED if self.cancel_token.cancelled else IngestionPhase.ERROR)
        return IngestOutcome(IngestResult.CRITICAL_ERRORS, errors, [])

    def _cancelled_before_ingest(self, errors: List[str]) -> IngestOutcome:
        self._delete_destination_directory()
        errors.append(INGESTION_CANCELLED)
        return self._critical(errors)

    def _execute(self, errors: List[str]) -> IngestOutcome:
        # Step 1: copy the acquisition
        self._set_phase(IngestionPhase.COPYING)
        try:
            self._copy_acquisition()
        except IngestionCancelled:
            return self._cancelled_before_ingest(errors)
        except CopyError as e:
            errors.append(str(e))

        # Step 2: reports
        if self.cancel_token.cancelled:
            return self._cancelled_before_ingest(errors)
        self._set_phase(IngestionPhase.REPORTING)
        results_path = self.dest_dir / self.options.results_filename
        if not results_path.exists():
            errors.append(f"Cannot find {self.options.results_filename} in {self.dest_dir}")
            return self._critical(errors)

        for report_path in (results_path, self.dest_dir / self.options.users_filename):
            status = self._add_report(report_path, f"{report_path.name} {self.source_dir.name}")
            if status is not None:
                errors.append(status)
                return self._critical(errors)

        # Step 3: virtual disks or extracted files
        if self.cancel_token.cancelled:
            return self._cancelled_before_ingest(errors)
        self._set_phase(IngestionPhase.DETECTING_IMAGE_MODE)
        image_paths = self._find_image_paths()
        virtual_disk_mode = bool(image_paths)
        if not virtual_disk_mode:
            root = self.dest_dir / self.options.root_dirname
            if not root.is_dir():
                errors.append(f"Directory {self.dest_dir} does not contain any images")
                return self._critical(errors)
        if self.cancel_token.cancelled:
            return self._cancelled_before_ingest(errors)

        data_sources: List[DataSource]
        if virtual_disk_mode:
            # Step 4: hand the images to the sub-task and wait for it
            self._set_phase(IngestionPhase.INGESTING_VIRTUAL_DISKS)
            logger.info(f"Ingesting {len(image_paths)} virtual disk images")
            sub_outcome = self._ingest_virtual_disks(image_paths)
            if sub_outcome.result == IngestResult.CRITICAL_ERRORS:
                self._critical([])
                return sub_outcome
            errors.extend(sub_outcome.errors)
            data_sources = list(sub_outcome.data_sources)
        else:
            # Step 5: import the extracted files in one transaction
            self._set_phase(IngestionPhase.IMPORTING_LOCAL_FILES)
            self.progress("Adding extracted files")
            try:
                data_source = import_local_files(
                    self.case_db,
                    self.dest_dir,
                    results_path,
                    self.device_id,
                    data_source_name=self.source_dir.name,
                    time_zone=self.time_zone,
                    cancel_token=self.cancel_token,
                )
            except IngestionCancelled:
                # Rolled back; the directory stays in place
                errors.append(INGESTION_CANCELLED)
                return self._critical(errors)
            except (ManifestFormatError, RepositoryError) as e:
                logger.error(f"Failed to add datasource: {e}")
                errors.append(str(e))
                return self._critical(errors)
            self.progress("Done adding extracted files")
            data_sources = [data_source]

        # Step 6: interesting files; past this point nothing is rolled back
        self._set_phase(IngestionPhase.TAGGING_INTERESTING_FILES)
        self.progress("Adding search results as interesting files")
        try:
            tag_interesting_files(
                self.case_db,
                self.blackboard,
                self.dest_dir,
                results_path,
                virtual_disk_mode,
                module_name=self.options.module_name,
                rules=self.rules,
                cancel_token=self.cancel_token,
                data_source_id=None if virtual_disk_mode else data_sources[0].id,
            )
        except (TaggingError, ManifestFormatError) as e:
            logger.error(f"Failed to add interesting files: {e}")
            errors.append(f"Failed to add interesting files: {e}")
            self._set_phase(IngestionPhase.ERROR)
            return IngestOutcome(IngestResult.NONCRITICAL_ERRORS, errors, data_sources)

        if self.cancel_token.cancelled:
            errors.append(INGESTION_CANCELLED)
            self._set_phase(IngestionPhase.CANCELLED)
        else:
            self.progress("Done adding search results as interesting files")
            self._set_phase(IngestionPhase.DONE)

        result = IngestResult.NONCRITICAL_ERRORS if errors else IngestResult.NO_ERRORS
        return IngestOutcome(result, errors, data_sources)

    def _finish(self, outcome: IngestOutcome) -> None:
        if self._callback_fired:
            logger.error("Completion callback already invoked")
            return
        self._callback_fired = True
        logger.info(
            f"Logical image ingest finished: {outcome.result.value}, "
            f"{len(outcome.data_sources)} data sources, {len(outcome.errors)} errors"
        )
        try:
            self.callback(outcome.result, list(outcome.errors), list(outcome.data_sources))
        except Exception:
            logger.exception("Completion callback raised")

    def run(self) -> IngestOutcome:
        errors: List[str] = []
        try:
            outcome = self._execute(errors)
        except Exception as e:
            logger.exception("Logical image ingest failed")
            errors.append(str(e))
            outcome = self._critical(errors)
        self._finish(outcome)
        return outcome


class LogicalImageProcessor:
    """
    Entry point used by callers: runs one ingest task on a dedicated worker.

    Each run() creates a new task and worker thread; they are not reused.
    """

    def __init__(
        self,
        case_db: CaseDatabase,
        options: Optional[IngestOptions] = None,
        blackboard: Optional[Blackboard] = None,
        rules: Optional[Configuration] = None,
        image_reader: Optional[ImageReader] = None,
    ):
        self.case_db = case_db
        self.options = options or IngestOptions()
        self.blackboard = blackboard or Blackboard(case_db)
        self.rules = rules
        self.image_reader = image_reader
        self.task: Optional[LogicalImageIngestTask] = None
        self._thread: Optional[threading.Thread] = None

    def run(
        self,
        device_id: str,
        time_zone: str,
        source_dir: Union[str, Path],
        dest_dir: Union[str, Path],
        progress: Optional[ProgressSink],
        callback: CompletionCallback,
    ) -> LogicalImageIngestTask:
        if self._thread is not None and self._thread.is_alive():
            raise RuntimeError("An ingest is already running on this processor")
        self.task = LogicalImageIngestTask(
            self.case_db,
            device_id,
            time_zone,
            source_dir,
            dest_dir,
            progress,
            callback,
            options=self.options,
            blackboard=self.blackboard,
            rules=self.rules,
            image_reader=self.image_reader,
        )
        self._thread = threading.Thread(
            target=self.task.run, name="logical-image-ingest", daemon=True
        )
        self._thread.start()
        return self.task

    def cancel(self) -> None:
        if self.task is not None:
            self.task.cancel()

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the worker. Returns True if it finished."""
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()
