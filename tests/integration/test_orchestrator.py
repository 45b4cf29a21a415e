# tests/integration/test_orchestrator.py

import shutil
import threading
from unittest.mock import patch

import pytest

from logicalimager.case.models import ArtifactType, AttributeType, DataSourceType
from logicalimager.core.config import IngestOptions
from logicalimager.core.errors import TaggingError
from logicalimager.core.results import IngestResult
from logicalimager.ingest.images import ImageFileEntry
from logicalimager.pipeline.orchestrator import (
    IngestionPhase,
    LogicalImageIngestTask,
    LogicalImageProcessor,
)


class Recorder:
    """Collects progress messages and completion callbacks."""

    def __init__(self):
        self.messages = []
        self.calls = []

    def progress(self, text):
        self.messages.append(text)

    def callback(self, result, errors, data_sources):
        self.calls.append((result, errors, data_sources))

    @property
    def outcome(self):
        assert len(self.calls) == 1
        return self.calls[0]


def image_reader(image_path):
    yield ImageFileEntry(name="Users", parent_path="/", meta_addr=2, is_dir=True)
    yield ImageFileEntry(name="a.txt", parent_path="/Users/bob/", meta_addr=42, size=10)


class TestLogicalImageIngest:
    """Integration tests for ingesting a complete acquisition."""

    @pytest.fixture
    def options(self):
        return IngestOptions(poll_interval_seconds=0.05)

    @pytest.fixture
    def recorder(self):
        return Recorder()

    @pytest.fixture
    def dest(self, tmp_path):
        return tmp_path / "case" / "ModuleOutput" / "LogicalImager" / "HOST"

    def _task(self, case_db, blackboard, source, dest, recorder, options, **kwargs):
        return LogicalImageIngestTask(
            case_db,
            "device-1",
            "UTC",
            source,
            dest,
            recorder.progress,
            recorder.callback,
            options=options,
            blackboard=blackboard,
            **kwargs,
        )

    def test_local_file_mode_end_to_end(
        self, case_db, blackboard, acquisition, row, dest, recorder, options
    ):
        source = acquisition(
            [row(filename="a.txt"), row(filename="b.txt", rule="Rule 2")], users="alice\n"
        )
        processor = LogicalImageProcessor(case_db, options=options, blackboard=blackboard)

        task = processor.run("device-1", "UTC", source, dest, recorder.progress, recorder.callback)
        assert processor.join(timeout=30)

        result, errors, data_sources = recorder.outcome
        assert result == IngestResult.NO_ERRORS
        assert errors == []
        (data_source,) = data_sources
        assert data_source.type == DataSourceType.LOCAL_FILES
        assert data_source.name == source.name
        assert task.phase == IngestionPhase.DONE

        assert (dest / "root" / "disk.vhd" / "Users" / "bob" / "a.txt").is_file()
        assert [r.name for r in case_db.get_reports()] == [
            f"SearchResults.txt {source.name}",
            f"users.txt {source.name}",
        ]
        assert {r.source_module for r in case_db.get_reports()} == {"LogicalImager"}

        artifacts = blackboard.get_artifacts(artifact_type=ArtifactType.INTERESTING_FILE_HIT)
        assert sorted(a.get_attribute(AttributeType.CATEGORY) for a in artifacts) == ["Rule 1", "Rule 2"]
        assert blackboard.count_posted() == 2

        assert recorder.messages[0] == f"Copying image from {source} to {dest}"
        assert "Done copying" in recorder.messages
        assert "Adding extracted files" in recorder.messages
        assert "Done adding search results as interesting files" in recorder.messages

    def test_missing_users_file_is_skipped(
        self, case_db, blackboard, acquisition, row, dest, recorder, options
    ):
        source = acquisition([row()])
        self._task(case_db, blackboard, source, dest, recorder, options).run()

        assert recorder.outcome[0] == IngestResult.NO_ERRORS
        assert [r.name for r in case_db.get_reports()] == [f"SearchResults.txt {source.name}"]

    def test_virtual_disk_mode(self, case_db, blackboard, acquisition, row, dest, recorder, options):
        source = acquisition([row(vhd="img.vhd")], vhds=["img.vhd"])
        task = self._task(
            case_db, blackboard, source, dest, recorder, options, image_reader=image_reader
        )

        outcome = task.run()

        result, errors, data_sources = recorder.outcome
        assert result == IngestResult.NO_ERRORS
        assert outcome.data_sources == data_sources
        (data_source,) = data_sources
        assert data_source.type == DataSourceType.IMAGE
        assert case_db.get_image_paths() == {data_source.id: [str((dest / "img.vhd").resolve())]}

        (artifact,) = blackboard.get_artifacts(artifact_type=ArtifactType.INTERESTING_FILE_HIT)
        tagged = case_db.get_file(artifact.file_id)
        assert (tagged.name, tagged.meta_addr) == ("a.txt", 42)
        assert task.phase == IngestionPhase.DONE

    def test_virtual_disk_failure_forwarded(
        self, case_db, blackboard, acquisition, row, dest, recorder, options
    ):
        def broken_reader(image_path):
            raise ValueError("No supported file system found")
            yield  # pragma: no cover

        source = acquisition([row(vhd="img.vhd")], vhds=["img.vhd"])
        self._task(
            case_db, blackboard, source, dest, recorder, options, image_reader=broken_reader
        ).run()

        result, errors, data_sources = recorder.outcome
        assert result == IngestResult.CRITICAL_ERRORS
        assert len(errors) == 1
        assert "No supported file system found" in errors[0]
        assert data_sources == []
        assert blackboard.count_posted() == 0

    def test_cancel_during_local_import(
        self, case_db, blackboard, acquisition, row, dest, recorder, options
    ):
        source = acquisition([row(filename="a.txt"), row(filename="b.txt")])
        task = self._task(case_db, blackboard, source, dest, recorder, options)
        real_add_file = case_db.add_file

        def add_file_then_cancel(*args, **kwargs):
            record = real_add_file(*args, **kwargs)
            task.cancel()
            return record

        with patch.object(case_db, "add_file", side_effect=add_file_then_cancel):
            task.run()

        result, errors, data_sources = recorder.outcome
        assert result == IngestResult.CRITICAL_ERRORS
        assert "Ingestion cancelled" in errors
        assert data_sources == []
        assert case_db.get_data_sources() == []
        assert case_db.count_files() == 0
        assert dest.is_dir()
        assert task.phase == IngestionPhase.CANCELLED

    def test_cancel_before_copy_deletes_destination(
        self, case_db, blackboard, acquisition, row, dest, recorder, options
    ):
        source = acquisition([row()])
        task = self._task(case_db, blackboard, source, dest, recorder, options)
        task.cancel()
        task.cancel()

        task.run()

        result, errors, data_sources = recorder.outcome
        assert result == IngestResult.CRITICAL_ERRORS
        assert errors == ["Ingestion cancelled"]
        assert not dest.exists()
        assert case_db.get_reports() == []
        assert task.phase == IngestionPhase.CANCELLED

    def test_cancel_during_virtual_disk_ingest(
        self, case_db, blackboard, acquisition, row, dest, recorder, options
    ):
        reading = threading.Event()
        resume = threading.Event()

        def slow_reader(image_path):
            yield ImageFileEntry(name="a.txt", parent_path="/", meta_addr=42)
            reading.set()
            resume.wait(timeout=10)
            yield ImageFileEntry(name="b.txt", parent_path="/", meta_addr=43)

        source = acquisition([row(vhd="img.vhd")], vhds=["img.vhd"])
        processor = LogicalImageProcessor(
            case_db, options=options, blackboard=blackboard, image_reader=slow_reader
        )
        task = processor.run("device-1", "UTC", source, dest, recorder.progress, recorder.callback)
        assert reading.wait(timeout=30)

        processor.cancel()
        assert task.phase == IngestionPhase.INGESTING_VIRTUAL_DISKS
        resume.set()
        assert processor.join(timeout=30)

        result, errors, data_sources = recorder.outcome
        assert result == IngestResult.CRITICAL_ERRORS
        assert errors == ["Ingestion cancelled"]
        assert data_sources == []
        assert case_db.get_data_sources() == []
        assert dest.is_dir()

    def test_missing_search_results(self, case_db, blackboard, tmp_path, dest, recorder, options):
        source = tmp_path / "usb" / "acq"
        (source / "root").mkdir(parents=True)

        self._task(case_db, blackboard, source, dest, recorder, options).run()

        result, errors, data_sources = recorder.outcome
        assert result == IngestResult.CRITICAL_ERRORS
        assert errors == [f"Cannot find SearchResults.txt in {dest}"]
        assert data_sources == []

    def test_no_images_and_no_root(self, case_db, blackboard, acquisition, dest, recorder, options):
        source = acquisition([])

        self._task(case_db, blackboard, source, dest, recorder, options).run()

        result, errors, _ = recorder.outcome
        assert result == IngestResult.CRITICAL_ERRORS
        assert errors == [f"Directory {dest} does not contain any images"]
        assert case_db.get_data_sources() == []

    def test_tagging_failure_is_noncritical(
        self, case_db, blackboard, acquisition, row, dest, recorder, options
    ):
        source = acquisition([row()])

        with patch(
            "logicalimager.pipeline.orchestrator.tag_interesting_files",
            side_effect=TaggingError("lookup failed"),
        ):
            self._task(case_db, blackboard, source, dest, recorder, options).run()

        result, errors, data_sources = recorder.outcome
        assert result == IngestResult.NONCRITICAL_ERRORS
        assert errors == ["Failed to add interesting files: lookup failed"]
        assert len(data_sources) == 1
        assert case_db.get_data_sources() == data_sources

    def test_copy_failure_is_recorded(
        self, case_db, blackboard, acquisition, row, dest, recorder, options
    ):
        source = acquisition([row()])
        real_copytree = shutil.copytree

        def partial_copytree(src, dst, *args, **kwargs):
            real_copytree(src, dst, *args, **kwargs)
            raise shutil.Error([(str(src), str(dst), "permission denied")])

        with patch("logicalimager.pipeline.orchestrator.shutil.copytree", side_effect=partial_copytree):
            self._task(case_db, blackboard, source, dest, recorder, options).run()

        result, errors, data_sources = recorder.outcome
        assert result == IngestResult.NONCRITICAL_ERRORS
        assert errors == [f"Failed to copy directory {source} to {dest}"]
        assert len(data_sources) == 1

    def test_callback_exception_is_contained(
        self, case_db, blackboard, acquisition, row, dest, options
    ):
        source = acquisition([row()])
        calls = []

        def failing_callback(result, errors, data_sources):
            calls.append(result)
            raise RuntimeError("listener broke")

        task = LogicalImageIngestTask(
            case_db, "device-1", "UTC", source, dest, None, failing_callback,
            options=options, blackboard=blackboard,
        )
        outcome = task.run()

        assert calls == [IngestResult.NO_ERRORS]
        assert outcome.result == IngestResult.NO_ERRORS

    def test_undecodable_manifest_row_keeps_image(
        self, case_db, blackboard, acquisition, row, dest, recorder, options
    ):
        source = acquisition([row(vhd="img.vhd")], vhds=["img.vhd"])
        line = "\t".join(row(vhd="img.vhd", filename="NAME")).encode("utf-8")
        with open(source / "SearchResults.txt", "ab") as f:
            f.write(line.replace(b"NAME", b"caf\xff.txt") + b"\n")

        self._task(
            case_db, blackboard, source, dest, recorder, options, image_reader=image_reader
        ).run()

        result, errors, data_sources = recorder.outcome
        assert result == IngestResult.NO_ERRORS
        assert errors == []
        assert data_sources == case_db.get_data_sources()
        assert data_sources[0].type == DataSourceType.IMAGE
        assert blackboard.count_posted() == 1

    def test_unreadable_manifest_during_tagging_is_noncritical(
        self, case_db, blackboard, acquisition, row, dest, recorder, options
    ):
        source = acquisition([row(vhd="img.vhd")], vhds=["img.vhd"])

        with patch(
            "logicalimager.tagging.interesting_files.read_manifest",
            side_effect=OSError("Input/output error"),
        ):
            self._task(
                case_db, blackboard, source, dest, recorder, options, image_reader=image_reader
            ).run()

        result, errors, data_sources = recorder.outcome
        assert result == IngestResult.NONCRITICAL_ERRORS
        assert errors == ["Failed to add interesting files: Input/output error"]
        assert len(data_sources) == 1
        assert case_db.get_data_sources() == data_sources

    def test_cancel_during_tagging(
        self, case_db, blackboard, acquisition, row, dest, recorder, options
    ):
        source = acquisition([row(filename="a.txt"), row(filename="b.txt")])
        task = self._task(case_db, blackboard, source, dest, recorder, options)
        real_new_artifact = blackboard.new_artifact

        def new_artifact_then_cancel(*args, **kwargs):
            artifact = real_new_artifact(*args, **kwargs)
            task.cancel()
            return artifact

        with patch.object(blackboard, "new_artifact", side_effect=new_artifact_then_cancel):
            task.run()

        result, errors, data_sources = recorder.outcome
        assert result == IngestResult.NONCRITICAL_ERRORS
        assert "Ingestion cancelled" in errors
        assert len(data_sources) == 1
        assert case_db.get_data_sources() == data_sources
        assert blackboard.count_posted() == 1
        assert dest.is_dir()
        assert task.phase == IngestionPhase.CANCELLED
