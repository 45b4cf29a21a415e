# tests/unit/test_images.py
import threading
from unittest.mock import MagicMock

import pytest

from logicalimager.case.models import DataSourceType
from logicalimager.core.cancellation import CancellationToken
from logicalimager.core.results import IngestResult
from logicalimager.ingest.images import ImageFileEntry, MultiImageIngestTask, _traverse_file_entry


def fake_reader(image_path):
    yield ImageFileEntry(name="Users", parent_path="/", meta_addr=2, is_dir=True)
    yield ImageFileEntry(name="foo.txt", parent_path="/Users/", meta_addr=5, size=12, mtime=100)


class TestMultiImageIngest:
    """Test adding virtual-disk images as data sources."""

    def test_each_image_becomes_a_data_source(self, case_db):
        task = MultiImageIngestTask(
            case_db, "device-1", ["/acq/a.vhd", "/acq/b.vhd"], "UTC", CancellationToken(),
            image_reader=fake_reader,
        )
        outcome = task.start().result(timeout=10)

        assert outcome.result == IngestResult.NO_ERRORS
        assert outcome.errors == []
        assert [ds.name for ds in outcome.data_sources] == ["a.vhd", "b.vhd"]
        assert all(ds.type == DataSourceType.IMAGE for ds in outcome.data_sources)
        (foo,) = case_db.find_files(data_source_id=outcome.data_sources[0].id, meta_addr=5)
        assert foo.parent_path == "/Users/"
        assert foo.size == 12

    def test_unreadable_image_is_critical(self, case_db):
        def broken_reader(image_path):
            raise ValueError(f"No supported file system found in {image_path}")
            yield  # pragma: no cover

        task = MultiImageIngestTask(
            case_db, "device-1", ["/acq/a.vhd"], "", CancellationToken(), image_reader=broken_reader
        )
        outcome = task.start().result(timeout=10)

        assert outcome.result == IngestResult.CRITICAL_ERRORS
        assert "No supported file system" in outcome.errors[0]
        assert case_db.get_data_sources() == []

    def test_cancel_rolls_back_image_in_progress(self, case_db):
        token = CancellationToken()
        reading = threading.Event()
        resume = threading.Event()

        def slow_reader(image_path):
            yield ImageFileEntry(name="a.txt", parent_path="/", meta_addr=1)
            reading.set()
            resume.wait(timeout=10)
            yield ImageFileEntry(name="b.txt", parent_path="/", meta_addr=2)

        task = MultiImageIngestTask(
            case_db, "device-1", ["/acq/a.vhd", "/acq/b.vhd"], "", token, image_reader=slow_reader
        )
        outcome_future = task.start()
        assert reading.wait(timeout=10)
        task.cancel()
        resume.set()
        outcome = outcome_future.result(timeout=10)

        assert outcome.result == IngestResult.CRITICAL_ERRORS
        assert outcome.errors == ["Ingestion cancelled"]
        assert outcome.data_sources == []
        assert case_db.get_data_sources() == []
        assert case_db.count_files() == 0


class TestImageTraversal:
    """Test conversion of dfvfs file entries."""

    @staticmethod
    def _entry(name, inode, is_dir=False, children=(), size=0):
        entry = MagicMock()
        entry.name = name
        entry.size = size
        entry.path_spec = MagicMock(spec=["inode"])
        entry.path_spec.inode = inode
        entry.IsDirectory.return_value = is_dir
        entry.sub_file_entries = list(children)
        entry.creation_time = None
        entry.modification_time.CopyToPosixTimestamp.return_value = 1700000000
        entry.access_time = None
        entry.change_time = None
        return entry

    def test_traverse_file_entry(self):
        foo = self._entry("foo.txt", 5, size=12)
        users = self._entry("Users", 2, is_dir=True, children=[foo])
        root = self._entry("", 1, is_dir=True, children=[users])

        entries = list(_traverse_file_entry(root, "/"))

        assert [(e.name, e.parent_path, e.meta_addr, e.is_dir) for e in entries] == [
            ("Users", "/", 2, True),
            ("foo.txt", "/Users/", 5, False),
        ]
        assert entries[0].size == 0
        assert entries[1].size == 12
        assert entries[1].mtime == 1700000000
        assert entries[1].crtime == 0
