# tests/unit/test_case_db.py
import threading

import pytest

from logicalimager.case.models import ArtifactType, Attribute, AttributeType, DataSourceType
from logicalimager.core.errors import RepositoryError


class TestCaseDatabase:
    """Test the SQLite case repository."""

    def test_commit_makes_data_source_visible(self, case_db):
        with case_db.begin_transaction() as trans:
            data_source = case_db.add_local_files_data_source("dev", "acq", "UTC", trans)
            case_db.add_file(data_source.id, "a.txt", "/", trans, size=3)

        (stored,) = case_db.get_data_sources()
        assert stored == data_source
        assert stored.type == DataSourceType.LOCAL_FILES
        assert case_db.count_files(data_source.id) == 1

    def test_rollback_discards_everything(self, case_db):
        trans = case_db.begin_transaction()
        data_source = case_db.add_local_files_data_source("dev", "acq", "", trans)
        case_db.add_file(data_source.id, "a.txt", "/", trans)
        trans.rollback()

        assert not trans.is_open
        assert case_db.get_data_sources() == []
        assert case_db.count_files() == 0

    def test_exception_in_block_rolls_back(self, case_db):
        with pytest.raises(RuntimeError):
            with case_db.begin_transaction() as trans:
                case_db.add_local_files_data_source("dev", "acq", "", trans)
                raise RuntimeError("boom")
        assert case_db.get_data_sources() == []

    def test_closed_transaction_rejects_writes(self, case_db):
        trans = case_db.begin_transaction()
        trans.commit()
        with pytest.raises(RepositoryError):
            case_db.add_local_files_data_source("dev", "acq", "", trans)
        trans.rollback()  # no-op once closed

    def test_open_transaction_hidden_from_other_threads(self, case_db):
        trans = case_db.begin_transaction()
        case_db.add_local_files_data_source("dev", "acq", "", trans)
        seen = []
        reader = threading.Thread(target=lambda: seen.append(len(case_db.get_data_sources())))
        reader.start()
        reader.join(timeout=0.2)
        assert reader.is_alive()
        trans.rollback()
        reader.join(timeout=5)
        assert seen == [0]

    def test_image_paths(self, case_db):
        with case_db.begin_transaction() as trans:
            first = case_db.add_image_data_source("dev", ["/cases/a.vhd"], "", trans)
            second = case_db.add_image_data_source("dev", ["/cases/b.vhd"], "", trans)

        assert first.type == DataSourceType.IMAGE
        assert first.name == "a.vhd"
        assert case_db.get_image_paths() == {first.id: ["/cases/a.vhd"], second.id: ["/cases/b.vhd"]}

    def test_find_files_filters(self, case_db):
        with case_db.begin_transaction() as trans:
            data_source = case_db.add_image_data_source("dev", ["/a.vhd"], "", trans)
            case_db.add_file(data_source.id, "a.txt", "/x/", trans, meta_addr=1)
            case_db.add_file(data_source.id, "a.txt", "/y/", trans, meta_addr=2)

        assert len(case_db.find_files(name="a.txt")) == 2
        (match,) = case_db.find_files(data_source_id=data_source.id, meta_addr=2, name="a.txt")
        assert match.parent_path == "/y/"
        assert case_db.find_files(name="a.txt", parent_path="/z/") == []

    def test_find_files_requires_filter(self, case_db):
        with pytest.raises(RepositoryError):
            case_db.find_files()

    def test_add_report_records_hash(self, case_db, tmp_path):
        report_path = tmp_path / "SearchResults.txt"
        report_path.write_text("header\n", encoding="utf-8")

        report = case_db.add_report(report_path, "LogicalImager", "SearchResults.txt HOST")

        assert len(report.sha256_hash) == 64
        assert case_db.get_reports() == [report]

    def test_add_missing_report(self, case_db, tmp_path):
        with pytest.raises(RepositoryError):
            case_db.add_report(tmp_path / "users.txt", "LogicalImager", "users.txt HOST")


class TestBlackboard:
    """Test artifact creation and posting."""

    @pytest.fixture
    def file_id(self, case_db):
        with case_db.begin_transaction() as trans:
            data_source = case_db.add_local_files_data_source("dev", "acq", "", trans)
            return case_db.add_file(data_source.id, "a.txt", "/", trans).id

    @staticmethod
    def _attributes(set_name="Set", rule="Rule"):
        return [
            Attribute(type=AttributeType.SET_NAME, source="Logical Imager", value=set_name),
            Attribute(type=AttributeType.CATEGORY, source="Logical Imager", value=rule),
        ]

    def test_new_artifact_is_unposted(self, blackboard, file_id):
        artifact = blackboard.new_artifact(ArtifactType.INTERESTING_FILE_HIT, file_id, self._attributes())

        assert blackboard.get_artifacts(file_id=file_id) == [artifact]
        assert blackboard.count_posted() == 0

    def test_post_notifies_listeners_once(self, blackboard, file_id):
        calls = []
        blackboard.subscribe(lambda module, artifacts: calls.append((module, len(artifacts))))
        artifacts = [
            blackboard.new_artifact(ArtifactType.INTERESTING_FILE_HIT, file_id, self._attributes(rule=r))
            for r in ("R1", "R2")
        ]

        blackboard.post_artifacts(artifacts, "Logical Imager")
        blackboard.post_artifacts([], "Logical Imager")

        assert calls == [("Logical Imager", 2)]
        assert blackboard.count_posted() == 2

    def test_artifact_exists_matches_attribute_subset(self, blackboard, file_id):
        attributes = self._attributes() + [
            Attribute(type=AttributeType.COMMENT, source="Logical Imager", value="note")
        ]
        blackboard.new_artifact(ArtifactType.INTERESTING_FILE_HIT, file_id, attributes)

        assert blackboard.artifact_exists(file_id, ArtifactType.INTERESTING_FILE_HIT, self._attributes())
        assert not blackboard.artifact_exists(
            file_id, ArtifactType.INTERESTING_FILE_HIT, self._attributes(rule="Other")
        )
