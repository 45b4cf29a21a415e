# src/logicalimager/tagging/interesting_files.py

import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

from logicalimager.case.blackboard import Blackboard
from logicalimager.case.database import CaseDatabase
from logicalimager.case.models import AbstractFile, Artifact, ArtifactType, Attribute, AttributeType
from logicalimager.core.cancellation import CancellationToken
from logicalimager.core.errors import BlackboardError, RepositoryError, TaggingError
from logicalimager.ingest.manifest import ManifestRow, read_manifest, synthetic_parent_path
from logicalimager.rules.model import Configuration

logger = logging.getLogger(__name__)

DEFAULT_MODULE_NAME = "Logical Imager"


def image_paths_to_data_source_ids(image_paths: Dict[int, List[str]]) -> Dict[str, int]:
    """Invert {data_source_id: [paths]} into {path: data_source_id}."""
    path_to_id: Dict[str, int] = {}
    for data_source_id, paths in image_paths.items():
        for path in paths:
            path_to_id[path] = data_source_id
    return path_to_id


class InterestingFileTagger:
    """
    Turns manifest rows into interesting-file-hit artifacts.

    Artifacts are created as rows are read and posted to the blackboard in a
    single batch by post().
    """

    def __init__(
        self,
        case_db: CaseDatabase,
        blackboard: Blackboard,
        dest_dir: Union[str, Path],
        virtual_disk_mode: bool,
        module_name: str = DEFAULT_MODULE_NAME,
        rules: Optional[Configuration] = None,
        data_source_id: Optional[int] = None,
    ):
        self.case_db = case_db
        self.blackboard = blackboard
        self.dest_dir = Path(dest_dir).resolve()
        self.virtual_disk_mode = virtual_disk_mode
        self.module_name = module_name
        self.rules = rules
        # Scopes local-file lookups to the data source just imported
        self.data_source_id = data_source_id
        self.artifacts: List[Artifact] = []
        self._image_path_to_id: Dict[str, int] = {}
        if virtual_disk_mode:
            self._image_path_to_id = image_paths_to_data_source_ids(case_db.get_image_paths())
        self._unknown_rules = set()

    def _resolve_files(self, row: ManifestRow) -> List[AbstractFile]:
        if self.virtual_disk_mode:
            target_image_path = str(self.dest_dir / row.vhd_filename)
            data_source_id = self._image_path_to_id.get(target_image_path)
            if data_source_id is None:
                raise RepositoryError(
                    f"Cannot find an image data source for {target_image_path}"
                )
            return self.case_db.find_files(
                data_source_id=data_source_id,
                meta_addr=row.meta_addr(),
                name=row.filename,
            )
        return self.case_db.find_files(
            name=row.filename,
            parent_path=synthetic_parent_path(row.vhd_filename, row.parent_path),
            data_source_id=self.data_source_id,
        )

    def _attributes_for(self, row: ManifestRow) -> List[Attribute]:
        attributes = [
            Attribute(type=AttributeType.SET_NAME, source=self.module_name, value=row.rule_set_name),
            Attribute(type=AttributeType.CATEGORY, source=self.module_name, value=row.rule_name),
        ]
        if self.rules is not None:
            rule = self.rules.find_rule(row.rule_set_name, row.rule_name)
            if rule is None:
                key = (row.rule_set_name, row.rule_name)
                if key not in self._unknown_rules:
                    self._unknown_rules.add(key)
                    logger.warning(
                        f"Rule {row.rule_name} of set {row.rule_set_name} is not in the rule configuration"
                    )
            elif rule.description:
                attributes.append(
                    Attribute(type=AttributeType.COMMENT, source=self.module_name, value=rule.description)
                )
        return attributes

    def add_row(self, row: ManifestRow) -> int:
        """Create artifacts for every file the row resolves to. Returns how many were new."""
        created = 0
        attributes = self._attributes_for(row)
        # Deduplicate on set and rule name only
        identity = attributes[:2]
        for file in self._resolve_files(row):
            if self.blackboard.artifact_exists(file.id, ArtifactType.INTERESTING_FILE_HIT, identity):
                continue
            artifact = self.blackboard.new_artifact(
                ArtifactType.INTERESTING_FILE_HIT, file.id, attributes
            )
            self.artifacts.append(artifact)
            created += 1
        return created

    def post(self) -> None:
        self.blackboard.post_artifacts(self.artifacts, self.module_name)


def tag_interesting_files(
    case_db: CaseDatabase,
    blackboard: Blackboard,
    dest_dir: Union[str, Path],
    manifest_path: Union[str, Path],
    virtual_disk_mode: bool,
    module_name: str = DEFAULT_MODULE_NAME,
    rules: Optional[Configuration] = None,
    cancel_token: Optional[CancellationToken] = None,
    data_source_id: Optional[int] = None,
) -> List[Artifact]:
    """
    Tag the files listed in the manifest as interesting-file hits.

    Args:
        case_db: Case repository holding the ingested data source(s)
        blackboard: Artifact store to post to
        dest_dir: Copied acquisition directory
        manifest_path: SearchResults.txt inside dest_dir
        virtual_disk_mode: Look files up per image data source by meta address
        module_name: Source module recorded on attributes and the post
        rules: Optional rule configuration used to annotate artifacts
        cancel_token: Checked between manifest rows
        data_source_id: Local-files data source to search (local-file mode only)

    Returns:
        Newly created artifacts (already posted).

    Raises:
        ManifestFormatError: A row does not have 14 fields.
        TaggingError: The manifest could not be read, or a lookup or post failed.
    """
    tagger = InterestingFileTagger(
        case_db,
        blackboard,
        dest_dir,
        virtual_disk_mode,
        module_name=module_name,
        rules=rules,
        data_source_id=None if virtual_disk_mode else data_source_id,
    )
    try:
        for row in read_manifest(manifest_path):
            if cancel_token is not None and cancel_token.cancelled:
                logger.info(
                    f"Tagging cancelled at line {row.line_number}; posting {len(tagger.artifacts)} artifacts"
                )
                break
            tagger.add_row(row)
    except (RepositoryError, OSError, ValueError) as e:
        raise TaggingError(str(e)) from e
    finally:
        # Artifacts already written are posted even when row processing stopped early
        try:
            tagger.post()
        except BlackboardError as e:
            logger.error(f"Unable to post artifacts to blackboard: {e}")
            raise TaggingError(str(e)) from e

    logger.info(f"Created {len(tagger.artifacts)} interesting file artifacts")
    return tagger.artifacts
