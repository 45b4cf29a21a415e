# src/logicalimager/case/blackboard.py

import logging
from datetime import datetime, timezone
from typing import Callable, Collection, List, Optional

from logicalimager.case.database import CaseDatabase
from logicalimager.case.models import Artifact, ArtifactType, Attribute, AttributeType
from logicalimager.core.errors import BlackboardError, RepositoryError

logger = logging.getLogger(__name__)

ArtifactListener = Callable[[str, List[Artifact]], None]


class Blackboard:
    """
    Artifact store of the case repository.

    Artifacts are written when created and become visible to subscribers
    (keyword indexing, UI refresh) once posted.
    """

    def __init__(self, case_db: CaseDatabase):
        self.case_db = case_db
        self._listeners: List[ArtifactListener] = []

    def subscribe(self, listener: ArtifactListener) -> None:
        self._listeners.append(listener)

    def _load_attributes(self, artifact_id: int) -> List[Attribute]:
        rows = self.case_db.query(
            "SELECT type, source, value FROM artifact_attributes WHERE artifact_id = ? ORDER BY id",
            (artifact_id,),
        )
        return [
            Attribute(type=AttributeType(r["type"]), source=r["source"], value=r["value"])
            for r in rows
        ]

    def get_artifacts(
        self,
        file_id: Optional[int] = None,
        artifact_type: Optional[ArtifactType] = None,
    ) -> List[Artifact]:
        clauses = []
        params = []
        if file_id is not None:
            clauses.append("file_id = ?")
            params.append(file_id)
        if artifact_type is not None:
            clauses.append("type = ?")
            params.append(artifact_type.value)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self.case_db.query(f"SELECT id, file_id, type FROM artifacts{where} ORDER BY id", tuple(params))
        return [
            Artifact(
                id=r["id"],
                type=ArtifactType(r["type"]),
                file_id=r["file_id"],
                attributes=tuple(self._load_attributes(r["id"])),
            )
            for r in rows
        ]

    def artifact_exists(
        self,
        file_id: int,
        artifact_type: ArtifactType,
        attributes: Collection[Attribute],
    ) -> bool:
        """Check for an artifact on the file carrying all of the given attribute values."""
        wanted = {(a.type, a.value) for a in attributes}
        for artifact in self.get_artifacts(file_id=file_id, artifact_type=artifact_type):
            present = {(a.type, a.value) for a in artifact.attributes}
            if wanted <= present:
                return True
        return False

    def new_artifact(
        self,
        artifact_type: ArtifactType,
        file_id: int,
        attributes: Collection[Attribute],
    ) -> Artifact:
        try:
            with self.case_db.atomic() as conn:
                cur = conn.execute(
                    "INSERT INTO artifacts(file_id, type, created_at) VALUES(?,?,?)",
                    (file_id, artifact_type.value, datetime.now(timezone.utc).isoformat()),
                )
                artifact_id = int(cur.lastrowid)
                conn.executemany(
                    "INSERT INTO artifact_attributes(artifact_id, type, source, value) VALUES(?,?,?,?)",
                    [(artifact_id, a.type.value, a.source, a.value) for a in attributes],
                )
        except RepositoryError as e:
            raise BlackboardError(f"Failed to create artifact for file {file_id}: {e}") from e
        return Artifact(
            id=artifact_id, type=artifact_type, file_id=file_id, attributes=tuple(attributes)
        )

    def post_artifacts(self, artifacts: List[Artifact], module_name: str) -> None:
        """Mark a batch of artifacts as posted and notify subscribers once."""
        if not artifacts:
            logger.debug(f"No artifacts to post for {module_name}")
            return
        posted_at = datetime.now(timezone.utc).isoformat()
        try:
            with self.case_db.atomic() as conn:
                conn.executemany(
                    "UPDATE artifacts SET posted_at = ?, posted_by = ? WHERE id = ?",
                    [(posted_at, module_name, a.id) for a in artifacts],
                )
        except RepositoryError as e:
            raise BlackboardError(f"Unable to post artifacts to blackboard: {e}") from e

        for listener in self._listeners:
            try:
                listener(module_name, list(artifacts))
            except Exception as e:
                logger.error(f"Blackboard listener failed: {e}")
        logger.info(f"Posted {len(artifacts)} artifacts for {module_name}")

    def count_posted(self) -> int:
        rows = self.case_db.query("SELECT COUNT(*) FROM artifacts WHERE posted_at IS NOT NULL")
        return int(rows[0][0])
