# src/logicalimager/case/database.py

import hashlib
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Union

from logicalimager.case.models import (
    AbstractFile,
    DataSource,
    DataSourceType,
    Report,
)
from logicalimager.core.errors import RepositoryError

logger = logging.getLogger(__name__)


SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS data_sources(
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        device_id TEXT NOT NULL,
        name TEXT NOT NULL,
        type TEXT NOT NULL,
        time_zone TEXT,
        created_at TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS image_names(
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        data_source_id INTEGER NOT NULL,
        path TEXT NOT NULL,
        sequence INTEGER NOT NULL DEFAULT 0,
        FOREIGN KEY(data_source_id) REFERENCES data_sources(id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS files(
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        data_source_id INTEGER NOT NULL,
        name TEXT NOT NULL,
        parent_path TEXT NOT NULL,
        meta_addr INTEGER,
        size INTEGER NOT NULL DEFAULT 0,
        crtime INTEGER NOT NULL DEFAULT 0,
        mtime INTEGER NOT NULL DEFAULT 0,
        atime INTEGER NOT NULL DEFAULT 0,
        ctime INTEGER NOT NULL DEFAULT 0,
        local_path TEXT,
        is_dir INTEGER NOT NULL DEFAULT 0,
        FOREIGN KEY(data_source_id) REFERENCES data_sources(id)
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_files_name_parent ON files(name, parent_path);",
    "CREATE INDEX IF NOT EXISTS idx_files_ds_meta ON files(data_source_id, meta_addr);",
    """
    CREATE TABLE IF NOT EXISTS reports(
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        path TEXT NOT NULL,
        source_module TEXT NOT NULL,
        name TEXT NOT NULL,
        sha256 TEXT,
        created_at TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS artifacts(
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        file_id INTEGER NOT NULL,
        type TEXT NOT NULL,
        created_at TEXT NOT NULL,
        posted_at TEXT,
        posted_by TEXT,
        FOREIGN KEY(file_id) REFERENCES files(id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS artifact_attributes(
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        artifact_id INTEGER NOT NULL,
        type TEXT NOT NULL,
        source TEXT NOT NULL,
        value TEXT NOT NULL,
        FOREIGN KEY(artifact_id) REFERENCES artifacts(id)
    );
    """,
]


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_file(row: sqlite3.Row) -> AbstractFile:
    return AbstractFile(
        id=row["id"],
        data_source_id=row["data_source_id"],
        name=row["name"],
        parent_path=row["parent_path"],
        meta_addr=row["meta_addr"],
        size=row["size"],
        crtime=row["crtime"],
        mtime=row["mtime"],
        atime=row["atime"],
        ctime=row["ctime"],
        local_path=row["local_path"],
        is_dir=bool(row["is_dir"]),
    )


def _row_to_data_source(row: sqlite3.Row) -> DataSource:
    return DataSource(
        id=row["id"],
        device_id=row["device_id"],
        name=row["name"],
        type=DataSourceType(row["type"]),
        time_zone=row["time_zone"] or "",
    )


class CaseDbTransaction:
    """
    An open write transaction on the case database.

    Holds the database lock from construction until commit or rollback, so
    no other thread observes a partially written transaction. Used as a
    context manager it commits on normal exit and rolls back on exceptions.
    """

    def __init__(self, case_db: "CaseDatabase"):
        self._case_db = case_db
        self._open = False
        case_db._lock.acquire()
        try:
            case_db._conn.execute("BEGIN")
        except sqlite3.Error as e:
            case_db._lock.release()
            raise RepositoryError(f"Failed to begin transaction: {e}") from e
        self._open = True

    @property
    def is_open(self) -> bool:
        return self._open

    def check_open(self) -> None:
        if not self._open:
            raise RepositoryError("Transaction is no longer open")

    def commit(self) -> None:
        self.check_open()
        try:
            self._case_db._conn.commit()
        except sqlite3.Error as e:
            self._case_db._conn.rollback()
            raise RepositoryError(f"Failed to commit transaction: {e}") from e
        finally:
            self._close()

    def rollback(self) -> None:
        if not self._open:
            return
        try:
            self._case_db._conn.rollback()
        except sqlite3.Error as e:
            raise RepositoryError(f"Failed to rollback transaction: {e}") from e
        finally:
            self._close()

    def _close(self) -> None:
        self._open = False
        self._case_db._lock.release()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if not self._open:
            return
        if exc_type is None:
            self.commit()
        else:
            try:
                self.rollback()
            except RepositoryError as e:
                logger.error(f"Failed to rollback transaction: {e}")


class CaseDatabase:
    """
    SQLite-backed case repository.

    Stores data sources, their files, registered reports and blackboard
    artifacts. The connection is shared between the orchestrator thread and
    the image ingest worker; every access goes through a re-entrant lock.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        if str(path) != ":memory:":
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        try:
            self._conn = sqlite3.connect(
                str(path), check_same_thread=False, isolation_level=None
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            for stmt in SCHEMA:
                self._conn.execute(stmt)
        except sqlite3.Error as e:
            raise RepositoryError(f"Failed to open case database {path}: {e}") from e
        logger.info(f"Case database initialized at {self.path}")

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @contextmanager
    def atomic(self) -> Iterator[sqlite3.Connection]:
        """Run statements inside the open transaction, or in a new one."""
        with self._lock:
            if self._conn.in_transaction:
                try:
                    yield self._conn
                except sqlite3.Error as e:
                    raise RepositoryError(str(e)) from e
                return
            try:
                self._conn.execute("BEGIN")
                yield self._conn
            except sqlite3.Error as e:
                self._conn.rollback()
                raise RepositoryError(str(e)) from e
            except BaseException:
                self._conn.rollback()
                raise
            else:
                self._conn.commit()

    def query(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise RepositoryError(str(e)) from e

    def begin_transaction(self) -> CaseDbTransaction:
        return CaseDbTransaction(self)

    # --- Reports ---

    def add_report(self, path: Union[str, Path], source_module: str, name: str) -> Report:
        """Register a report file, recording its SHA-256 for chain of custody."""
        path = Path(path)
        try:
            sha256_hash = hashlib.sha256()
            with open(path, "rb") as f:
                for chunk in iter(lambda: f.read(65536), b""):
                    sha256_hash.update(chunk)
        except OSError as e:
            raise RepositoryError(f"Cannot read report {path}: {e}") from e

        with self.atomic() as conn:
            cur = conn.execute(
                "INSERT INTO reports(path, source_module, name, sha256, created_at) VALUES(?,?,?,?,?)",
                (str(path), source_module, name, sha256_hash.hexdigest(), _utc_now()),
            )
            report_id = int(cur.lastrowid)
        logger.info(f"Added report {name} ({path})")
        return Report(
            id=report_id,
            path=str(path),
            source_module=source_module,
            name=name,
            sha256_hash=sha256_hash.hexdigest(),
        )

    def get_reports(self) -> List[Report]:
        rows = self.query("SELECT * FROM reports ORDER BY id")
        return [
            Report(
                id=r["id"],
                path=r["path"],
                source_module=r["source_module"],
                name=r["name"],
                sha256_hash=r["sha256"],
            )
            for r in rows
        ]

    # --- Data sources ---

    def _add_data_source(
        self,
        device_id: str,
        name: str,
        ds_type: DataSourceType,
        time_zone: str,
        trans: CaseDbTransaction,
    ) -> DataSource:
        trans.check_open()
        with self.atomic() as conn:
            cur = conn.execute(
                "INSERT INTO data_sources(device_id, name, type, time_zone, created_at) VALUES(?,?,?,?,?)",
                (device_id, name, ds_type.value, time_zone, _utc_now()),
            )
        return DataSource(
            id=int(cur.lastrowid),
            device_id=device_id,
            name=name,
            type=ds_type,
            time_zone=time_zone,
        )

    def add_local_files_data_source(
        self, device_id: str, name: str, time_zone: str, trans: CaseDbTransaction
    ) -> DataSource:
        return self._add_data_source(device_id, name, DataSourceType.LOCAL_FILES, time_zone, trans)

    def add_image_data_source(
        self,
        device_id: str,
        image_paths: List[str],
        time_zone: str,
        trans: CaseDbTransaction,
    ) -> DataSource:
        if not image_paths:
            raise RepositoryError("An image data source needs at least one path")
        data_source = self._add_data_source(
            device_id, Path(image_paths[0]).name, DataSourceType.IMAGE, time_zone, trans
        )
        with self.atomic() as conn:
            conn.executemany(
                "INSERT INTO image_names(data_source_id, path, sequence) VALUES(?,?,?)",
                [(data_source.id, p, i) for i, p in enumerate(image_paths)],
            )
        return data_source

    def get_data_sources(self) -> List[DataSource]:
        return [_row_to_data_source(r) for r in self.query("SELECT * FROM data_sources ORDER BY id")]

    def get_image_paths(self) -> Dict[int, List[str]]:
        """Map each image data source id to its image paths."""
        image_paths: Dict[int, List[str]] = {}
        for row in self.query(
            "SELECT data_source_id, path FROM image_names ORDER BY data_source_id, sequence"
        ):
            image_paths.setdefault(row["data_source_id"], []).append(row["path"])
        return image_paths

    # --- Files ---

    def add_file(
        self,
        data_source_id: int,
        name: str,
        parent_path: str,
        trans: CaseDbTransaction,
        meta_addr: Optional[int] = None,
        size: int = 0,
        crtime: int = 0,
        mtime: int = 0,
        atime: int = 0,
        ctime: int = 0,
        local_path: Optional[str] = None,
        is_dir: bool = False,
    ) -> AbstractFile:
        trans.check_open()
        with self.atomic() as conn:
            cur = conn.execute(
                """
                INSERT INTO files(data_source_id, name, parent_path, meta_addr, size,
                                  crtime, mtime, atime, ctime, local_path, is_dir)
                VALUES(?,?,?,?,?,?,?,?,?,?,?)
                """,
                (
                    data_source_id,
                    name,
                    parent_path,
                    meta_addr,
                    size,
                    crtime,
                    mtime,
                    atime,
                    ctime,
                    local_path,
                    int(is_dir),
                ),
            )
        return AbstractFile(
            id=int(cur.lastrowid),
            data_source_id=data_source_id,
            name=name,
            parent_path=parent_path,
            meta_addr=meta_addr,
            size=size,
            crtime=crtime,
            mtime=mtime,
            atime=atime,
            ctime=ctime,
            local_path=local_path,
            is_dir=is_dir,
        )

    def add_virtual_directory(
        self, data_source_id: int, name: str, parent_path: str, trans: CaseDbTransaction
    ) -> AbstractFile:
        return self.add_file(data_source_id, name, parent_path, trans, is_dir=True)

    def find_files(
        self,
        name: Optional[str] = None,
        parent_path: Optional[str] = None,
        data_source_id: Optional[int] = None,
        meta_addr: Optional[int] = None,
    ) -> List[AbstractFile]:
        """Find all files matching every given filter."""
        clauses = []
        params = []
        for column, value in (
            ("name", name),
            ("parent_path", parent_path),
            ("data_source_id", data_source_id),
            ("meta_addr", meta_addr),
        ):
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(value)
        if not clauses:
            raise RepositoryError("find_files needs at least one filter")
        rows = self.query(
            f"SELECT * FROM files WHERE {' AND '.join(clauses)} ORDER BY id", tuple(params)
        )
        return [_row_to_file(r) for r in rows]

    def get_file(self, file_id: int) -> Optional[AbstractFile]:
        rows = self.query("SELECT * FROM files WHERE id = ?", (file_id,))
        return _row_to_file(rows[0]) if rows else None

    def count_files(self, data_source_id: Optional[int] = None) -> int:
        if data_source_id is None:
            rows = self.query("SELECT COUNT(*) FROM files")
        else:
            rows = self.query(
                "SELECT COUNT(*) FROM files WHERE data_source_id = ?", (data_source_id,)
            )
        return int(rows[0][0])
