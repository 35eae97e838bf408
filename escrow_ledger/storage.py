"""
Storage Backend Module

Records are JSON documents addressed by (table, key). Two backends share one
interface: an in-process store for tests and single-process deployments, and
a SQLite file for persistence. Every backend supports nested ``atomic()``
blocks that either apply all of their writes or none.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Union
from datetime import datetime, timezone
import sqlite3
import json
import threading
from dataclasses import dataclass, asdict
from pathlib import Path
from contextlib import contextmanager


@dataclass
class StorageRecord:
    """Common header of every persisted document"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready document"""
        document = asdict(self)
        document['created_at'] = self.created_at.isoformat()
        document['updated_at'] = self.updated_at.isoformat()
        return document

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StorageRecord':
        """Rebuild from a stored document"""
        for key in ('created_at', 'updated_at'):
            if isinstance(data.get(key), str):
                data[key] = datetime.fromisoformat(data[key])

        return cls(**data)


def _copy(document: Dict[str, Any]) -> Dict[str, Any]:
    return json.loads(json.dumps(document, default=str))


def _matches(document: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    return all(key in document and document[key] == value for key, value in filters.items())


class StorageInterface(ABC):
    """Document store contract shared by all backends"""

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert or replace the document stored under ``record_id``"""

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Return a copy of the document, or None"""

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Every document of ``table`` in first-insertion order"""

    @abstractmethod
    def delete(self, table: str, record_id: str) -> bool:
        """Remove a document; False if it was not there"""

    @abstractmethod
    def exists(self, table: str, record_id: str) -> bool:
        pass

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Documents whose top-level fields equal every filter value"""
        return [document for document in self.load_all(table) if _matches(document, filters)]

    @abstractmethod
    def count(self, table: str) -> int:
        pass

    @abstractmethod
    def clear_table(self, table: str) -> None:
        pass

    @abstractmethod
    def close(self) -> None:
        pass

    def begin_transaction(self) -> None:
        pass

    def commit(self) -> None:
        pass

    def rollback(self) -> None:
        pass

    @contextmanager
    def atomic(self):
        """Apply every write in the block, or none of them; blocks may nest"""
        self.begin_transaction()
        try:
            yield
        except BaseException:
            self.rollback()
            raise
        self.commit()


class InMemoryStorage(StorageInterface):
    """
    Process-local document store.

    An atomic block holds the store lock until it ends and journals the prior
    value of every document it overwrites, so a rollback restores exactly the
    documents the block touched.
    """

    def __init__(self):
        self._tables: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()
        self._savepoints: List[int] = []
        self._journal: List[tuple] = []

    def _table(self, table: str) -> Dict[str, Dict[str, Any]]:
        return self._tables.setdefault(table, {})

    def _journal_prior(self, table: str, record_id: str) -> None:
        if self._savepoints:
            self._journal.append((table, record_id, self._table(table).get(record_id)))

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self._journal_prior(table, record_id)
            self._table(table)[record_id] = _copy(data)

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            document = self._table(table).get(record_id)
            return _copy(document) if document is not None else None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [_copy(document) for document in self._table(table).values()]

    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            documents = self._table(table)
            if record_id not in documents:
                return False
            self._journal_prior(table, record_id)
            del documents[record_id]
            return True

    def exists(self, table: str, record_id: str) -> bool:
        with self._lock:
            return record_id in self._table(table)

    def count(self, table: str) -> int:
        with self._lock:
            return len(self._table(table))

    def clear_table(self, table: str) -> None:
        with self._lock:
            for record_id in list(self._table(table)):
                self._journal_prior(table, record_id)
            self._tables[table] = {}

    def begin_transaction(self) -> None:
        self._lock.acquire()
        self._savepoints.append(len(self._journal))

    def commit(self) -> None:
        try:
            self._savepoints.pop()
            if not self._savepoints:
                self._journal = []
        finally:
            self._lock.release()

    def rollback(self) -> None:
        """Undo every write since the matching begin_transaction"""
        try:
            mark = self._savepoints.pop()
            for table, record_id, prior in reversed(self._journal[mark:]):
                if prior is None:
                    self._table(table).pop(record_id, None)
                else:
                    self._table(table)[record_id] = prior
            del self._journal[mark:]
        finally:
            self._lock.release()

    def close(self) -> None:
        pass


_SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    tbl TEXT NOT NULL,
    record_id TEXT NOT NULL,
    data TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (tbl, record_id)
)
"""


class SQLiteStorage(StorageInterface):
    """
    SQLite document store.

    All logical tables live in one ``documents`` table keyed by
    (tbl, record_id); ``seq`` keeps first-insertion order across updates.
    Atomic blocks hold the connection lock and commit only when the
    outermost block exits.
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        # isolation_level=None: transactions are opened explicitly by begin_transaction
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level=None)
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._depth = 0

        with self._lock:
            if self.db_path != ":memory:":
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
            self._connection.execute(_SCHEMA)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        now = datetime.now(timezone.utc).isoformat()
        with self._lock:
            self._connection.execute(
                """
                INSERT INTO documents (tbl, record_id, data, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (tbl, record_id)
                DO UPDATE SET data = excluded.data, updated_at = excluded.updated_at
                """,
                (table, record_id, json.dumps(data, default=str), now, now)
            )

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self._connection.execute(
                "SELECT data FROM documents WHERE tbl = ? AND record_id = ?",
                (table, record_id)
            ).fetchone()
        return json.loads(row['data']) if row else None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self._connection.execute(
                "SELECT data FROM documents WHERE tbl = ? ORDER BY seq", (table,)
            ).fetchall()
        return [json.loads(row['data']) for row in rows]

    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            cursor = self._connection.execute(
                "DELETE FROM documents WHERE tbl = ? AND record_id = ?", (table, record_id)
            )
            return cursor.rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        with self._lock:
            row = self._connection.execute(
                "SELECT 1 FROM documents WHERE tbl = ? AND record_id = ? LIMIT 1",
                (table, record_id)
            ).fetchone()
        return row is not None

    def count(self, table: str) -> int:
        with self._lock:
            row = self._connection.execute(
                "SELECT COUNT(*) AS n FROM documents WHERE tbl = ?", (table,)
            ).fetchone()
        return row['n']

    def clear_table(self, table: str) -> None:
        with self._lock:
            self._connection.execute("DELETE FROM documents WHERE tbl = ?", (table,))

    def begin_transaction(self) -> None:
        self._lock.acquire()
        if self._depth == 0:
            try:
                self._connection.execute("BEGIN IMMEDIATE")
            except sqlite3.Error:
                self._lock.release()
                raise
        self._depth += 1

    def commit(self) -> None:
        try:
            self._depth -= 1
            if self._depth == 0:
                self._connection.execute("COMMIT")
        finally:
            self._lock.release()

    def rollback(self) -> None:
        try:
            self._depth -= 1
            if self._depth == 0:
                self._connection.execute("ROLLBACK")
        finally:
            self._lock.release()

    def close(self) -> None:
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_storage(database_url: str) -> StorageInterface:
    """
    Build a storage backend from a URL

    Supported forms: ``memory://`` and ``sqlite:///path/to/file.db``
    (``sqlite://`` alone gives an in-memory SQLite database).
    """
    if database_url in ("memory://", "memory", ""):
        return InMemoryStorage()

    if database_url.startswith("sqlite://"):
        path = database_url[len("sqlite://"):]
        if path.startswith("/"):
            path = path[1:]
        return SQLiteStorage(path or ":memory:")

    raise ValueError(f"Unsupported database URL: {database_url}")
