"""
Storage Backend Module

Keyed record storage for ledger state. Records are JSON documents grouped in
named tables; amounts inside them are plain integers of the smallest unit, so
values beyond 64 bits survive both backends unchanged.

InMemoryStorage backs tests and throwaway development chains; SQLiteStorage
keeps state across restarts. Both support nested atomic() blocks.
"""

from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Dict, List, Optional, Any, Union
from datetime import datetime
import copy
import sqlite3
import json
import threading
from dataclasses import dataclass, asdict
from pathlib import Path
from contextlib import contextmanager


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result['created_at'] = self.created_at.isoformat()
        result['updated_at'] = self.updated_at.isoformat()
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StorageRecord':
        fields = dict(data)
        for key in ('created_at', 'updated_at'):
            if isinstance(fields.get(key), str):
                fields[key] = datetime.fromisoformat(fields[key])
        return cls(**fields)


def _detached(record: Dict[str, Any]) -> Dict[str, Any]:
    """Copy a record through JSON so callers never share state with storage"""
    return json.loads(json.dumps(record, default=str))


class StorageInterface(ABC):
    """
    Abstract interface for storage backends

    Subclasses provide the five primitive operations; lookups built on top of
    them (exists, find, count) have generic versions here that backends may
    replace with native queries.
    """

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert or replace a record"""
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load one record, or None"""
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load every record of a table in insertion order"""
        pass

    @abstractmethod
    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record; False if it was not there"""
        pass

    @abstractmethod
    def close(self) -> None:
        pass

    def exists(self, table: str, record_id: str) -> bool:
        return self.load(table, record_id) is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Records whose fields equal every filter value"""
        return [
            record for record in self.load_all(table)
            if all(key in record and record[key] == value for key, value in filters.items())
        ]

    def count(self, table: str) -> int:
        return len(self.load_all(table))

    # Transactions

    def begin_transaction(self) -> None:
        pass

    def commit(self) -> None:
        pass

    def rollback(self) -> None:
        pass

    @property
    def in_atomic_block(self) -> bool:
        """True while an atomic() block is open"""
        return getattr(self, '_atomic_depth', 0) > 0

    @contextmanager
    def atomic(self):
        """
        Context manager for atomic operations

        Blocks may nest. Only the outermost block begins, commits or rolls
        back, so an exception raised anywhere inside discards every write made
        since the outermost block was entered.
        """
        depth = getattr(self, '_atomic_depth', 0)
        # A begin that raises leaves the depth untouched
        if depth == 0:
            self.begin_transaction()
        self._atomic_depth = depth + 1
        try:
            yield
        except BaseException:
            self._atomic_depth = depth
            if depth == 0:
                self.rollback()
            raise
        self._atomic_depth = depth
        if depth == 0:
            try:
                self.commit()
            except BaseException:
                self.rollback()
                raise


class InMemoryStorage(StorageInterface):
    """Dictionary-backed storage; rollback restores a snapshot of all tables"""

    def __init__(self):
        self._tables: Dict[str, Dict[str, Dict[str, Any]]] = defaultdict(dict)
        self._snapshot = None
        self._lock = threading.RLock()

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self._tables[table][record_id] = _detached(data)

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._tables[table].get(record_id)
            return _detached(record) if record is not None else None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [_detached(record) for record in self._tables[table].values()]

    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            return self._tables[table].pop(record_id, None) is not None

    def exists(self, table: str, record_id: str) -> bool:
        with self._lock:
            return record_id in self._tables[table]

    def count(self, table: str) -> int:
        with self._lock:
            return len(self._tables[table])

    def begin_transaction(self) -> None:
        with self._lock:
            self._snapshot = copy.deepcopy(self._tables)

    def commit(self) -> None:
        with self._lock:
            self._snapshot = None

    def rollback(self) -> None:
        with self._lock:
            if self._snapshot is not None:
                self._tables = self._snapshot
                self._snapshot = None

    def close(self) -> None:
        pass


class SQLiteStorage(StorageInterface):
    """
    SQLite storage for persistence

    Every logical table lives in one physical ``records`` table keyed by
    (table, id), so no schema change ever happens inside a transaction.
    Transactions are explicit: the connection runs in autocommit mode and
    atomic() issues BEGIN, COMMIT and ROLLBACK itself.
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False,
                                           isolation_level=None)
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()

        with self._lock:
            if self.db_path != ":memory:":
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
            self._connection.execute("""
                CREATE TABLE IF NOT EXISTS records (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    tbl TEXT NOT NULL,
                    id TEXT NOT NULL,
                    data TEXT NOT NULL,
                    UNIQUE (tbl, id)
                )
            """)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        # Upsert keeps seq, so load_all stays in first-insertion order
        with self._lock:
            self._connection.execute("""
                INSERT INTO records (tbl, id, data) VALUES (?, ?, ?)
                ON CONFLICT (tbl, id) DO UPDATE SET data = excluded.data
            """, (table, record_id, json.dumps(data, default=str)))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self._connection.execute(
                "SELECT data FROM records WHERE tbl = ? AND id = ?", (table, record_id)
            ).fetchone()
        return json.loads(row['data']) if row else None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self._connection.execute(
                "SELECT data FROM records WHERE tbl = ? ORDER BY seq", (table,)
            ).fetchall()
        return [json.loads(row['data']) for row in rows]

    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            cursor = self._connection.execute(
                "DELETE FROM records WHERE tbl = ? AND id = ?", (table, record_id)
            )
            return cursor.rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        with self._lock:
            row = self._connection.execute(
                "SELECT 1 FROM records WHERE tbl = ? AND id = ? LIMIT 1", (table, record_id)
            ).fetchone()
        return row is not None

    def count(self, table: str) -> int:
        with self._lock:
            row = self._connection.execute(
                "SELECT COUNT(*) AS n FROM records WHERE tbl = ?", (table,)
            ).fetchone()
        return row['n']

    def begin_transaction(self) -> None:
        with self._lock:
            self._connection.execute("BEGIN")

    def commit(self) -> None:
        with self._lock:
            if self._connection.in_transaction:
                self._connection.execute("COMMIT")

    def rollback(self) -> None:
        with self._lock:
            if self._connection.in_transaction:
                self._connection.execute("ROLLBACK")

    def close(self) -> None:
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_storage(database_url: str) -> StorageInterface:
    """
    Build a storage backend from a database URL

    Accepts "memory" (or an empty string) for InMemoryStorage, and either a
    "sqlite:///path" URL or a bare file path for SQLiteStorage.
    """
    if not database_url or database_url == "memory":
        return InMemoryStorage()
    if database_url.startswith("sqlite:///"):
        return SQLiteStorage(database_url[len("sqlite:///"):] or ":memory:")
    if "://" in database_url:
        raise ValueError(f"Unsupported database URL: {database_url}")
    return SQLiteStorage(database_url)
