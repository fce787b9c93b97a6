"""
Storage Backend Module

Document-style storage for loans and ledger entries. Records are JSON
documents keyed by id within a table; saving an existing id replaces the
document, which is what gives ledger entries their one-per-day guarantee.
Provides an in-memory backend (tests, scratch work) and SQLite (persistence).
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Union
from decimal import Decimal
from datetime import date, datetime
from enum import Enum
import sqlite3
import json
import re
import threading
from dataclasses import dataclass, fields
from pathlib import Path
from contextlib import contextmanager


_IDENTIFIER = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')


def to_storable(value: Any) -> Any:
    """Convert a value to its JSON document form"""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: to_storable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_storable(v) for v in value]
    return value


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-ready document"""
        return {f.name: to_storable(getattr(self, f.name)) for f in fields(self)}

    @staticmethod
    def _timestamps_from_dict(data: Dict[str, Any]) -> Dict[str, Any]:
        """Restore created_at/updated_at from ISO strings"""
        data = dict(data)
        for key in ('created_at', 'updated_at'):
            if key in data and isinstance(data[key], str):
                data[key] = datetime.fromisoformat(data[key])
        return data


def _check_table(table: str) -> None:
    if not _IDENTIFIER.match(table):
        raise ValueError(f"Invalid table name: {table!r}")


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert or replace a record"""
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record by id"""
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        pass

    @abstractmethod
    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record, returning whether it existed"""
        pass

    @abstractmethod
    def delete_where(self, table: str, filters: Dict[str, Any]) -> int:
        """Delete every record matching filters, returning the count removed"""
        pass

    @abstractmethod
    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        pass

    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records whose top-level fields equal the filter values"""
        pass

    @abstractmethod
    def count(self, table: str) -> int:
        """Count records in table"""
        pass

    @abstractmethod
    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    def begin_transaction(self) -> None:
        """Start a transaction (default no-op)"""
        pass

    def commit(self) -> None:
        """Commit current transaction (default no-op)"""
        pass

    def rollback(self) -> None:
        """Rollback current transaction (default no-op)"""
        pass

    @contextmanager
    def atomic(self):
        """Context manager for atomic operations"""
        self.begin_transaction()
        try:
            yield
            self.commit()
        except Exception:
            self.rollback()
            raise


class InMemoryStorage(StorageInterface):
    """In-memory storage implementation for testing"""

    def __init__(self):
        self._data: Dict[str, Dict[str, str]] = {}
        self._lock = threading.RLock()
        self._snapshot: Optional[Dict[str, Dict[str, str]]] = None
        self._depth = 0

    def _table(self, table: str) -> Dict[str, str]:
        _check_table(table)
        return self._data.setdefault(table, {})

    @staticmethod
    def _matches(record: Dict[str, Any], filters: Dict[str, Any]) -> bool:
        return all(key in record and record[key] == to_storable(value)
                   for key, value in filters.items())

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            # Serialised so callers can never mutate stored state
            self._table(table)[record_id] = json.dumps(to_storable(data))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            raw = self._table(table).get(record_id)
            return json.loads(raw) if raw is not None else None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [json.loads(raw) for raw in self._table(table).values()]

    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            return self._table(table).pop(record_id, None) is not None

    def delete_where(self, table: str, filters: Dict[str, Any]) -> int:
        with self._lock:
            rows = self._table(table)
            doomed = [record_id for record_id, raw in rows.items()
                      if self._matches(json.loads(raw), filters)]
            for record_id in doomed:
                del rows[record_id]
            return len(doomed)

    def exists(self, table: str, record_id: str) -> bool:
        with self._lock:
            return record_id in self._table(table)

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        with self._lock:
            records = [json.loads(raw) for raw in self._table(table).values()]
            return [record for record in records if self._matches(record, filters)]

    def count(self, table: str) -> int:
        with self._lock:
            return len(self._table(table))

    def clear_table(self, table: str) -> None:
        with self._lock:
            self._table(table).clear()

    def begin_transaction(self) -> None:
        self._lock.acquire()
        self._depth += 1
        if self._depth == 1:
            self._snapshot = {name: dict(rows) for name, rows in self._data.items()}

    def commit(self) -> None:
        self._depth -= 1
        if self._depth == 0:
            self._snapshot = None
        self._lock.release()

    def rollback(self) -> None:
        # Nested blocks re-raise, so the outermost one restores the snapshot
        self._depth -= 1
        if self._depth == 0 and self._snapshot is not None:
            self._data = self._snapshot
            self._snapshot = None
        self._lock.release()

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level='DEFERRED')
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._depth = 0
        self._known_tables = set()

        if self.db_path != ":memory:":
            with self._lock:
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
                self._connection.commit()

    def _ensure_table(self, table: str) -> None:
        _check_table(table)
        if table in self._known_tables:
            return
        self._connection.execute(f"""
            CREATE TABLE IF NOT EXISTS {table} (
                id TEXT PRIMARY KEY,
                data TEXT NOT NULL,
                created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now')),
                updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now'))
            )
        """)
        if not self._in_transaction:
            self._connection.commit()
        self._known_tables.add(table)

    def _maybe_commit(self) -> None:
        if not self._in_transaction:
            self._connection.commit()

    @staticmethod
    def _where(filters: Dict[str, Any]):
        if not filters:
            return "", []
        clauses = []
        params = []
        for key, value in filters.items():
            if not _IDENTIFIER.match(key):
                raise ValueError(f"Invalid filter field: {key!r}")
            clauses.append("json_extract(data, ?) = ?")
            params.extend([f'$.{key}', to_storable(value)])
        return " WHERE " + " AND ".join(clauses), params

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self._ensure_table(table)
            # The primary key makes a second write for the same id a replace
            self._connection.execute(f"""
                INSERT INTO {table} (id, data) VALUES (?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    data = excluded.data,
                    updated_at = strftime('%Y-%m-%dT%H:%M:%f', 'now')
            """, (record_id, json.dumps(to_storable(data))))
            self._maybe_commit()

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            row = self._connection.execute(
                f"SELECT data FROM {table} WHERE id = ?", (record_id,)
            ).fetchone()
            return json.loads(row['data']) if row else None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"SELECT data FROM {table} ORDER BY created_at, id")
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"DELETE FROM {table} WHERE id = ?", (record_id,))
            self._maybe_commit()
            return cursor.rowcount > 0

    def delete_where(self, table: str, filters: Dict[str, Any]) -> int:
        with self._lock:
            self._ensure_table(table)
            where, params = self._where(filters)
            cursor = self._connection.execute(f"DELETE FROM {table}{where}", params)
            self._maybe_commit()
            return cursor.rowcount

    def exists(self, table: str, record_id: str) -> bool:
        with self._lock:
            self._ensure_table(table)
            row = self._connection.execute(
                f"SELECT 1 FROM {table} WHERE id = ? LIMIT 1", (record_id,)
            ).fetchone()
            return row is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            where, params = self._where(filters)
            cursor = self._connection.execute(
                f"SELECT data FROM {table}{where} ORDER BY created_at, id", params
            )
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def count(self, table: str) -> int:
        with self._lock:
            self._ensure_table(table)
            return self._connection.execute(f"SELECT COUNT(*) AS count FROM {table}").fetchone()['count']

    def clear_table(self, table: str) -> None:
        with self._lock:
            self._ensure_table(table)
            self._connection.execute(f"DELETE FROM {table}")
            self._maybe_commit()

    @property
    def _in_transaction(self) -> bool:
        return self._depth > 0

    def begin_transaction(self) -> None:
        self._lock.acquire()
        # sqlite3 opens the transaction lazily on the first write
        self._depth += 1

    def commit(self) -> None:
        try:
            if self._depth == 1:
                self._connection.commit()
        finally:
            self._depth -= 1
            self._lock.release()

    def rollback(self) -> None:
        try:
            if self._depth == 1:
                self._connection.rollback()
                self._known_tables.clear()
        finally:
            self._depth -= 1
            self._lock.release()

    def close(self) -> None:
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None
