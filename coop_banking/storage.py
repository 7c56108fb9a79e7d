"""
Storage Backend Module

Table/record storage behind a small abstract interface, with an in-memory
backend for tests and a SQLite backend for persistence. Records are plain
JSON-able dicts; money travels as decimal strings and timestamps as ISO 8601.

Both backends provide:
    atomic()   unit of work holding the backend lock; commits on success,
               restores the prior state on any exception
    snapshot() consistent multi-table read
    save_if()  conditional overwrite used for optimistic concurrency
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Iterable, Tuple, Union
from decimal import Decimal
from datetime import datetime, date, timezone
from enum import Enum
import sqlite3
import json
import threading
from dataclasses import dataclass, asdict
from pathlib import Path
from contextlib import contextmanager

from .errors import ConcurrentModificationError
from .logging_config import get_logger


logger = get_logger("coop_banking.storage")

Record = Dict[str, Any]


def serialize_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


def ensure_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a stored ISO timestamp (or date) into an aware UTC datetime"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    return ensure_utc(datetime.fromisoformat(value))


@dataclass
class StorageRecord:
    """Common identity and timestamp fields of persisted entities"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Record:
        return {key: serialize_value(value) for key, value in asdict(self).items()}

    @classmethod
    def from_dict(cls, data: Record) -> 'StorageRecord':
        data = dict(data)
        for name in ('created_at', 'updated_at'):
            if isinstance(data.get(name), str):
                data[name] = parse_timestamp(data[name])
        return cls(**data)


def _matches(record: Record, filters: Record) -> bool:
    return all(name in record and record[name] == wanted for name, wanted in filters.items())


@contextmanager
def _lock_conflicts():
    """Surface SQLite busy/locked errors as a retryable conflict"""
    try:
        yield
    except sqlite3.OperationalError as e:
        message = str(e).lower()
        if "locked" in message or "busy" in message:
            raise ConcurrentModificationError(f"Database is busy: {e}") from e
        raise


class StorageInterface(ABC):
    """Operations every backend implements"""

    @abstractmethod
    def save(self, table: str, record_id: str, data: Record) -> None:
        """Insert or replace"""

    @abstractmethod
    def save_if(
        self,
        table: str,
        record_id: str,
        data: Record,
        expected_field: str,
        expected_value: Any
    ) -> bool:
        """
        Replace an existing record only while its stored ``expected_field``
        still equals ``expected_value``. False when the record is missing or
        another writer changed it first.
        """

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Record]:
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Record]:
        pass

    @abstractmethod
    def delete(self, table: str, record_id: str) -> bool:
        pass

    @abstractmethod
    def exists(self, table: str, record_id: str) -> bool:
        pass

    @abstractmethod
    def find(self, table: str, filters: Record) -> List[Record]:
        """Records whose fields equal every filter value"""

    @abstractmethod
    def count(self, table: str) -> int:
        pass

    @abstractmethod
    def clear_table(self, table: str) -> None:
        pass

    @abstractmethod
    def close(self) -> None:
        pass

    def save_many(self, table: str, records: Iterable[Tuple[str, Record]]) -> None:
        """Bulk insert ``(record_id, data)`` pairs"""
        for record_id, data in records:
            self.save(table, record_id, data)

    # Transaction hooks; backends without transactions leave them as no-ops

    def begin_transaction(self) -> None:
        pass

    def commit(self) -> None:
        pass

    def rollback(self) -> None:
        pass

    @contextmanager
    def atomic(self):
        """All writes in the block persist together or not at all"""
        self.begin_transaction()
        try:
            yield
        except Exception:
            self.rollback()
            raise
        self.commit()

    @contextmanager
    def snapshot(self):
        """Consistent read of several tables at one point in time"""
        with self.atomic():
            yield


class InMemoryStorage(StorageInterface):
    """Dict-of-dicts backend, used by the test suite"""

    def __init__(self):
        self._tables: Dict[str, Dict[str, Record]] = {}
        self._lock = threading.RLock()
        self._tx_depth = 0
        self._tx_backup: Optional[Dict[str, Dict[str, Record]]] = None

    @staticmethod
    def _copy(data: Any) -> Any:
        # Callers never share structure with the stored data
        return json.loads(json.dumps(data, default=str))

    def _table(self, table: str) -> Dict[str, Record]:
        return self._tables.setdefault(table, {})

    def save(self, table: str, record_id: str, data: Record) -> None:
        with self._lock:
            self._table(table)[record_id] = self._copy(data)

    def save_many(self, table: str, records: Iterable[Tuple[str, Record]]) -> None:
        with self._lock:
            rows = self._table(table)
            for record_id, data in records:
                rows[record_id] = self._copy(data)

    def save_if(
        self,
        table: str,
        record_id: str,
        data: Record,
        expected_field: str,
        expected_value: Any
    ) -> bool:
        with self._lock:
            rows = self._table(table)
            current = rows.get(record_id)
            if current is None or current.get(expected_field) != expected_value:
                return False
            rows[record_id] = self._copy(data)
            return True

    def load(self, table: str, record_id: str) -> Optional[Record]:
        with self._lock:
            record = self._table(table).get(record_id)
            return self._copy(record) if record is not None else None

    def load_all(self, table: str) -> List[Record]:
        with self._lock:
            return [self._copy(record) for record in self._table(table).values()]

    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            return self._table(table).pop(record_id, None) is not None

    def exists(self, table: str, record_id: str) -> bool:
        with self._lock:
            return record_id in self._table(table)

    def find(self, table: str, filters: Record) -> List[Record]:
        with self._lock:
            return [
                self._copy(record)
                for record in self._table(table).values()
                if _matches(record, filters)
            ]

    def count(self, table: str) -> int:
        with self._lock:
            return len(self._table(table))

    def clear_table(self, table: str) -> None:
        with self._lock:
            self._tables[table] = {}

    def begin_transaction(self) -> None:
        """Hold the lock for the whole unit of work and remember prior state"""
        self._lock.acquire()
        if self._tx_depth == 0:
            self._tx_backup = self._copy(self._tables)
        self._tx_depth += 1

    def commit(self) -> None:
        self._tx_depth -= 1
        if self._tx_depth == 0:
            self._tx_backup = None
        self._lock.release()

    def rollback(self) -> None:
        """Restore the state captured when the outermost block began"""
        self._tx_depth -= 1
        if self._tx_depth == 0:
            self._tables = self._tx_backup
            self._tx_backup = None
        self._lock.release()

    def close(self) -> None:
        pass


class SQLiteStorage(StorageInterface):
    """
    One SQLite table per record type: ``id``, JSON ``data`` and row
    timestamps. Runs in autocommit mode; atomic blocks issue BEGIN IMMEDIATE
    and COMMIT/ROLLBACK themselves, so writers on other connections queue
    for up to ``busy_timeout`` seconds before the block fails with
    ConcurrentModificationError.
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:", busy_timeout: float = 5.0):
        self.db_path = str(db_path)
        self._connection = sqlite3.connect(
            self.db_path, timeout=busy_timeout, check_same_thread=False, isolation_level=None
        )
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._tx_depth = 0
        self._known_tables: set = set()

        if self.db_path != ":memory:":
            with self._lock:
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")

    def _execute(self, table: str, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        with self._lock, _lock_conflicts():
            self._ensure_table(table)
            return self._connection.execute(sql.format(table=table), params)

    def _ensure_table(self, table: str) -> None:
        if table in self._known_tables:
            return
        self._connection.execute(f"""
            CREATE TABLE IF NOT EXISTS {table} (
                id TEXT PRIMARY KEY,
                data TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        self._connection.execute(f"CREATE INDEX IF NOT EXISTS idx_{table}_created_at ON {table}(created_at)")
        self._known_tables.add(table)

    def save(self, table: str, record_id: str, data: Record) -> None:
        self.save_many(table, [(record_id, data)])

    def save_many(self, table: str, records: Iterable[Tuple[str, Record]]) -> None:
        """Upsert; an existing row keeps its original created_at"""
        now = datetime.now(timezone.utc).isoformat()
        rows = [
            (record_id, json.dumps(data, default=str), record_id, now, now)
            for record_id, data in records
        ]
        with self._lock, _lock_conflicts():
            self._ensure_table(table)
            self._connection.executemany(f"""
                INSERT OR REPLACE INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?, COALESCE((SELECT created_at FROM {table} WHERE id = ?), ?), ?)
            """, rows)

    def save_if(
        self,
        table: str,
        record_id: str,
        data: Record,
        expected_field: str,
        expected_value: Any
    ) -> bool:
        """Conditional UPDATE guarded by a field inside the stored JSON"""
        payload = json.dumps(data, default=str)
        now = datetime.now(timezone.utc).isoformat()
        path = f"$.{expected_field}"
        if expected_value is None:
            cursor = self._execute(
                table,
                "UPDATE {table} SET data = ?, updated_at = ? WHERE id = ? AND json_extract(data, ?) IS NULL",
                (payload, now, record_id, path)
            )
        else:
            cursor = self._execute(
                table,
                "UPDATE {table} SET data = ?, updated_at = ? WHERE id = ? AND json_extract(data, ?) = ?",
                (payload, now, record_id, path, expected_value)
            )
        return cursor.rowcount == 1

    def load(self, table: str, record_id: str) -> Optional[Record]:
        row = self._execute(table, "SELECT data FROM {table} WHERE id = ?", (record_id,)).fetchone()
        return json.loads(row['data']) if row else None

    def load_all(self, table: str) -> List[Record]:
        rows = self._execute(table, "SELECT data FROM {table} ORDER BY created_at, rowid").fetchall()
        return [json.loads(row['data']) for row in rows]

    def delete(self, table: str, record_id: str) -> bool:
        return self._execute(table, "DELETE FROM {table} WHERE id = ?", (record_id,)).rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        row = self._execute(table, "SELECT 1 FROM {table} WHERE id = ?", (record_id,)).fetchone()
        return row is not None

    def find(self, table: str, filters: Record) -> List[Record]:
        # Filtering happens in Python on the decoded JSON
        return [record for record in self.load_all(table) if _matches(record, filters)]

    def count(self, table: str) -> int:
        return self._execute(table, "SELECT COUNT(*) AS n FROM {table}").fetchone()['n']

    def clear_table(self, table: str) -> None:
        self._execute(table, "DELETE FROM {table}")

    def begin_transaction(self) -> None:
        """Take the write lock up front; reads inside the block are never stale"""
        self._lock.acquire()
        if self._tx_depth == 0:
            try:
                with _lock_conflicts():
                    self._connection.execute("BEGIN IMMEDIATE")
            except Exception:
                self._lock.release()
                raise
        self._tx_depth += 1

    def commit(self) -> None:
        self._tx_depth -= 1
        try:
            if self._tx_depth == 0:
                with _lock_conflicts():
                    try:
                        self._connection.execute("COMMIT")
                    except sqlite3.Error:
                        self._connection.execute("ROLLBACK")
                        self._known_tables.clear()
                        raise
        finally:
            self._lock.release()

    @contextmanager
    def snapshot(self):
        """Deferred read transaction; WAL readers do not wait for writers"""
        with self._lock:
            if self._tx_depth:
                yield
                return
            self._tx_depth += 1
            self._connection.execute("BEGIN")
            try:
                yield
            except Exception:
                self._connection.execute("ROLLBACK")
                self._known_tables.clear()
                raise
            else:
                with _lock_conflicts():
                    self._connection.execute("COMMIT")
            finally:
                self._tx_depth -= 1

    def rollback(self) -> None:
        self._tx_depth -= 1
        try:
            if self._tx_depth == 0:
                self._connection.execute("ROLLBACK")
                # Tables created inside the block are gone as well
                self._known_tables.clear()
        finally:
            self._lock.release()

    def close(self) -> None:
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_storage(config) -> StorageInterface:
    """Build the storage backend named by ``config.storage_backend``"""
    backend = config.storage_backend.lower()
    if backend == "memory":
        return InMemoryStorage()
    if backend == "sqlite":
        logger.info(f"Using SQLite storage at {config.sqlite_path}")
        return SQLiteStorage(config.sqlite_path, busy_timeout=config.sqlite_busy_timeout)
    raise ValueError(f"Unknown storage backend: {config.storage_backend}")
