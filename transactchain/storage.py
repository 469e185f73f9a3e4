"""
Storage Backend Module

Provides abstract storage interface and implementations for in-memory (testing)
and SQLite (persistence). All monetary values stored as Decimal strings.

Multi-record writes go through save_batch(), which applies a list of WriteOps
as one atomic unit: either every write lands or none does, and readers never
see a half-applied batch. Each WriteOp may carry a precondition (the record
must not exist yet, or must still be at an expected version) so the store
doubles as a compare-and-write primitive.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Union, Iterator
from decimal import Decimal
from datetime import datetime, timezone
import sqlite3
import json
import threading
from dataclasses import dataclass, asdict
from pathlib import Path
from contextlib import contextmanager

from .errors import StorageUnavailable
from .logging_config import get_logger


logger = get_logger("transactchain.storage")

# Counters behind WriteOp.sequence_key, one record per key
SEQUENCE_TABLE = "sequences"


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = asdict(self)
        # Convert datetime objects to ISO strings
        result['created_at'] = self.created_at.isoformat()
        result['updated_at'] = self.updated_at.isoformat()
        # Convert Decimal objects to strings
        for key, value in result.items():
            if isinstance(value, Decimal):
                result[key] = str(value)
        return result


@dataclass
class WriteOp:
    """
    A single write inside an atomic batch.

    data=None deletes the record. must_not_exist turns the write into an
    insert that fails if the id is taken; expected_version makes it fail
    unless the stored record's "version" field still has that value.

    sequence_key names a counter; the store takes its next value inside the
    batch, writes it into data["sequence"] (the caller's dict included) and
    advances the counter only if the batch commits.
    """
    table: str
    record_id: str
    data: Optional[Dict[str, Any]] = None
    must_not_exist: bool = False
    expected_version: Optional[int] = None
    sequence_key: Optional[str] = None

    @property
    def is_delete(self) -> bool:
        return self.data is None


class RecordExistsError(Exception):
    """Insert-only write hit an existing record"""

    def __init__(self, table: str, record_id: str):
        super().__init__(f"Record {table}/{record_id} already exists")
        self.table = table
        self.record_id = record_id


class StaleRecordError(Exception):
    """Compare-and-write found a different version than expected"""

    def __init__(self, table: str, record_id: str, expected: Optional[int], actual: Optional[int]):
        super().__init__(
            f"Record {table}/{record_id} is at version {actual}, expected {expected}"
        )
        self.table = table
        self.record_id = record_id
        self.expected = expected
        self.actual = actual


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to storage"""
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from storage"""
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        pass

    @abstractmethod
    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from storage"""
        pass

    @abstractmethod
    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        pass

    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
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
    def save_batch(self, ops: List[WriteOp]) -> None:
        """Apply all writes atomically, or none of them"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    @staticmethod
    def _seed_sequence(records: List[Dict[str, Any]]) -> int:
        """Counter start for a table written before it had a counter"""
        return max((r.get('sequence', 0) for r in records), default=0)

    @staticmethod
    def _check_precondition(op: WriteOp, current: Optional[Dict[str, Any]]) -> None:
        """Raise if the stored record does not satisfy the op's precondition"""
        if op.must_not_exist and current is not None:
            raise RecordExistsError(op.table, op.record_id)
        if op.expected_version is not None:
            actual = current.get('version') if current is not None else None
            if actual != op.expected_version:
                raise StaleRecordError(op.table, op.record_id, op.expected_version, actual)


class InMemoryStorage(StorageInterface):
    """In-memory storage implementation for testing"""

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists"""
        if table not in self._data:
            self._data[table] = {}

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to memory"""
        with self._lock:
            self._ensure_table(table)
            # Deep copy to prevent external mutation
            self._data[table][record_id] = json.loads(json.dumps(data, default=str))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from memory"""
        with self._lock:
            self._ensure_table(table)
            record = self._data[table].get(record_id)
            if record:
                # Deep copy to prevent external mutation
                return json.loads(json.dumps(record))
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self._ensure_table(table)
            return [json.loads(json.dumps(record)) for record in self._data[table].values()]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from memory"""
        with self._lock:
            self._ensure_table(table)
            if record_id in self._data[table]:
                del self._data[table][record_id]
                return True
            return False

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            self._ensure_table(table)
            return record_id in self._data[table]

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        with self._lock:
            self._ensure_table(table)
            results = []
            for record in self._data[table].values():
                match = True
                for key, value in filters.items():
                    if key not in record or record[key] != value:
                        match = False
                        break
                if match:
                    results.append(json.loads(json.dumps(record)))
            return results

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            self._ensure_table(table)
            return len(self._data[table])

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock:
            self._data[table] = {}

    def save_batch(self, ops: List[WriteOp]) -> None:
        """Check every precondition, then apply every write under one lock hold"""
        with self._lock:
            for op in ops:
                self._ensure_table(op.table)
                self._check_precondition(op, self._data[op.table].get(op.record_id))

            self._ensure_table(SEQUENCE_TABLE)
            counters: Dict[str, int] = {}
            for op in ops:
                if op.sequence_key and not op.is_delete:
                    if op.sequence_key not in counters:
                        counter = self._data[SEQUENCE_TABLE].get(op.sequence_key)
                        counters[op.sequence_key] = (
                            counter['value'] if counter
                            else self._seed_sequence(list(self._data[op.table].values()))
                        )
                    counters[op.sequence_key] += 1
                    op.data['sequence'] = counters[op.sequence_key]

            # Serialize up front so a bad payload cannot fail halfway through
            staged = [
                (op, None if op.is_delete else json.loads(json.dumps(op.data, default=str)))
                for op in ops
            ]
            for op, data in staged:
                if data is None:
                    self._data[op.table].pop(op.record_id, None)
                else:
                    self._data[op.table][op.record_id] = data
            for key, value in counters.items():
                self._data[SEQUENCE_TABLE][key] = {"id": key, "value": value}

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:", busy_timeout: float = 5.0):
        self.db_path = str(db_path)
        self._lock = threading.RLock()
        self._tables: set = set()
        try:
            # Batches open their own BEGIN IMMEDIATE; busy_timeout bounds the
            # wait for another connection's write lock
            self._connection = sqlite3.connect(
                self.db_path, check_same_thread=False, isolation_level='DEFERRED',
                timeout=busy_timeout
            )
            self._connection.row_factory = sqlite3.Row

            # Enable WAL mode for better concurrent access
            if self.db_path != ":memory:":
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
                self._connection.commit()
        except sqlite3.Error as e:
            raise StorageUnavailable(f"Cannot open SQLite database {self.db_path}: {e}") from e

    @contextmanager
    def _guarded(self) -> Iterator[sqlite3.Connection]:
        """Hold the connection lock and translate driver errors"""
        with self._lock:
            if self._connection is None:
                raise StorageUnavailable("SQLite storage is closed")
            try:
                yield self._connection
            except sqlite3.Error as e:
                logger.error(f"SQLite error on {self.db_path}: {e}")
                raise StorageUnavailable(f"SQLite operation failed: {e}") from e

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        if table in self._tables:
            return
        self._connection.execute(f"""
            CREATE TABLE IF NOT EXISTS {table} (
                id TEXT PRIMARY KEY,
                data TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        # Create index on timestamps for better query performance
        self._connection.execute(f"""
            CREATE INDEX IF NOT EXISTS idx_{table}_created_at
            ON {table}(created_at)
        """)
        self._connection.commit()
        self._tables.add(table)

    def _load_raw(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        cursor = self._connection.execute(f"""
            SELECT data FROM {table} WHERE id = ?
        """, (record_id,))
        row = cursor.fetchone()
        if row:
            return json.loads(row['data'])
        return None

    def _apply(self, op: WriteOp) -> None:
        """Execute one write without committing"""
        if op.is_delete:
            self._connection.execute(f"DELETE FROM {op.table} WHERE id = ?", (op.record_id,))
            return

        now = datetime.now(timezone.utc).isoformat()
        data_json = json.dumps(op.data, default=str)

        # Use INSERT OR REPLACE to handle updates
        self._connection.execute(f"""
            INSERT OR REPLACE INTO {op.table} (id, data, created_at, updated_at)
            VALUES (?, ?,
                COALESCE((SELECT created_at FROM {op.table} WHERE id = ?), ?),
                ?)
        """, (op.record_id, data_json, op.record_id, now, now))

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to SQLite"""
        self.save_batch([WriteOp(table, record_id, data)])

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from SQLite"""
        with self._guarded():
            self._ensure_table(table)
            return self._load_raw(table, record_id)

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._guarded() as conn:
            self._ensure_table(table)
            cursor = conn.execute(f"""
                SELECT data FROM {table} ORDER BY created_at
            """)
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from SQLite"""
        with self._guarded() as conn:
            self._ensure_table(table)
            cursor = conn.execute(f"""
                DELETE FROM {table} WHERE id = ?
            """, (record_id,))
            conn.commit()
            return cursor.rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._guarded() as conn:
            self._ensure_table(table)
            cursor = conn.execute(f"""
                SELECT 1 FROM {table} WHERE id = ? LIMIT 1
            """, (record_id,))
            return cursor.fetchone() is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters (simple JSON key matching)"""
        with self._guarded() as conn:
            self._ensure_table(table)
            cursor = conn.execute(f"""
                SELECT data FROM {table} ORDER BY created_at
            """)

            results = []
            for row in cursor.fetchall():
                record = json.loads(row['data'])
                match = True
                for key, value in filters.items():
                    if key not in record or record[key] != value:
                        match = False
                        break
                if match:
                    results.append(record)

            return results

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._guarded() as conn:
            self._ensure_table(table)
            cursor = conn.execute(f"""
                SELECT COUNT(*) as count FROM {table}
            """)
            return cursor.fetchone()['count']

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._guarded() as conn:
            self._ensure_table(table)
            conn.execute(f"DELETE FROM {table}")
            conn.commit()

    def _allocate_sequence(self, key: str, table: str) -> int:
        """Advance counter `key` inside the open transaction"""
        counter = self._load_raw(SEQUENCE_TABLE, key)
        if counter is None:
            cursor = self._connection.execute(f"SELECT data FROM {table}")
            value = self._seed_sequence([json.loads(row['data']) for row in cursor.fetchall()])
        else:
            value = counter['value']
        value += 1
        self._apply(WriteOp(SEQUENCE_TABLE, key, {"id": key, "value": value}))
        return value

    def save_batch(self, ops: List[WriteOp]) -> None:
        """
        Apply all writes inside one SQLite transaction.

        The write lock is taken before the first precondition read, so no other
        connection can commit between a check and the write it guards.
        """
        tables = {op.table for op in ops}
        if any(op.sequence_key for op in ops):
            tables.add(SEQUENCE_TABLE)
        with self._guarded() as conn:
            for table in tables:
                self._ensure_table(table)
            try:
                conn.execute("BEGIN IMMEDIATE")
                for op in ops:
                    self._check_precondition(op, self._load_raw(op.table, op.record_id))
                    if op.sequence_key and not op.is_delete:
                        op.data['sequence'] = self._allocate_sequence(op.sequence_key, op.table)
                    self._apply(op)
                conn.commit()
            except BaseException:
                conn.rollback()
                raise

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None
