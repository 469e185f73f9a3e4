"""
Tests for storage backends and atomic batch writes
"""

import pytest
import sqlite3
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path

from transactchain.errors import StorageUnavailable
from transactchain.storage import (
    InMemoryStorage, SQLiteStorage, WriteOp, RecordExistsError, StaleRecordError
)


# Test data
test_data = {
    "id": "test_001",
    "name": "Test Record",
    "amount": "100.50",
    "created_at": datetime.now(timezone.utc).isoformat(),
    "updated_at": datetime.now(timezone.utc).isoformat()
}


class FailingSQLiteStorage(SQLiteStorage):
    """Fails any write to one table, after earlier writes in the batch ran"""

    def __init__(self, db_path, failing_table: str):
        super().__init__(db_path)
        self.failing_table = failing_table

    def _apply(self, op: WriteOp) -> None:
        if op.table == self.failing_table:
            raise sqlite3.OperationalError("disk I/O error")
        super()._apply(op)


class InterleavingSQLiteStorage(SQLiteStorage):
    """Runs a callback once, after the batch checked its first precondition"""

    def __init__(self, db_path, on_first_write):
        super().__init__(db_path)
        self.on_first_write = on_first_write

    def _apply(self, op: WriteOp) -> None:
        if self.on_first_write:
            callback, self.on_first_write = self.on_first_write, None
            callback()
        super()._apply(op)


def _exercise_basic_operations(storage):
    # Test save and load
    storage.save("test_table", "record_1", test_data)
    loaded = storage.load("test_table", "record_1")
    assert loaded == test_data

    # Test exists
    assert storage.exists("test_table", "record_1")
    assert not storage.exists("test_table", "non_existent")

    # Test load_all
    storage.save("test_table", "record_2", {"id": "record_2", "data": "test"})
    assert len(storage.load_all("test_table")) == 2

    # Test find
    results = storage.find("test_table", {"id": "test_001"})
    assert len(results) == 1
    assert results[0]["id"] == "test_001"

    # Test count
    assert storage.count("test_table") == 2

    # Test delete
    assert storage.delete("test_table", "record_1")
    assert not storage.delete("test_table", "record_1")
    assert not storage.exists("test_table", "record_1")
    assert storage.count("test_table") == 1

    # Test clear_table
    storage.clear_table("test_table")
    assert storage.count("test_table") == 0


class TestStorageInterface:
    """Test base storage interface functionality"""

    def test_in_memory_storage_basic_operations(self):
        """Test basic CRUD operations with InMemoryStorage"""
        storage = InMemoryStorage()
        _exercise_basic_operations(storage)
        storage.close()

    def test_sqlite_storage_basic_operations(self):
        """Test basic CRUD operations with SQLiteStorage"""
        with tempfile.TemporaryDirectory() as temp_dir:
            storage = SQLiteStorage(Path(temp_dir) / "test.db")
            _exercise_basic_operations(storage)
            storage.close()

    def test_in_memory_load_returns_copy(self):
        """Mutating a loaded record does not change the stored one"""
        storage = InMemoryStorage()
        storage.save("t", "a", {"id": "a", "balance": "1.00"})

        loaded = storage.load("t", "a")
        loaded["balance"] = "999.00"

        assert storage.load("t", "a")["balance"] == "1.00"

    def test_sqlite_persists_across_connections(self):
        """Records survive closing and reopening the database file"""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = Path(temp_dir) / "ledger.db"
            storage = SQLiteStorage(db_path)
            storage.save("accounts", "acc_1", {"id": "acc_1", "balance": "10.00"})
            storage.close()

            reopened = SQLiteStorage(db_path)
            assert reopened.load("accounts", "acc_1") == {"id": "acc_1", "balance": "10.00"}
            reopened.close()

    def test_sqlite_closed_storage_is_unavailable(self):
        """Operations on a closed store surface as StorageUnavailable"""
        storage = SQLiteStorage(":memory:")
        storage.close()

        with pytest.raises(StorageUnavailable) as exc_info:
            storage.load("accounts", "anything")
        assert exc_info.value.is_retryable

        # Closing again is a no-op
        storage.close()
        assert storage._connection is None


class TestSaveBatch:
    """Atomic multi-record writes with preconditions"""

    @pytest.fixture(params=["memory", "sqlite"])
    def storage(self, request, tmp_path):
        if request.param == "memory":
            backend = InMemoryStorage()
        else:
            backend = SQLiteStorage(tmp_path / "batch.db")
        yield backend
        backend.close()

    def test_batch_applies_all_writes(self, storage):
        storage.save_batch([
            WriteOp("accounts", "a", {"id": "a", "version": 1}),
            WriteOp("accounts", "b", {"id": "b", "version": 1}),
            WriteOp("transactions", "tx1", {"id": "tx1"}),
        ])

        assert storage.count("accounts") == 2
        assert storage.load("transactions", "tx1") == {"id": "tx1"}

    def test_batch_delete_op(self, storage):
        storage.save("accounts", "a", {"id": "a"})
        storage.save_batch([WriteOp("accounts", "a", None)])
        assert not storage.exists("accounts", "a")

    def test_must_not_exist_rejects_whole_batch(self, storage):
        storage.save("accounts", "taken", {"id": "taken"})

        with pytest.raises(RecordExistsError) as exc_info:
            storage.save_batch([
                WriteOp("accounts", "fresh", {"id": "fresh"}, must_not_exist=True),
                WriteOp("accounts", "taken", {"id": "taken", "x": 1}, must_not_exist=True),
            ])

        assert exc_info.value.record_id == "taken"
        assert not storage.exists("accounts", "fresh")
        assert storage.load("accounts", "taken") == {"id": "taken"}

    def test_expected_version_compare_and_write(self, storage):
        storage.save("accounts", "a", {"id": "a", "balance": "10.00", "version": 3})

        storage.save_batch([
            WriteOp("accounts", "a", {"id": "a", "balance": "5.00", "version": 4},
                    expected_version=3)
        ])
        assert storage.load("accounts", "a")["version"] == 4

        # A second writer still holding version 3 loses
        with pytest.raises(StaleRecordError) as exc_info:
            storage.save_batch([
                WriteOp("accounts", "a", {"id": "a", "balance": "0.00", "version": 4},
                        expected_version=3)
            ])
        assert exc_info.value.actual == 4
        assert storage.load("accounts", "a")["balance"] == "5.00"

    def test_expected_version_on_missing_record(self, storage):
        with pytest.raises(StaleRecordError):
            storage.save_batch([
                WriteOp("accounts", "ghost", {"id": "ghost", "version": 2}, expected_version=1)
            ])
        assert not storage.exists("accounts", "ghost")

    def test_sqlite_failure_mid_batch_rolls_back(self, tmp_path):
        """A driver error after some writes ran leaves none of them behind"""
        storage = FailingSQLiteStorage(tmp_path / "fail.db", failing_table="transactions")
        storage.save("accounts", "a", {"id": "a", "balance": "100.00", "version": 1})

        with pytest.raises(StorageUnavailable):
            storage.save_batch([
                WriteOp("accounts", "a", {"id": "a", "balance": "0.00", "version": 2},
                        expected_version=1),
                WriteOp("transactions", "tx1", {"id": "tx1"}, must_not_exist=True),
            ])

        assert storage.load("accounts", "a")["balance"] == "100.00"
        assert storage.count("transactions") == 0
        storage.close()

    def test_in_memory_batch_is_invisible_until_complete(self):
        """Readers see either the whole batch or none of it"""
        storage = InMemoryStorage()
        storage.save("accounts", "a", {"id": "a", "balance": 100})
        storage.save("accounts", "b", {"id": "b", "balance": 0})

        stop = threading.Event()
        torn_reads = []

        def reader():
            while not stop.is_set():
                snapshot = storage.load_all("accounts")
                if sum(r["balance"] for r in snapshot) != 100:
                    torn_reads.append(snapshot)

        thread = threading.Thread(target=reader)
        thread.start()
        try:
            for i in range(200):
                a = storage.load("accounts", "a")["balance"]
                b = storage.load("accounts", "b")["balance"]
                delta = 1 if i % 2 == 0 else -1
                storage.save_batch([
                    WriteOp("accounts", "a", {"id": "a", "balance": a - delta}),
                    WriteOp("accounts", "b", {"id": "b", "balance": b + delta}),
                ])
        finally:
            stop.set()
            thread.join()

        assert torn_reads == []

    def test_sequence_key_assigns_increasing_values(self, storage):
        first = WriteOp("transactions", "tx1", {"id": "tx1"}, sequence_key="transactions")
        second = WriteOp("transactions", "tx2", {"id": "tx2"}, sequence_key="transactions")
        storage.save_batch([first, second])
        third = WriteOp("transactions", "tx3", {"id": "tx3"}, sequence_key="transactions")
        storage.save_batch([third])

        # The caller's op sees the value it was given
        assert [op.data["sequence"] for op in (first, second, third)] == [1, 2, 3]
        assert storage.load("transactions", "tx3")["sequence"] == 3

    def test_sequence_not_advanced_by_failed_batch(self, storage):
        storage.save("accounts", "taken", {"id": "taken"})

        with pytest.raises(RecordExistsError):
            storage.save_batch([
                WriteOp("transactions", "tx1", {"id": "tx1"}, sequence_key="transactions"),
                WriteOp("accounts", "taken", {"id": "taken"}, must_not_exist=True),
            ])

        op = WriteOp("transactions", "tx2", {"id": "tx2"}, sequence_key="transactions")
        storage.save_batch([op])
        assert op.data["sequence"] == 1
        assert not storage.exists("transactions", "tx1")

    def test_sequence_seeded_from_existing_records(self, storage):
        storage.save("transactions", "old", {"id": "old", "sequence": 7})

        op = WriteOp("transactions", "new", {"id": "new"}, sequence_key="transactions")
        storage.save_batch([op])

        assert op.data["sequence"] == 8


class TestSharedSQLiteFile:
    """Two stores over one database file, as two server processes would be"""

    def test_concurrent_writer_cannot_slip_between_check_and_write(self, tmp_path):
        """
        Another connection's write between a batch's precondition read and its
        own write is refused, so no committed update is silently overwritten.
        """
        db_path = tmp_path / "shared.db"
        other = SQLiteStorage(db_path, busy_timeout=0.2)
        other.save("accounts", "a", {"id": "a", "balance": "100.00", "version": 1})
        refused = []

        def other_writer():
            try:
                other.save_batch([
                    WriteOp("accounts", "a", {"id": "a", "balance": "40.00", "version": 2},
                            expected_version=1)
                ])
            except StorageUnavailable as e:
                refused.append(e)

        storage = InterleavingSQLiteStorage(db_path, on_first_write=other_writer)
        storage.save_batch([
            WriteOp("accounts", "a", {"id": "a", "balance": "70.00", "version": 2},
                    expected_version=1)
        ])

        assert len(refused) == 1
        assert refused[0].is_retryable
        assert other.load("accounts", "a") == {"id": "a", "balance": "70.00", "version": 2}

        # The refused writer's retry now sees the newer version
        with pytest.raises(StaleRecordError):
            other.save_batch([
                WriteOp("accounts", "a", {"id": "a", "balance": "40.00", "version": 2},
                        expected_version=1)
            ])

        storage.close()
        other.close()

    def test_stale_version_detected_across_connections(self, tmp_path):
        db_path = tmp_path / "shared.db"
        first = SQLiteStorage(db_path)
        second = SQLiteStorage(db_path)
        first.save("accounts", "a", {"id": "a", "version": 1})

        second.save_batch([WriteOp("accounts", "a", {"id": "a", "version": 2},
                                   expected_version=1)])

        with pytest.raises(StaleRecordError) as exc_info:
            first.save_batch([WriteOp("accounts", "a", {"id": "a", "version": 2},
                                      expected_version=1)])
        assert exc_info.value.actual == 2

        first.close()
        second.close()
