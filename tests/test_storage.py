"""
Tests for storage backends and transaction support
"""

import sqlite3

import pytest
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from dataclasses import dataclass

from bbse_bank.storage import (
    InMemoryStorage, SQLiteStorage, StorageRecord, create_storage
)


# Test data
test_data = {
    "id": "test_001",
    "name": "Test Record",
    "amount": 1000000000000000000,
    "created_at": datetime.now(timezone.utc).isoformat(),
    "updated_at": datetime.now(timezone.utc).isoformat()
}


@pytest.fixture(params=["memory", "sqlite"])
def storage(request):
    """Each test runs against both backends"""
    if request.param == "memory":
        backend = InMemoryStorage()
        yield backend
        backend.close()
    else:
        with tempfile.TemporaryDirectory() as temp_dir:
            backend = SQLiteStorage(Path(temp_dir) / "test.db")
            yield backend
            backend.close()


class TestStorageInterface:
    """Test basic storage operations"""

    def test_basic_operations(self, storage):
        """Test basic CRUD operations"""
        # Test save and load
        storage.save("test_table", "record_1", test_data)
        loaded = storage.load("test_table", "record_1")
        assert loaded == test_data

        # Test exists
        assert storage.exists("test_table", "record_1")
        assert not storage.exists("test_table", "non_existent")

        # Test load_all
        storage.save("test_table", "record_2", {"id": "record_2", "data": "test"})
        all_records = storage.load_all("test_table")
        assert len(all_records) == 2

        # Test find
        results = storage.find("test_table", {"id": "test_001"})
        assert len(results) == 1
        assert results[0]["id"] == "test_001"

        # Test count
        assert storage.count("test_table") == 2

        # Test delete
        assert storage.delete("test_table", "record_1")
        assert not storage.exists("test_table", "record_1")
        assert storage.count("test_table") == 1

    def test_large_integers_survive(self, storage):
        """Amounts beyond 64 bits are stored exactly"""
        huge = 10 ** 18 * 10 ** 6 + 7
        storage.save("balances", "a", {"balance": huge})
        assert storage.load("balances", "a")["balance"] == huge

    def test_load_missing_returns_none(self, storage):
        assert storage.load("empty_table", "nothing") is None
        assert storage.load_all("empty_table") == []

    def test_loaded_records_are_copies(self, storage):
        """Mutating a loaded record does not change storage"""
        storage.save("test_table", "record_1", {"balance": 5})
        loaded = storage.load("test_table", "record_1")
        loaded["balance"] = 99
        assert storage.load("test_table", "record_1")["balance"] == 5


class TestTransactionSupport:
    """Test atomic transaction support"""

    def test_atomic_commit(self, storage):
        """Writes inside a successful block are kept"""
        with storage.atomic():
            storage.save("test_table", "record_1", test_data)
            storage.save("test_table", "record_2", {"id": "record_2", "data": "test"})

        assert storage.count("test_table") == 2
        assert not storage.in_atomic_block

    def test_atomic_rollback_discards_inserts(self, storage):
        """A failing block leaves no new records behind"""
        storage.save("test_table", "record_1", test_data)

        with pytest.raises(ValueError, match="Simulated error"):
            with storage.atomic():
                storage.save("test_table", "record_3", {"id": "record_3"})
                raise ValueError("Simulated error")

        assert storage.count("test_table") == 1
        assert not storage.exists("test_table", "record_3")

    def test_atomic_rollback_restores_updates(self, storage):
        """A failing block restores overwritten records"""
        storage.save("balances", "alice", {"balance": 100})

        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save("balances", "alice", {"balance": 0})
                storage.delete("balances", "alice")
                raise RuntimeError("boom")

        assert storage.load("balances", "alice") == {"balance": 100}

    def test_nested_failure_rolls_back_outer_writes(self, storage):
        """An error escaping a nested block discards the outer block's writes too"""
        with pytest.raises(ValueError):
            with storage.atomic():
                storage.save("test_table", "outer", {"id": "outer"})
                with storage.atomic():
                    storage.save("test_table", "inner", {"id": "inner"})
                    raise ValueError("inner failure")

        assert storage.count("test_table") == 0
        assert not storage.in_atomic_block

    def test_nested_blocks_commit_once(self, storage):
        """Only the outermost block commits"""
        with storage.atomic():
            with storage.atomic():
                storage.save("test_table", "inner", {"id": "inner"})
            assert storage.in_atomic_block
            storage.save("test_table", "outer", {"id": "outer"})

        assert storage.count("test_table") == 2

    def test_rollback_of_new_table(self, storage):
        """A table first written inside a failed block reads as empty"""
        with pytest.raises(ValueError):
            with storage.atomic():
                storage.save("fresh_table", "a", {"id": "a"})
                raise ValueError("nope")

        assert storage.count("fresh_table") == 0
        storage.save("fresh_table", "b", {"id": "b"})
        assert storage.count("fresh_table") == 1


class FlakyTransactions:
    """Makes the next begin or commit fail the way a locked database does"""

    fail_begin = 0
    fail_commit = 0

    def begin_transaction(self):
        if self.fail_begin:
            self.fail_begin -= 1
            raise sqlite3.OperationalError("database is locked")
        super().begin_transaction()

    def commit(self):
        if self.fail_commit:
            self.fail_commit -= 1
            raise sqlite3.OperationalError("database is locked")
        super().commit()


class FlakyMemoryStorage(FlakyTransactions, InMemoryStorage):
    pass


class FlakySQLiteStorage(FlakyTransactions, SQLiteStorage):
    pass


@pytest.fixture(params=["memory", "sqlite"])
def flaky_storage(request):
    if request.param == "memory":
        backend = FlakyMemoryStorage()
        yield backend
        backend.close()
    else:
        with tempfile.TemporaryDirectory() as temp_dir:
            backend = FlakySQLiteStorage(Path(temp_dir) / "test.db")
            yield backend
            backend.close()


class TestTransactionFailures:
    """A failed begin or commit must not leave later blocks without a transaction"""

    def test_failed_begin(self, flaky_storage):
        flaky_storage.save("balances", "alice", {"v": 1})
        flaky_storage.fail_begin = 1

        with pytest.raises(sqlite3.OperationalError):
            with flaky_storage.atomic():
                flaky_storage.save("balances", "alice", {"v": 9})

        assert not flaky_storage.in_atomic_block
        assert flaky_storage.load("balances", "alice") == {"v": 1}

        # The next block is a real outermost transaction again
        with pytest.raises(ValueError):
            with flaky_storage.atomic():
                flaky_storage.save("balances", "alice", {"v": 2})
                raise ValueError("mint failed")

        assert flaky_storage.load("balances", "alice") == {"v": 1}

    def test_failed_commit(self, flaky_storage):
        flaky_storage.save("balances", "alice", {"v": 1})
        flaky_storage.fail_commit = 1

        with pytest.raises(sqlite3.OperationalError):
            with flaky_storage.atomic():
                flaky_storage.save("balances", "alice", {"v": 2})

        assert not flaky_storage.in_atomic_block
        assert flaky_storage.load("balances", "alice") == {"v": 1}

        with pytest.raises(ValueError):
            with flaky_storage.atomic():
                flaky_storage.save("balances", "alice", {"v": 3})
                raise ValueError("mint failed")
        assert flaky_storage.load("balances", "alice") == {"v": 1}

        with flaky_storage.atomic():
            flaky_storage.save("balances", "alice", {"v": 4})
        assert flaky_storage.load("balances", "alice") == {"v": 4}


class TestSQLitePersistence:
    """Test that committed data survives reopening the database"""

    def test_reopen(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = Path(temp_dir) / "bank.db"
            storage = SQLiteStorage(db_path)
            with storage.atomic():
                storage.save("investors", "alice", {"amount": 10 ** 18})
            with pytest.raises(ValueError):
                with storage.atomic():
                    storage.save("investors", "bob", {"amount": 10 ** 18})
                    raise ValueError("rolled back")
            storage.close()

            reopened = SQLiteStorage(db_path)
            assert reopened.load("investors", "alice") == {"amount": 10 ** 18}
            assert reopened.load("investors", "bob") is None
            reopened.close()


class TestCreateStorage:
    """Test building backends from database URLs"""

    def test_memory(self):
        assert isinstance(create_storage("memory"), InMemoryStorage)
        assert isinstance(create_storage(""), InMemoryStorage)

    def test_sqlite_url(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            storage = create_storage(f"sqlite:///{temp_dir}/bank.db")
            assert isinstance(storage, SQLiteStorage)
            assert storage.db_path == f"{temp_dir}/bank.db"
            storage.close()

    def test_bare_path(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            storage = create_storage(str(Path(temp_dir) / "bank.db"))
            assert isinstance(storage, SQLiteStorage)
            storage.close()

    def test_unsupported_scheme(self):
        with pytest.raises(ValueError, match="Unsupported database URL"):
            create_storage("postgresql://localhost/bank")


class TestStorageRecord:
    """Test StorageRecord serialization"""

    def test_storage_record_serialization(self):
        """Test StorageRecord to_dict and from_dict"""

        @dataclass
        class TestRecord(StorageRecord):
            name: str
            amount: int

        now = datetime.now(timezone.utc)
        record = TestRecord(
            id="test_001",
            created_at=now,
            updated_at=now,
            name="Test",
            amount=10 ** 18
        )

        data = record.to_dict()
        assert data["id"] == "test_001"
        assert data["amount"] == 10 ** 18
        assert data["created_at"] == now.isoformat()

        restored = TestRecord.from_dict(data)
        assert restored == record
