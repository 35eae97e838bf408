"""
Tests for storage backends and transaction support
"""

import pytest
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path

from escrow_ledger.storage import (
    InMemoryStorage, SQLiteStorage, StorageRecord, create_storage
)


# Test data
test_data = {
    "id": "test_001",
    "name": "Test Record",
    "amount": "1000000000000000000",
    "created_at": datetime.now(timezone.utc).isoformat(),
    "updated_at": datetime.now(timezone.utc).isoformat()
}


@pytest.fixture(params=["memory", "sqlite"])
def storage(request):
    """Both backends behind the same interface"""
    if request.param == "memory":
        backend = InMemoryStorage()
    else:
        backend = SQLiteStorage(":memory:")
    yield backend
    backend.close()


class TestStorageInterface:
    """Test base storage interface functionality"""

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
        assert len(storage.load_all("test_table")) == 2

        # Test find
        results = storage.find("test_table", {"id": "test_001"})
        assert len(results) == 1
        assert results[0]["name"] == "Test Record"

        # Test count
        assert storage.count("test_table") == 2

        # Test delete
        assert storage.delete("test_table", "record_1")
        assert not storage.delete("test_table", "record_1")
        assert storage.count("test_table") == 1

        # Test clear_table
        storage.clear_table("test_table")
        assert storage.count("test_table") == 0

    def test_load_missing_returns_none(self, storage):
        """Unknown records load as None"""
        assert storage.load("empty_table", "nope") is None
        assert storage.load_all("empty_table") == []

    def test_loaded_records_are_copies(self, storage):
        """Mutating a loaded record never changes the stored one"""
        storage.save("t", "r", {"id": "r", "items": [1, 2]})
        loaded = storage.load("t", "r")
        loaded["items"].append(3)

        assert storage.load("t", "r")["items"] == [1, 2]

    def test_find_with_integer_filter(self, storage):
        """Integer values survive serialization and match filters"""
        storage.save("t", "a", {"id": "a", "campaign_id": 1})
        storage.save("t", "b", {"id": "b", "campaign_id": 2})

        assert [r["id"] for r in storage.find("t", {"campaign_id": 2})] == ["b"]


class TestTransactions:
    """Test atomic() commit and rollback"""

    def test_atomic_commit(self, storage):
        """Test an atomic block commits all writes"""
        with storage.atomic():
            storage.save("t", "a", {"id": "a", "v": 1})
            storage.save("t", "b", {"id": "b", "v": 2})

        assert storage.count("t") == 2

    def test_atomic_rollback_restores_previous_values(self, storage):
        """A failed block leaves every touched record as it was"""
        storage.save("t", "a", {"id": "a", "v": 1})

        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save("t", "a", {"id": "a", "v": 99})
                storage.save("t", "b", {"id": "b", "v": 2})
                raise RuntimeError("boom")

        assert storage.load("t", "a") == {"id": "a", "v": 1}
        assert storage.load("t", "b") is None

    def test_nested_rollback_undoes_outer_writes(self, storage):
        """A failure propagating out of nested blocks rolls back everything"""
        with pytest.raises(ValueError):
            with storage.atomic():
                storage.save("t", "outer", {"id": "outer"})
                with storage.atomic():
                    storage.save("t", "inner", {"id": "inner"})
                raise ValueError("late failure")

        assert storage.count("t") == 0

    def test_rollback_of_delete(self):
        """Deleted records come back when the block fails"""
        storage = InMemoryStorage()
        storage.save("t", "a", {"id": "a"})

        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.delete("t", "a")
                raise RuntimeError("boom")

        assert storage.exists("t", "a")

    def test_atomic_blocks_serialize_across_threads(self):
        """Read-modify-write inside atomic() loses no updates"""
        storage = InMemoryStorage()
        storage.save("t", "counter", {"id": "counter", "n": 0})

        def bump():
            for _ in range(200):
                with storage.atomic():
                    record = storage.load("t", "counter")
                    record["n"] += 1
                    storage.save("t", "counter", record)

        threads = [threading.Thread(target=bump) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert storage.load("t", "counter")["n"] == 1000


class TestSQLitePersistence:
    """Test SQLite file persistence"""

    def test_records_survive_reopen(self):
        """Test SQLite records survive reopening"""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = Path(temp_dir) / "escrow.db"

            storage = SQLiteStorage(db_path)
            storage.save("campaigns", "1", {"id": 1, "title": "Roof"})
            storage.close()

            reopened = SQLiteStorage(db_path)
            assert reopened.load("campaigns", "1") == {"id": 1, "title": "Roof"}
            reopened.close()

    def test_load_all_keeps_insertion_order(self):
        """Test load_all keeps first-insertion order"""
        storage = SQLiteStorage()
        for i in range(5):
            storage.save("t", f"r{i}", {"id": f"r{i}"})

        assert [r["id"] for r in storage.load_all("t")] == [f"r{i}" for i in range(5)]
        storage.close()


class TestCreateStorage:
    """Test storage URL factory"""

    def test_memory_url(self):
        """Test memory:// builds in-memory storage"""
        assert isinstance(create_storage("memory://"), InMemoryStorage)

    def test_sqlite_url(self):
        """Test sqlite:/// builds file storage"""
        with tempfile.TemporaryDirectory() as temp_dir:
            storage = create_storage(f"sqlite:///{temp_dir}/escrow.db")
            assert isinstance(storage, SQLiteStorage)
            assert storage.db_path == f"{temp_dir}/escrow.db"
            storage.close()

    def test_sqlite_in_memory_url(self):
        """Test sqlite:// alone builds in-memory SQLite"""
        storage = create_storage("sqlite://")
        assert isinstance(storage, SQLiteStorage)
        assert storage.db_path == ":memory:"

    def test_unsupported_url(self):
        """Test unsupported URLs are refused"""
        with pytest.raises(ValueError):
            create_storage("postgresql://localhost/escrow")


class TestStorageRecord:
    """Test StorageRecord serialization"""

    def test_round_trip(self):
        """Test storage record to/from dict"""
        now = datetime.now(timezone.utc)
        record = StorageRecord(id="r1", created_at=now, updated_at=now)

        data = record.to_dict()
        assert data["created_at"] == now.isoformat()

        restored = StorageRecord.from_dict(data)
        assert restored == record
