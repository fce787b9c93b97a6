"""
Tests for storage backends and transaction support
"""

import pytest
import tempfile
import os
from decimal import Decimal
from datetime import datetime, timezone, date
from dataclasses import dataclass

from installment_book.storage import (
    InMemoryStorage, SQLiteStorage, StorageRecord, to_storable
)


# Test data
test_data = {
    "id": "test_001",
    "name": "Test Record",
    "amount": "100.50",
    "slot_index": 4,
    "created_at": datetime.now(timezone.utc).isoformat(),
    "updated_at": datetime.now(timezone.utc).isoformat()
}


def _backends():
    return [InMemoryStorage(), SQLiteStorage()]


class TestStorageBackends:
    """Behaviour shared by every backend"""

    @pytest.mark.parametrize("storage", _backends(), ids=["memory", "sqlite"])
    def test_basic_operations(self, storage):
        """Test basic CRUD operations"""
        storage.save("test_table", "record_1", test_data)
        assert storage.load("test_table", "record_1") == test_data

        assert storage.exists("test_table", "record_1")
        assert not storage.exists("test_table", "non_existent")
        assert storage.load("test_table", "non_existent") is None

        storage.save("test_table", "record_2", {"id": "record_2", "name": "Other", "slot_index": 5})
        assert len(storage.load_all("test_table")) == 2
        assert storage.count("test_table") == 2

        assert storage.delete("test_table", "record_1")
        assert not storage.delete("test_table", "record_1")
        assert storage.count("test_table") == 1

        storage.clear_table("test_table")
        assert storage.count("test_table") == 0

    @pytest.mark.parametrize("storage", _backends(), ids=["memory", "sqlite"])
    def test_save_replaces_same_id(self, storage):
        """A second save under the same id replaces the document"""
        storage.save("ledger", "loan:2024-01-01", {"amount": "100"})
        storage.save("ledger", "loan:2024-01-01", {"amount": "150"})

        assert storage.count("ledger") == 1
        assert storage.load("ledger", "loan:2024-01-01") == {"amount": "150"}

    @pytest.mark.parametrize("storage", _backends(), ids=["memory", "sqlite"])
    def test_find_and_delete_where(self, storage):
        storage.save("loans", "a", {"id": "a", "file": "A", "slot_index": 1})
        storage.save("loans", "b", {"id": "b", "file": "A", "slot_index": 2})
        storage.save("loans", "c", {"id": "c", "file": "B", "slot_index": 1})

        assert {r["id"] for r in storage.find("loans", {"file": "A"})} == {"a", "b"}
        assert [r["id"] for r in storage.find("loans", {"file": "A", "slot_index": 2})] == ["b"]
        assert len(storage.find("loans", {})) == 3
        assert storage.find("loans", {"file": "Z"}) == []

        assert storage.delete_where("loans", {"file": "A"}) == 2
        assert [r["id"] for r in storage.load_all("loans")] == ["c"]

    @pytest.mark.parametrize("storage", _backends(), ids=["memory", "sqlite"])
    def test_atomic_rolls_back(self, storage):
        storage.save("ledger", "kept", {"amount": "1"})

        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save("ledger", "dropped", {"amount": "2"})
                storage.delete("ledger", "kept")
                raise RuntimeError("boom")

        assert storage.exists("ledger", "kept")
        assert not storage.exists("ledger", "dropped")

    @pytest.mark.parametrize("storage", _backends(), ids=["memory", "sqlite"])
    def test_nested_atomic(self, storage):
        """An inner block joins the outer transaction"""
        with pytest.raises(RuntimeError):
            with storage.atomic():
                with storage.atomic():
                    storage.save("ledger", "inner", {"amount": "2"})
                raise RuntimeError("boom")

        assert not storage.exists("ledger", "inner")

        with storage.atomic():
            with storage.atomic():
                storage.save("ledger", "inner", {"amount": "2"})
        assert storage.exists("ledger", "inner")

    @pytest.mark.parametrize("storage", _backends(), ids=["memory", "sqlite"])
    def test_rejects_unsafe_table_names(self, storage):
        with pytest.raises(ValueError):
            storage.save("bad table; --", "x", {})

    def test_sqlite_rejects_unsafe_filter_fields(self):
        storage = SQLiteStorage()
        with pytest.raises(ValueError, match="Invalid filter field"):
            storage.find("loans", {"file') OR 1=1 --": "A"})
        storage.close()

    def test_memory_storage_isolates_documents(self):
        """Mutating a loaded document never changes stored state"""
        storage = InMemoryStorage()
        storage.save("t", "1", {"values": [1, 2]})
        loaded = storage.load("t", "1")
        loaded["values"].append(3)

        assert storage.load("t", "1") == {"values": [1, 2]}


class TestSQLitePersistence:
    """Test SQLite file persistence"""

    def test_persists_across_connections(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "installment_book.db")

            storage = SQLiteStorage(db_path)
            storage.save("loans", "a", {"id": "a", "account_no": "101"})
            storage.close()

            reopened = SQLiteStorage(db_path)
            assert reopened.load("loans", "a") == {"id": "a", "account_no": "101"}
            assert reopened.find("loans", {"account_no": "101"})[0]["id"] == "a"
            reopened.close()


@dataclass
class SampleRecord(StorageRecord):
    amount: Decimal
    due_on: date


class TestStorageRecord:
    """Test record conversion to documents"""

    def test_to_dict(self):
        now = datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)
        record = SampleRecord(id="r1", created_at=now, updated_at=now,
                              amount=Decimal('12.50'), due_on=date(2024, 2, 1))
        data = record.to_dict()

        assert data == {
            "id": "r1",
            "created_at": "2024-01-01T10:00:00+00:00",
            "updated_at": "2024-01-01T10:00:00+00:00",
            "amount": "12.50",
            "due_on": "2024-02-01",
        }
        assert SampleRecord._timestamps_from_dict(data)["created_at"] == now

    def test_to_storable_nested(self):
        value = {"amounts": [Decimal('1.10'), Decimal('2')], "when": date(2024, 1, 1)}
        assert to_storable(value) == {"amounts": ["1.10", "2"], "when": "2024-01-01"}
