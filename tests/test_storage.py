"""
Tests for storage backends and transaction support
"""

import pytest
from datetime import datetime, timedelta, timezone

from coop_banking.config import CoopConfig
from coop_banking.errors import ConcurrentModificationError
from coop_banking.storage import (
    InMemoryStorage, SQLiteStorage, create_storage, parse_timestamp, ensure_utc
)


@pytest.fixture(params=["memory", "sqlite"])
def backend(request, tmp_path):
    if request.param == "memory":
        storage = InMemoryStorage()
    else:
        storage = SQLiteStorage(tmp_path / "storage.db")
    yield storage
    storage.close()


class TestBasicOperations:
    """CRUD against both backends"""

    def test_save_load_find(self, backend):
        backend.save("loans", "L1", {"id": "L1", "status": "pending", "amount": "100.50"})
        backend.save("loans", "L2", {"id": "L2", "status": "active", "amount": "200.00"})

        assert backend.load("loans", "L1")["amount"] == "100.50"
        assert backend.load("loans", "missing") is None
        assert backend.exists("loans", "L2")
        assert not backend.exists("loans", "L3")
        assert backend.count("loans") == 2
        assert [r["id"] for r in backend.find("loans", {"status": "active"})] == ["L2"]
        assert backend.find("loans", {"status": "completed"}) == []

    def test_overwrite_and_delete(self, backend):
        backend.save("loans", "L1", {"id": "L1", "status": "pending"})
        backend.save("loans", "L1", {"id": "L1", "status": "active"})

        assert backend.count("loans") == 1
        assert backend.load("loans", "L1")["status"] == "active"
        assert backend.delete("loans", "L1")
        assert not backend.delete("loans", "L1")

    def test_save_many_and_clear(self, backend):
        backend.save_many("loan_installments", [
            (f"I{n}", {"id": f"I{n}", "installment_number": n, "is_paid": False})
            for n in range(1, 4)
        ])

        assert backend.count("loan_installments") == 3
        assert len(backend.find("loan_installments", {"is_paid": False})) == 3
        backend.clear_table("loan_installments")
        assert backend.load_all("loan_installments") == []

    def test_loaded_records_are_copies(self, backend):
        backend.save("loans", "L1", {"id": "L1", "status": "pending"})
        loaded = backend.load("loans", "L1")
        loaded["status"] = "active"

        assert backend.load("loans", "L1")["status"] == "pending"


class TestConditionalWrite:
    """save_if compare-and-set"""

    def test_matching_version_writes(self, backend):
        backend.save("loans", "L1", {"id": "L1", "version": 0, "status": "pending"})

        assert backend.save_if("loans", "L1", {"id": "L1", "version": 1, "status": "active"}, "version", 0)
        assert backend.load("loans", "L1") == {"id": "L1", "version": 1, "status": "active"}

    def test_stale_version_rejected(self, backend):
        backend.save("loans", "L1", {"id": "L1", "version": 3, "status": "active"})

        assert not backend.save_if("loans", "L1", {"id": "L1", "version": 3, "status": "x"}, "version", 2)
        assert backend.load("loans", "L1")["status"] == "active"

    def test_missing_record_rejected(self, backend):
        assert not backend.save_if("loans", "nope", {"id": "nope", "version": 1}, "version", 0)
        assert not backend.exists("loans", "nope")


class TestAtomic:
    """All-or-nothing units of work"""

    def test_commit(self, backend):
        with backend.atomic():
            backend.save("loans", "L1", {"id": "L1"})
            backend.save("loan_installments", "I1", {"id": "I1"})

        assert backend.exists("loans", "L1")
        assert backend.exists("loan_installments", "I1")

    def test_rollback_on_error(self, backend):
        backend.save("loans", "L1", {"id": "L1", "status": "pending"})

        with pytest.raises(RuntimeError):
            with backend.atomic():
                backend.save("loans", "L1", {"id": "L1", "status": "active"})
                backend.save("loan_installments", "I1", {"id": "I1"})
                raise RuntimeError("schedule write failed")

        assert backend.load("loans", "L1")["status"] == "pending"
        assert not backend.exists("loan_installments", "I1")

    def test_rollback_drops_new_table(self, backend):
        with pytest.raises(RuntimeError):
            with backend.atomic():
                backend.save("audit_events", "E1", {"id": "E1"})
                raise RuntimeError("boom")

        assert backend.count("audit_events") == 0
        backend.save("audit_events", "E2", {"id": "E2"})
        assert backend.count("audit_events") == 1

    def test_nested_blocks_commit_once(self, backend):
        with backend.atomic():
            backend.save("loans", "L1", {"id": "L1"})
            with backend.atomic():
                backend.save("loans", "L2", {"id": "L2"})

        assert backend.count("loans") == 2

    def test_nested_failure_rolls_back_everything(self, backend):
        with pytest.raises(ValueError):
            with backend.atomic():
                backend.save("loans", "L1", {"id": "L1"})
                with backend.atomic():
                    backend.save("loans", "L2", {"id": "L2"})
                    raise ValueError("inner")

        assert backend.count("loans") == 0

    def test_snapshot_reads(self, backend):
        backend.save("loans", "L1", {"id": "L1"})
        with backend.snapshot():
            assert backend.count("loans") == 1


class TestSharedSQLiteFile:
    """Two connections writing one database file"""

    @pytest.fixture
    def connections(self, tmp_path):
        first = SQLiteStorage(tmp_path / "shared.db")
        second = SQLiteStorage(tmp_path / "shared.db", busy_timeout=0.05)
        first.save("loans", "L1", {"id": "L1", "version": 0})
        assert second.count("loans") == 1
        yield first, second
        second.close()
        first.close()

    def test_second_writer_gets_conflict(self, connections):
        first, second = connections

        with first.atomic():
            assert first.save_if("loans", "L1", {"id": "L1", "version": 1}, "version", 0)
            with pytest.raises(ConcurrentModificationError) as exc_info:
                with second.atomic():
                    second.save_if("loans", "L1", {"id": "L1", "version": 1}, "version", 0)
            assert exc_info.value.kind == "Conflict"

        assert second.load("loans", "L1") == {"id": "L1", "version": 1}
        assert not second.save_if("loans", "L1", {"id": "L1", "version": 1}, "version", 0)

    def test_snapshot_reads_while_other_connection_writes(self, connections):
        first, second = connections

        with first.atomic():
            first.save("loans", "L2", {"id": "L2", "version": 0})
            with second.snapshot():
                assert second.count("loans") == 1

        with second.snapshot():
            assert second.count("loans") == 2

    def test_lock_released_after_block(self, connections):
        first, second = connections

        with first.atomic():
            first.save("loans", "L2", {"id": "L2"})
        with second.atomic():
            second.save("loans", "L3", {"id": "L3"})

        assert first.count("loans") == 3


class TestTimestamps:
    """Timestamp helpers"""

    def test_parse_iso(self):
        parsed = parse_timestamp("2024-01-15T10:00:00+00:00")
        assert parsed == datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)

    def test_parse_naive_is_utc(self):
        assert parse_timestamp("2024-01-15T10:00:00").tzinfo == timezone.utc

    def test_parse_empty(self):
        assert parse_timestamp(None) is None
        assert parse_timestamp("") is None

    def test_ensure_utc_converts_offsets(self):
        eat = timezone(timedelta(hours=3))
        assert ensure_utc(datetime(2024, 1, 15, 13, 0, tzinfo=eat)) == datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)


class TestFactory:
    """Backend selection from configuration"""

    def test_memory(self):
        assert isinstance(create_storage(CoopConfig(storage_backend="memory")), InMemoryStorage)

    def test_sqlite(self, tmp_path):
        storage = create_storage(CoopConfig(storage_backend="sqlite", sqlite_path=str(tmp_path / "x.db")))
        assert isinstance(storage, SQLiteStorage)
        storage.close()

    def test_unknown(self):
        with pytest.raises(ValueError):
            create_storage(CoopConfig(storage_backend="postgres"))
