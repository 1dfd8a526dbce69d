"""
Tests for the append-only audit ledger.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone

import pytest

from floorops.core.exceptions import AuditWriteFailed, StoreUnavailable
from floorops.schemas import ModificationRecord, ModificationType
from floorops.services.audit_ledger import AuditLedger
from floorops.services.store import InMemoryStoreAdapter

BASE_TIME = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FlakyAppendStore(InMemoryStoreAdapter):
    """Store whose ledger appends fail a fixed number of times."""

    def __init__(self, failures: int):
        super().__init__()
        self.failures = failures
        self.append_calls = 0

    async def append(self, collection, data):
        self.append_calls += 1
        if self.append_calls <= self.failures:
            raise StoreUnavailable("append refused")
        return await super().append(collection, data)


def make_record(order_id="o1", modification_type=ModificationType.CLAIM, by="w1", seconds=0):
    return ModificationRecord(
        order_id=order_id,
        modified_at=BASE_TIME + timedelta(seconds=seconds),
        modified_by=by,
        modified_by_name=by.upper(),
        modification_type=modification_type,
        table_number=4,
        floor=1,
    )


# ==============================================================================
# APPEND TESTS
# ==============================================================================

class TestAppend:
    """Tests for AuditLedger.append."""

    def test_append_assigns_id(self, ledger):
        record = asyncio.run(ledger.append(make_record()))
        assert record.id is not None
        assert record.order_id == "o1"

    def test_transient_failures_are_retried(self):
        """Test an append succeeds after fewer failures than attempts."""
        store = FlakyAppendStore(failures=2)
        ledger = AuditLedger(store, retry_attempts=3, retry_delay=0)

        record = asyncio.run(ledger.append(make_record()))

        assert record.id is not None
        assert store.append_calls == 3
        assert ledger.anomalies == []

    def test_exhausted_retries_record_divergence(self, caplog):
        """Test exhausted retries raise AuditWriteFailed and log an anomaly."""
        store = FlakyAppendStore(failures=10)
        ledger = AuditLedger(store, retry_attempts=3, retry_delay=0)

        with caplog.at_level(logging.ERROR, logger="floorops.services.audit_ledger"):
            with pytest.raises(AuditWriteFailed) as exc_info:
                asyncio.run(ledger.append(make_record(order_id="o9")))

        assert exc_info.value.order_id == "o9"
        assert store.append_calls == 3
        assert len(ledger.anomalies) == 1
        assert ledger.anomalies[0].to_dict()["modification_type"] == "claim"
        assert "AUDIT DIVERGENCE" in caplog.text


# ==============================================================================
# READ TESTS
# ==============================================================================

class TestReads:
    """Tests for history, grouping and search."""

    def test_history_is_oldest_first_and_scoped(self, ledger):
        async def scenario():
            await ledger.append(make_record(seconds=5, modification_type=ModificationType.EDIT))
            await ledger.append(make_record(seconds=1))
            await ledger.append(make_record(order_id="o2", seconds=0))
            return await ledger.history("o1")

        history = asyncio.run(scenario())
        assert [r.modification_type for r in history] == [ModificationType.CLAIM, ModificationType.EDIT]
        assert all(r.order_id == "o1" for r in history)

    def test_equal_timestamps_keep_write_order(self, ledger):
        async def scenario():
            await ledger.append(make_record(modification_type=ModificationType.ADD))
            await ledger.append(make_record(modification_type=ModificationType.REMOVE))
            await ledger.append(make_record(modification_type=ModificationType.EDIT))
            return await ledger.history("o1")

        history = asyncio.run(scenario())
        assert [r.modification_type.value for r in history] == ["add", "remove", "edit"]

    def test_grouped_by_order(self, ledger):
        async def scenario():
            await ledger.append(make_record(order_id="o1"))
            await ledger.append(make_record(order_id="o2"))
            await ledger.append(make_record(order_id="o1", seconds=1))
            return await ledger.grouped_by_order()

        groups = asyncio.run(scenario())
        assert {k: len(v) for k, v in groups.items()} == {"o1": 2, "o2": 1}

    def test_search_filters_newest_first(self, ledger):
        """Test search filters by author, type and time window."""
        async def scenario():
            await ledger.append(make_record(by="w1", seconds=1))
            await ledger.append(make_record(by="w2", seconds=2))
            await ledger.append(make_record(by="w1", seconds=3, modification_type=ModificationType.REJECT))
            await ledger.append(make_record(by="w1", seconds=4))
            return (
                await ledger.search(modified_by="w1"),
                await ledger.search(modification_type=ModificationType.REJECT),
                await ledger.search(
                    since=BASE_TIME + timedelta(seconds=2),
                    until=BASE_TIME + timedelta(seconds=3),
                ),
            )

        by_author, by_type, window = asyncio.run(scenario())
        assert [r.modified_at.second for r in by_author] == [4, 3, 1]
        assert len(by_type) == 1
        assert [r.modified_by for r in window] == ["w1", "w2"]
