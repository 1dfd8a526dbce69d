"""
Tests for per-worker auto-reject timers.
"""

import asyncio
import logging

from floorops.schemas import OrderStatus
from floorops.services.timeout_scheduler import TimeoutScheduler, should_arm


class Recorder:
    """Async callback that remembers the order ids it was fired for."""

    def __init__(self, fail: bool = False):
        self.calls = []
        self.fail = fail

    async def __call__(self, order_id):
        self.calls.append(order_id)
        if self.fail:
            raise RuntimeError("boom")


# ==============================================================================
# GUARD TESTS
# ==============================================================================

class TestShouldArm:
    """Tests for the arming predicate."""

    def test_open_offer_qualifies(self, make_order):
        assert should_arm(make_order(), "w1")

    def test_rejected_by_me_does_not_qualify(self, make_order):
        assert not should_arm(make_order(last_rejected_by="w1"), "w1")

    def test_rejected_by_someone_else_qualifies(self, make_order):
        assert should_arm(make_order(last_rejected_by="w2"), "w1")

    def test_unclaimed_past_pending_does_not_qualify(self, make_order):
        assert not should_arm(make_order(status=OrderStatus.READY), "w1")

    def test_claimed_does_not_qualify(self, make_order):
        assert not should_arm(make_order(claimed_by="w2"), "w1")
        assert not should_arm(make_order(status=OrderStatus.PREPARING, claimed_by="w1"), "w1")


# ==============================================================================
# TIMER TESTS
# ==============================================================================

class TestTimers:
    """Tests for arm / disarm / fire."""

    def test_timer_fires_after_deadline(self):
        async def scenario():
            scheduler = TimeoutScheduler(deadline=0.01)
            callback = Recorder()
            assert scheduler.arm("o1", None, callback) is True
            assert scheduler.is_armed("o1")
            await asyncio.sleep(0.05)
            return scheduler, callback

        scheduler, callback = asyncio.run(scenario())
        assert callback.calls == ["o1"]
        assert scheduler.fired_count == 1
        assert not scheduler.is_armed("o1")

    def test_arming_twice_keeps_the_first_timer(self):
        async def scenario():
            scheduler = TimeoutScheduler(deadline=0.01)
            callback = Recorder()
            first = scheduler.arm("o1", None, callback)
            second = scheduler.arm("o1", None, callback)
            await asyncio.sleep(0.05)
            return first, second, callback

        first, second, callback = asyncio.run(scenario())
        assert (first, second) == (True, False)
        assert callback.calls == ["o1"]

    def test_disarm_cancels(self):
        """Test a disarmed timer never fires."""
        async def scenario():
            scheduler = TimeoutScheduler(deadline=0.02)
            callback = Recorder()
            scheduler.arm("o1", None, callback)
            assert scheduler.disarm("o1") is True
            assert scheduler.disarm("o1") is False
            await asyncio.sleep(0.05)
            return scheduler, callback

        scheduler, callback = asyncio.run(scenario())
        assert callback.calls == []
        assert scheduler.fired_count == 0

    def test_callback_failure_is_logged(self, caplog):
        async def scenario():
            scheduler = TimeoutScheduler(deadline=0.01)
            scheduler.arm("o1", None, Recorder(fail=True))
            await asyncio.sleep(0.05)
            return scheduler

        with caplog.at_level(logging.ERROR, logger="floorops.services.timeout_scheduler"):
            scheduler = asyncio.run(scenario())

        assert scheduler.fired_count == 1
        assert "auto-reject callback failed for order o1" in caplog.text


class TestSync:
    """Tests for reconciling timers with a snapshot."""

    def test_sync_arms_offers_and_disarms_the_rest(self, make_order):
        async def scenario():
            scheduler = TimeoutScheduler(deadline=60)
            callback = Recorder()
            offer = make_order(order_id="offer")
            rejected = make_order(order_id="rejected", last_rejected_by="w1")
            claimed = make_order(order_id="claimed", status=OrderStatus.PREPARING, claimed_by="w2")

            scheduler.sync([offer, rejected, claimed], "w1", callback)
            armed_first = scheduler.armed_order_ids

            # The offer gets claimed elsewhere and disappears from offers
            taken = make_order(order_id="offer", status=OrderStatus.PREPARING, claimed_by="w2")
            scheduler.sync([taken, rejected, claimed], "w1", callback)
            armed_after = scheduler.armed_order_ids

            scheduler.disarm_all()
            return armed_first, armed_after

        armed_first, armed_after = asyncio.run(scenario())
        assert armed_first == {"offer"}
        assert armed_after == set()

    def test_sync_disarms_orders_missing_from_snapshot(self, make_order):
        async def scenario():
            scheduler = TimeoutScheduler(deadline=60)
            callback = Recorder()
            scheduler.sync([make_order(order_id="o1"), make_order(order_id="o2")], "w1", callback)
            scheduler.sync([make_order(order_id="o2")], "w1", callback)
            armed = scheduler.armed_order_ids
            scheduler.disarm_all()
            return armed

        assert asyncio.run(scenario()) == {"o2"}
