"""
Tests for live waiter sessions: change feed, views and timers together.
"""

import asyncio

import pytest

from floorops.core.exceptions import StoreUnavailable
from floorops.schemas import OrderStatus
from floorops.services.claim_coordinator import Outcome
from floorops.services.waiter_session import WaiterSession


# ==============================================================================
# VIEW TESTS
# ==============================================================================

class TestLiveView:
    """Tests for view updates driven by the change feed."""

    def test_new_order_appears_as_offer(self, coordinator, order_request):
        async def scenario():
            async with WaiterSession(coordinator, "w1", "Aziz", deadline=60) as session:
                placed = await coordinator.place_order(order_request())
                view = await session.wait_for(lambda v: v.offered_to_me)
                return placed, view, session.scheduler.armed_order_ids

        placed, view, armed = asyncio.run(scenario())
        assert [o.id for o in view.offered_to_me] == [placed.order.id]
        assert armed == {placed.order.id}

    def test_claim_elsewhere_disarms_local_timer(self, coordinator, order_request):
        """Test a claim by another worker cancels this worker's timer."""
        async def scenario():
            async with WaiterSession(coordinator, "w1", "Aziz", deadline=60) as a, \
                    WaiterSession(coordinator, "w2", "Dilnoza", deadline=60) as b:
                placed = await coordinator.place_order(order_request())
                oid = placed.order.id
                await a.wait_for(lambda v: v.offered_to_me)

                result = await b.claim(oid)
                view_a = await a.wait_for(lambda v: not v.offered_to_me)
                view_b = await b.wait_for(lambda v: v.mine)
                return oid, result, view_a, view_b, a.scheduler, b.scheduler

        oid, result, view_a, view_b, sched_a, sched_b = asyncio.run(scenario())
        assert result.outcome == Outcome.CLAIMED
        assert [o.id for o in view_a.others_active] == [oid]
        assert [o.id for o in view_b.mine] == [oid]
        assert not sched_a.is_armed(oid)
        assert sched_a.fired_count == 0
        assert sched_b.fired_count == 0

    def test_stop_disarms_everything(self, coordinator, order_request):
        async def scenario():
            session = WaiterSession(coordinator, "w1", "Aziz", deadline=60)
            await session.start()
            await coordinator.place_order(order_request(table_number=1))
            await coordinator.place_order(order_request(table_number=2))
            await session.wait_for(lambda v: len(v.offered_to_me) == 2)
            armed = session.scheduler.armed_order_ids
            await session.stop()
            return armed, session

        armed, session = asyncio.run(scenario())
        assert len(armed) == 2
        assert session.scheduler.armed_order_ids == set()
        assert not session.running


# ==============================================================================
# TIMEOUT TESTS
# ==============================================================================

class TestAutoRejectTimers:
    """Tests for timers firing through the coordinator."""

    def test_unanswered_offer_is_auto_rejected(self, coordinator, order_request):
        """Test an ignored offer moves to rejected_by_me and stays offered to others."""
        async def scenario():
            async with WaiterSession(coordinator, "w1", "Aziz", deadline=0.05) as a, \
                    WaiterSession(coordinator, "w2", "Dilnoza", deadline=60) as b:
                placed = await coordinator.place_order(order_request())
                oid = placed.order.id

                view_a = await a.wait_for(lambda v: v.rejected_by_me, timeout=2)
                view_b = await b.wait_for(
                    lambda v: any(o.last_rejected_by == "w1" for o in v.offered_to_me), timeout=2
                )
                order = await coordinator.repository.get(oid)
                history = await coordinator.get_order_history(oid)
                return oid, view_a, view_b, order, history, a.scheduler, b.scheduler

        oid, view_a, view_b, order, history, sched_a, sched_b = asyncio.run(scenario())

        assert [o.id for o in view_a.rejected_by_me] == [oid]
        assert view_a.offered_to_me == []
        assert [o.id for o in view_b.offered_to_me] == [oid]
        assert order.rejection_count == 1
        assert order.last_rejected_by == "w1"
        assert [r.modification_type.value for r in history] == ["add", "auto-reject"]
        assert sched_a.fired_count == 1
        assert not sched_a.is_armed(oid)
        assert sched_b.fired_count == 0

    def test_manual_reject_disarms_timer(self, coordinator, order_request):
        async def scenario():
            async with WaiterSession(coordinator, "w1", "Aziz", deadline=0.2) as session:
                placed = await coordinator.place_order(order_request())
                oid = placed.order.id
                await session.wait_for(lambda v: v.offered_to_me)
                result = await session.reject(oid)
                await asyncio.sleep(0.3)
                order = await coordinator.repository.get(oid)
                return result, order, session.scheduler

        result, order, scheduler = asyncio.run(scenario())
        assert result.outcome == Outcome.REJECTED
        assert order.rejection_count == 1
        assert scheduler.fired_count == 0

    def test_failed_claim_keeps_timer_armed(self, store, coordinator, order_request):
        """Test an offer stays timed when the claim never reaches the store."""
        async def scenario():
            async with WaiterSession(coordinator, "w1", "Aziz", deadline=60) as session:
                placed = await coordinator.place_order(order_request())
                oid = placed.order.id
                await session.wait_for(lambda v: v.offered_to_me)

                store.failure_rate = 1.0
                with pytest.raises(StoreUnavailable):
                    await session.claim(oid)
                store.failure_rate = 0.0
                return oid, session.scheduler.is_armed(oid)

        oid, armed = asyncio.run(scenario())
        assert armed


# ==============================================================================
# ACTION TESTS
# ==============================================================================

class TestActions:
    """Tests for session actions delegating to the coordinator."""

    def test_claim_advance_edit_acknowledge(self, coordinator, order_request, make_item):
        async def scenario():
            async with WaiterSession(coordinator, "w1", "Aziz", deadline=60) as session:
                placed = await coordinator.place_order(order_request(items=[make_item("a", 1)]))
                oid = placed.order.id
                await session.wait_for(lambda v: v.offered_to_me)

                claimed = await session.claim(oid)
                advanced = await session.advance(oid, OrderStatus.READY)
                await coordinator.append_customer_items(oid, [make_item("b", 1)])
                flagged = await session.wait_for(lambda v: v.mine and v.mine[0].has_new_items)
                acknowledged = await session.acknowledge(oid)
                edited = await session.edit(oid, [make_item("a", 2), make_item("b", 1)])
                view = await session.wait_for(
                    lambda v: v.mine and v.mine[0].items[0].quantity == 2
                )
                return claimed, advanced, flagged, acknowledged, edited, view

        claimed, advanced, flagged, acknowledged, edited, view = asyncio.run(scenario())
        assert claimed.outcome == Outcome.CLAIMED
        assert advanced.order.status == OrderStatus.READY
        assert flagged.mine[0].has_new_items is True
        assert acknowledged.outcome == Outcome.ACKNOWLEDGED
        assert edited.outcome == Outcome.EDITED
        assert view.mine[0].status == OrderStatus.READY
        assert view.mine[0].has_new_items is False

    def test_wait_for_times_out(self, coordinator):
        async def scenario():
            async with WaiterSession(coordinator, "w1", "Aziz", deadline=60) as session:
                await session.wait_for(lambda v: v.mine, timeout=0.05)

        with pytest.raises(asyncio.TimeoutError):
            asyncio.run(scenario())
