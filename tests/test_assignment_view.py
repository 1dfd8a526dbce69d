"""
Unit tests for the worker assignment view.
"""

from floorops.schemas import OrderStatus
from floorops.services.assignment_view import build_assignment_view


# ==============================================================================
# PARTITION TESTS
# ==============================================================================

class TestPartition:
    """Tests for group membership."""

    def test_groups_are_disjoint_and_cover_live_orders(self, make_order):
        """Test every active order lands in exactly one group."""
        orders = [
            make_order(),
            make_order(last_rejected_by="w1"),
            make_order(last_rejected_by="w2"),
            make_order(status=OrderStatus.PREPARING, claimed_by="w1"),
            make_order(status=OrderStatus.READY, claimed_by="w2"),
            make_order(status=OrderStatus.PENDING, claimed_by="w3"),
            make_order(status=OrderStatus.DELIVERED, claimed_by="w1"),
        ]

        view = build_assignment_view(orders, "w1")

        groups = [view.offered_to_me, view.rejected_by_me, view.mine, view.others_active]
        ids = [order.id for group in groups for order in group]
        assert len(ids) == len(set(ids))
        assert set(ids) == {o.id for o in orders if o.is_active}

    def test_group_membership(self, make_order):
        """Test each order goes to the group its claim state implies."""
        offer = make_order()
        rejected = make_order(last_rejected_by="w1")
        mine = make_order(status=OrderStatus.PREPARING, claimed_by="w1")
        theirs = make_order(status=OrderStatus.READY, claimed_by="w2")

        view = build_assignment_view([offer, rejected, mine, theirs], "w1")

        assert [o.id for o in view.offered_to_me] == [offer.id]
        assert [o.id for o in view.rejected_by_me] == [rejected.id]
        assert [o.id for o in view.mine] == [mine.id]
        assert [o.id for o in view.others_active] == [theirs.id]

    def test_rejection_by_someone_else_is_still_an_offer(self, make_order):
        order = make_order(last_rejected_by="w2")
        view = build_assignment_view([order], "w1")
        assert view.offered_to_me == [order]

    def test_unclaimed_order_past_pending_stays_offered(self, make_order):
        """Test an unclaimed order an outside writer moved on is offered, never rejected."""
        stray = make_order(status=OrderStatus.READY)
        stray_rejected = make_order(status=OrderStatus.PREPARING, last_rejected_by="w1")

        view = build_assignment_view([stray, stray_rejected], "w1")

        assert not stray.is_offer
        assert {o.id for o in view.offered_to_me} == {stray.id, stray_rejected.id}
        assert view.rejected_by_me == []
        assert view.mine == [] and view.others_active == []

    def test_delivered_orders_are_excluded(self, make_order):
        view = build_assignment_view([make_order(status=OrderStatus.DELIVERED, claimed_by="w1")], "w1")
        assert view.all_order_ids == set()

    def test_actionable_ids_include_others_only_for_admins(self, make_order):
        """Test admins may act on other workers' claims."""
        offer = make_order()
        theirs = make_order(status=OrderStatus.READY, claimed_by="w2")

        worker_view = build_assignment_view([offer, theirs], "w1")
        admin_view = build_assignment_view([offer, theirs], "w1", is_admin=True)

        assert worker_view.actionable_ids == {offer.id}
        assert admin_view.actionable_ids == {offer.id, theirs.id}


# ==============================================================================
# SORTING TESTS
# ==============================================================================

class TestSorting:
    """Tests for group ordering."""

    def test_mine_sorted_by_urgency(self, make_order):
        """Test new items first, then ready before preparing, then newest first."""
        preparing_old = make_order(status=OrderStatus.PREPARING, claimed_by="w1", minutes_ago=30)
        preparing_new = make_order(status=OrderStatus.PREPARING, claimed_by="w1", minutes_ago=5)
        ready = make_order(status=OrderStatus.READY, claimed_by="w1", minutes_ago=40)
        flagged = make_order(
            status=OrderStatus.PREPARING, claimed_by="w1", has_new_items=True, minutes_ago=50
        )

        view = build_assignment_view([preparing_old, preparing_new, ready, flagged], "w1")

        assert [o.id for o in view.mine] == [flagged.id, ready.id, preparing_new.id, preparing_old.id]

    def test_offers_newest_first(self, make_order):
        old = make_order(minutes_ago=20)
        new = make_order(minutes_ago=1)
        view = build_assignment_view([old, new], "w1")
        assert [o.id for o in view.offered_to_me] == [new.id, old.id]

    def test_rejected_newest_first(self, make_order):
        old = make_order(last_rejected_by="w1", minutes_ago=20)
        new = make_order(last_rejected_by="w1", minutes_ago=1)
        view = build_assignment_view([old, new], "w1")
        assert [o.id for o in view.rejected_by_me] == [new.id, old.id]
