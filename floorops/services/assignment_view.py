"""
Assignment View

Partitions the live order set for one worker:

    offered_to_me   unclaimed, pending, not last rejected by me
    rejected_by_me  unclaimed, pending, last rejected by me (read-only)
    mine            claimed by me
    others_active   claimed by someone else (admin oversight only)

The four groups are disjoint and together cover every live order.
"""

from datetime import datetime, timezone
from typing import Iterable

from floorops.schemas import AssignmentView, Order, OrderStatus

STATUS_PRIORITY = {
    OrderStatus.PENDING: 3,
    OrderStatus.READY: 2,
    OrderStatus.PREPARING: 1,
}

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _created_ts(order: Order) -> float:
    created = order.created_at
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return (created - _EPOCH).total_seconds()


def urgency_key(order: Order) -> tuple:
    """
    New items first, then unclaimed, then pending > ready > preparing,
    then newest first.
    """
    return (
        not order.has_new_items,
        order.claimed_by is not None,
        -STATUS_PRIORITY.get(order.status, 0),
        -_created_ts(order),
    )


def newest_first_key(order: Order) -> float:
    return -_created_ts(order)


def build_assignment_view(
    orders: Iterable[Order],
    worker_id: str,
    is_admin: bool = False,
) -> AssignmentView:
    offered, rejected, mine, others = [], [], [], []

    for order in orders:
        if not order.is_active:
            continue
        if order.claimed_by is None:
            if order.is_offer and order.last_rejected_by == worker_id:
                rejected.append(order)
            else:
                # Unclaimed past pending only comes from outside writers; keep it visible.
                offered.append(order)
        elif order.claimed_by == worker_id:
            mine.append(order)
        else:
            others.append(order)

    return AssignmentView(
        worker_id=worker_id,
        is_admin=is_admin,
        offered_to_me=sorted(offered, key=urgency_key),
        rejected_by_me=sorted(rejected, key=newest_first_key),
        mine=sorted(mine, key=urgency_key),
        others_active=sorted(others, key=newest_first_key),
    )
