"""
Timeout Scheduler

Per-worker auto-reject timers, held in an owned collection keyed by
order id. An entry is armed while an order is an open offer to this
worker and disarmed as soon as a snapshot shows it no longer is.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, Optional

from floorops.core.config import get_settings
from floorops.schemas import Order

logger = logging.getLogger(__name__)

TimeoutCallback = Callable[[str], Awaitable[object]]


def should_arm(order: Order, worker_id: str) -> bool:
    """Pending, unclaimed, and not last rejected by this worker."""
    return order.is_offer and order.last_rejected_by != worker_id


class TimeoutScheduler:
    """
    Owned map of order id → running timer task.

    Example:
        >>> scheduler = TimeoutScheduler(deadline=10.0)
        >>> scheduler.arm("o1", 10.0, coordinator_callback)
        >>> scheduler.disarm("o1")
    """

    def __init__(self, deadline: Optional[float] = None, name: str = "scheduler"):
        self.deadline = deadline or get_settings().auto_reject_timeout_seconds
        self.name = name
        self._timers: dict[str, asyncio.Task] = {}
        self.fired_count = 0

    @property
    def armed_order_ids(self) -> set[str]:
        return set(self._timers)

    def is_armed(self, order_id: str) -> bool:
        return order_id in self._timers

    def arm(
        self,
        order_id: str,
        deadline: Optional[float],
        callback: TimeoutCallback,
    ) -> bool:
        """
        Start a timer unless one is already running for this order.

        Returns:
            bool: True if a new timer was started
        """
        if order_id in self._timers:
            return False

        delay = self.deadline if deadline is None else deadline
        task = asyncio.create_task(self._run(order_id, delay, callback))
        self._timers[order_id] = task
        logger.debug(f"[{self.name}] armed {order_id} ({delay}s)")
        return True

    def disarm(self, order_id: str) -> bool:
        """Cancel the timer for an order. Returns True if one was running."""
        task = self._timers.pop(order_id, None)
        if task is None:
            return False
        task.cancel()
        logger.debug(f"[{self.name}] disarmed {order_id}")
        return True

    def disarm_all(self) -> None:
        for order_id in list(self._timers):
            self.disarm(order_id)

    def sync(self, orders: Iterable[Order], worker_id: str, callback: TimeoutCallback) -> None:
        """
        Reconcile timers with a fresh snapshot of the live order set.

        Qualifying orders are armed (running timers are left alone);
        everything else, including orders missing from the snapshot, is
        disarmed.
        """
        qualifying = set()
        for order in orders:
            if should_arm(order, worker_id):
                qualifying.add(order.id)
                self.arm(order.id, None, callback)

        for order_id in list(self._timers):
            if order_id not in qualifying:
                self.disarm(order_id)

    async def _run(self, order_id: str, delay: float, callback: TimeoutCallback) -> None:
        await asyncio.sleep(delay)

        # Fired: the entry is gone before the callback runs, so a snapshot
        # produced by the callback may re-arm cleanly.
        if self._timers.get(order_id) is asyncio.current_task():
            del self._timers[order_id]
        self.fired_count += 1
        logger.info(f"[{self.name}] timeout fired for order {order_id}")

        try:
            await callback(order_id)
        except Exception:
            logger.exception(f"[{self.name}] auto-reject callback failed for order {order_id}")
