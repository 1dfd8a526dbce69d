"""
Waiter Session

One live session per worker. It follows the active order set through a
store subscription, keeps the worker's assignment view current and owns
the worker's auto-reject timers.

Each snapshot:
    1. rebuilds the AssignmentView
    2. arms timers for offers this worker has not rejected
    3. disarms every timer whose order no longer qualifies

Example:
    >>> async with WaiterSession(coordinator, "w1", "Aziz") as session:
    ...     await session.wait_for(lambda view: view.offered_to_me)
    ...     await session.claim(session.view.offered_to_me[0].id)
"""

import asyncio
import logging
from typing import Callable, Optional, Sequence, Union

from floorops.core.exceptions import StoreUnavailable
from floorops.schemas import AssignmentView, Order, OrderItem, OrderStatus
from floorops.services.assignment_view import build_assignment_view
from floorops.services.claim_coordinator import ClaimCoordinator, OperationResult
from floorops.services.order_repository import OrderStream
from floorops.services.timeout_scheduler import TimeoutScheduler

logger = logging.getLogger(__name__)


class WaiterSession:
    """Per-worker view of the floor plus that worker's timers."""

    def __init__(
        self,
        coordinator: ClaimCoordinator,
        worker_id: str,
        worker_name: str,
        is_admin: bool = False,
        deadline: Optional[float] = None,
    ):
        self.coordinator = coordinator
        self.worker_id = worker_id
        self.worker_name = worker_name
        self.is_admin = is_admin
        self.scheduler = TimeoutScheduler(deadline=deadline, name=worker_name)

        self.view = AssignmentView(worker_id=worker_id, is_admin=is_admin)
        self.snapshots = 0
        self.feed_error: Optional[StoreUnavailable] = None

        self._stream: Optional[OrderStream] = None
        self._task: Optional[asyncio.Task] = None
        self._updated = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> None:
        if self._task is not None:
            return
        self._stream = self.coordinator.repository.subscribe_active()
        self._task = asyncio.create_task(self._consume())
        logger.info(f"👤 Session started for {self.worker_name} ({self.worker_id})")

    async def stop(self) -> None:
        if self._stream is not None:
            self._stream.close()
        if self._task is not None:
            await self._task
        self.scheduler.disarm_all()
        self._stream = None
        self._task = None
        logger.info(f"Session stopped for {self.worker_name}")

    async def __aenter__(self) -> "WaiterSession":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    async def _consume(self) -> None:
        try:
            async for orders in self._stream:
                self._apply(orders)
        except StoreUnavailable as e:
            self.feed_error = e
            logger.error(f"Change feed lost for {self.worker_name}: {e}")
        finally:
            self.scheduler.disarm_all()
            self._updated.set()

    def _apply(self, orders: list[Order]) -> None:
        self.view = build_assignment_view(orders, self.worker_id, is_admin=self.is_admin)
        self.scheduler.sync(orders, self.worker_id, self._on_timeout)
        self.snapshots += 1
        self._updated.set()

    async def _on_timeout(self, order_id: str) -> OperationResult:
        return await self.coordinator.auto_reject_order(order_id, self.worker_id, self.worker_name)

    async def wait_for(
        self,
        predicate: Callable[[AssignmentView], object],
        timeout: float = 5.0,
    ) -> AssignmentView:
        """
        Wait until the current view satisfies ``predicate``.

        Raises:
            asyncio.TimeoutError: If no snapshot satisfies it in time
        """
        async def _wait() -> AssignmentView:
            while not predicate(self.view):
                if self._task is not None and self._task.done():
                    raise RuntimeError(f"Session for {self.worker_name} is no longer running")
                self._updated.clear()
                await self._updated.wait()
            return self.view

        return await asyncio.wait_for(_wait(), timeout)

    # =========================================================================
    # ACTIONS
    # =========================================================================

    # The timer stays armed until the store has answered; a failed call leaves the offer timed.

    async def claim(self, order_id: str) -> OperationResult:
        result = await self.coordinator.claim_order(order_id, self.worker_id, self.worker_name)
        self.scheduler.disarm(order_id)
        return result

    async def reject(self, order_id: str) -> OperationResult:
        result = await self.coordinator.reject_order(order_id, self.worker_id, self.worker_name)
        self.scheduler.disarm(order_id)
        return result

    async def advance(
        self,
        order_id: str,
        new_status: Union[OrderStatus, str],
        mark_paid: bool = False,
    ) -> OperationResult:
        return await self.coordinator.advance_order_status(
            order_id,
            self.worker_id,
            new_status,
            worker_name=self.worker_name,
            mark_paid=mark_paid,
            is_admin=self.is_admin,
        )

    async def edit(self, order_id: str, items: Sequence[Union[OrderItem, dict]]) -> OperationResult:
        return await self.coordinator.submit_order_edit(
            order_id,
            self.worker_id,
            items,
            worker_name=self.worker_name,
            is_admin=self.is_admin,
        )

    async def acknowledge(self, order_id: str) -> OperationResult:
        return await self.coordinator.acknowledge_new_items(
            order_id, self.worker_id, is_admin=self.is_admin
        )
