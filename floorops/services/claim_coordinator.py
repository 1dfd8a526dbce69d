"""
Claim Coordinator

The order state machine and the worker-facing operations built on it.

States:
    Unclaimed-Pending → (claim) → Preparing → Ready → Delivered
    Claimed-Pending   → (advance) → Preparing

Every guarded transition is a conditional write (``update_if``) on the
fields it just read, so a competing write makes it abort instead of
clobbering. Losing a claim race or an auto-reject guard is an outcome,
not an exception. Every accepted transition appends its audit record(s);
a failed append is flagged on the result and left to the ledger's
divergence log.

Example:
    >>> coordinator = ClaimCoordinator(OrderRepository(store), AuditLedger(store))
    >>> result = await coordinator.claim_order(order_id, "w1", "Aziz")
    >>> if result.outcome == Outcome.ALREADY_CLAIMED:
    ...     refresh_view()
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional, Sequence, Union

from floorops.core.config import get_settings
from floorops.core.exceptions import (
    AuditWriteFailed,
    InvalidTransition,
    NotOrderOwner,
    OrderNotFound,
    StoreUnavailable,
)
from floorops.schemas import (
    AssignmentView,
    ModificationRecord,
    ModificationType,
    Order,
    OrderCreate,
    OrderItem,
    OrderStatus,
    StatusChange,
    utcnow,
)
from floorops.services.assignment_view import build_assignment_view
from floorops.services.audit_ledger import AuditLedger
from floorops.services.order_diff import (
    calculate_order_totals,
    diff_items,
    ensure_unique_catalog_ids,
    merge_items,
)
from floorops.services.order_repository import OrderRepository
from floorops.services.store import Increment
from floorops.services.timeout_scheduler import should_arm

logger = logging.getLogger(__name__)

CUSTOMER_ID = "customer"

NEXT_STATUS = {
    OrderStatus.PENDING: OrderStatus.PREPARING,
    OrderStatus.PREPARING: OrderStatus.READY,
    OrderStatus.READY: OrderStatus.DELIVERED,
}


class Outcome(str, Enum):
    """Result of a worker-facing operation."""
    PLACED = "placed"
    CLAIMED = "claimed"
    REJECTED = "rejected"
    AUTO_REJECTED = "auto_rejected"
    STATUS_ADVANCED = "status_advanced"
    EDITED = "edited"
    ITEMS_APPENDED = "items_appended"
    ACKNOWLEDGED = "acknowledged"
    REOFFERED = "reoffered"
    # Non-error "nothing happened" outcomes
    ALREADY_CLAIMED = "already_claimed"
    GUARD_FAILED = "guard_failed"
    UNCHANGED = "unchanged"


_NO_EFFECT = {Outcome.ALREADY_CLAIMED, Outcome.GUARD_FAILED, Outcome.UNCHANGED}


@dataclass
class OperationResult:
    """
    Standardized result of a coordinator operation.

    Attributes:
        outcome: What happened
        order: The order as read after the operation (when available)
        records: Audit records written for this operation
        message: Human-readable summary for the worker
        audit_warning: The state changed but at least one record was not written
    """
    outcome: Outcome
    order: Optional[Order] = None
    records: List[ModificationRecord] = field(default_factory=list)
    message: str = ""
    audit_warning: bool = False

    @property
    def success(self) -> bool:
        return self.outcome not in _NO_EFFECT

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "outcome": self.outcome.value,
            "message": self.message,
            "order": self.order,
            "records": self.records,
            "audit_warning": self.audit_warning,
        }


def _ts(moment: datetime) -> str:
    return moment.isoformat()


def _dump_items(items: Sequence[OrderItem]) -> list[dict]:
    return [item.model_dump(mode="json") for item in items]


class ClaimCoordinator:
    """Order state machine over the repository and the audit ledger."""

    def __init__(
        self,
        repository: OrderRepository,
        ledger: AuditLedger,
        clock: Callable[[], datetime] = utcnow,
        auto_reject_timeout: Optional[float] = None,
    ):
        self.repository = repository
        self.ledger = ledger
        self.clock = clock
        self.auto_reject_timeout = auto_reject_timeout or get_settings().auto_reject_timeout_seconds

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _record(
        self,
        order: Order,
        modification_type: ModificationType,
        worker_id: str,
        worker_name: Optional[str],
        modified_at: datetime,
        **payload,
    ) -> ModificationRecord:
        return ModificationRecord(
            order_id=order.id,
            modified_at=modified_at,
            modified_by=worker_id,
            modified_by_name=worker_name or "Unknown",
            modification_type=modification_type,
            table_number=order.table_number,
            room_number=order.room_number,
            floor=order.floor,
            **payload,
        )

    async def _audit(self, records: Sequence[ModificationRecord]) -> tuple[list[ModificationRecord], bool]:
        """Append records; a failed append is flagged, never raised."""
        written, warning = [], False
        for record in records:
            try:
                written.append(await self.ledger.append(record))
            except AuditWriteFailed:
                warning = True
        return written, warning

    async def _finish(
        self,
        outcome: Outcome,
        order_id: str,
        records: Sequence[ModificationRecord],
        message: str,
    ) -> OperationResult:
        written, warning = await self._audit(records)
        order = await self._read_back(order_id)
        return OperationResult(
            outcome=outcome,
            order=order,
            records=written,
            message=message,
            audit_warning=warning,
        )

    async def _read_back(self, order_id: str) -> Optional[Order]:
        """Re-read after a confirmed write. A failed read leaves the result without an order."""
        try:
            return await self.repository.get(order_id)
        except StoreUnavailable as e:
            logger.warning(f"Order {order_id} was written but could not be re-read: {e}")
            return None

    def _invalid(self, order: Order, requested: str, reason: str) -> InvalidTransition:
        logger.warning(
            f"Rejected transition on order {order.id}: {order.status.value} → {requested} ({reason})"
        )
        return InvalidTransition(order.id, order.status.value, requested, reason)

    @staticmethod
    def _check_owner(order: Order, worker_id: str, is_admin: bool) -> None:
        if order.claimed_by is not None and order.claimed_by != worker_id and not is_admin:
            raise NotOrderOwner(order.id, worker_id, order.claimed_by)

    # =========================================================================
    # CLAIM / REJECT
    # =========================================================================

    async def claim_order(self, order_id: str, worker_id: str, worker_name: str) -> OperationResult:
        """
        Take exclusive ownership of an unclaimed pending order.

        Losing the race to another worker returns ALREADY_CLAIMED; callers
        refresh their view and do not retry.
        """
        order = await self.repository.get(order_id)

        if order.claimed_by is not None:
            if order.claimed_by == worker_id:
                return OperationResult(Outcome.UNCHANGED, order, message="You already own this order")
            return OperationResult(
                Outcome.ALREADY_CLAIMED,
                order,
                message=f"Order no longer available (claimed by {order.claimed_by_name or order.claimed_by})",
            )
        if order.status != OrderStatus.PENDING:
            raise self._invalid(order, "claimed", "only pending orders can be claimed")

        now = self.clock()
        written = await self.repository.update_if(
            order_id,
            {"claimed_by": None, "status": OrderStatus.PENDING.value},
            {
                "claimed_by": worker_id,
                "claimed_by_name": worker_name,
                "status": OrderStatus.PREPARING.value,
                "rejection_count": 0,
                "last_rejected_by": None,
                "last_rejected_at": None,
                "has_new_items": False,
                "updated_at": _ts(now),
                "revision": Increment(1),
            },
        )

        if not written:
            # Verification read: the snapshot after the failed write names the winner.
            current = await self.repository.get(order_id)
            logger.info(
                f"Order {order_id}: claim by {worker_name} lost to "
                f"{current.claimed_by_name or current.claimed_by}"
            )
            return OperationResult(
                Outcome.ALREADY_CLAIMED,
                current,
                message="Order no longer available",
            )

        # The claim has landed; its record goes out before any further read.
        logger.info(f"✅ Order {order_id} claimed by {worker_name} ({worker_id})")
        record = self._record(
            order, ModificationType.CLAIM, worker_id, worker_name, now,
            notes=f"Order claimed by {worker_name}.",
        )
        written_records, warning = await self._audit([record])
        return OperationResult(
            Outcome.CLAIMED,
            await self._read_back(order_id),
            records=written_records,
            message=f"You claimed {order.seat_label}",
            audit_warning=warning,
        )

    async def reject_order(self, order_id: str, worker_id: str, worker_name: str) -> OperationResult:
        """Decline an offer; the order stays pending and unclaimed."""
        order = await self.repository.get(order_id)

        if order.claimed_by is not None:
            if order.claimed_by == worker_id:
                raise self._invalid(order, "rejected", "an active claim cannot be rejected")
            return OperationResult(Outcome.ALREADY_CLAIMED, order, message="Order no longer available")
        if order.status != OrderStatus.PENDING:
            raise self._invalid(order, "rejected", "only pending orders can be rejected")
        if order.last_rejected_by == worker_id:
            return OperationResult(Outcome.UNCHANGED, order, message="You already rejected this order")

        now = self.clock()
        written = await self.repository.update_if(
            order_id,
            {"claimed_by": None, "status": OrderStatus.PENDING.value},
            self._rejection_fields(worker_id, now),
        )
        if not written:
            current = await self.repository.get(order_id)
            if current.claimed_by is not None:
                return OperationResult(Outcome.ALREADY_CLAIMED, current, message="Order no longer available")
            return OperationResult(Outcome.GUARD_FAILED, current, message="Order changed, refresh and retry")

        logger.info(f"↩️  Order {order_id} rejected by {worker_name} ({worker_id})")
        record = self._record(
            order, ModificationType.REJECT, worker_id, worker_name, now,
            notes=f"Order rejected by {worker_name}.",
        )
        return await self._finish(Outcome.REJECTED, order_id, [record], "Order released to other waiters")

    async def auto_reject_order(self, order_id: str, worker_id: str, worker_name: str) -> OperationResult:
        """
        Timer-driven rejection on behalf of a worker who let an offer sit.

        Proceeds only if the order is still pending, unclaimed and not
        already rejected by this worker; otherwise GUARD_FAILED (a no-op).
        """
        try:
            order = await self.repository.get(order_id)
        except OrderNotFound:
            return OperationResult(Outcome.GUARD_FAILED, message="Order no longer exists")

        if not should_arm(order, worker_id):
            logger.debug(f"Auto-reject of {order_id} for {worker_id} skipped: guard no longer holds")
            return OperationResult(Outcome.GUARD_FAILED, order, message="Order no longer offered")

        now = self.clock()
        written = await self.repository.update_if(
            order_id,
            {
                "claimed_by": None,
                "status": OrderStatus.PENDING.value,
                "last_rejected_by": order.last_rejected_by,
            },
            self._rejection_fields(worker_id, now),
        )
        if not written:
            logger.debug(f"Auto-reject of {order_id} for {worker_id} lost to a concurrent write")
            return OperationResult(
                Outcome.GUARD_FAILED,
                await self.repository.get(order_id),
                message="Order changed before the timeout was applied",
            )

        logger.info(f"⏱️  Order {order_id} auto-rejected for {worker_name} ({worker_id})")
        record = self._record(
            order, ModificationType.AUTO_REJECT, worker_id, worker_name, now,
            notes=(
                f"Order automatically rejected for {worker_name} "
                f"({self.auto_reject_timeout:g}s timeout)."
            ),
        )
        return await self._finish(
            Outcome.AUTO_REJECTED, order_id, [record], "Order passed to another waiter"
        )

    def _rejection_fields(self, worker_id: str, now: datetime) -> dict:
        return {
            "rejection_count": Increment(1),
            "last_rejected_by": worker_id,
            "last_rejected_at": _ts(now),
            "updated_at": _ts(now),
            "revision": Increment(1),
        }

    # =========================================================================
    # STATUS
    # =========================================================================

    async def advance_order_status(
        self,
        order_id: str,
        worker_id: str,
        new_status: Union[OrderStatus, str],
        worker_name: Optional[str] = None,
        mark_paid: bool = False,
        is_admin: bool = False,
    ) -> OperationResult:
        """
        Move a claimed order one step forward.

        preparing → ready → delivered (and pending → preparing for a
        claimed-pending order). Delivering sets ``delivered_at``;
        ``mark_paid`` records checkout in the same write.
        """
        new_status = OrderStatus(new_status)
        order = await self.repository.get(order_id)

        if order.claimed_by is None:
            raise self._invalid(order, new_status.value, "order must be claimed first")
        self._check_owner(order, worker_id, is_admin)
        if NEXT_STATUS.get(order.status) != new_status:
            raise self._invalid(order, new_status.value, "status moves one step forward only")
        if mark_paid and new_status != OrderStatus.DELIVERED:
            raise self._invalid(order, new_status.value, "payment is recorded at delivery")

        now = self.clock()
        fields = {
            "status": new_status.value,
            "updated_at": _ts(now),
            "revision": Increment(1),
        }
        if new_status == OrderStatus.DELIVERED:
            fields["delivered_at"] = _ts(now)
        if mark_paid:
            fields["is_paid"] = True
            fields["paid_at"] = _ts(now)

        written = await self.repository.update_if(
            order_id,
            {"status": order.status.value, "claimed_by": order.claimed_by},
            fields,
        )
        if not written:
            return OperationResult(
                Outcome.GUARD_FAILED,
                await self.repository.get(order_id),
                message="Order changed, refresh and retry",
            )

        name = worker_name or order.claimed_by_name
        notes = f"Status changed from {order.status.value} to {new_status.value}"
        if mark_paid:
            notes += "; order paid"
        logger.info(f"📋 Order {order_id}: {order.status.value} → {new_status.value} by {name}")
        record = self._record(
            order, ModificationType.EDIT, worker_id, name, now,
            status_change=StatusChange(before=order.status, after=new_status),
            notes=notes + ".",
        )
        return await self._finish(Outcome.STATUS_ADVANCED, order_id, [record], notes)

    # =========================================================================
    # ITEMS
    # =========================================================================

    async def submit_order_edit(
        self,
        order_id: str,
        worker_id: str,
        new_items: Sequence[Union[OrderItem, dict]],
        worker_name: Optional[str] = None,
        is_admin: bool = False,
    ) -> OperationResult:
        """
        Replace an order's items and log one record per change category.

        Additions, removals and quantity edits are written as separate
        records, each only when non-empty; an edit that changes nothing
        writes nothing.
        """
        items = [OrderItem.model_validate(item) for item in new_items]
        order = await self.repository.get(order_id)

        if order.status == OrderStatus.DELIVERED:
            raise self._invalid(order, "edited", "delivered orders are closed")
        self._check_owner(order, worker_id, is_admin)

        diff = diff_items(order.items, items)
        if diff.is_empty:
            return OperationResult(Outcome.UNCHANGED, order, message="No changes to save")

        now = self.clock()
        written = await self.repository.update_if(
            order_id,
            {"revision": order.revision, "status": order.status.value},
            {
                "items": _dump_items(items),
                **calculate_order_totals(items),
                "has_new_items": False,
                "updated_at": _ts(now),
                "revision": Increment(1),
            },
        )
        if not written:
            return OperationResult(
                Outcome.GUARD_FAILED,
                await self.repository.get(order_id),
                message="Order was changed by someone else, refresh and retry",
            )

        name = worker_name or "Unknown"
        records = []
        if diff.added:
            records.append(self._record(
                order, ModificationType.ADD, worker_id, name, now,
                added_items=diff.added,
                notes=f"{len(diff.added)} item(s) added to the order",
            ))
        if diff.removed:
            records.append(self._record(
                order, ModificationType.REMOVE, worker_id, name, now,
                removed_items=diff.removed,
                notes=f"{len(diff.removed)} item(s) removed from the order",
            ))
        if diff.edited:
            records.append(self._record(
                order, ModificationType.EDIT, worker_id, name, now,
                edited_items=diff.edited,
                notes=f"{len(diff.edited)} item quantity change(s)",
            ))

        logger.info(
            f"✏️  Order {order_id} edited by {name}: +{len(diff.added)} "
            f"-{len(diff.removed)} ~{len(diff.edited)}"
        )
        return await self._finish(Outcome.EDITED, order_id, records, "Order updated")

    async def place_order(
        self,
        request: OrderCreate,
        worker_id: Optional[str] = None,
        worker_name: Optional[str] = None,
    ) -> OperationResult:
        """
        Create an order.

        Orders placed by a waiter are claimed by that waiter and go straight
        to preparing; customer orders start as open offers.
        """
        ensure_unique_catalog_ids(request.items)
        now = self.clock()

        fields = {
            "table_number": request.table_number,
            "room_number": request.room_number,
            "floor": request.floor,
            "seating_type": request.seating_type,
            "items": request.items,
            **calculate_order_totals(request.items),
            "status": OrderStatus.PREPARING if worker_id else OrderStatus.PENDING,
            "claimed_by": worker_id,
            "claimed_by_name": worker_name if worker_id else None,
            "placed_by": worker_id,
            "placed_by_name": worker_name if worker_id else None,
            "rejection_count": 0,
            "has_new_items": False,
            "created_at": now,
            "updated_at": now,
        }
        order = await self.repository.create(fields)

        author_id = worker_id or CUSTOMER_ID
        author_name = worker_name or "Customer"
        logger.info(f"🆕 Order {order.id} placed for {order.seat_label} by {author_name}")

        record = self._record(
            order, ModificationType.ADD, author_id, author_name, now,
            added_items=list(request.items),
            notes=f"Order placed with {len(request.items)} item(s)",
        )
        written, warning = await self._audit([record])
        return OperationResult(
            Outcome.PLACED, order, records=written, message="Order placed", audit_warning=warning
        )

    async def append_customer_items(
        self,
        order_id: str,
        items: Sequence[Union[OrderItem, dict]],
        source_name: str = "Customer",
    ) -> OperationResult:
        """
        Add items to a running order from the customer-facing channel.

        A claimed order gets ``has_new_items`` so its waiter is alerted.
        """
        extra = [OrderItem.model_validate(item) for item in items]
        order = await self.repository.get(order_id)

        if not order.is_active:
            raise self._invalid(order, "items added", "order is closed")

        merged = merge_items(order.items, extra)
        diff = diff_items(order.items, merged)

        now = self.clock()
        written = await self.repository.update_if(
            order_id,
            {"revision": order.revision, "status": order.status.value},
            {
                "items": _dump_items(merged),
                **calculate_order_totals(merged),
                "has_new_items": order.is_claimed,
                "updated_at": _ts(now),
                "revision": Increment(1),
            },
        )
        if not written:
            return OperationResult(
                Outcome.GUARD_FAILED,
                await self.repository.get(order_id),
                message="Order changed, please try again",
            )

        records = []
        if diff.added:
            records.append(self._record(
                order, ModificationType.ADD, CUSTOMER_ID, source_name, now,
                added_items=diff.added,
                notes=f"{source_name} added {len(diff.added)} item(s)",
            ))
        if diff.edited:
            records.append(self._record(
                order, ModificationType.EDIT, CUSTOMER_ID, source_name, now,
                edited_items=diff.edited,
                notes=f"{source_name} increased {len(diff.edited)} item(s)",
            ))

        logger.info(f"🛎️  Order {order_id}: {len(extra)} item(s) added by {source_name}")
        return await self._finish(Outcome.ITEMS_APPENDED, order_id, records, "Items added")

    async def acknowledge_new_items(
        self,
        order_id: str,
        worker_id: str,
        is_admin: bool = False,
    ) -> OperationResult:
        """Owner has seen the customer's additions; clears the alert flag."""
        order = await self.repository.get(order_id)
        self._check_owner(order, worker_id, is_admin)
        if not order.has_new_items:
            return OperationResult(Outcome.UNCHANGED, order)

        await self.repository.update(order_id, {"has_new_items": False})
        return OperationResult(
            Outcome.ACKNOWLEDGED,
            await self._read_back(order_id),
            message="New items acknowledged",
        )

    async def reoffer_order(self, order_id: str, admin_id: str, admin_name: str) -> OperationResult:
        """
        Administrative override: offer an order again to its last rejecter.
        """
        order = await self.repository.get(order_id)

        if order.claimed_by is not None:
            return OperationResult(Outcome.ALREADY_CLAIMED, order, message="Order is already claimed")
        if order.status != OrderStatus.PENDING:
            raise self._invalid(order, "re-offered", "only pending orders can be re-offered")
        if order.last_rejected_by is None:
            return OperationResult(Outcome.UNCHANGED, order, message="Order is already offered to everyone")

        now = self.clock()
        written = await self.repository.update_if(
            order_id,
            {
                "claimed_by": None,
                "status": OrderStatus.PENDING.value,
                "last_rejected_by": order.last_rejected_by,
            },
            {
                "last_rejected_by": None,
                "last_rejected_at": None,
                "updated_at": _ts(now),
                "revision": Increment(1),
            },
        )
        if not written:
            return OperationResult(
                Outcome.GUARD_FAILED,
                await self.repository.get(order_id),
                message="Order changed, refresh and retry",
            )

        record = self._record(
            order, ModificationType.EDIT, admin_id, admin_name, now,
            notes=f"Re-offered by {admin_name} (last rejected by {order.last_rejected_by}).",
        )
        return await self._finish(Outcome.REOFFERED, order_id, [record], "Order offered again")

    # =========================================================================
    # READS
    # =========================================================================

    async def get_assignment_view(self, worker_id: str, is_admin: bool = False) -> AssignmentView:
        orders = await self.repository.list_active()
        return build_assignment_view(orders, worker_id, is_admin=is_admin)

    async def get_order_history(self, order_id: str) -> list[ModificationRecord]:
        return await self.ledger.history(order_id)
