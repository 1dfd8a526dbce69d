"""
Pydantic Schemas for Documents, Requests and Responses

Every Order and ModificationRecord read from the document store passes
through these models before it reaches the claim coordinator, so shape
errors surface at the repository boundary instead of deep in a transition.

Version: 1.0.0
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def utcnow() -> datetime:
    """Timezone-aware current time used for every engine timestamp."""
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS
# =============================================================================

class OrderStatus(str, Enum):
    """Order fulfillment workflow."""
    PENDING = "pending"
    PREPARING = "preparing"
    READY = "ready"
    DELIVERED = "delivered"


ACTIVE_STATUSES = (OrderStatus.PENDING, OrderStatus.PREPARING, OrderStatus.READY)


class ModificationType(str, Enum):
    """Kinds of audit entries."""
    ADD = "add"
    REMOVE = "remove"
    EDIT = "edit"
    CLAIM = "claim"
    REJECT = "reject"
    AUTO_REJECT = "auto-reject"


# =============================================================================
# DOCUMENTS
# =============================================================================

class OrderItem(BaseModel):
    """Single line of an order; name and price are snapshots taken at order time."""
    catalog_id: str = Field(..., min_length=1, examples=["menu_plov"])
    name: str = Field(..., min_length=1, max_length=100, examples=["Plov"])
    unit_price: float = Field(..., ge=0, examples=[45000.0])
    quantity: int = Field(..., ge=1, le=999, examples=[2])
    note: Optional[str] = Field(None, max_length=200)
    category: Optional[str] = Field(None, max_length=100)

    @property
    def line_total(self) -> float:
        return round(self.quantity * self.unit_price, 2)


class Order(BaseModel):
    """
    A unit of work tied to a seat location.

    Exactly one of ``table_number`` / ``room_number`` is set.
    ``claimed_by`` is non-null iff a worker owns the order.
    """
    id: str

    # Seat location
    table_number: Optional[int] = Field(None, ge=0)
    room_number: Optional[int] = Field(None, ge=0)
    floor: int = Field(default=1, ge=0)
    seating_type: Optional[str] = Field(None, max_length=50)

    # Contents
    items: List[OrderItem] = Field(default_factory=list)
    subtotal: float = Field(default=0.0, ge=0)
    total: float = Field(default=0.0, ge=0)

    # Workflow
    status: OrderStatus = OrderStatus.PENDING
    claimed_by: Optional[str] = None
    claimed_by_name: Optional[str] = None
    rejection_count: int = Field(default=0, ge=0)
    last_rejected_by: Optional[str] = None
    last_rejected_at: Optional[datetime] = None
    has_new_items: bool = False
    placed_by: Optional[str] = None
    placed_by_name: Optional[str] = None
    # Bumped on every engine write; edits are conditional on it
    revision: int = Field(default=0, ge=0)

    # Timestamps & payment
    created_at: datetime
    updated_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    is_paid: bool = False
    paid_at: Optional[datetime] = None

    @model_validator(mode="after")
    def check_invariants(self) -> "Order":
        if (self.table_number is None) == (self.room_number is None):
            raise ValueError("exactly one of table_number / room_number must be set")
        if self.status == OrderStatus.DELIVERED and self.delivered_at is None:
            raise ValueError("delivered orders must carry delivered_at")
        return self

    @property
    def is_claimed(self) -> bool:
        return self.claimed_by is not None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_offer(self) -> bool:
        """Unclaimed and pending: visible to eligible workers."""
        return self.status == OrderStatus.PENDING and self.claimed_by is None

    @property
    def seat_label(self) -> str:
        if self.table_number is not None:
            return f"Table #{self.table_number} (floor {self.floor})"
        return f"Room #{self.room_number} (floor {self.floor})"

    def to_document(self) -> dict:
        """Serialize for the store; the id lives outside the document body."""
        return self.model_dump(mode="json", exclude={"id"})


class ItemChange(BaseModel):
    """Before/after snapshot pair for an item whose quantity changed."""
    model_config = ConfigDict(frozen=True)

    before: OrderItem
    after: OrderItem


class StatusChange(BaseModel):
    """Before/after pair for a status edit."""
    model_config = ConfigDict(frozen=True)

    before: OrderStatus
    after: OrderStatus


class ModificationRecord(BaseModel):
    """
    One immutable audit entry describing a single state change.

    The complete history of an order is its records ordered by ``modified_at``.
    """
    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    order_id: str = Field(..., min_length=1)
    modified_at: datetime = Field(default_factory=utcnow)
    modified_by: str = Field(..., min_length=1)
    modified_by_name: str = Field(default="Unknown")
    modification_type: ModificationType

    # Seat snapshot at the time of the change
    table_number: Optional[int] = None
    room_number: Optional[int] = None
    floor: Optional[int] = None

    added_items: List[OrderItem] = Field(default_factory=list)
    removed_items: List[OrderItem] = Field(default_factory=list)
    edited_items: List[ItemChange] = Field(default_factory=list)
    status_change: Optional[StatusChange] = None
    notes: str = ""

    def to_document(self) -> dict:
        return self.model_dump(mode="json", exclude={"id"})


class AssignmentView(BaseModel):
    """A worker-specific partition of the live order set."""
    worker_id: str
    is_admin: bool = False
    offered_to_me: List[Order] = Field(default_factory=list)
    rejected_by_me: List[Order] = Field(default_factory=list)
    mine: List[Order] = Field(default_factory=list)
    others_active: List[Order] = Field(default_factory=list)

    @property
    def all_order_ids(self) -> set[str]:
        return {
            order.id
            for group in (self.offered_to_me, self.rejected_by_me, self.mine, self.others_active)
            for order in group
        }

    @property
    def actionable_ids(self) -> set[str]:
        """Orders this worker may act on; other workers' claims only for admins."""
        ids = {o.id for o in self.offered_to_me} | {o.id for o in self.mine}
        if self.is_admin:
            ids |= {o.id for o in self.others_active}
        return ids


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class OrderCreate(BaseModel):
    """Request schema for placing a new order."""
    table_number: Optional[int] = Field(None, ge=0, examples=[12])
    room_number: Optional[int] = Field(None, ge=0)
    floor: int = Field(default=1, ge=0)
    seating_type: Optional[str] = Field(None, max_length=50, examples=["Table"])
    items: List[OrderItem] = Field(..., min_length=1)

    @model_validator(mode="after")
    def check_seat(self) -> "OrderCreate":
        if (self.table_number is None) == (self.room_number is None):
            raise ValueError("exactly one of table_number / room_number must be set")
        return self


class WorkerAction(BaseModel):
    """Identity of the worker performing an action."""
    worker_id: str = Field(..., min_length=1, examples=["waiter_7"])
    worker_name: str = Field(default="Unknown", max_length=100, examples=["Aziz"])
    is_admin: bool = False


class PlaceOrderRequest(OrderCreate):
    """Order placed from the floor (worker set) or by a customer (worker empty)."""
    worker_id: Optional[str] = None
    worker_name: Optional[str] = None


class StatusChangeRequest(WorkerAction):
    new_status: OrderStatus
    mark_paid: bool = False


class OrderEditRequest(WorkerAction):
    items: List[OrderItem] = Field(..., min_length=1)


class CustomerItemsRequest(BaseModel):
    """Items added to a running order from the customer-facing channel."""
    items: List[OrderItem] = Field(..., min_length=1)
    source_name: str = Field(default="Customer", max_length=100)

    @field_validator("source_name")
    @classmethod
    def strip_source(cls, v: str) -> str:
        return v.strip() or "Customer"


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class OperationResponse(BaseModel):
    """Result of a worker-facing operation."""
    success: bool
    outcome: str
    message: str = ""
    order: Optional[Order] = None
    records: List[ModificationRecord] = Field(default_factory=list)
    audit_warning: bool = False


class HistoryResponse(BaseModel):
    order_id: str
    total: int
    records: List[ModificationRecord]


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    store: str
    store_provider: str
    audit_anomalies: int = 0
    timestamp: datetime
