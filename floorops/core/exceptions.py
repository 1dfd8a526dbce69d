"""
Error taxonomy for the assignment and audit engine.

Recoverable outcomes (an order claimed by someone else, an auto-reject whose
guard no longer holds) are not exceptions; they are reported through
``Outcome`` values on ``OperationResult``. Everything here is raised.
"""

from typing import Optional


class FloorOpsError(Exception):
    """Base class for all engine errors."""


# =============================================================================
# STORE
# =============================================================================

class StoreError(FloorOpsError):
    """Base class for document store failures."""


class StoreUnavailable(StoreError):
    """
    The store could not be reached or refused the operation.

    Transient: the caller should surface "try again" to the worker. No
    claim or rejection is considered done without a confirmed write.
    """


class DocumentNotFound(StoreError, LookupError):
    """A document id does not exist in its collection."""

    def __init__(self, collection: str, doc_id: str):
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"{collection}/{doc_id} not found")


# =============================================================================
# ORDERS
# =============================================================================

class OrderNotFound(FloorOpsError, LookupError):
    """The requested order does not exist."""

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order {order_id} not found")


class InvalidDocument(FloorOpsError):
    """A stored document failed validation at the repository boundary."""

    def __init__(self, collection: str, doc_id: Optional[str], reason: str):
        self.collection = collection
        self.doc_id = doc_id
        self.reason = reason
        super().__init__(f"Invalid document {collection}/{doc_id}: {reason}")


class InvalidTransition(FloorOpsError):
    """A requested state change violates the order state machine."""

    def __init__(self, order_id: str, current: str, requested: str, reason: str = ""):
        self.order_id = order_id
        self.current = current
        self.requested = requested
        message = f"Order {order_id}: cannot go from {current} to {requested}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class InvalidOrderEdit(FloorOpsError, ValueError):
    """A submitted item list cannot be applied to an order."""


class NotOrderOwner(FloorOpsError, PermissionError):
    """A worker tried to act on an order claimed by another worker."""

    def __init__(self, order_id: str, worker_id: str, owner_id: Optional[str]):
        self.order_id = order_id
        self.worker_id = worker_id
        self.owner_id = owner_id
        super().__init__(
            f"Order {order_id} is claimed by {owner_id}, not {worker_id}"
        )


# =============================================================================
# AUDIT
# =============================================================================

class AuditWriteFailed(FloorOpsError):
    """
    A state change was written but its audit record was not.

    The state change is kept; the divergence is logged for administrative
    review.
    """

    def __init__(self, order_id: str, modification_type: str, attempts: int, cause: Exception):
        self.order_id = order_id
        self.modification_type = modification_type
        self.attempts = attempts
        self.cause = cause
        super().__init__(
            f"Audit append for order {order_id} ({modification_type}) failed "
            f"after {attempts} attempt(s): {cause}"
        )
