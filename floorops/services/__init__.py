"""
                        Services Module

Assignment engine services on top of the document store.

Services:
    - store: Document store adapters (in-memory for development, SQL otherwise)
    - order_repository: Validated access to order documents
    - audit_ledger: Append-only modification history
    - claim_coordinator: Order state machine and worker operations
    - timeout_scheduler: Per-worker auto-reject timers
    - waiter_session: Live per-worker view driven by the change feed
"""

from floorops.services.audit_ledger import AuditLedger
from floorops.services.claim_coordinator import ClaimCoordinator, OperationResult, Outcome
from floorops.services.order_repository import OrderRepository
from floorops.services.timeout_scheduler import TimeoutScheduler
from floorops.services.waiter_session import WaiterSession

__all__ = [
    "AuditLedger",
    "ClaimCoordinator",
    "OperationResult",
    "Outcome",
    "OrderRepository",
    "TimeoutScheduler",
    "WaiterSession",
]
