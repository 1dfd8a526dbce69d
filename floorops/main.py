"""
FastAPI Application Entry Point

FloorOps - Order Assignment & Audit Engine
Runs on the in-memory store in development and the SQL store otherwise.

Endpoints:
    - POST /api/orders: Place an order (waiter or customer)
    - POST /api/orders/{id}/customer-items: Customer adds to a running order
    - POST /api/orders/{id}/claim | reject | status | acknowledge | reoffer
    - PUT  /api/orders/{id}/items: Submit an order edit
    - GET  /api/workers/{worker_id}/assignments: Worker's assignment view
    - GET  /api/orders/{id}/history: Audit trail of one order
    - GET  /api/modifications: Filtered history browser
    - GET  /health: System health check

Version: 1.0.0
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Internal imports
from floorops.core.config import get_settings, setup_logging
from floorops.core.exceptions import (
    InvalidDocument,
    InvalidOrderEdit,
    InvalidTransition,
    NotOrderOwner,
    OrderNotFound,
    StoreUnavailable,
)
from floorops.schemas import (
    AssignmentView,
    CustomerItemsRequest,
    ErrorResponse,
    HealthResponse,
    HistoryResponse,
    ModificationRecord,
    ModificationType,
    OperationResponse,
    Order,
    OrderEditRequest,
    PlaceOrderRequest,
    StatusChangeRequest,
    WorkerAction,
    utcnow,
)
from floorops.services import AuditLedger, ClaimCoordinator, OperationResult, OrderRepository
from floorops.services.store import get_store_adapter

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    # Startup
    logger.info("=" * 60)
    logger.info(f"🚀 Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Auto-reject timeout: {settings.auto_reject_timeout_seconds}s")
    logger.info("=" * 60)

    store = get_store_adapter()
    await store.initialize()
    logger.info(f"✅ Store: {store.provider_name}")

    repository = OrderRepository(store)
    ledger = AuditLedger(store)
    app.state.store = store
    app.state.ledger = ledger
    app.state.coordinator = ClaimCoordinator(repository, ledger)

    # Validate production config
    if settings.use_sql_store:
        missing = settings.validate_production_config()
        if missing:
            logger.warning(f"⚠️ Missing production config: {missing}")

    logger.info("✅ Application ready!")

    yield  # Application runs

    # Shutdown
    logger.info("Shutting down...")
    await store.close()
    logger.info("✅ Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Shared order board for floor staff: claims, rejections, auto-reject "
        "timeouts and a complete modification history."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# DEPENDENCIES & HELPERS
# =============================================================================

def get_coordinator(request: Request) -> ClaimCoordinator:
    return request.app.state.coordinator


def get_ledger(request: Request) -> AuditLedger:
    return request.app.state.ledger


def to_response(result: OperationResult) -> OperationResponse:
    return OperationResponse(**result.to_dict())


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"🍽️ Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(request: Request) -> HealthResponse:
    """Verify the document store is reachable and report audit anomalies."""
    store = request.app.state.store

    store_status = "healthy"
    try:
        if not await store.health_check():
            store_status = "unhealthy"
    except StoreUnavailable as e:
        store_status = f"unhealthy: {e}"
        logger.error(f"Store health check failed: {e}")

    anomalies = len(request.app.state.ledger.anomalies)
    overall = "healthy" if store_status == "healthy" and anomalies == 0 else "degraded"

    return HealthResponse(
        status=overall,
        store=store_status,
        store_provider=store.provider_name,
        audit_anomalies=anomalies,
        timestamp=utcnow(),
    )


# =============================================================================
# ORDER ENDPOINTS
# =============================================================================

@app.post(
    "/api/orders",
    response_model=OperationResponse,
    status_code=201,
    responses={422: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
    tags=["Orders"],
    summary="Place Order",
)
async def place_order(
    payload: PlaceOrderRequest,
    coordinator: ClaimCoordinator = Depends(get_coordinator),
) -> OperationResponse:
    """
    Place a new order.

    With ``worker_id`` the order is taken by that worker straight away;
    without it the order is offered to every waiter.
    """
    result = await coordinator.place_order(
        payload, worker_id=payload.worker_id, worker_name=payload.worker_name
    )
    return to_response(result)


@app.get(
    "/api/orders/{order_id}",
    response_model=Order,
    responses={404: {"model": ErrorResponse}},
    tags=["Orders"],
)
async def get_order(
    order_id: str,
    coordinator: ClaimCoordinator = Depends(get_coordinator),
) -> Order:
    """Get a specific order by ID."""
    return await coordinator.repository.get(order_id)


@app.post(
    "/api/orders/{order_id}/customer-items",
    response_model=OperationResponse,
    tags=["Orders"],
)
async def add_customer_items(
    order_id: str,
    payload: CustomerItemsRequest,
    coordinator: ClaimCoordinator = Depends(get_coordinator),
) -> OperationResponse:
    """Customer-side additions to a running order; alerts the owning waiter."""
    result = await coordinator.append_customer_items(
        order_id, payload.items, source_name=payload.source_name
    )
    return to_response(result)


@app.post("/api/orders/{order_id}/claim", response_model=OperationResponse, tags=["Workflow"])
async def claim_order(
    order_id: str,
    action: WorkerAction,
    coordinator: ClaimCoordinator = Depends(get_coordinator),
) -> OperationResponse:
    """Claim an open offer. Losing the race is ``success=false``, not an error."""
    result = await coordinator.claim_order(order_id, action.worker_id, action.worker_name)
    return to_response(result)


@app.post("/api/orders/{order_id}/reject", response_model=OperationResponse, tags=["Workflow"])
async def reject_order(
    order_id: str,
    action: WorkerAction,
    coordinator: ClaimCoordinator = Depends(get_coordinator),
) -> OperationResponse:
    result = await coordinator.reject_order(order_id, action.worker_id, action.worker_name)
    return to_response(result)


@app.post("/api/orders/{order_id}/status", response_model=OperationResponse, tags=["Workflow"])
async def change_status(
    order_id: str,
    payload: StatusChangeRequest,
    coordinator: ClaimCoordinator = Depends(get_coordinator),
) -> OperationResponse:
    """Advance a claimed order one step (optionally marking it paid on delivery)."""
    result = await coordinator.advance_order_status(
        order_id,
        payload.worker_id,
        payload.new_status,
        worker_name=payload.worker_name,
        mark_paid=payload.mark_paid,
        is_admin=payload.is_admin,
    )
    return to_response(result)


@app.put("/api/orders/{order_id}/items", response_model=OperationResponse, tags=["Workflow"])
async def edit_order_items(
    order_id: str,
    payload: OrderEditRequest,
    coordinator: ClaimCoordinator = Depends(get_coordinator),
) -> OperationResponse:
    result = await coordinator.submit_order_edit(
        order_id,
        payload.worker_id,
        payload.items,
        worker_name=payload.worker_name,
        is_admin=payload.is_admin,
    )
    return to_response(result)


@app.post("/api/orders/{order_id}/acknowledge", response_model=OperationResponse, tags=["Workflow"])
async def acknowledge_new_items(
    order_id: str,
    action: WorkerAction,
    coordinator: ClaimCoordinator = Depends(get_coordinator),
) -> OperationResponse:
    result = await coordinator.acknowledge_new_items(
        order_id, action.worker_id, is_admin=action.is_admin
    )
    return to_response(result)


@app.post("/api/orders/{order_id}/reoffer", response_model=OperationResponse, tags=["Admin"])
async def reoffer_order(
    order_id: str,
    action: WorkerAction,
    coordinator: ClaimCoordinator = Depends(get_coordinator),
) -> OperationResponse:
    """Administrative override: put a rejected order back in its last rejecter's offers."""
    if not action.is_admin:
        raise HTTPException(status_code=403, detail="Only administrators can re-offer orders")
    result = await coordinator.reoffer_order(order_id, action.worker_id, action.worker_name)
    return to_response(result)


# =============================================================================
# VIEW & HISTORY ENDPOINTS
# =============================================================================

@app.get(
    "/api/workers/{worker_id}/assignments",
    response_model=AssignmentView,
    tags=["Views"],
)
async def get_assignments(
    worker_id: str,
    is_admin: bool = Query(False),
    coordinator: ClaimCoordinator = Depends(get_coordinator),
) -> AssignmentView:
    return await coordinator.get_assignment_view(worker_id, is_admin=is_admin)


@app.get(
    "/api/orders/{order_id}/history",
    response_model=HistoryResponse,
    tags=["History"],
)
async def get_order_history(
    order_id: str,
    coordinator: ClaimCoordinator = Depends(get_coordinator),
) -> HistoryResponse:
    """Complete audit trail of one order, oldest first."""
    records = await coordinator.get_order_history(order_id)
    return HistoryResponse(order_id=order_id, total=len(records), records=records)


@app.get(
    "/api/modifications",
    response_model=list[ModificationRecord],
    tags=["History"],
)
async def search_modifications(
    order_id: Optional[str] = Query(None),
    modified_by: Optional[str] = Query(None),
    modification_type: Optional[ModificationType] = Query(None),
    since: Optional[datetime] = Query(None),
    until: Optional[datetime] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    ledger: AuditLedger = Depends(get_ledger),
) -> list[ModificationRecord]:
    """Browse modification history, newest first."""
    records = await ledger.search(
        order_id=order_id,
        modified_by=modified_by,
        modification_type=modification_type,
        since=since,
        until=until,
    )
    return records[:limit]


@app.get(
    "/api/modifications/grouped",
    response_model=dict[str, list[ModificationRecord]],
    tags=["History"],
)
async def grouped_modifications(
    ledger: AuditLedger = Depends(get_ledger),
) -> dict[str, list[ModificationRecord]]:
    return await ledger.grouped_by_order()


@app.get("/api/audit/anomalies", tags=["History"])
async def audit_anomalies(ledger: AuditLedger = Depends(get_ledger)) -> list[dict]:
    """State changes whose history entry could not be written."""
    return [anomaly.to_dict() for anomaly in ledger.anomalies]


# =============================================================================
# ERROR HANDLERS
# =============================================================================

def _error(status_code: int, error: str, detail: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, detail=detail).model_dump(),
    )


@app.exception_handler(OrderNotFound)
async def order_not_found_handler(request: Request, exc: OrderNotFound) -> JSONResponse:
    return _error(404, "Not Found", str(exc))


@app.exception_handler(NotOrderOwner)
async def not_owner_handler(request: Request, exc: NotOrderOwner) -> JSONResponse:
    return _error(403, "Forbidden", str(exc))


@app.exception_handler(InvalidTransition)
async def invalid_transition_handler(request: Request, exc: InvalidTransition) -> JSONResponse:
    return _error(409, "Invalid Transition", str(exc))


@app.exception_handler(InvalidOrderEdit)
async def invalid_edit_handler(request: Request, exc: InvalidOrderEdit) -> JSONResponse:
    return _error(422, "Invalid Order Edit", str(exc))


@app.exception_handler(StoreUnavailable)
async def store_unavailable_handler(request: Request, exc: StoreUnavailable) -> JSONResponse:
    logger.warning(f"Store unavailable during {request.method} {request.url.path}: {exc}")
    return _error(503, "Store Unavailable", "Please try again")


@app.exception_handler(InvalidDocument)
async def invalid_document_handler(request: Request, exc: InvalidDocument) -> JSONResponse:
    logger.error(f"Invalid stored document: {exc}")
    return _error(500, "Invalid Document", str(exc) if settings.debug else "Stored order is malformed")


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")
    return _error(
        500,
        "Internal Server Error",
        str(exc) if settings.debug else "An unexpected error occurred",
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "floorops.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )
