"""
FastAPI Application Entry Point

Orderflow Delivery Core - order lifecycle, inventory consumption and live
fan-out. Supports both Mock services (development) and Real APIs (production).

Endpoints:
    - POST /api/orders: Place an order (payment intent created)
    - GET /api/orders/{id}: Read an order
    - PUT /api/orders/{id}/status: Status transition
    - POST /api/orders/{id}/assign-driver: Assign the delivering driver
    - GET /api/orders/{id}/tracking: Order summary, history and driver position
    - GET /api/kitchen/orders: Kitchen queue (confirmed, preparing, ready)
    - GET /api/driver/orders: Orders assigned to the calling driver
    - POST /api/driver/orders/{id}/complete: Driver marks an order delivered
    - POST /api/driver/location: Driver position report
    - POST /api/inventory/restock: Restock an inventory item
    - GET/POST /api/inventory/items: Inventory catalogue
    - GET /api/inventory/items/{id}/movements: Stock ledger of one item
    - POST /webhook/payment: Payment provider webhook
    - WS /ws: Live event channel
    - GET /health: System health check
"""

import asyncio
import json
import logging
import sys
import uuid
from collections import Counter
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Optional

from fastapi import (
    Depends,
    FastAPI,
    Header,
    Query,
    Request,
    WebSocket,
    WebSocketDisconnect,
)
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

# Windows-specific event loop policy
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Internal imports
from orderflow.container import Container
from orderflow.core.config import get_settings, setup_logging
from orderflow.core.exceptions import (
    OrderflowError,
    Unauthenticated,
    Unauthorized,
    ValidationFailed,
)
from orderflow.core.security import Actor, ActorRole, get_current_actor, parse_actor
from orderflow.models import OrderStatus
from orderflow.schemas import (
    AssignDriverRequest,
    DeliveryCompleteRequest,
    DriverInfo,
    DriverOrdersResponse,
    DriverOrdersSummary,
    DriverPositionResponse,
    ErrorResponse,
    HealthResponse,
    InventoryItemCreate,
    InventoryItemResponse,
    KitchenQueueResponse,
    KitchenQueueSummary,
    LocationReportRequest,
    LocationReportResponse,
    OrderCreate,
    OrderCreateResponse,
    OrderResponse,
    OrderSummary,
    RestockRequest,
    RestockResponse,
    StatusUpdateRequest,
    StatusUpdateResponse,
    StockMovementResponse,
    TrackingEntryResponse,
    TrackingResponse,
)
from orderflow.services.checkout import LineRequest
from orderflow.services.location import ON_ROUTE_STATUSES
from orderflow.services.notifications import get_notification_service
from orderflow.services.order_state import DRIVER_QUEUE, KITCHEN_QUEUE, check_can_view

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

    A container already placed on ``app.state`` (tests do this) is used as
    is and left open on shutdown.
    """
    logger.info("=" * 60)
    logger.info(f"🚀 Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    container: Optional[Container] = getattr(app.state, "container", None)
    owned = container is None
    if owned:
        container = Container.build(settings)
        app.state.container = container

    await container.start()
    logger.info("✅ Database initialized")
    logger.info(f"✅ Payment Service: {container.payment.provider_name}")
    logger.info(f"✅ Presence: {type(container.presence).__name__}")

    if settings.use_real_services:
        missing = settings.validate_production_config()
        if missing:
            logger.warning(f"⚠️ Missing production config: {missing}")

    logger.info("✅ Application ready!")

    yield  # Application runs

    logger.info("Shutting down...")
    if owned:
        await container.close()
        app.state.container = None
    logger.info("✅ Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Order lifecycle core: status transitions, inventory consumption "
        "and live fan-out to kitchen, customers, drivers and admins."
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
# HELPER FUNCTIONS
# =============================================================================

def get_container(request: Request) -> Container:
    return request.app.state.container


def require_role(actor: Actor, *roles: ActorRole) -> None:
    if actor.role not in roles:
        raise Unauthorized(f"{actor.role.value} may not perform this action")


ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"🍕 Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
        "live": "/ws",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(container: Container = Depends(get_container)) -> HealthResponse:
    """Verify all system components are operational."""

    db_status = "healthy"
    try:
        async with container.session_factory() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"
        logger.error(f"Database health check failed: {e}")

    presence_status = "healthy"
    try:
        if not await container.presence.health_check():
            presence_status = "unhealthy"
    except Exception as e:
        presence_status = f"unhealthy: {str(e)}"
        logger.error(f"Presence health check failed: {e}")

    payment_status = "healthy" if await container.payment.health_check() else "unhealthy"
    notification_status = (
        "healthy" if await get_notification_service().health_check() else "unhealthy"
    )

    overall = "operational" if all(
        s == "healthy" for s in [db_status, presence_status, payment_status, notification_status]
    ) else "degraded"

    return HealthResponse(
        status=overall,
        database=db_status,
        presence=presence_status,
        payment_service=payment_status,
        notification_service=notification_status,
        live_sessions=container.hub.connected_count,
        timestamp=datetime.now(),
    )


# =============================================================================
# ORDER API ENDPOINTS
# =============================================================================

@app.post(
    "/api/orders",
    response_model=OrderCreateResponse,
    status_code=201,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="Create Order",
)
async def create_order(
    order_data: OrderCreate,
    actor: Actor = Depends(get_current_actor),
    container: Container = Depends(get_container),
) -> OrderCreateResponse:
    """
    Place an order for the calling customer.

    The order starts PENDING; the payment webhook confirms it.
    """
    require_role(actor, ActorRole.CUSTOMER)
    logger.info(f"Creating order for customer {actor.id}")

    result = await container.checkout.create_order(
        customer_id=actor.id,
        lines=[
            LineRequest(
                product_id=item.product_id,
                quantity=item.quantity,
                customizations=item.customizations,
            )
            for item in order_data.items
        ],
        delivery_address=order_data.delivery_address,
        customer_name=order_data.customer_name,
        customer_phone=order_data.customer_phone,
        customer_email=order_data.customer_email,
        delivery_instructions=order_data.delivery_instructions,
    )

    payment_ok = result.payment is not None and result.payment.success
    return OrderCreateResponse(
        success=True,
        message=(
            "Order placed, awaiting payment"
            if payment_ok
            else "Order placed, payment could not be started"
        ),
        order=OrderResponse.model_validate(result.order),
        client_secret=result.client_secret,
        payment_error=None if payment_ok or result.payment is None else result.payment.error_message,
    )


@app.get(
    "/api/orders/{order_id}",
    response_model=OrderResponse,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
)
async def get_order(
    order_id: int,
    actor: Actor = Depends(get_current_actor),
    container: Container = Depends(get_container),
) -> OrderResponse:
    """Get a specific order by ID."""
    order = await container.orders.get_order(order_id)
    check_can_view(order, actor)
    return OrderResponse.model_validate(order)


@app.put(
    "/api/orders/{order_id}/status",
    response_model=StatusUpdateResponse,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="Update Order Status",
)
async def update_order_status(
    order_id: int,
    update: StatusUpdateRequest,
    actor: Actor = Depends(get_current_actor),
    container: Container = Depends(get_container),
) -> StatusUpdateResponse:
    """Move an order to its next status (or cancel it)."""
    result = await container.orders.transition(
        order_id,
        update.status,
        actor,
        message=update.message,
        metadata=update.metadata,
    )
    return StatusUpdateResponse(
        message=f"Order status updated to {result.order.status.value}",
        previous_status=result.previous_status,
        order=OrderResponse.model_validate(result.order),
    )


@app.post(
    "/api/orders/{order_id}/assign-driver",
    response_model=OrderResponse,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
)
async def assign_driver(
    order_id: int,
    request: AssignDriverRequest,
    actor: Actor = Depends(get_current_actor),
    container: Container = Depends(get_container),
) -> OrderResponse:
    order = await container.orders.assign_driver(order_id, request.driver_id, actor)
    return OrderResponse.model_validate(order)


@app.get(
    "/api/orders/{order_id}/tracking",
    response_model=TrackingResponse,
    responses=ERROR_RESPONSES,
    tags=["Tracking"],
    summary="Track Order",
)
async def track_order(
    order_id: int,
    actor: Actor = Depends(get_current_actor),
    container: Container = Depends(get_container),
) -> TrackingResponse:
    """
    Order summary, full tracking history (oldest first), the assigned driver
    and its latest position while the order is on its way.

    Also the reconciliation read for live clients after a reconnect.
    """
    order = await container.orders.get_order(order_id)
    check_can_view(order, actor)
    history = await container.tracking.get_history(order_id)

    position = None
    if order.status in ON_ROUTE_STATUSES:
        position = container.locations.latest(order.driver_id)

    return TrackingResponse(
        order=OrderSummary.model_validate(order),
        history=[TrackingEntryResponse.model_validate(entry) for entry in history],
        driver=DriverInfo(id=order.driver_id) if order.driver_id else None,
        driver_location=DriverPositionResponse.model_validate(position) if position else None,
        refresh_interval=container.settings.tracking_refresh_interval_ms,
    )


# =============================================================================
# KITCHEN API ENDPOINTS
# =============================================================================

@app.get(
    "/api/kitchen/orders",
    response_model=KitchenQueueResponse,
    responses=ERROR_RESPONSES,
    tags=["Kitchen"],
    summary="Kitchen Queue",
)
async def kitchen_queue(
    status: Optional[str] = Query(None, description="One of confirmed, preparing, ready"),
    actor: Actor = Depends(get_current_actor),
    container: Container = Depends(get_container),
) -> KitchenQueueResponse:
    """Confirmed, preparing and ready orders, oldest first."""
    require_role(actor, ActorRole.KITCHEN, ActorRole.ADMIN)

    statuses = KITCHEN_QUEUE
    if status:
        try:
            statuses = (OrderStatus(status.strip().lower()),)
        except ValueError:
            statuses = ()
        if not statuses or statuses[0] not in KITCHEN_QUEUE:
            raise ValidationFailed(
                f"Invalid status. Options: {[s.value for s in KITCHEN_QUEUE]}"
            )

    orders = await container.orders.list_orders(statuses)
    counts = Counter(order.status for order in orders)
    return KitchenQueueResponse(
        orders=[OrderResponse.model_validate(order) for order in orders],
        summary=KitchenQueueSummary(
            total=len(orders),
            confirmed=counts[OrderStatus.CONFIRMED],
            preparing=counts[OrderStatus.PREPARING],
            ready=counts[OrderStatus.READY],
        ),
    )


# =============================================================================
# DRIVER API ENDPOINTS
# =============================================================================

DRIVER_FILTERS = {
    "assigned": (OrderStatus.READY,),
    "active": (OrderStatus.OUT_FOR_DELIVERY,),
    "all": DRIVER_QUEUE,
}


@app.get(
    "/api/driver/orders",
    response_model=DriverOrdersResponse,
    responses=ERROR_RESPONSES,
    tags=["Driver"],
    summary="Driver Orders",
)
async def driver_orders(
    status: str = Query("assigned", description="assigned, active or all"),
    actor: Actor = Depends(get_current_actor),
    container: Container = Depends(get_container),
) -> DriverOrdersResponse:
    """Orders assigned to the calling driver that are ready or on their way."""
    require_role(actor, ActorRole.DRIVER)

    statuses = DRIVER_FILTERS.get(status.strip().lower())
    if statuses is None:
        raise ValidationFailed(f"Invalid status. Options: {list(DRIVER_FILTERS)}")

    orders = await container.orders.list_orders(statuses, driver_id=actor.id)
    counts = Counter(order.status for order in orders)
    return DriverOrdersResponse(
        orders=[OrderResponse.model_validate(order) for order in orders],
        summary=DriverOrdersSummary(
            total=len(orders),
            ready=counts[OrderStatus.READY],
            out_for_delivery=counts[OrderStatus.OUT_FOR_DELIVERY],
        ),
    )


@app.post(
    "/api/driver/orders/{order_id}/complete",
    response_model=StatusUpdateResponse,
    responses=ERROR_RESPONSES,
    tags=["Driver"],
    summary="Complete Delivery",
)
async def complete_delivery(
    order_id: int,
    proof: DeliveryCompleteRequest,
    actor: Actor = Depends(get_current_actor),
    container: Container = Depends(get_container),
) -> StatusUpdateResponse:
    """Mark an order delivered, storing the proof of delivery with the entry."""
    require_role(actor, ActorRole.DRIVER, ActorRole.ADMIN)
    result = await container.orders.transition(
        order_id,
        OrderStatus.DELIVERED,
        actor,
        message="Order has been delivered",
        metadata={
            "deliveredBy": proof.delivered_by or actor.id,
            "notes": proof.notes,
            "proofPhoto": proof.proof_photo,
        },
    )
    return StatusUpdateResponse(
        message="Order marked as delivered",
        previous_status=result.previous_status,
        order=OrderResponse.model_validate(result.order),
    )


@app.post(
    "/api/driver/location",
    response_model=LocationReportResponse,
    responses=ERROR_RESPONSES,
    tags=["Driver"],
    summary="Report Driver Location",
)
async def report_location(
    report: LocationReportRequest,
    actor: Actor = Depends(get_current_actor),
    container: Container = Depends(get_container),
) -> LocationReportResponse:
    require_role(actor, ActorRole.DRIVER)
    outcome = await container.locations.report_location(
        actor.id,
        report.latitude,
        report.longitude,
        speed=report.speed,
        heading=report.heading,
        recorded_at=report.recorded_at,
    )
    return LocationReportResponse(
        accepted=outcome.accepted,
        reason=outcome.reason,
        order_ids=list(outcome.order_ids),
    )


# =============================================================================
# INVENTORY API ENDPOINTS
# =============================================================================

@app.post(
    "/api/inventory/restock",
    response_model=RestockResponse,
    responses=ERROR_RESPONSES,
    tags=["Inventory"],
    summary="Restock Item",
)
async def restock_item(
    request: RestockRequest,
    actor: Actor = Depends(get_current_actor),
    container: Container = Depends(get_container),
) -> RestockResponse:
    require_role(actor, ActorRole.KITCHEN, ActorRole.ADMIN)
    result = await container.inventory.restock(
        request.item_id,
        request.quantity,
        reason=request.reason or "Manual restock",
        performed_by=actor.id,
    )
    item = result.item
    return RestockResponse(
        message=(
            f"Successfully restocked {request.quantity} {item.unit} of {item.name}. "
            f"Current stock: {item.current_stock} {item.unit}"
        ),
        item=InventoryItemResponse.model_validate(item),
        movement=StockMovementResponse.model_validate(result.movement),
    )


@app.get(
    "/api/inventory/items",
    response_model=list[InventoryItemResponse],
    responses=ERROR_RESPONSES,
    tags=["Inventory"],
)
async def list_inventory_items(
    low_stock: bool = Query(False, description="Only items at or below their minimum"),
    actor: Actor = Depends(get_current_actor),
    container: Container = Depends(get_container),
) -> list[InventoryItemResponse]:
    require_role(actor, ActorRole.KITCHEN, ActorRole.ADMIN)
    items = await container.inventory.list_items(low_stock_only=low_stock)
    return [InventoryItemResponse.model_validate(item) for item in items]


@app.post(
    "/api/inventory/items",
    response_model=InventoryItemResponse,
    status_code=201,
    responses=ERROR_RESPONSES,
    tags=["Inventory"],
)
async def create_inventory_item(
    request: InventoryItemCreate,
    actor: Actor = Depends(get_current_actor),
    container: Container = Depends(get_container),
) -> InventoryItemResponse:
    require_role(actor, ActorRole.ADMIN)
    item = await container.inventory.create_item(
        name=request.name,
        unit=request.unit,
        minimum_stock=request.minimum_stock,
        initial_stock=request.initial_stock,
        category=request.category,
        unit_cost=request.unit_cost,
        supplier=request.supplier,
        performed_by=actor.id,
    )
    return InventoryItemResponse.model_validate(item)


@app.get(
    "/api/inventory/items/{item_id}/movements",
    response_model=list[StockMovementResponse],
    responses=ERROR_RESPONSES,
    tags=["Inventory"],
)
async def list_stock_movements(
    item_id: int,
    actor: Actor = Depends(get_current_actor),
    container: Container = Depends(get_container),
) -> list[StockMovementResponse]:
    require_role(actor, ActorRole.KITCHEN, ActorRole.ADMIN)
    movements = await container.inventory.list_movements(item_id)
    return [StockMovementResponse.model_validate(m) for m in movements]


# =============================================================================
# WEBHOOK ENDPOINTS
# =============================================================================

@app.post(
    "/webhook/payment",
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    tags=["Webhooks"],
    summary="Payment Provider Webhook",
)
async def payment_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="stripe-signature"),
    container: Container = Depends(get_container),
) -> dict[str, Any]:
    """
    Receive payment events. Replays are acknowledged with 200 so the
    provider stops retrying; a busy order answers 409 so it retries.
    """
    payload = await request.body()
    outcome = await container.webhooks.process(payload, stripe_signature)
    return outcome.to_dict()


# =============================================================================
# LIVE EVENT CHANNEL
# =============================================================================

@app.websocket("/ws")
async def live_channel(
    websocket: WebSocket,
    actor_id: Optional[str] = Query(None),
    role: Optional[str] = Query(None),
    session_id: Optional[str] = Query(None),
    last_seq: Optional[int] = Query(None),
):
    """
    Persistent event channel.

    Query: actor_id, role, optional session_id + last_seq to resume.
    Client actions: subscribe_order, unsubscribe_order, location (drivers),
    get_history, ping.
    """
    try:
        actor = parse_actor(actor_id, role)
    except Unauthenticated as e:
        logger.info(f"Live channel rejected: {e.message}")
        await websocket.close(code=4401)
        return

    container: Container = websocket.app.state.container
    hub = container.hub
    await websocket.accept()

    send_lock = asyncio.Lock()

    async def send(message: dict[str, Any]) -> None:
        async with send_lock:
            await websocket.send_json(message)

    connection_id = session_id or uuid.uuid4().hex
    scope_id = actor.id if actor.role in (ActorRole.CUSTOMER, ActorRole.DRIVER) else None
    await hub.register_session(connection_id, actor.role, scope_id, send, last_seq)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                await send({"type": "error", "error": "InvalidMessage", "detail": "Malformed JSON"})
                continue
            try:
                reply = await handle_live_action(container, connection_id, actor, message)
            except OrderflowError as e:
                reply = {"type": "error", **e.to_dict()}
            if reply is not None:
                await send(reply)
    except WebSocketDisconnect:
        logger.debug(f"Live channel {connection_id} closed by client")
    finally:
        await hub.unregister_session(connection_id)


async def handle_live_action(
    container: Container,
    connection_id: str,
    actor: Actor,
    message: Any,
) -> Optional[dict[str, Any]]:
    """Dispatch one client message; returns the direct reply."""
    if not isinstance(message, dict):
        return {"type": "error", "error": "InvalidMessage", "detail": "Expected a JSON object"}

    action = message.get("action") or message.get("type")

    if action == "ping":
        await container.hub.heartbeat(connection_id)
        return {"type": "pong", "last_seq": container.hub.last_seq}

    if action in ("subscribe_order", "unsubscribe_order", "get_history"):
        order_id = _order_id(message)
        order = await container.orders.get_order(order_id)
        check_can_view(order, actor)

        if action == "subscribe_order":
            await container.hub.subscribe_to_order(connection_id, order_id)
            return {"type": "subscribed", "order_id": order_id}
        if action == "unsubscribe_order":
            await container.hub.unsubscribe_from_order(connection_id, order_id)
            return {"type": "unsubscribed", "order_id": order_id}

        history = await container.tracking.get_history(order_id)
        return {
            "type": "history",
            "order_id": order_id,
            "status": order.status.value,
            "entries": [
                TrackingEntryResponse.model_validate(entry).model_dump(mode="json")
                for entry in history
            ],
        }

    if action == "location":
        if actor.role != ActorRole.DRIVER:
            raise Unauthorized("Only drivers report locations")
        outcome = await container.locations.report_location(
            actor.id,
            message.get("latitude"),
            message.get("longitude"),
            speed=message.get("speed") or 0.0,
            heading=message.get("heading") or 0.0,
        )
        return {
            "type": "location_ack",
            "accepted": outcome.accepted,
            "reason": outcome.reason,
        }

    return {"type": "error", "error": "UnknownAction", "detail": f"Unknown action: {action}"}


def _order_id(message: dict[str, Any]) -> int:
    raw = message.get("order_id", message.get("orderId"))
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValidationFailed(f"Invalid order id: {raw!r}")


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(OrderflowError)
async def domain_exception_handler(request: Request, exc: OrderflowError) -> JSONResponse:
    """Domain errors carry their own status code."""
    if exc.status_code >= 409:
        logger.warning(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
    else:
        logger.info(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Malformed input is a plain 400 like every other validation error."""
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": "ValidationFailed",
            "detail": "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
            ),
            "retryable": False,
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
            "retryable": False,
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "orderflow.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )
