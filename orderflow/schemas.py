"""
Pydantic Schemas for Request/Response Validation

Wire formats of the order lifecycle API. Request bodies accept both
snake_case and the camelCase names the web and driver apps send.
"""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, Field, computed_field, field_validator

from orderflow.models import MovementType, OrderStatus, PaymentStatus
from orderflow.services.inventory import stock_status


def _either(snake: str, camel: str) -> AliasChoices:
    return AliasChoices(snake, camel)


# =============================================================================
# ORDER REQUEST SCHEMAS
# =============================================================================

class OrderItemCreate(BaseModel):
    """Single line in an order."""
    product_id: int = Field(..., validation_alias=_either("product_id", "productId"), examples=[1])
    quantity: int = Field(..., ge=1, le=99, examples=[2])
    customizations: dict[str, Any] = Field(default_factory=dict)


class OrderCreate(BaseModel):
    """Request schema for creating a new order."""
    customer_name: Optional[str] = Field(
        None, max_length=100, validation_alias=_either("customer_name", "customerName")
    )
    customer_phone: Optional[str] = Field(
        None, max_length=20, validation_alias=_either("customer_phone", "customerPhone")
    )
    customer_email: Optional[str] = Field(
        None, validation_alias=_either("customer_email", "customerEmail")
    )
    delivery_address: str = Field(
        ...,
        min_length=3,
        max_length=255,
        validation_alias=_either("delivery_address", "deliveryAddress"),
        examples=["350 Fifth Avenue, New York"],
    )
    delivery_instructions: Optional[str] = Field(
        None, max_length=500, validation_alias=_either("delivery_instructions", "deliveryInstructions")
    )
    items: List[OrderItemCreate] = Field(..., min_length=1)

    @field_validator("customer_email")
    @classmethod
    def validate_email(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v == "":
            return None
        if "@" not in v or "." not in v.split("@")[-1]:
            raise ValueError("Invalid email format")
        return v


class StatusUpdateRequest(BaseModel):
    """Requested transition."""
    status: OrderStatus
    message: Optional[str] = Field(None, max_length=500)
    metadata: Optional[dict[str, Any]] = None

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v


class AssignDriverRequest(BaseModel):
    driver_id: str = Field(
        ..., min_length=1, max_length=64, validation_alias=_either("driver_id", "driverId")
    )


class DeliveryCompleteRequest(BaseModel):
    """Proof of delivery sent by the driver app."""
    delivered_by: Optional[str] = Field(
        None, max_length=100, validation_alias=_either("delivered_by", "deliveredBy")
    )
    notes: Optional[str] = Field(None, max_length=500)
    proof_photo: Optional[str] = Field(
        None, max_length=500, validation_alias=_either("proof_photo", "proofPhoto")
    )


class LocationReportRequest(BaseModel):
    """
    Driver position. Range checks happen in the relay so that the same
    rules apply to reports arriving over the live channel.
    """
    latitude: float
    longitude: float
    speed: Optional[float] = 0.0
    heading: Optional[float] = 0.0
    recorded_at: Optional[datetime] = Field(
        None, validation_alias=_either("recorded_at", "recordedAt")
    )


# =============================================================================
# INVENTORY REQUEST SCHEMAS
# =============================================================================

class RestockRequest(BaseModel):
    item_id: int = Field(..., validation_alias=_either("item_id", "itemId"))
    quantity: float = Field(..., examples=[10])
    reason: Optional[str] = Field(None, max_length=255)


class InventoryItemCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, examples=["Mozzarella Cheese"])
    unit: str = Field(default="unit", max_length=20, examples=["kg"])
    category: Optional[str] = Field(None, max_length=50)
    minimum_stock: float = Field(
        default=0.0, ge=0, validation_alias=_either("minimum_stock", "minimumStock")
    )
    initial_stock: float = Field(
        default=0.0, ge=0, validation_alias=_either("initial_stock", "currentStock")
    )
    unit_cost: Optional[float] = Field(
        None, ge=0, validation_alias=_either("unit_cost", "unitCost")
    )
    supplier: Optional[str] = Field(None, max_length=100)


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class OrderItemResponse(BaseModel):
    id: int
    product_id: int
    quantity: int
    unit_price: float
    customizations: Optional[dict[str, Any]] = None

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    """Response schema for a single order."""
    id: int
    order_number: str
    customer_id: str
    customer_name: Optional[str]
    customer_phone: Optional[str]
    customer_email: Optional[str]
    delivery_address: str
    delivery_instructions: Optional[str]
    driver_id: Optional[str]
    items: List[OrderItemResponse]
    subtotal: float
    tax: float
    delivery_fee: float
    total_amount: float
    status: OrderStatus
    payment_status: PaymentStatus
    payment_intent_id: Optional[str]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    paid_at: Optional[datetime]
    estimated_delivery: Optional[datetime]
    delivered_at: Optional[datetime]
    actual_delivery: Optional[datetime]
    cancelled_at: Optional[datetime]

    class Config:
        from_attributes = True


class OrderCreateResponse(BaseModel):
    """Response after creating an order."""
    success: bool
    message: str
    order: OrderResponse
    client_secret: Optional[str] = None
    payment_error: Optional[str] = None


class StatusUpdateResponse(BaseModel):
    success: bool = True
    message: str
    previous_status: OrderStatus
    order: OrderResponse


class TrackingEntryResponse(BaseModel):
    id: int
    status: OrderStatus
    message: str
    timestamp: datetime
    metadata: Optional[dict[str, Any]] = Field(None, validation_alias="details")

    class Config:
        from_attributes = True


class OrderSummary(BaseModel):
    id: int
    order_number: str
    status: OrderStatus
    payment_status: PaymentStatus
    total_amount: float
    delivery_address: str
    created_at: Optional[datetime]
    estimated_delivery: Optional[datetime]
    delivered_at: Optional[datetime]

    class Config:
        from_attributes = True


class DriverPositionResponse(BaseModel):
    driver_id: str
    latitude: float
    longitude: float
    speed: float
    heading: float
    recorded_at: datetime

    class Config:
        from_attributes = True


class DriverInfo(BaseModel):
    id: str


class TrackingResponse(BaseModel):
    """Everything a "where is my order" screen needs."""
    order: OrderSummary
    history: List[TrackingEntryResponse]
    driver: Optional[DriverInfo] = None
    driver_location: Optional[DriverPositionResponse] = None
    refresh_interval: int


class KitchenQueueSummary(BaseModel):
    total: int
    confirmed: int
    preparing: int
    ready: int


class KitchenQueueResponse(BaseModel):
    """Orders the kitchen is working through, oldest first."""
    orders: List[OrderResponse]
    summary: KitchenQueueSummary


class DriverOrdersSummary(BaseModel):
    total: int
    ready: int
    out_for_delivery: int


class DriverOrdersResponse(BaseModel):
    orders: List[OrderResponse]
    summary: DriverOrdersSummary


class LocationReportResponse(BaseModel):
    success: bool = True
    accepted: bool
    reason: Optional[str] = None
    order_ids: List[int] = Field(default_factory=list)


class InventoryItemResponse(BaseModel):
    id: int
    name: str
    category: Optional[str]
    current_stock: float
    minimum_stock: float
    unit: str
    unit_cost: Optional[float]
    supplier: Optional[str]
    last_restocked: Optional[datetime]

    class Config:
        from_attributes = True

    @computed_field
    @property
    def status(self) -> str:
        return stock_status(self.current_stock, self.minimum_stock)


class StockMovementResponse(BaseModel):
    id: int
    inventory_item_id: int
    movement_type: MovementType
    quantity: float
    shortfall: float
    reason: str
    order_id: Optional[int]
    performed_by: str
    created_at: datetime

    class Config:
        from_attributes = True


class RestockResponse(BaseModel):
    success: bool = True
    message: str
    item: InventoryItemResponse
    movement: StockMovementResponse


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None
    retryable: bool = False


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database: str
    presence: str
    payment_service: str
    notification_service: str
    live_sessions: int
    timestamp: datetime
