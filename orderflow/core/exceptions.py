"""
Domain Exceptions

Every failure the order lifecycle core reports to its callers. Each class
carries the HTTP status the API layer answers with and whether the caller may
simply retry the same request.
"""

from typing import Optional


class OrderflowError(Exception):
    """Base class for all domain errors."""

    status_code: int = 400
    retryable: bool = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        """Convert to the standard error response body."""
        return {
            "success": False,
            "error": type(self).__name__,
            "detail": self.message,
            "retryable": self.retryable,
        }


# =============================================================================
# VALIDATION
# =============================================================================

class ValidationFailed(OrderflowError):
    """Malformed or out-of-range input. Never retried automatically."""
    status_code = 400


class InvalidQuantity(ValidationFailed):
    def __init__(self, quantity: float):
        super().__init__(f"Quantity must be greater than zero (got {quantity})")
        self.quantity = quantity


class InvalidLocation(ValidationFailed):
    def __init__(self, latitude: Optional[float], longitude: Optional[float]):
        super().__init__(
            f"Invalid coordinates lat={latitude}, lng={longitude}: "
            "latitude must be within [-90, 90] and longitude within [-180, 180]"
        )


class InvalidWebhook(ValidationFailed):
    """Webhook payload failed signature verification or could not be parsed."""


# =============================================================================
# STATE CONFLICTS
# =============================================================================

class StateConflict(OrderflowError):
    """The request is valid on its own but not against the current state."""
    status_code = 400


class IllegalTransition(StateConflict):
    def __init__(self, order_id: int, current: str, target: str):
        super().__init__(
            f"Order #{order_id} cannot move from {current} to {target}"
        )
        self.order_id = order_id
        self.current = current
        self.target = target


class MissingDriverAssignment(StateConflict):
    def __init__(self, order_id: int):
        super().__init__(
            f"Order #{order_id} has no assigned driver and cannot go out for delivery"
        )
        self.order_id = order_id


class LockTimeout(StateConflict):
    """Another request holds the order or item lock; safe to retry."""
    status_code = 409
    retryable = True

    def __init__(self, key: str, timeout: float):
        super().__init__(f"Could not acquire lock on {key} within {timeout:.1f}s, retry later")
        self.key = key


# =============================================================================
# AUTHORIZATION
# =============================================================================

class Unauthorized(OrderflowError):
    """Actor is authenticated but its role may not perform this action."""
    status_code = 403


class Unauthenticated(OrderflowError):
    status_code = 401


# =============================================================================
# NOT FOUND
# =============================================================================

class NotFound(OrderflowError):
    status_code = 404


class OrderNotFound(NotFound):
    def __init__(self, order_id: int):
        super().__init__(f"Order #{order_id} not found")
        self.order_id = order_id


class ItemNotFound(NotFound):
    def __init__(self, item_id: int):
        super().__init__(f"Inventory item #{item_id} not found")
        self.item_id = item_id


class ProductNotFound(NotFound):
    def __init__(self, product_id: int):
        super().__init__(f"Product #{product_id} not found")
        self.product_id = product_id
