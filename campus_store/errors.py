"""Domain errors raised by the order/inventory engine.

Each error carries the HTTP status and machine-readable code it is rendered
with by the exception handler in ``campus_store.main``. Extra keyword details
are merged into the JSON body.
"""


class StoreError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message, **self.details}


class ValidationError(StoreError):
    status_code = 400
    code = "validation_error"


class EmptyCart(ValidationError):
    code = "empty_cart"


class InvalidPrice(ValidationError):
    code = "invalid_price"


class InvalidTotal(ValidationError):
    code = "invalid_total"


class InvalidStatus(ValidationError):
    code = "invalid_status"


class InvalidTransition(ValidationError):
    code = "invalid_transition"


class InsufficientStock(StoreError):
    status_code = 400
    code = "insufficient_stock"

    def __init__(self, product: str, available: int, requested: int | None = None):
        message = f"Insufficient stock for {product}. Available: {available}"
        if requested is not None:
            message += f", requested: {requested}"
        super().__init__(message, product=product, available=available)
        self.product = product
        self.available = available
        self.requested = requested


class NotFoundError(StoreError):
    status_code = 404
    code = "not_found"


class ConflictError(StoreError):
    status_code = 409
    code = "conflict"


class AuthError(StoreError):
    status_code = 401
    code = "not_authenticated"


class PermissionDenied(StoreError):
    status_code = 403
    code = "forbidden"
