"""Error taxonomy shared by the order and subscription services.

Services raise these; the HTTP layer maps each class to a status code in
``storefront.main``. None of them are retried automatically.
"""


class StorefrontError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(StorefrontError):
    """Missing or malformed input, unknown enum value, bad identifier."""
    status_code = 400


class InsufficientStockError(ValidationError):
    def __init__(self, product_name: str, available: int, requested: int):
        super().__init__(
            f"Insufficient stock for {product_name}. Available: {available}, Requested: {requested}"
        )
        self.available = available
        self.requested = requested


class NotFoundError(StorefrontError):
    status_code = 404


class AuthorizationError(StorefrontError):
    status_code = 403


class InvalidStateError(StorefrontError):
    status_code = 400


class InvalidTransitionError(InvalidStateError):
    pass


class ConcurrentModificationError(InvalidStateError):
    status_code = 409
