"""Exceptions raised by the store services and mapped to HTTP responses in main.py."""


class StoreError(Exception):
    """Base exception for all store errors."""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(StoreError):
    """Malformed, missing or out-of-range input, or an invalid state transition."""

    status_code = 400


class ConflictError(ValidationError):
    """Request conflicts with current state (stock, size, order status)."""


class InsufficientStockError(ConflictError):
    def __init__(self, available: int, title: str | None = None):
        self.available = available
        if title:
            msg = f'Insufficient stock for "{title}". Only {available} items available.'
        else:
            msg = f"Insufficient stock. Only {available} items available."
        super().__init__(msg)


class NotFoundError(StoreError):
    status_code = 404


class AuthenticationError(StoreError):
    status_code = 401


class PermissionDeniedError(StoreError):
    status_code = 403


class DatabaseUnavailableError(StoreError):
    def __init__(self):
        super().__init__("Database not configured")


class NotificationError(Exception):
    """Raised when an outbound notification cannot be delivered."""


class PersistenceError(StoreError):
    """A database write or read failed; the message is safe to show callers."""
