"""Exceptions raised by the wholesale ordering API.

Each carries the HTTP status code it is rendered with, so route code can
raise them from anywhere below the FastAPI layer.
"""


class WholesaleError(Exception):
    """Base exception for all wholesale API errors."""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class AuthenticationError(WholesaleError):
    """Raised when the session cookie is missing, invalid or expired."""

    status_code = 401

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class AccessDeniedError(WholesaleError):
    """Raised when a caller's role does not allow the requested scope."""

    status_code = 403

    def __init__(self, message: str = "Access denied"):
        super().__init__(message)


class NotFoundError(WholesaleError):
    """Raised when a referenced document doesn't exist."""

    status_code = 404

    def __init__(self, kind: str):
        self.kind = kind
        super().__init__(f"{kind} not found")


class OrderValidationError(WholesaleError):
    """Raised when an order mutation would break the balance rules."""

    status_code = 400


class ListenerLimitError(WholesaleError):
    """Raised when the event relay already holds its maximum of listeners."""

    status_code = 503

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"Too many open event streams (limit {limit})")
