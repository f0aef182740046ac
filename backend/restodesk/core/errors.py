"""Domain exceptions raised by the service layer.

Routes do not catch these; ``main.py`` registers a handler that turns each
into a JSON ``{"detail": ...}`` response with the class's ``status_code``.
"""

from fastapi import status


class RestodeskError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(RestodeskError):
    """Request data is missing, malformed or inconsistent."""


class NotFoundError(RestodeskError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(RestodeskError):
    status_code = status.HTTP_409_CONFLICT


class InvalidTransitionError(ConflictError):
    """Raised for off-graph status changes when transitions are enforced."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move order from '{current}' to '{target}'")


class InsufficientStockError(ValidationError):
    """Raised when there's not enough stock for a deduction."""

    def __init__(self, product_name: str, product_id: int, available: int, needed: int):
        self.product_name = product_name
        self.product_id = product_id
        self.available = available
        self.needed = needed
        super().__init__(
            f"Insufficient stock for '{product_name}': requested {needed}, available {available}"
        )


class UnknownProviderError(ValidationError):
    def __init__(self, name: str, known: list[str]):
        self.name = name
        super().__init__(
            f"Unknown delivery provider '{name}'. Available: {', '.join(sorted(known))}"
        )
