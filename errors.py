from typing import Optional


class ShopError(Exception):
    """Base class for errors surfaced to API callers."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field


class ValidationFailure(ShopError):
    """Malformed input; the request was not applied."""


class NotFound(ShopError):
    pass


class Unauthenticated(ShopError):
    pass


class Forbidden(ShopError):
    pass


class StoreFailure(ShopError):
    """The document store rejected or could not complete an operation."""
