"""Errors raised by the inventory and fulfillment services.

All of them are recoverable at the call site. ``EngineError`` subclasses
``ValueError`` so routers can keep mapping ``ValueError`` to a 400 response;
``NotFoundError`` is mapped to 404.
"""


class EngineError(ValueError):
    pass


class ValidationError(EngineError):
    """Malformed or negative input, or an allocation that does not add up."""


class InsufficientStockError(EngineError):
    """A stock-out or shipment asks for more than the grade or regime holds."""


class OverLockError(EngineError):
    """A lock would reserve more than the record's current stock."""


class NotFoundError(LookupError):
    """A record, order or line that must exist does not."""
