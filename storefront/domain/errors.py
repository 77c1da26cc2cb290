# storefront/domain/errors.py
"""
Checkout domain errors.

Each one subclasses a builtin so callers that only know about
ValueError / PermissionError / RuntimeError keep working.
"""


class NotFoundError(ValueError):
    """Missing cart, cart item, order or product."""


class InvalidStateError(ValueError):
    """Empty cart, empty guest item list, bad quantity, bad status."""


class ConflictError(RuntimeError):
    """Lost write race: duplicate order number, stale cart version, busy checkout."""


class UnauthorizedError(PermissionError):
    """Caller does not own the resource."""


class ProcessingError(RuntimeError):
    """Unexpected failure while handling a provider callback."""
