"""
Exceptions raised by the order stores and the order service.
"""

from __future__ import annotations


class OrderStoreError(Exception):
    """Base class for order storage errors."""


class StoreUnavailableError(OrderStoreError):
    """A configured backend rejected or could not complete a call."""

    def __init__(self, store: str, message: str):
        super().__init__(f"{store}: {message}")
        self.store = store


class OrderValidationError(OrderStoreError, ValueError):
    """The caller supplied an order or update that cannot be stored."""


class OrderConflictError(OrderValidationError):
    """The order clashes with one already stored, e.g. a repeated id."""
