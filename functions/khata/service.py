"""
Order service: the single entry point for reading and writing orders.

The service starts on its primary store when one is configured and demotes
itself to the fallback store the first time the primary fails. The demotion
is permanent for the life of the service. A failed call is retried once on
the fallback; a failure there reaches the caller.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional, TypeVar

from khata.db import OrdersCallback, OrderStore
from khata.errors import OrderValidationError, StoreUnavailableError
from khata.notifier import OrderNotifier, Subscription
from khata.orders import Order, clean_updates

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_POLL_INTERVAL_SECONDS = 2.0


@dataclass
class RecoveredError:
    """A primary-store failure that was absorbed by falling back."""

    operation: str
    store: str
    error: Exception
    occurred_at: float = field(default_factory=lambda: time.time())

    def describe(self) -> str:
        return f"{self.operation} on {self.store}: {self.error}"


class OrderService:
    def __init__(
        self,
        fallback: OrderStore,
        primary: Optional[OrderStore] = None,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
    ):
        self._primary = primary
        self._fallback = fallback
        self._active: OrderStore = primary if primary is not None else fallback
        self._lock = threading.Lock()
        self.last_recovered_error: Optional[RecoveredError] = None
        self.notifier = OrderNotifier(self, poll_interval=poll_interval)

    @property
    def active_store(self) -> OrderStore:
        return self._active

    @property
    def fallback_store(self) -> OrderStore:
        return self._fallback

    @property
    def is_primary_active(self) -> bool:
        return self._primary is not None and self._active is self._primary

    def report_failure(self, store: OrderStore, error: Exception, operation: str) -> bool:
        """
        Record a failure of `store` and switch to the fallback if `store` is
        the active primary. Returns True when this call made the switch.
        """
        with self._lock:
            if self._primary is None or store is not self._primary:
                return False
            self.last_recovered_error = RecoveredError(
                operation=operation, store=store.name, error=error
            )
            if self._active is self._fallback:
                return False
            self._active = self._fallback
        logger.warning(
            "%s failed on %s; switching to %s: %s",
            operation,
            store.name,
            self._fallback.name,
            error,
        )
        return True

    def _call(self, operation: str, action: Callable[[OrderStore], T]) -> T:
        store = self._active
        try:
            return action(store)
        except StoreUnavailableError as exc:
            if self._primary is None or store is not self._primary:
                raise
            self.report_failure(store, exc, operation)
        return action(self._fallback)

    def save_order(self, payload: Mapping[str, Any], identity: Optional[str] = None) -> Order:
        """Persist a new order, assigning id and createdAt when absent."""
        if not str(payload.get("customerName") or "").strip():
            raise OrderValidationError("customerName is required")
        order = Order.new(payload, identity=identity)
        return self._call("save_order", lambda store: store.create_order(order, identity))

    def get_orders(self) -> list[Order]:
        return self._call("get_orders", lambda store: store.list_orders())

    def find_order(self, order_id: str) -> Optional[Order]:
        for order in self.get_orders():
            if order.id == order_id:
                return order
        return None

    def update_order(
        self,
        order_id: str,
        updates: Optional[Mapping[str, Any]],
        identity: Optional[str] = None,
    ) -> dict[str, str]:
        """
        Apply the updatable fields in `updates` to one order. Other keys are
        ignored. Returns the fields that were applied.
        """
        order_id = _require_id(order_id)
        applied = clean_updates(updates)
        if applied:
            self._call(
                "update_order",
                lambda store: store.update_order(order_id, applied, identity),
            )
        return applied

    def delete_order(self, order_id: str) -> None:
        order_id = _require_id(order_id)
        self._call("delete_order", lambda store: store.delete_order(order_id))

    def clear_all(self) -> None:
        self._call("clear_all", lambda store: store.clear_orders())

    def subscribe_orders(self, callback: OrdersCallback) -> Subscription:
        return self.notifier.subscribe(callback)


def _require_id(order_id: Optional[str]) -> str:
    order_id = str(order_id or "").strip()
    if not order_id:
        raise OrderValidationError("id is required")
    return order_id
