"""
Change notifications for order subscribers.

Stores that can push changes (Firestore) are subscribed to directly. For any
other store the notifier polls the order service on an interval and only
calls back when the record set actually changed. A push subscription that
fails is switched to polling under the same handle.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from typing import TYPE_CHECKING, Callable, Optional

from khata.db import OrdersCallback, SubscribableOrderStore, Unsubscribe
from khata.errors import StoreUnavailableError
from khata.orders import Order, newest_first

if TYPE_CHECKING:
    from khata.service import OrderService

logger = logging.getLogger(__name__)


def orders_fingerprint(orders: list[Order]) -> str:
    payload = json.dumps(
        [order.as_dict() for order in orders], sort_keys=True, default=str
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _stop_quietly(stop: Unsubscribe) -> None:
    try:
        stop()
    except Exception:
        logger.warning("Failed to stop order listener", exc_info=True)


class Subscription:
    """Handle for one subscriber. `unsubscribe()` may be called any number of times."""

    def __init__(self):
        self._lock = threading.Lock()
        self._stop: Optional[Unsubscribe] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _replace(self, stop: Unsubscribe) -> None:
        """Install `stop` as the current listener, stopping the previous one."""
        with self._lock:
            if self._closed:
                stale = stop
            else:
                stale, self._stop = self._stop, stop
        if stale is not None:
            _stop_quietly(stale)

    def unsubscribe(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            stop, self._stop = self._stop, None
        if stop is not None:
            _stop_quietly(stop)

    def __call__(self) -> None:
        self.unsubscribe()


class OrderPoller:
    """Polls `fetch` every `interval` seconds and reports changed snapshots."""

    def __init__(
        self,
        fetch: Callable[[], list[Order]],
        callback: OrdersCallback,
        interval: float,
    ):
        self._fetch = fetch
        self._callback = callback
        self.interval = interval
        self._fingerprint: Optional[str] = None
        self._stopped = threading.Event()
        self._poll_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> "OrderPoller":
        self._thread = threading.Thread(
            target=self._run, name="khata-order-poller", daemon=True
        )
        self._thread.start()
        return self

    def _run(self) -> None:
        while not self._stopped.wait(self.interval):
            self.poll_once()

    def poll_once(self) -> bool:
        """Run one polling cycle. Returns True when the callback was invoked."""
        with self._poll_lock:
            if self._stopped.is_set():
                return False
            try:
                orders = self._fetch()
            except Exception:
                # Any fetch failure keeps the poller thread alive.
                logger.exception("Polling orders failed")
                return False
            fingerprint = orders_fingerprint(orders)
            if self._fingerprint is None and not orders:
                # Nothing stored yet: take the empty set as the baseline.
                self._fingerprint = fingerprint
                return False
            if fingerprint == self._fingerprint:
                return False
            self._fingerprint = fingerprint
        try:
            self._callback(newest_first(orders))
        except Exception:
            logger.exception("Order subscriber raised while handling a snapshot")
        return True

    def stop(self) -> None:
        self._stopped.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()


class OrderNotifier:
    def __init__(self, service: "OrderService", poll_interval: float):
        self._service = service
        self.poll_interval = poll_interval

    def subscribe(self, callback: OrdersCallback) -> Subscription:
        subscription = Subscription()
        store = self._service.active_store
        if isinstance(store, SubscribableOrderStore):
            self._subscribe_push(store, callback, subscription)
        else:
            subscription._replace(self._start_polling(callback))
        return subscription

    def _start_polling(self, callback: OrdersCallback) -> Unsubscribe:
        poller = OrderPoller(self._service.get_orders, callback, self.poll_interval)
        return poller.start().stop

    def _subscribe_push(
        self,
        store: SubscribableOrderStore,
        callback: OrdersCallback,
        subscription: Subscription,
    ) -> None:
        state_lock = threading.Lock()
        switched = False

        def on_error(error: Exception) -> None:
            nonlocal switched
            with state_lock:
                if switched:
                    return
                switched = True
            logger.warning(
                "Order subscription on %s failed; switching to polling: %s",
                store.name,
                error,
            )
            self._service.report_failure(store, error, "subscribe_orders")
            if not subscription.closed:
                subscription._replace(self._start_polling(callback))

        try:
            stop = store.subscribe_orders(callback, on_error)
        except StoreUnavailableError as exc:
            on_error(exc)
            return
        with state_lock:
            if not switched:
                subscription._replace(stop)
                return
        # The listener failed before it could be attached to the handle.
        _stop_quietly(stop)
