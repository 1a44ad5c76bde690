import threading
import time
import unittest

from khata.db import LocalOrderStore
from khata.errors import StoreUnavailableError
from khata.notifier import OrderPoller, Subscription, orders_fingerprint
from khata.orders import Order
from khata.service import OrderService

from store_fakes import PushStore

WAIT_SECONDS = 5


def make_order(name, created_at):
    return Order.new({"customerName": name, "createdAt": created_at})


class OrderPollerTests(unittest.TestCase):
    def setUp(self):
        self.store = LocalOrderStore()
        self.service = OrderService(self.store, poll_interval=60)
        self.received = []
        self.poller = OrderPoller(self.service.get_orders, self.received.append, interval=60)

    def test_empty_first_poll_is_baseline(self):
        self.assertFalse(self.poller.poll_once())
        self.assertEqual(self.received, [])

    def test_first_poll_with_data_delivers(self):
        order = self.store.create_order(make_order("A", "2024-01-01T00:00:00.000Z"))
        self.assertTrue(self.poller.poll_once())
        self.assertEqual(self.received, [[order]])

    def test_unchanged_data_is_delivered_once(self):
        self.store.create_order(make_order("A", "2024-01-01T00:00:00.000Z"))
        for _ in range(3):
            self.poller.poll_once()
        self.assertEqual(len(self.received), 1)

    def test_change_between_polls_delivers_sorted_snapshot(self):
        older = self.store.create_order(make_order("Old", "2024-01-01T00:00:00.000Z"))
        self.poller.poll_once()
        newer = self.store.create_order(make_order("New", "2024-02-01T00:00:00.000Z"))

        self.assertTrue(self.poller.poll_once())
        self.assertFalse(self.poller.poll_once())
        self.assertEqual(len(self.received), 2)
        self.assertEqual([order.id for order in self.received[1]], [newer.id, older.id])

    def test_clear_after_baseline_delivers_empty_set(self):
        self.store.create_order(make_order("A", "2024-01-01T00:00:00.000Z"))
        self.poller.poll_once()
        self.store.clear_orders()

        self.assertTrue(self.poller.poll_once())
        self.assertEqual(self.received[-1], [])

    def test_fetch_failure_is_logged_and_polling_continues(self):
        attempts = []

        def fetch():
            attempts.append(1)
            if len(attempts) == 1:
                raise StoreUnavailableError("file", "disk gone")
            return [make_order("A", "2024-01-01T00:00:00.000Z")]

        poller = OrderPoller(fetch, self.received.append, interval=60)
        with self.assertLogs("khata.notifier", level="ERROR"):
            self.assertFalse(poller.poll_once())
        self.assertTrue(poller.poll_once())

    def test_unexpected_fetch_errors_keep_the_thread_polling(self):
        attempts = []
        delivered = threading.Event()

        def fetch():
            attempts.append(1)
            if len(attempts) == 1:
                raise KeyError("driver bug")
            return [make_order("A", "2024-01-01T00:00:00.000Z")]

        poller = OrderPoller(fetch, lambda orders: delivered.set(), interval=0.01)
        with self.assertLogs("khata.notifier", level="ERROR"):
            poller.start()
            self.addCleanup(poller.stop)
            self.assertTrue(delivered.wait(WAIT_SECONDS))
        self.assertTrue(poller.running)

    def test_callback_errors_do_not_stop_polling(self):
        def explode(orders):
            raise RuntimeError("subscriber bug")

        poller = OrderPoller(self.service.get_orders, explode, interval=60)
        self.store.create_order(make_order("A", "2024-01-01T00:00:00.000Z"))
        with self.assertLogs("khata.notifier", level="ERROR"):
            self.assertTrue(poller.poll_once())
        self.store.create_order(make_order("B", "2024-01-02T00:00:00.000Z"))
        with self.assertLogs("khata.notifier", level="ERROR"):
            self.assertTrue(poller.poll_once())

    def test_stop_is_idempotent_and_ends_thread(self):
        poller = OrderPoller(self.service.get_orders, self.received.append, interval=0.01)
        poller.start()
        poller.stop()
        poller.stop()
        self.assertFalse(poller.running)
        self.store.create_order(make_order("A", "2024-01-01T00:00:00.000Z"))
        self.assertFalse(poller.poll_once())

    def test_background_thread_delivers_changes(self):
        delivered = threading.Event()
        self.store.create_order(make_order("A", "2024-01-01T00:00:00.000Z"))
        poller = OrderPoller(
            self.service.get_orders, lambda orders: delivered.set(), interval=0.01
        ).start()
        self.addCleanup(poller.stop)
        self.assertTrue(delivered.wait(WAIT_SECONDS))

    def test_fingerprint_tracks_content(self):
        order = make_order("A", "2024-01-01T00:00:00.000Z")
        same = Order.from_dict(order.as_dict())
        self.assertEqual(orders_fingerprint([order]), orders_fingerprint([same]))
        paid = order.with_updates({"paymentStatus": "Paid"})
        self.assertNotEqual(orders_fingerprint([order]), orders_fingerprint([paid]))


class SubscriptionTests(unittest.TestCase):
    def test_unsubscribe_is_idempotent(self):
        stops = []
        subscription = Subscription()
        subscription._replace(lambda: stops.append("first"))
        subscription._replace(lambda: stops.append("second"))
        self.assertEqual(stops, ["first"])

        subscription.unsubscribe()
        subscription()
        self.assertEqual(stops, ["first", "second"])
        self.assertTrue(subscription.closed)

    def test_listener_installed_after_close_is_stopped(self):
        stops = []
        subscription = Subscription()
        subscription.unsubscribe()
        subscription._replace(lambda: stops.append("late"))
        self.assertEqual(stops, ["late"])


class OrderNotifierTests(unittest.TestCase):
    def setUp(self):
        self.fallback = LocalOrderStore()
        self.delivered = threading.Event()
        self.snapshots = []

    def _callback(self, orders):
        self.snapshots.append(orders)
        if orders:
            self.delivered.set()

    def test_push_mode_delegates_to_store(self):
        primary = PushStore()
        service = OrderService(self.fallback, primary, poll_interval=60)

        subscription = service.subscribe_orders(self._callback)
        self.assertEqual(len(primary.listeners), 1)

        order = primary.create_order(make_order("A", "2024-01-01T00:00:00.000Z"))
        primary.push()
        self.assertEqual(self.snapshots, [[order]])

        subscription.unsubscribe()
        subscription.unsubscribe()
        self.assertEqual(primary.detached, 1)

    def test_poll_mode_for_stores_without_push(self):
        service = OrderService(self.fallback, poll_interval=0.01)
        self.fallback.create_order(make_order("A", "2024-01-01T00:00:00.000Z"))

        subscription = service.subscribe_orders(self._callback)
        self.addCleanup(subscription.unsubscribe)

        self.assertTrue(self.delivered.wait(WAIT_SECONDS))

    def test_push_error_switches_to_polling(self):
        primary = PushStore()
        service = OrderService(self.fallback, primary, poll_interval=0.01)
        subscription = service.subscribe_orders(self._callback)
        self.addCleanup(subscription.unsubscribe)
        order = self.fallback.create_order(make_order("Local", "2024-01-01T00:00:00.000Z"))

        _, on_error = primary.listeners[0]
        on_error(RuntimeError("stream closed"))
        on_error(RuntimeError("stream closed again"))

        self.assertFalse(service.is_primary_active)
        self.assertEqual(service.last_recovered_error.operation, "subscribe_orders")
        self.assertEqual(primary.detached, 1)
        self.assertTrue(self.delivered.wait(WAIT_SECONDS))
        self.assertEqual(self.snapshots[-1], [order])

    def test_attach_failure_starts_polling(self):
        primary = PushStore(fail_on_attach=True)
        service = OrderService(self.fallback, primary, poll_interval=0.01)
        self.fallback.create_order(make_order("Local", "2024-01-01T00:00:00.000Z"))

        subscription = service.subscribe_orders(self._callback)
        self.addCleanup(subscription.unsubscribe)

        self.assertFalse(service.is_primary_active)
        self.assertTrue(self.delivered.wait(WAIT_SECONDS))

    def test_error_after_unsubscribe_starts_no_polling(self):
        primary = PushStore()
        service = OrderService(self.fallback, primary, poll_interval=0.01)
        self.fallback.create_order(make_order("Local", "2024-01-01T00:00:00.000Z"))
        subscription = service.subscribe_orders(self._callback)
        subscription.unsubscribe()

        _, on_error = primary.listeners[0]
        on_error(RuntimeError("stream closed"))

        time.sleep(0.1)
        self.assertEqual(self.snapshots, [])
        self.assertFalse(service.is_primary_active)


if __name__ == "__main__":
    unittest.main()
