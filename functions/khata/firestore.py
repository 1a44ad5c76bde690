"""
Firestore-backed order store.

Documents live in one collection keyed by Firestore-assigned ids. Timestamps
are written as server timestamps and every backend error is surfaced as a
`StoreUnavailableError` so the order service can fall back.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import replace
from typing import Iterator, Optional

import firebase_admin
from firebase_admin import credentials, firestore
from google.api_core import exceptions as api_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud.firestore_v1 import SERVER_TIMESTAMP, Query

from khata.config import Settings
from khata.db import ErrorCallback, OrdersCallback, Unsubscribe
from khata.errors import StoreUnavailableError
from khata.orders import UPDATABLE_FIELDS, Order

logger = logging.getLogger(__name__)

# Firestore rejects write batches larger than this.
MAX_BATCH_WRITES = 500

_BACKEND_ERRORS = (api_exceptions.GoogleAPIError, auth_exceptions.GoogleAuthError)
_INIT_ERRORS = (ValueError, OSError) + _BACKEND_ERRORS


def _snapshot_to_order(snapshot) -> Order:
    data = snapshot.to_dict() or {}
    data["id"] = snapshot.id
    return Order.from_dict(data)


class FirestoreOrderStore:
    name = "firestore"

    def __init__(self, client, collection: str = "orders"):
        self.client = client
        self.collection_name = collection

    @classmethod
    def from_settings(cls, settings: Settings) -> "FirestoreOrderStore":
        """
        Build a store on the default firebase app, initializing it from a
        service-account file or application-default credentials if needed.
        """
        try:
            try:
                app = firebase_admin.get_app()
            except ValueError:
                if settings.firebase_credentials:
                    cred = credentials.Certificate(settings.firebase_credentials)
                else:
                    cred = credentials.ApplicationDefault()
                options = (
                    {"projectId": settings.firebase_project_id}
                    if settings.firebase_project_id
                    else None
                )
                app = firebase_admin.initialize_app(cred, options)
            client = firestore.client(app)
        except _INIT_ERRORS as exc:
            raise StoreUnavailableError(cls.name, f"initialization failed: {exc}") from exc
        return cls(client, settings.firestore_collection)

    @contextmanager
    def _backend_call(self, action: str) -> Iterator[None]:
        try:
            yield
        except _BACKEND_ERRORS as exc:
            raise StoreUnavailableError(self.name, f"{action} failed: {exc}") from exc

    @property
    def _collection(self):
        return self.client.collection(self.collection_name)

    def _ordered_query(self):
        return self._collection.order_by("createdAt", direction=Query.DESCENDING)

    def create_order(self, order: Order, identity: Optional[str] = None) -> Order:
        payload = order.as_dict()
        # Firestore assigns the document id.
        payload.pop("id")
        payload["createdAt"] = SERVER_TIMESTAMP
        payload["updatedAt"] = SERVER_TIMESTAMP
        if identity:
            payload["createdBy"] = identity
            payload["updatedBy"] = identity
        with self._backend_call("create"):
            _, doc_ref = self._collection.add(payload)
        created = replace(order, id=doc_ref.id)
        if identity:
            created = replace(created, created_by=identity, updated_by=identity)
        return created

    def list_orders(self) -> list[Order]:
        with self._backend_call("list"):
            return [_snapshot_to_order(snapshot) for snapshot in self._ordered_query().stream()]

    def update_order(
        self, order_id: str, updates: dict[str, str], identity: Optional[str] = None
    ) -> None:
        payload = {key: value for key, value in updates.items() if key in UPDATABLE_FIELDS}
        if not payload:
            return
        payload["updatedAt"] = SERVER_TIMESTAMP
        if identity:
            payload["updatedBy"] = identity
        with self._backend_call("update"):
            try:
                self._collection.document(order_id).update(payload)
            except api_exceptions.NotFound:
                logger.debug("Order %s not found in Firestore; nothing to update", order_id)

    def delete_order(self, order_id: str) -> None:
        with self._backend_call("delete"):
            self._collection.document(order_id).delete()

    def clear_orders(self) -> None:
        with self._backend_call("clear"):
            batch = self.client.batch()
            pending = 0
            for snapshot in self._collection.stream():
                batch.delete(snapshot.reference)
                pending += 1
                if pending == MAX_BATCH_WRITES:
                    batch.commit()
                    batch = self.client.batch()
                    pending = 0
            if pending:
                batch.commit()

    def subscribe_orders(
        self, callback: OrdersCallback, on_error: ErrorCallback
    ) -> Unsubscribe:
        """
        Attach a snapshot listener that delivers the full newest-first set on
        every change. Snapshots that cannot be converted are reported through
        `on_error` instead of reaching `callback`.
        """

        def on_snapshot(snapshots, changes, read_time):
            try:
                orders = [_snapshot_to_order(snapshot) for snapshot in snapshots]
            except Exception as exc:
                on_error(exc)
                return
            callback(orders)

        with self._backend_call("subscribe"):
            watch = self._ordered_query().on_snapshot(on_snapshot)
        return watch.unsubscribe
