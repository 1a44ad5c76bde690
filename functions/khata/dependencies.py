"""
Backend selection and dependency wiring for the FastAPI app.
"""

from __future__ import annotations

import logging
from typing import Optional

from khata.config import Settings, get_settings
from khata.db import JsonFileOrderStore, LocalOrderStore, OrderStore, SqlOrderStore
from khata.errors import StoreUnavailableError
from khata.firestore import FirestoreOrderStore
from khata.service import OrderService

logger = logging.getLogger(__name__)

_order_service: OrderService | None = None


def _build_primary_store(settings: Settings) -> Optional[OrderStore]:
    """Pick the most preferred backend that is configured and initializes."""
    if settings.firestore_configured:
        try:
            store = FirestoreOrderStore.from_settings(settings)
            logger.info("Firestore storage enabled (collection %s).", settings.firestore_collection)
            return store
        except StoreUnavailableError as exc:
            logger.warning("Firestore init failed; trying the next backend. Reason: %s", exc)
    if settings.sql_configured:
        try:
            store = SqlOrderStore(settings.sql_url())
            logger.info("SQL storage enabled.")
            return store
        except StoreUnavailableError as exc:
            logger.warning("SQL init failed; falling back to local storage. Reason: %s", exc)
    return None


def build_order_service(settings: Settings) -> OrderService:
    if settings.use_in_memory_backends:
        fallback: OrderStore = LocalOrderStore(key=settings.local_storage_key)
    else:
        fallback = JsonFileOrderStore(settings.data_file)
    primary = _build_primary_store(settings)
    if primary is None:
        logger.info("Using %s storage for orders.", fallback.name)
    return OrderService(
        fallback, primary, poll_interval=settings.poll_interval_seconds
    )


def get_order_service() -> OrderService:
    """
    Return a singleton order service so the backend choice and any fallback
    persist across requests.
    """
    global _order_service
    if _order_service:
        return _order_service
    _order_service = build_order_service(get_settings())
    return _order_service
