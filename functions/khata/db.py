"""
Order store abstraction with local JSON document and SQL implementations.

The Firestore implementation lives in `khata.firestore`; it is the only
store that can push changes to subscribers.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterator, MutableMapping, Optional, Protocol, runtime_checkable

from sqlalchemy import Column, DateTime, String, Text, create_engine, delete, select, text, update
from sqlalchemy.dialects import mysql
from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from khata.errors import OrderConflictError, StoreUnavailableError
from khata.orders import (
    EPOCH,
    UPDATABLE_FIELDS,
    Order,
    format_timestamp,
    newest_first,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_KEY = "khataBookOrders"

OrdersCallback = Callable[[list[Order]], None]
ErrorCallback = Callable[[Exception], None]
Unsubscribe = Callable[[], None]


class OrderStore(Protocol):
    """Operations the order service needs from a storage backend."""

    name: str

    def create_order(self, order: Order, identity: Optional[str] = None) -> Order:
        ...

    def list_orders(self) -> list[Order]:
        ...

    def update_order(
        self, order_id: str, updates: dict[str, str], identity: Optional[str] = None
    ) -> None:
        ...

    def delete_order(self, order_id: str) -> None:
        ...

    def clear_orders(self) -> None:
        ...


@runtime_checkable
class SubscribableOrderStore(OrderStore, Protocol):
    """A store that can push the full ordered record set on every change."""

    def subscribe_orders(
        self, callback: OrdersCallback, on_error: ErrorCallback
    ) -> Unsubscribe:
        ...


class _JsonDocumentOrderStore:
    """
    Keeps every order in one JSON array and rewrites it whole on each change.

    Read-modify-write cycles are serialized by an in-process lock. Two
    processes sharing the same document can still overwrite each other's
    changes.
    """

    name = "document"

    def __init__(self):
        self._lock = threading.RLock()

    def _read_text(self) -> Optional[str]:
        raise NotImplementedError

    def _write_text(self, payload: str) -> None:
        raise NotImplementedError

    def _load(self) -> list[Order]:
        raw_text = self._read_text()
        if not raw_text:
            return []
        try:
            raw = json.loads(raw_text)
        except ValueError:
            logger.warning("Stored %s orders are not valid JSON; reading as empty", self.name)
            return []
        if not isinstance(raw, list):
            logger.warning("Stored %s orders are not a JSON array; reading as empty", self.name)
            return []
        records = [item for item in raw if isinstance(item, dict)]
        orders = [Order.from_dict(item) for item in records]
        if any(not item.get("id") for item in records):
            # Persist generated ids so they stay stable across reads.
            self._save(orders)
        return orders

    def _save(self, orders: list[Order]) -> None:
        self._write_text(json.dumps([order.as_dict() for order in orders], indent=2))

    def create_order(self, order: Order, identity: Optional[str] = None) -> Order:
        if identity:
            order = replace(order, created_by=identity, updated_by=identity)
        with self._lock:
            orders = self._load()
            if any(existing.id == order.id for existing in orders):
                raise OrderConflictError(f"order {order.id} already exists")
            orders.insert(0, order)
            self._save(orders)
        return order

    def list_orders(self) -> list[Order]:
        with self._lock:
            return newest_first(self._load())

    def update_order(
        self, order_id: str, updates: dict[str, str], identity: Optional[str] = None
    ) -> None:
        with self._lock:
            orders = self._load()
            for index, order in enumerate(orders):
                if order.id == order_id:
                    orders[index] = order.with_updates(updates, identity)
                    self._save(orders)
                    return

    def delete_order(self, order_id: str) -> None:
        with self._lock:
            orders = self._load()
            remaining = [order for order in orders if order.id != order_id]
            if len(remaining) != len(orders):
                self._save(remaining)

    def clear_orders(self) -> None:
        with self._lock:
            self._save([])


class LocalOrderStore(_JsonDocumentOrderStore):
    """
    Orders serialized under one key of a string mapping.

    Mirrors browser local storage; with the default dict it doubles as the
    in-memory store for development and tests.
    """

    name = "local"

    def __init__(
        self,
        storage: Optional[MutableMapping[str, str]] = None,
        key: str = DEFAULT_STORAGE_KEY,
    ):
        super().__init__()
        self.storage = {} if storage is None else storage
        self.key = key

    def _read_text(self) -> Optional[str]:
        return self.storage.get(self.key)

    def _write_text(self, payload: str) -> None:
        self.storage[self.key] = payload

    def reset(self) -> None:
        """Drop all stored data (useful in tests)."""
        with self._lock:
            self.storage.pop(self.key, None)


class JsonFileOrderStore(_JsonDocumentOrderStore):
    """Orders kept as a pretty-printed JSON array in a single file."""

    name = "file"

    def __init__(self, path: str | os.PathLike):
        super().__init__()
        self.path = Path(path)

    def _read_text(self) -> Optional[str]:
        try:
            return self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            self._write_text("[]")
            return "[]"
        except OSError as exc:
            raise StoreUnavailableError(self.name, f"cannot read {self.path}: {exc}") from exc

    def _write_text(self, payload: str) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(payload)
                os.replace(temp_path, self.path)
            except OSError:
                if os.path.exists(temp_path):
                    os.unlink(temp_path)
                raise
        except OSError as exc:
            raise StoreUnavailableError(self.name, f"cannot write {self.path}: {exc}") from exc


Base = declarative_base()


class OrderRow(Base):
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True)
    customer_name = Column("customerName", String(128), nullable=False)
    order_details = Column("orderDetails", Text)
    order_date = Column("orderDate", String(32))
    order_amount = Column("orderAmount", String(32))
    payment_status = Column("paymentStatus", String(16))
    delivery_status = Column("deliveryStatus", String(16))
    payment_mode = Column("paymentMode", String(16))
    items = Column(Text().with_variant(mysql.LONGTEXT(), "mysql"))
    created_at = Column(
        "createdAt", DateTime().with_variant(mysql.DATETIME(fsp=3), "mysql"), index=True
    )
    created_by = Column("createdBy", String(128), nullable=True)
    updated_by = Column("updatedBy", String(128), nullable=True)


def _ensure_database(url: URL) -> None:
    """Create the MySQL/MariaDB database named in `url` if it does not exist."""
    name = url.database.replace("`", "``")
    server_engine = create_engine(url.set(database=None), future=True)
    try:
        with server_engine.connect() as conn:
            conn.execute(
                text(
                    f"CREATE DATABASE IF NOT EXISTS `{name}` "
                    "CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci"
                )
            )
            conn.commit()
    finally:
        server_engine.dispose()


def _to_db_datetime(value: str) -> datetime:
    return parse_timestamp(value).astimezone(timezone.utc).replace(tzinfo=None)


class SqlOrderStore:
    """
    SQLAlchemy-backed store. Accepts any SQLAlchemy URL (MySQL in production,
    SQLite for tests). Initialization is idempotent.
    """

    name = "sql"

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("database_url is required for SqlOrderStore")
        try:
            url = make_url(database_url)
            if url.get_backend_name() in ("mysql", "mariadb") and url.database:
                _ensure_database(url)
            self.engine = create_engine(
                url,
                future=True,
                pool_pre_ping=True,
                pool_recycle=1800,
            )
            self.Session = sessionmaker(
                bind=self.engine, class_=Session, expire_on_commit=False, future=True
            )
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(self.name, f"initialization failed: {exc}") from exc

    @contextmanager
    def _session(self, action: str) -> Iterator[Session]:
        try:
            with self.Session() as session:
                yield session
        except IntegrityError as exc:
            # Constraint violations come from the record, not the backend.
            raise OrderConflictError(f"{action} rejected: {exc.orig}") from exc
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(self.name, f"{action} failed: {exc}") from exc

    def _to_order(self, row: OrderRow) -> Order:
        try:
            items = json.loads(row.items or "[]")
        except ValueError:
            logger.warning("Order %s has unreadable items; reading as empty", row.id)
            items = []
        created_at = row.created_at or EPOCH
        return Order.from_dict(
            {
                "id": row.id,
                "customerName": row.customer_name,
                "orderDetails": row.order_details,
                "orderDate": row.order_date,
                "orderAmount": row.order_amount,
                "paymentStatus": row.payment_status,
                "deliveryStatus": row.delivery_status,
                "paymentMode": row.payment_mode,
                "items": items,
                "createdAt": format_timestamp(created_at),
                "createdBy": row.created_by,
                "updatedBy": row.updated_by,
            }
        )

    def create_order(self, order: Order, identity: Optional[str] = None) -> Order:
        if identity:
            order = replace(order, created_by=identity, updated_by=identity)
        with self._session("create") as session:
            session.add(
                OrderRow(
                    id=order.id,
                    customer_name=order.customer_name,
                    order_details=order.order_details,
                    order_date=order.order_date,
                    order_amount=order.order_amount,
                    payment_status=order.payment_status,
                    delivery_status=order.delivery_status,
                    payment_mode=order.payment_mode,
                    items=json.dumps(order.items),
                    created_at=_to_db_datetime(order.created_at),
                    created_by=order.created_by,
                    updated_by=order.updated_by,
                )
            )
            session.commit()
        return order

    def list_orders(self) -> list[Order]:
        with self._session("list") as session:
            rows = session.execute(
                select(OrderRow).order_by(OrderRow.created_at.desc())
            ).scalars().all()
            return [self._to_order(row) for row in rows]

    def update_order(
        self, order_id: str, updates: dict[str, str], identity: Optional[str] = None
    ) -> None:
        values = {
            getattr(OrderRow, UPDATABLE_FIELDS[key]): value
            for key, value in updates.items()
            if key in UPDATABLE_FIELDS
        }
        if not values:
            return
        if identity:
            values[OrderRow.updated_by] = identity
        with self._session("update") as session:
            session.execute(update(OrderRow).where(OrderRow.id == order_id).values(values))
            session.commit()

    def delete_order(self, order_id: str) -> None:
        with self._session("delete") as session:
            session.execute(delete(OrderRow).where(OrderRow.id == order_id))
            session.commit()

    def clear_orders(self) -> None:
        with self._session("clear") as session:
            session.execute(delete(OrderRow))
            session.commit()
