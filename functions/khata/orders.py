"""
Order record model shared by every order store.

Records travel as camelCase dicts (the JSON shape clients and stored
documents use) and are held in memory as `Order` dataclasses. Every record
that leaves a store goes through `Order.from_dict`, which backfills defaults
so callers never see a partial record.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional

from dacite import Config, from_dict

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

DEFAULT_PAYMENT_STATUS = "Pending"
DEFAULT_DELIVERY_STATUS = "Pending"
DEFAULT_PAYMENT_MODE = "Cash"

# Only these fields may change after an order is created.
UPDATABLE_FIELDS = {
    "paymentStatus": "payment_status",
    "deliveryStatus": "delivery_status",
    "paymentMode": "payment_mode",
}


def generate_order_id() -> str:
    return uuid.uuid4().hex


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Render a datetime as `YYYY-MM-DDTHH:MM:SS.mmmZ` in UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def parse_timestamp(value: Any) -> datetime:
    """
    Parse an ISO-8601 timestamp into an aware UTC datetime.

    Naive values are taken as UTC. Anything unparsable maps to the epoch so
    that it sorts after every real record.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text[-1] in ("Z", "z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return EPOCH
    else:
        return EPOCH
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return format_timestamp(value)
    return str(value)


def _optional_text(value: Any) -> Optional[str]:
    text = _text(value)
    return text or None


@dataclass
class Order:
    id: str
    customer_name: str
    created_at: str
    order_details: str = ""
    order_date: str = ""
    order_amount: str = ""
    payment_status: str = DEFAULT_PAYMENT_STATUS
    delivery_status: str = DEFAULT_DELIVERY_STATUS
    payment_mode: str = DEFAULT_PAYMENT_MODE
    items: list = field(default_factory=list)
    updated_at: Optional[str] = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Order":
        """
        Build a complete record from a stored or submitted camelCase dict.

        Missing fields are backfilled: empty strings for free text, the
        default statuses, an empty item list, the creation date for
        `orderDate`, the epoch for `createdAt` and a new id for `id`.
        """
        created_at = _text(data.get("createdAt")) or format_timestamp(EPOCH)
        items = data.get("items")
        values = {
            "id": _text(data.get("id")) or generate_order_id(),
            "customer_name": _text(data.get("customerName")),
            "created_at": created_at,
            "order_details": _text(data.get("orderDetails")),
            "order_date": _text(data.get("orderDate")) or created_at[:10],
            "order_amount": _text(data.get("orderAmount")),
            "payment_status": _text(data.get("paymentStatus"))
            or DEFAULT_PAYMENT_STATUS,
            "delivery_status": _text(data.get("deliveryStatus"))
            or DEFAULT_DELIVERY_STATUS,
            "payment_mode": _text(data.get("paymentMode")) or DEFAULT_PAYMENT_MODE,
            "items": list(items) if isinstance(items, (list, tuple)) else [],
            "updated_at": _optional_text(data.get("updatedAt")),
            "created_by": _optional_text(data.get("createdBy")),
            "updated_by": _optional_text(data.get("updatedBy")),
        }
        return from_dict(data_class=cls, data=values, config=Config(check_types=False))

    @classmethod
    def new(
        cls,
        payload: Mapping[str, Any],
        identity: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> "Order":
        """Build a fresh record for saving, assigning id and createdAt if absent."""
        record = {
            key: value
            for key, value in payload.items()
            if key not in ("createdBy", "updatedBy", "updatedAt")
        }
        record["id"] = _text(payload.get("id")) or generate_order_id()
        record["createdAt"] = _text(payload.get("createdAt")) or format_timestamp(
            now or utc_now()
        )
        if identity:
            record["createdBy"] = identity
            record["updatedBy"] = identity
        return cls.from_dict(record)

    def as_dict(self) -> dict:
        data = {
            "id": self.id,
            "customerName": self.customer_name,
            "orderDetails": self.order_details,
            "orderDate": self.order_date,
            "orderAmount": self.order_amount,
            "paymentStatus": self.payment_status,
            "deliveryStatus": self.delivery_status,
            "paymentMode": self.payment_mode,
            "items": list(self.items),
            "createdAt": self.created_at,
        }
        if self.updated_at is not None:
            data["updatedAt"] = self.updated_at
        if self.created_by is not None:
            data["createdBy"] = self.created_by
        if self.updated_by is not None:
            data["updatedBy"] = self.updated_by
        return data

    def with_updates(
        self, updates: Mapping[str, str], identity: Optional[str] = None
    ) -> "Order":
        changes = {
            UPDATABLE_FIELDS[key]: value
            for key, value in updates.items()
            if key in UPDATABLE_FIELDS
        }
        if identity:
            changes["updated_by"] = identity
        return replace(self, **changes)


def clean_updates(updates: Optional[Mapping[str, Any]]) -> dict[str, str]:
    """Keep only updatable fields, coerced to strings. Unknown keys are dropped."""
    return {
        key: _text(value)
        for key, value in (updates or {}).items()
        if key in UPDATABLE_FIELDS
    }


def newest_first(orders: Iterable[Order]) -> list[Order]:
    return sorted(orders, key=lambda order: parse_timestamp(order.created_at), reverse=True)
