"""
Pydantic schemas for the order HTTP API.

Bodies use the camelCase field names clients send; numbers are accepted
where text is expected and converted to strings.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
    )


class OrderCreatePayload(_CamelModel):
    customer_name: Optional[str] = None
    order_details: Optional[str] = None
    order_date: Optional[str] = None
    order_amount: Optional[str] = None
    payment_status: Optional[str] = None
    delivery_status: Optional[str] = None
    payment_mode: Optional[str] = None
    items: Optional[Any] = None
    created_at: Optional[str] = None


class OrderUpdatePayload(_CamelModel):
    payment_status: Optional[str] = None
    delivery_status: Optional[str] = None
    payment_mode: Optional[str] = None


class OrderResponse(_CamelModel):
    id: str
    customer_name: str
    order_details: str
    order_date: str
    order_amount: str
    payment_status: str
    delivery_status: str
    payment_mode: str
    items: list
    created_at: str
    updated_at: Optional[str] = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None


class StatusResponse(_CamelModel):
    cloud: bool
    store: str
    last_recovered_error: Optional[str] = None
