"""
HTTP routes for the order API.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Response

from khata.dependencies import get_order_service
from khata.errors import OrderValidationError, StoreUnavailableError
from khata.schemas import (
    OrderCreatePayload,
    OrderResponse,
    OrderUpdatePayload,
    StatusResponse,
)
from khata.service import OrderService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/orders", response_model=list[OrderResponse], response_model_exclude_none=True)
def list_orders(service: OrderService = Depends(get_order_service)):
    try:
        orders = service.get_orders()
    except StoreUnavailableError:
        logger.exception("Failed to read orders")
        raise HTTPException(status_code=500, detail="Failed to read orders")
    return [order.as_dict() for order in orders]


@router.post(
    "/orders",
    response_model=OrderResponse,
    response_model_exclude_none=True,
    status_code=201,
)
def create_order(
    payload: OrderCreatePayload,
    service: OrderService = Depends(get_order_service),
    x_user_id: Optional[str] = Header(default=None),
):
    try:
        order = service.save_order(
            payload.model_dump(by_alias=True, exclude_none=True), identity=x_user_id
        )
    except OrderValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except StoreUnavailableError:
        logger.exception("Failed to save order")
        raise HTTPException(status_code=500, detail="Failed to save order")
    return order.as_dict()


@router.patch("/orders/{order_id}")
def update_order(
    order_id: str,
    payload: OrderUpdatePayload,
    service: OrderService = Depends(get_order_service),
    x_user_id: Optional[str] = Header(default=None),
):
    """
    Update payment status, delivery status or payment mode. Other fields in
    the body are ignored.
    """
    order_id = order_id.strip()
    if not order_id:
        raise HTTPException(status_code=400, detail="id is required")
    updates = payload.model_dump(by_alias=True, exclude_none=True)
    if not updates:
        raise HTTPException(status_code=400, detail="no updates")
    try:
        # Only the local store can cheaply confirm the order exists.
        if not service.is_primary_active and service.find_order(order_id) is None:
            raise HTTPException(status_code=404, detail="not found")
        applied = service.update_order(order_id, updates, identity=x_user_id)
    except StoreUnavailableError:
        logger.exception("Failed to update order %s", order_id)
        raise HTTPException(status_code=500, detail="Failed to update order")
    return {"id": order_id, **applied}


@router.delete("/orders/{order_id}", status_code=204)
def delete_order(order_id: str, service: OrderService = Depends(get_order_service)):
    try:
        service.delete_order(order_id)
    except OrderValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except StoreUnavailableError:
        logger.exception("Failed to delete order %s", order_id)
        raise HTTPException(status_code=500, detail="Failed to delete order")
    return Response(status_code=204)


@router.delete("/orders", status_code=204)
def clear_orders(service: OrderService = Depends(get_order_service)):
    try:
        service.clear_all()
    except StoreUnavailableError:
        logger.exception("Failed to clear orders")
        raise HTTPException(status_code=500, detail="Failed to clear orders")
    return Response(status_code=204)


@router.get("/status", response_model=StatusResponse)
def status(service: OrderService = Depends(get_order_service)):
    recovered = service.last_recovered_error
    return StatusResponse(
        cloud=service.is_primary_active,
        store=service.active_store.name,
        last_recovered_error=recovered.describe() if recovered else None,
    )
