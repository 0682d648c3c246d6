"""HTTP routes for placing and reading the current user's orders."""

from __future__ import annotations

from datetime import timezone

from fastapi import APIRouter, Depends, Header, Query, status

from ..checkout import OrderPlacer
from ..dependencies import (
    CurrentUser,
    get_current_user,
    get_order_placer,
    get_order_query_service,
    http_error,
)
from ..errors import CheckoutError
from ..schemas import MyOrdersResponse, OrderResponse, PlaceOrderRequest
from ..services import OrderQueryService

router = APIRouter(prefix="/orders", tags=["orders"])


def _serialize_datetime(value):
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def serialize_order(order) -> dict[str, object]:
    return {
        "id": order.id,
        "userId": order.user_id,
        "status": order.status,
        "totalPrice": order.total_price,
        "items": [
            {
                "productId": item.product_id,
                "name": item.product_name_snapshot,
                "price": item.unit_price_snapshot,
                "quantity": item.quantity,
            }
            for item in order.items
        ],
        "createdAt": _serialize_datetime(order.created_at),
    }


@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def place_order(
    payload: PlaceOrderRequest,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    legacy_idempotency_key: str | None = Header(default=None, alias="X-Idempotency-Key"),
    user: CurrentUser = Depends(get_current_user),
    placer: OrderPlacer = Depends(get_order_placer),
) -> OrderResponse:
    key = idempotency_key if idempotency_key is not None else legacy_idempotency_key
    try:
        order = await placer.place_order(user.id, payload.address_id, key)
    except CheckoutError as exc:
        raise http_error(exc) from exc
    return OrderResponse.model_validate(serialize_order(order))


@router.get("", response_model=MyOrdersResponse)
async def list_my_orders(
    page: int = Query(default=1),
    limit: int | None = Query(default=None),
    user: CurrentUser = Depends(get_current_user),
    service: OrderQueryService = Depends(get_order_query_service),
) -> MyOrdersResponse:
    try:
        orders = await service.list_my_orders(user.id, page=page, limit=limit)
    except CheckoutError as exc:
        raise http_error(exc) from exc
    return MyOrdersResponse(items=[OrderResponse.model_validate(serialize_order(order)) for order in orders])


@router.get("/{order_id}", response_model=OrderResponse)
async def get_my_order(
    order_id: int,
    user: CurrentUser = Depends(get_current_user),
    service: OrderQueryService = Depends(get_order_query_service),
) -> OrderResponse:
    try:
        order = await service.get_my_order(user.id, order_id)
    except CheckoutError as exc:
        raise http_error(exc) from exc
    return OrderResponse.model_validate(serialize_order(order))
