"""Administrator routes for order lifecycle and inventory overrides."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query

from ..dependencies import (
    CurrentUser,
    get_inventory_admin_service,
    get_lifecycle_manager,
    get_order_query_service,
    http_error,
    require_admin,
)
from ..errors import CheckoutError
from ..lifecycle import OrderLifecycleManager
from ..schemas import (
    InventoryUpdate,
    InventoryUpdateResponse,
    OrderListResponse,
    OrderResponse,
    OrderStatusUpdate,
)
from ..services import InventoryAdminService, OrderFilter, OrderQueryService
from .orders import serialize_order

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/orders", response_model=OrderListResponse)
async def list_orders(
    page: int = Query(default=1),
    limit: int = Query(default=50),
    status_filter: str | None = Query(default=None, alias="status"),
    user_id: int | None = Query(default=None, alias="userId"),
    created_from: datetime | None = Query(default=None, alias="from"),
    created_to: datetime | None = Query(default=None, alias="to"),
    _admin: CurrentUser = Depends(require_admin),
    service: OrderQueryService = Depends(get_order_query_service),
) -> OrderListResponse:
    filters = OrderFilter(
        status=status_filter,
        user_id=user_id,
        created_from=created_from,
        created_to=created_to,
        page=page,
        limit=limit,
    )
    try:
        orders, total = await service.admin_list_orders(filters)
    except CheckoutError as exc:
        raise http_error(exc) from exc
    items = [OrderResponse.model_validate(serialize_order(order)) for order in orders]
    return OrderListResponse(items=items, total=total, page=page, limit=limit)


@router.put("/orders/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: int,
    payload: OrderStatusUpdate,
    admin: CurrentUser = Depends(require_admin),
    manager: OrderLifecycleManager = Depends(get_lifecycle_manager),
) -> OrderResponse:
    try:
        order = await manager.update_status(admin.id, order_id, payload.status)
    except CheckoutError as exc:
        raise http_error(exc) from exc
    return OrderResponse.model_validate(serialize_order(order))


@router.put("/products/{product_id}/inventory", response_model=InventoryUpdateResponse)
async def set_inventory(
    product_id: int,
    payload: InventoryUpdate,
    admin: CurrentUser = Depends(require_admin),
    service: InventoryAdminService = Depends(get_inventory_admin_service),
) -> InventoryUpdateResponse:
    try:
        change = await service.set_inventory(admin.id, product_id, payload.new_stock, payload.reason)
    except CheckoutError as exc:
        raise http_error(exc) from exc
    return InventoryUpdateResponse.model_validate(
        {
            "productId": change.product_id,
            "oldStock": change.old_stock,
            "newStock": change.new_stock,
            "delta": change.delta,
        }
    )
