"""HTTP routes for the current user's cart."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from ..dependencies import CurrentUser, get_cart_service, get_current_user, http_error
from ..errors import CheckoutError
from ..schemas import CartItemAdd, CartItemUpdate, CartResponse
from ..services import CartService, CartView

router = APIRouter(prefix="/cart", tags=["cart"])


def _serialize_cart(view: CartView) -> dict[str, object]:
    return {
        "id": view.id,
        "items": [
            {
                "id": line.id,
                "productId": line.product_id,
                "name": line.name,
                "price": line.price,
                "quantity": line.quantity,
            }
            for line in view.items
        ],
        "total": view.total,
    }


@router.get("", response_model=CartResponse)
async def get_cart(
    user: CurrentUser = Depends(get_current_user),
    service: CartService = Depends(get_cart_service),
) -> CartResponse:
    try:
        view = await service.get_cart(user.id)
    except CheckoutError as exc:
        raise http_error(exc) from exc
    return CartResponse.model_validate(_serialize_cart(view))


@router.post("/items", response_model=CartResponse)
async def add_item(
    payload: CartItemAdd,
    user: CurrentUser = Depends(get_current_user),
    service: CartService = Depends(get_cart_service),
) -> CartResponse:
    try:
        view = await service.add_item(user.id, payload.product_id, payload.quantity)
    except CheckoutError as exc:
        raise http_error(exc) from exc
    return CartResponse.model_validate(_serialize_cart(view))


@router.patch("/items/{item_id}", response_model=CartResponse)
async def update_item(
    item_id: int,
    payload: CartItemUpdate,
    user: CurrentUser = Depends(get_current_user),
    service: CartService = Depends(get_cart_service),
) -> CartResponse:
    try:
        view = await service.update_item(user.id, item_id, payload.quantity)
    except CheckoutError as exc:
        raise http_error(exc) from exc
    return CartResponse.model_validate(_serialize_cart(view))


@router.delete("/items/{item_id}", response_model=CartResponse)
async def delete_item(
    item_id: int,
    user: CurrentUser = Depends(get_current_user),
    service: CartService = Depends(get_cart_service),
) -> CartResponse:
    try:
        view = await service.delete_item(user.id, item_id)
    except CheckoutError as exc:
        raise http_error(exc) from exc
    return CartResponse.model_validate(_serialize_cart(view))
