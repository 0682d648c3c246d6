"""Capability interfaces consumed by the checkout orchestration code."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from .models import Cart, CartItem, InventoryAdjustment, Order


class InventoryLedger(Protocol):
    async def decrease_if_enough(self, product_id: int, quantity: int) -> bool: ...

    async def increase_stock(self, product_id: int, quantity: int) -> None: ...

    async def set_stock(self, product_id: int, new_stock: int) -> tuple[int, int]: ...

    async def add_adjustment(
        self,
        *,
        product_id: int,
        admin_user_id: int,
        delta: int,
        reason: str,
    ) -> InventoryAdjustment: ...


class CartStore(Protocol):
    async def find_active(self, user_id: int, *, for_update: bool = False) -> Cart | None: ...

    async def get_or_create_active(self, user_id: int) -> Cart: ...

    async def list_items(self, cart_id: int) -> list[CartItem]: ...

    async def get_item(self, item_id: int) -> CartItem | None: ...

    async def find_item(self, cart_id: int, product_id: int, *, for_update: bool = False) -> CartItem | None: ...

    async def add_item(self, cart_id: int, *, product_id: int, quantity: int, unit_price: int) -> CartItem: ...

    async def update_item_quantity(self, item_id: int, quantity: int) -> None: ...

    async def delete_item(self, item_id: int) -> None: ...

    async def is_item_owned_by(self, item_id: int, user_id: int) -> bool: ...

    async def clear(self, cart_id: int) -> int: ...

    async def check_out(self, cart_id: int) -> None: ...


class OrderStore(Protocol):
    async def find_by_idempotency_key(self, user_id: int, idempotency_key: str) -> Order | None: ...

    async def get(self, order_id: int, *, for_update: bool = False) -> Order | None: ...

    async def create_order(
        self,
        *,
        user_id: int,
        address_id: int,
        total_price: int,
        idempotency_key: str,
    ) -> Order: ...

    async def add_items(self, order: Order, snapshots: list[dict[str, Any]]) -> Order: ...

    async def update_status(self, order: Order, *, status: str) -> Order: ...

    async def list_orders(
        self,
        *,
        user_id: int | None = None,
        status: str | None = None,
        created_from: datetime | None = None,
        created_to: datetime | None = None,
        limit: int,
        offset: int,
    ) -> tuple[list[Order], int]: ...
