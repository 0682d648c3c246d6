"""Cart, order query and inventory administration services."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from services.common import operation_span

from .errors import NotFoundError, ValidationError
from .metrics import INVENTORY_SETS_TOTAL
from .models import AuditAction, AuditResource, Order, OrderStatus
from .unit_of_work import TransactionCoordinator, UnitOfWork

logger = logging.getLogger(__name__)

MAX_PAGE_LIMIT = 100
MAX_REASON_LENGTH = 255


@dataclass
class CartLine:
    id: int
    product_id: int
    name: str
    price: int
    quantity: int


@dataclass
class CartView:
    id: int
    items: list[CartLine] = field(default_factory=list)
    total: int = 0


@dataclass
class InventoryChange:
    product_id: int
    old_stock: int
    new_stock: int

    @property
    def delta(self) -> int:
        return self.new_stock - self.old_stock


@dataclass
class OrderFilter:
    status: str | None = None
    user_id: int | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None
    page: int = 1
    limit: int = 50


def _require_positive(value: int, name: str) -> None:
    if value <= 0:
        raise ValidationError(f"{name} must be positive")


def _validate_page(page: int, limit: int) -> None:
    if page < 1:
        raise ValidationError("page must be at least 1")
    if limit < 1 or limit > MAX_PAGE_LIMIT:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_LIMIT}")


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class CartService:
    """Cart operations, each run in its own transaction."""

    def __init__(self, coordinator: TransactionCoordinator) -> None:
        self.coordinator = coordinator

    async def _view(self, uow: UnitOfWork, cart_id: int) -> CartView:
        items = await uow.carts.list_items(cart_id)
        products = await uow.products.get_many([item.product_id for item in items])
        view = CartView(id=cart_id)
        for item in items:
            product = products.get(item.product_id)
            # Lines for withdrawn products stay stored but are not shown.
            if product is None or not product.is_purchasable:
                continue
            view.items.append(
                CartLine(
                    id=item.id,
                    product_id=item.product_id,
                    name=product.name,
                    price=item.unit_price_snapshot,
                    quantity=item.quantity,
                )
            )
            view.total += item.unit_price_snapshot * item.quantity
        return view

    async def get_cart(self, user_id: int) -> CartView:
        _require_positive(user_id, "user id")
        async with self.coordinator.begin() as uow:
            cart = await uow.carts.get_or_create_active(user_id)
            return await self._view(uow, cart.id)

    async def add_item(self, user_id: int, product_id: int, quantity: int) -> CartView:
        _require_positive(user_id, "user id")
        _require_positive(product_id, "product id")
        if quantity < 1:
            raise ValidationError("quantity must be at least 1")

        with operation_span(__name__, "cart.add_item", {"user.id": user_id, "product.id": product_id}):
            async with self.coordinator.begin() as uow:
                product = await uow.products.get(product_id)
                if product is None or not product.is_purchasable:
                    raise ValidationError("invalid")

                cart = await uow.carts.get_or_create_active(user_id)
                existing = await uow.carts.find_item(cart.id, product_id, for_update=True)
                current = existing.quantity if existing is not None else 0
                if current + quantity > product.stock:
                    raise ValidationError("stock exceeded")

                await uow.carts.add_item(
                    cart.id,
                    product_id=product_id,
                    quantity=quantity,
                    unit_price=product.price,
                )
                return await self._view(uow, cart.id)

    async def update_item(self, user_id: int, item_id: int, quantity: int) -> CartView:
        _require_positive(user_id, "user id")
        _require_positive(item_id, "item id")
        if quantity < 1:
            raise ValidationError("quantity must be at least 1")

        async with self.coordinator.begin() as uow:
            if not await uow.carts.is_item_owned_by(item_id, user_id):
                raise NotFoundError("cart item not found")
            item = await uow.carts.get_item(item_id)
            if item is None:
                raise NotFoundError("cart item not found")

            product = await uow.products.get(item.product_id)
            if product is None or not product.is_purchasable:
                raise ValidationError("invalid")
            if quantity > product.stock:
                raise ValidationError("stock exceeded")

            await uow.carts.update_item_quantity(item_id, quantity)
            return await self._view(uow, item.cart_id)

    async def delete_item(self, user_id: int, item_id: int) -> CartView:
        _require_positive(user_id, "user id")
        _require_positive(item_id, "item id")

        async with self.coordinator.begin() as uow:
            if not await uow.carts.is_item_owned_by(item_id, user_id):
                raise NotFoundError("cart item not found")
            item = await uow.carts.get_item(item_id)
            if item is None:
                raise NotFoundError("cart item not found")
            cart_id = item.cart_id
            await uow.carts.delete_item(item_id)
            return await self._view(uow, cart_id)


class OrderQueryService:
    """Read access to orders for their owners and for administrators."""

    def __init__(self, coordinator: TransactionCoordinator, *, default_limit: int = 50) -> None:
        self.coordinator = coordinator
        self.default_limit = default_limit

    async def list_my_orders(self, user_id: int, page: int = 1, limit: int | None = None) -> list[Order]:
        _require_positive(user_id, "user id")
        resolved_limit = self.default_limit if limit is None else limit
        _validate_page(page, resolved_limit)

        async with self.coordinator.begin() as uow:
            orders, _ = await uow.orders.list_orders(
                user_id=user_id,
                limit=resolved_limit,
                offset=(page - 1) * resolved_limit,
            )
        return orders

    async def get_my_order(self, user_id: int, order_id: int) -> Order:
        _require_positive(user_id, "user id")
        _require_positive(order_id, "order id")

        async with self.coordinator.begin() as uow:
            order = await uow.orders.get(order_id)
        # Someone else's order is indistinguishable from a missing one.
        if order is None or order.user_id != user_id:
            raise NotFoundError("order not found")
        return order

    async def admin_list_orders(self, filters: OrderFilter) -> tuple[list[Order], int]:
        _validate_page(filters.page, filters.limit)
        status = None
        if filters.status:
            try:
                status = OrderStatus(filters.status.strip()).value
            except ValueError as exc:
                raise ValidationError("invalid status") from exc
        if filters.user_id is not None:
            _require_positive(filters.user_id, "user id")
        created_from = _as_utc(filters.created_from)
        created_to = _as_utc(filters.created_to)
        if created_from is not None and created_to is not None and created_from > created_to:
            raise ValidationError("from must not be after to")

        async with self.coordinator.begin() as uow:
            return await uow.orders.list_orders(
                user_id=filters.user_id,
                status=status,
                created_from=created_from,
                created_to=created_to,
                limit=filters.limit,
                offset=(filters.page - 1) * filters.limit,
            )


class InventoryAdminService:
    """Manual stock overrides with adjustment history and audit."""

    def __init__(self, coordinator: TransactionCoordinator) -> None:
        self.coordinator = coordinator

    async def set_inventory(self, admin_user_id: int, product_id: int, new_stock: int, reason: str) -> InventoryChange:
        _require_positive(admin_user_id, "admin id")
        _require_positive(product_id, "product id")
        if new_stock < 0:
            raise ValidationError("stock must not be negative")
        cleaned_reason = (reason or "").strip()
        if not cleaned_reason:
            raise ValidationError("reason required")
        if len(cleaned_reason) > MAX_REASON_LENGTH:
            raise ValidationError("reason too long")

        with operation_span(__name__, "inventory.set_stock", {"product.id": product_id}):
            async with self.coordinator.begin() as uow:
                old_stock, stored = await uow.inventory.set_stock(product_id, new_stock)
                change = InventoryChange(product_id=product_id, old_stock=old_stock, new_stock=stored)
                await uow.inventory.add_adjustment(
                    product_id=product_id,
                    admin_user_id=admin_user_id,
                    delta=change.delta,
                    reason=cleaned_reason,
                )
                await uow.audit_logs.record(
                    actor_user_id=admin_user_id,
                    action=AuditAction.UPDATE_STOCK.value,
                    resource_type=AuditResource.PRODUCT.value,
                    resource_id=product_id,
                    before={"stock": old_stock},
                    after={"stock": stored},
                )

        INVENTORY_SETS_TOTAL.inc()
        logger.info(
            "Admin %s set stock of product %s from %s to %s", admin_user_id, product_id, old_stock, stored
        )
        return change
