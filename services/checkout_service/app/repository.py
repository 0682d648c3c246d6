"""Data access helpers for the checkout service.

Every repository is bound to one ``AsyncSession`` and never commits; the
surrounding unit of work owns the transaction.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any

from sqlalchemy import Select, and_, delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import NotFoundError
from .models import (
    Address,
    AuditLog,
    Cart,
    CartItem,
    CartStatus,
    InventoryAdjustment,
    Order,
    OrderItem,
    OrderStatus,
    Product,
)

logger = logging.getLogger(__name__)


def _to_json(payload: dict[str, Any] | None) -> str | None:
    if payload is None:
        return None
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


class ProductRepository:
    """Read access to catalog products."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, product_id: int, *, for_update: bool = False) -> Product | None:
        stmt = (
            select(Product)
            .where(Product.id == product_id, Product.deleted_at.is_(None))
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_many(self, product_ids: list[int]) -> dict[int, Product]:
        if not product_ids:
            return {}
        result = await self.session.execute(
            select(Product).where(Product.id.in_(product_ids)).execution_options(populate_existing=True)
        )
        return {product.id: product for product in result.scalars()}


class AddressRepository:
    """Ownership lookups against the address book."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, address_id: int) -> Address | None:
        result = await self.session.execute(select(Address).where(Address.id == address_id))
        return result.scalar_one_or_none()


class InventoryRepository:
    """Race-free stock mutations on the product row."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def decrease_if_enough(self, product_id: int, quantity: int) -> bool:
        result = await self.session.execute(
            update(Product)
            .where(
                Product.id == product_id,
                Product.stock >= quantity,
                Product.deleted_at.is_(None),
            )
            .values(stock=Product.stock - quantity)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def increase_stock(self, product_id: int, quantity: int) -> None:
        result = await self.session.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(stock=Product.stock + quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFoundError(f"product {product_id} not found")

    async def set_stock(self, product_id: int, new_stock: int) -> tuple[int, int]:
        """Write an absolute stock value and return ``(previous, new)``."""

        result = await self.session.execute(
            select(Product)
            .where(Product.id == product_id, Product.deleted_at.is_(None))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        product = result.scalar_one_or_none()
        if product is None:
            raise NotFoundError(f"product {product_id} not found")
        previous = product.stock
        product.stock = new_stock
        await self.session.flush()
        return previous, new_stock

    async def add_adjustment(
        self,
        *,
        product_id: int,
        admin_user_id: int,
        delta: int,
        reason: str,
    ) -> InventoryAdjustment:
        adjustment = InventoryAdjustment(
            product_id=product_id,
            admin_user_id=admin_user_id,
            delta=delta,
            reason=reason,
        )
        self.session.add(adjustment)
        await self.session.flush()
        await self.session.refresh(adjustment, attribute_names=["created_at"])
        return adjustment

    async def list_adjustments(self, product_id: int) -> list[InventoryAdjustment]:
        result = await self.session.execute(
            select(InventoryAdjustment)
            .where(InventoryAdjustment.product_id == product_id)
            .order_by(InventoryAdjustment.id.asc())
        )
        return list(result.scalars())


class CartRepository:
    """Active-cart lifecycle and line-item mutation."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    def _active_cart_query(self, user_id: int) -> Select[tuple[Cart]]:
        return (
            select(Cart)
            .where(Cart.user_id == user_id, Cart.status == CartStatus.ACTIVE.value)
            .order_by(Cart.id.desc())
            .limit(1)
        )

    async def find_active(self, user_id: int, *, for_update: bool = False) -> Cart | None:
        stmt = self._active_cart_query(user_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_or_create_active(self, user_id: int) -> Cart:
        cart = await self.find_active(user_id, for_update=True)
        if cart is not None:
            return cart

        try:
            async with self.session.begin_nested():
                cart = Cart(user_id=user_id, status=CartStatus.ACTIVE.value)
                self.session.add(cart)
                await self.session.flush()
        except IntegrityError:
            # Another transaction created the ACTIVE cart first; use theirs.
            winner = await self.find_active(user_id, for_update=True)
            if winner is None:
                raise
            logger.debug("Reused concurrently created cart %s for user %s", winner.id, user_id)
            return winner

        await self.session.refresh(cart, attribute_names=["created_at", "updated_at"])
        return cart

    async def list_items(self, cart_id: int) -> list[CartItem]:
        result = await self.session.execute(
            select(CartItem)
            .where(CartItem.cart_id == cart_id)
            .order_by(CartItem.id.asc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars())

    async def get_item(self, item_id: int) -> CartItem | None:
        result = await self.session.execute(
            select(CartItem).where(CartItem.id == item_id).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_item(self, cart_id: int, product_id: int, *, for_update: bool = False) -> CartItem | None:
        stmt = (
            select(CartItem)
            .where(CartItem.cart_id == cart_id, CartItem.product_id == product_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _increment_item(self, item_id: int, quantity: int) -> None:
        result = await self.session.execute(
            update(CartItem)
            .where(CartItem.id == item_id)
            .values(quantity=CartItem.quantity + quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFoundError("cart item not found")

    async def add_item(self, cart_id: int, *, product_id: int, quantity: int, unit_price: int) -> CartItem:
        """Merge-add: bump the existing line or insert one with the price snapshot.

        The first snapshot wins; later additions never touch the stored price.
        """

        existing = await self.find_item(cart_id, product_id, for_update=True)
        if existing is None:
            try:
                async with self.session.begin_nested():
                    item = CartItem(
                        cart_id=cart_id,
                        product_id=product_id,
                        quantity=quantity,
                        unit_price_snapshot=unit_price,
                    )
                    self.session.add(item)
                    await self.session.flush()
                return item
            except IntegrityError:
                existing = await self.find_item(cart_id, product_id, for_update=True)
                if existing is None:
                    raise

        await self._increment_item(existing.id, quantity)
        refreshed = await self.get_item(existing.id)
        if refreshed is None:
            raise NotFoundError("cart item not found")
        return refreshed

    async def update_item_quantity(self, item_id: int, quantity: int) -> None:
        result = await self.session.execute(
            update(CartItem)
            .where(CartItem.id == item_id)
            .values(quantity=quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFoundError("cart item not found")

    async def delete_item(self, item_id: int) -> None:
        result = await self.session.execute(
            delete(CartItem).where(CartItem.id == item_id).execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFoundError("cart item not found")

    async def is_item_owned_by(self, item_id: int, user_id: int) -> bool:
        result = await self.session.execute(
            select(func.count(CartItem.id))
            .join(Cart, Cart.id == CartItem.cart_id)
            .where(
                CartItem.id == item_id,
                Cart.user_id == user_id,
                Cart.status == CartStatus.ACTIVE.value,
            )
        )
        return result.scalar_one() > 0

    async def clear(self, cart_id: int) -> int:
        result = await self.session.execute(
            delete(CartItem).where(CartItem.cart_id == cart_id).execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def check_out(self, cart_id: int) -> None:
        """Retire an ACTIVE cart: mark it CHECKED_OUT and drop its items together."""

        result = await self.session.execute(
            update(Cart)
            .where(Cart.id == cart_id, Cart.status == CartStatus.ACTIVE.value)
            .values(status=CartStatus.CHECKED_OUT.value, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFoundError(f"active cart {cart_id} not found")
        await self.clear(cart_id)


class OrderRepository:
    """Persistence helpers for orders and their item snapshots."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def find_by_idempotency_key(self, user_id: int, idempotency_key: str) -> Order | None:
        result = await self.session.execute(
            select(Order).where(Order.user_id == user_id, Order.idempotency_key == idempotency_key)
        )
        return result.scalar_one_or_none()

    async def get(self, order_id: int, *, for_update: bool = False) -> Order | None:
        stmt = select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def create_order(
        self,
        *,
        user_id: int,
        address_id: int,
        total_price: int,
        idempotency_key: str,
    ) -> Order:
        """Insert the order row; a duplicate (user, key) surfaces as ``IntegrityError``."""

        order = Order(
            user_id=user_id,
            address_id=address_id,
            status=OrderStatus.PENDING.value,
            total_price=total_price,
            idempotency_key=idempotency_key,
        )
        self.session.add(order)
        await self.session.flush()
        return order

    async def add_items(self, order: Order, snapshots: list[dict[str, Any]]) -> Order:
        for entry in snapshots:
            self.session.add(
                OrderItem(
                    order_id=order.id,
                    product_id=entry["product_id"],
                    product_name_snapshot=entry["name"],
                    unit_price_snapshot=entry["unit_price"],
                    quantity=entry["quantity"],
                )
            )
        await self.session.flush()
        await self.session.refresh(order, attribute_names=["items", "created_at", "updated_at"])
        return order

    async def update_status(self, order: Order, *, status: str) -> Order:
        order.status = status
        await self.session.flush()
        await self.session.refresh(order, attribute_names=["updated_at"])
        return order

    async def list_orders(
        self,
        *,
        user_id: int | None = None,
        status: str | None = None,
        created_from: datetime | None = None,
        created_to: datetime | None = None,
        limit: int,
        offset: int,
    ) -> tuple[list[Order], int]:
        filters = []
        if user_id is not None:
            filters.append(Order.user_id == user_id)
        if status is not None:
            filters.append(Order.status == status)
        if created_from is not None:
            filters.append(Order.created_at >= created_from)
        if created_to is not None:
            filters.append(Order.created_at <= created_to)

        base: Select[tuple[Order]] = select(Order).order_by(Order.id.desc())
        count: Select[tuple[int]] = select(func.count(Order.id))
        if filters:
            clause = and_(*filters)
            base = base.where(clause)
            count = count.where(clause)

        total = (await self.session.execute(count)).scalar_one()
        result = await self.session.execute(base.offset(offset).limit(limit))
        return list(result.scalars().unique()), total


class AuditLogRepository:
    """Append-only administrative audit trail."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def record(
        self,
        *,
        actor_user_id: int,
        action: str,
        resource_type: str,
        resource_id: int,
        before: dict[str, Any] | None,
        after: dict[str, Any] | None,
    ) -> AuditLog:
        entry = AuditLog(
            actor_user_id=actor_user_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            before_json=_to_json(before),
            after_json=_to_json(after),
        )
        self.session.add(entry)
        await self.session.flush()
        await self.session.refresh(entry, attribute_names=["created_at"])
        return entry

    async def list_for_resource(self, resource_type: str, resource_id: int) -> list[AuditLog]:
        result = await self.session.execute(
            select(AuditLog)
            .where(AuditLog.resource_type == resource_type, AuditLog.resource_id == resource_id)
            .order_by(AuditLog.id.asc())
        )
        return list(result.scalars())
