from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select

from services.common import create_engine, dispose_engines, get_session_factory
from services.checkout_service.app.models import (
    Address,
    AuditLog,
    Cart,
    CartItem,
    CartStatus,
    InventoryAdjustment,
    Order,
    Base,
    Product,
)
from services.checkout_service.app.repository import AuditLogRepository, InventoryRepository
from services.checkout_service.app.unit_of_work import TransactionCoordinator


class CheckoutDatabase:
    """File-backed SQLite database with seeding and inspection helpers."""

    def __init__(self, database_url: str) -> None:
        self.database_url = database_url
        self.session_factory = None

    @asynccontextmanager
    async def open(self) -> AsyncIterator[CheckoutDatabase]:
        engine = create_engine(self.database_url)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        self.session_factory = get_session_factory(self.database_url)
        try:
            yield self
        finally:
            await dispose_engines()

    def coordinator(self) -> TransactionCoordinator:
        return TransactionCoordinator(self.session_factory)

    async def add_product(
        self,
        *,
        name: str = "Widget",
        price: int = 1000,
        stock: int = 10,
        is_active: bool = True,
        deleted: bool = False,
    ) -> int:
        async with self.session_factory() as session, session.begin():
            product = Product(
                name=name,
                price=price,
                stock=stock,
                is_active=is_active,
                deleted_at=datetime.now(tz=timezone.utc) if deleted else None,
            )
            session.add(product)
            await session.flush()
            return product.id

    async def add_address(self, user_id: int) -> int:
        async with self.session_factory() as session, session.begin():
            address = Address(user_id=user_id, recipient="Test User", postal_code="100-0001", line1="1-1 Chiyoda")
            session.add(address)
            await session.flush()
            return address.id

    async def update_product(self, product_id: int, **values) -> None:
        async with self.session_factory() as session, session.begin():
            product = await session.get(Product, product_id)
            for key, value in values.items():
                setattr(product, key, value)

    async def stock_of(self, product_id: int) -> int:
        async with self.session_factory() as session:
            result = await session.execute(select(Product.stock).where(Product.id == product_id))
            return result.scalar_one()

    async def active_carts(self, user_id: int) -> list[Cart]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Cart).where(Cart.user_id == user_id, Cart.status == CartStatus.ACTIVE.value)
            )
            return list(result.scalars())

    async def carts(self, user_id: int) -> list[Cart]:
        async with self.session_factory() as session:
            result = await session.execute(select(Cart).where(Cart.user_id == user_id).order_by(Cart.id))
            return list(result.scalars())

    async def cart_items(self, cart_id: int) -> list[CartItem]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(CartItem).where(CartItem.cart_id == cart_id).order_by(CartItem.id)
            )
            return list(result.scalars())

    async def order_count(self, user_id: int | None = None) -> int:
        async with self.session_factory() as session:
            stmt = select(func.count(Order.id))
            if user_id is not None:
                stmt = stmt.where(Order.user_id == user_id)
            return (await session.execute(stmt)).scalar_one()

    async def audit_entries(self, resource_type: str, resource_id: int) -> list[AuditLog]:
        async with self.session_factory() as session:
            return await AuditLogRepository(session).list_for_resource(resource_type, resource_id)

    async def adjustments(self, product_id: int) -> list[InventoryAdjustment]:
        async with self.session_factory() as session:
            return await InventoryRepository(session).list_adjustments(product_id)


@pytest.fixture
def checkout_db(tmp_path) -> CheckoutDatabase:
    return CheckoutDatabase(f"sqlite+aiosqlite:///{tmp_path / 'checkout.db'}")
