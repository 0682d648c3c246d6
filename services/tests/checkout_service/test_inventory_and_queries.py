import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from services.checkout_service.app.checkout import OrderPlacer
from services.checkout_service.app.errors import InternalError, NotFoundError, ValidationError
from services.checkout_service.app.lifecycle import OrderLifecycleManager
from services.checkout_service.app.services import (
    CartService,
    InventoryAdminService,
    OrderFilter,
    OrderQueryService,
)


def _run(coro):
    return asyncio.run(coro)


def test_ledger_decrease_is_conditional(checkout_db) -> None:
    async def body() -> None:
        async with checkout_db.open() as db:
            product = await db.add_product(stock=2)
            coordinator = db.coordinator()

            async with coordinator.begin() as uow:
                assert await uow.inventory.decrease_if_enough(product, 2) is True
                assert await uow.inventory.decrease_if_enough(product, 1) is False
            assert await db.stock_of(product) == 0

            async with coordinator.begin() as uow:
                await uow.inventory.increase_stock(product, 4)
            assert await db.stock_of(product) == 4

            with pytest.raises(NotFoundError):
                async with coordinator.begin() as uow:
                    await uow.inventory.increase_stock(product + 100, 1)

    _run(body())


def test_set_inventory_records_adjustment_and_audit(checkout_db) -> None:
    async def body() -> None:
        async with checkout_db.open() as db:
            product = await db.add_product(stock=10)
            service = InventoryAdminService(db.coordinator())

            change = await service.set_inventory(42, product, 4, "  stocktake  ")

            assert (change.old_stock, change.new_stock, change.delta) == (10, 4, -6)
            assert await db.stock_of(product) == 4

            adjustments = await db.adjustments(product)
            assert [(a.delta, a.reason, a.admin_user_id) for a in adjustments] == [(-6, "stocktake", 42)]

            entries = await db.audit_entries("product", product)
            assert len(entries) == 1
            assert entries[0].action == "UPDATE_STOCK"
            assert json.loads(entries[0].before_json) == {"stock": 10}
            assert json.loads(entries[0].after_json) == {"stock": 4}

    _run(body())


def test_set_inventory_validation(checkout_db) -> None:
    async def body() -> None:
        async with checkout_db.open() as db:
            product = await db.add_product(stock=10)
            service = InventoryAdminService(db.coordinator())

            with pytest.raises(ValidationError):
                await service.set_inventory(42, product, -1, "oops")
            with pytest.raises(ValidationError):
                await service.set_inventory(42, product, 3, "   ")
            with pytest.raises(ValidationError):
                await service.set_inventory(42, product, 3, "r" * 256)
            with pytest.raises(NotFoundError):
                await service.set_inventory(42, product + 100, 3, "recount")

            assert await db.stock_of(product) == 10
            assert await db.adjustments(product) == []

    _run(body())


def test_storage_failures_surface_as_internal_errors(checkout_db) -> None:
    async def body() -> None:
        async with checkout_db.open() as db:
            product = await db.add_product(stock=3)

            with pytest.raises(InternalError) as excinfo:
                async with db.coordinator().begin() as uow:
                    await uow.inventory.decrease_if_enough(product, 1)
                    await uow.session.execute(text("SELECT * FROM missing_table"))

            assert isinstance(excinfo.value.__cause__, OperationalError)
            assert await db.stock_of(product) == 3

    _run(body())


def test_my_orders_are_scoped_to_owner(checkout_db) -> None:
    async def body() -> None:
        async with checkout_db.open() as db:
            product = await db.add_product(stock=20)
            carts = CartService(db.coordinator())
            placer = OrderPlacer(db.coordinator())
            address = await db.add_address(1)
            other_address = await db.add_address(2)

            placed = []
            for key in ("a", "b", "c"):
                await carts.add_item(1, product, 1)
                placed.append(await placer.place_order(1, address, key))
            await carts.add_item(2, product, 1)
            foreign = await placer.place_order(2, other_address, "a")

            queries = OrderQueryService(db.coordinator())
            mine = await queries.list_my_orders(1)
            assert [order.id for order in mine] == [order.id for order in reversed(placed)]

            second_page = await queries.list_my_orders(1, page=2, limit=2)
            assert [order.id for order in second_page] == [placed[0].id]

            fetched = await queries.get_my_order(1, placed[0].id)
            assert fetched.items[0].quantity == 1
            with pytest.raises(NotFoundError):
                await queries.get_my_order(1, foreign.id)
            with pytest.raises(ValidationError):
                await queries.list_my_orders(1, page=0)

    _run(body())


def test_admin_list_filters_and_paginates(checkout_db) -> None:
    async def body() -> None:
        async with checkout_db.open() as db:
            product = await db.add_product(stock=20)
            carts = CartService(db.coordinator())
            placer = OrderPlacer(db.coordinator())
            orders = []
            for user_id in (1, 2, 2):
                address = await db.add_address(user_id)
                await carts.add_item(user_id, product, 1)
                orders.append(await placer.place_order(user_id, address, f"key-{len(orders)}"))
            await OrderLifecycleManager(db.coordinator()).update_status(99, orders[1].id, "PAID")

            queries = OrderQueryService(db.coordinator())

            everything, total = await queries.admin_list_orders(OrderFilter())
            assert total == 3
            assert [order.id for order in everything] == [order.id for order in reversed(orders)]

            by_user, total = await queries.admin_list_orders(OrderFilter(user_id=2))
            assert total == 2
            assert {order.user_id for order in by_user} == {2}

            paid, total = await queries.admin_list_orders(OrderFilter(status="PAID"))
            assert total == 1
            assert paid[0].id == orders[1].id

            page, total = await queries.admin_list_orders(OrderFilter(page=2, limit=2))
            assert total == 3
            assert [order.id for order in page] == [orders[0].id]

            now = datetime.now(tz=timezone.utc)
            recent, total = await queries.admin_list_orders(
                OrderFilter(created_from=now - timedelta(hours=1), created_to=now + timedelta(hours=1))
            )
            assert total == 3
            future, total = await queries.admin_list_orders(OrderFilter(created_from=now + timedelta(hours=1)))
            assert (future, total) == ([], 0)

            for bad in (OrderFilter(page=0), OrderFilter(limit=0), OrderFilter(limit=101), OrderFilter(status="LOST")):
                with pytest.raises(ValidationError):
                    await queries.admin_list_orders(bad)

    _run(body())
