import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from services.common import ServiceSettings
from services.checkout_service.app.main import create_app


def _run(coro):
    return asyncio.run(coro)


def _user(user_id: int) -> dict[str, str]:
    return {"X-User-Id": str(user_id), "X-User-Role": "USER"}


def _admin(user_id: int = 99) -> dict[str, str]:
    return {"X-User-Id": str(user_id), "X-User-Role": "ADMIN"}


def _settings(database_url: str) -> ServiceSettings:
    return ServiceSettings(
        app_name="Checkout Service Test",
        enable_metrics=False,
        enable_tracing=False,
        database_url=database_url,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with app.router.lifespan_context(app):
        yield


@asynccontextmanager
async def _client(app: FastAPI):
    async with lifespan(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client


def test_cart_and_order_flow(checkout_db) -> None:
    async def body() -> None:
        async with checkout_db.open() as db:
            product = await db.add_product(name="Kettle", price=2500, stock=4)
            address = await db.add_address(1)
            app = create_app(_settings(db.database_url))

            async with _client(app) as client:
                empty = await client.get("/cart", headers=_user(1))
                assert empty.status_code == 200
                assert empty.json()["items"] == []

                added = await client.post(
                    "/cart/items", json={"productId": product, "quantity": 2}, headers=_user(1)
                )
                assert added.status_code == 200
                cart = added.json()
                assert cart["total"] == 5000
                assert cart["items"][0]["name"] == "Kettle"
                item_id = cart["items"][0]["id"]

                patched = await client.patch(f"/cart/items/{item_id}", json={"quantity": 3}, headers=_user(1))
                assert patched.status_code == 200
                assert patched.json()["items"][0]["quantity"] == 3

                headers = {**_user(1), "Idempotency-Key": "order-1"}
                placed = await client.post("/orders", json={"addressId": address}, headers=headers)
                assert placed.status_code == 201
                order = placed.json()
                assert order["status"] == "PENDING"
                assert order["totalPrice"] == 7500
                assert order["items"] == [{"productId": product, "name": "Kettle", "price": 2500, "quantity": 3}]

                legacy_headers = {**_user(1), "X-Idempotency-Key": "order-1"}
                replay = await client.post("/orders", json={"addressId": address}, headers=legacy_headers)
                assert replay.status_code == 201
                assert replay.json()["id"] == order["id"]

                listing = await client.get("/orders", headers=_user(1))
                assert listing.status_code == 200
                assert [entry["id"] for entry in listing.json()["items"]] == [order["id"]]

                detail = await client.get(f"/orders/{order['id']}", headers=_user(1))
                assert detail.status_code == 200
                assert detail.json()["userId"] == 1

                hidden = await client.get(f"/orders/{order['id']}", headers=_user(2))
                assert hidden.status_code == 404

                assert await db.stock_of(product) == 1

    _run(body())


def test_error_responses_map_to_status_codes(checkout_db) -> None:
    async def body() -> None:
        async with checkout_db.open() as db:
            product = await db.add_product(stock=1)
            address = await db.add_address(1)
            foreign_address = await db.add_address(2)
            app = create_app(_settings(db.database_url))

            async with _client(app) as client:
                anonymous = await client.get("/cart")
                assert anonymous.status_code == 401

                order_headers = {**_user(1), "Idempotency-Key": "k"}
                empty = await client.post("/orders", json={"addressId": address}, headers=order_headers)
                assert empty.status_code == 400
                assert empty.json()["detail"] == "cart empty"

                missing_key = await client.post("/orders", json={"addressId": address}, headers=_user(1))
                assert missing_key.status_code == 400

                too_many = await client.post(
                    "/cart/items", json={"productId": product, "quantity": 2}, headers=_user(1)
                )
                assert too_many.status_code == 400
                assert too_many.json()["detail"] == "stock exceeded"

                await client.post("/cart/items", json={"productId": product, "quantity": 1}, headers=_user(1))
                forbidden = await client.post(
                    "/orders", json={"addressId": foreign_address}, headers=order_headers
                )
                assert forbidden.status_code == 403
                not_found = await client.post("/orders", json={"addressId": 999}, headers=order_headers)
                assert not_found.status_code == 404

                await db.update_product(product, stock=0)
                sold_out = await client.post("/orders", json={"addressId": address}, headers=order_headers)
                assert sold_out.status_code == 409

                other_users_item = await client.delete("/cart/items/1", headers=_user(2))
                assert other_users_item.status_code == 404

    _run(body())


def test_admin_routes(checkout_db) -> None:
    async def body() -> None:
        async with checkout_db.open() as db:
            product = await db.add_product(stock=5)
            address = await db.add_address(1)
            app = create_app(_settings(db.database_url))

            async with _client(app) as client:
                await client.post("/cart/items", json={"productId": product, "quantity": 2}, headers=_user(1))
                placed = await client.post(
                    "/orders", json={"addressId": address}, headers={**_user(1), "Idempotency-Key": "k"}
                )
                order_id = placed.json()["id"]

                denied = await client.get("/admin/orders", headers=_user(1))
                assert denied.status_code == 403

                listing = await client.get("/admin/orders", params={"userId": 1, "status": "PENDING"}, headers=_admin())
                assert listing.status_code == 200
                payload = listing.json()
                assert payload["total"] == 1
                assert payload["page"] == 1
                assert payload["limit"] == 50

                bad_limit = await client.get("/admin/orders", params={"limit": 500}, headers=_admin())
                assert bad_limit.status_code == 400

                canceled = await client.put(
                    f"/admin/orders/{order_id}/status", json={"status": "CANCELED"}, headers=_admin()
                )
                assert canceled.status_code == 200
                assert canceled.json()["status"] == "CANCELED"
                assert await db.stock_of(product) == 5

                again = await client.put(
                    f"/admin/orders/{order_id}/status", json={"status": "PAID"}, headers=_admin()
                )
                assert again.status_code == 400

                inventory = await client.put(
                    f"/admin/products/{product}/inventory",
                    json={"newStock": 12, "reason": "restock"},
                    headers=_admin(),
                )
                assert inventory.status_code == 200
                assert inventory.json() == {"productId": product, "oldStock": 5, "newStock": 12, "delta": 7}

                no_reason = await client.put(
                    f"/admin/products/{product}/inventory", json={"newStock": 3, "reason": ""}, headers=_admin()
                )
                assert no_reason.status_code == 400
                assert await db.stock_of(product) == 12

    _run(body())
