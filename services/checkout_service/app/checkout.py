"""Idempotent conversion of a user's active cart into an order."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import IntegrityError

from services.common import operation_span

from .errors import (
    CartEmptyError,
    CheckoutError,
    ForbiddenError,
    IdempotencyConflictError,
    NotFoundError,
    OutOfStockError,
    ValidationError,
)
from .metrics import ORDER_IDEMPOTENT_REPLAYS_TOTAL, ORDER_PLACEMENTS_TOTAL, STOCK_DECREMENT_REJECTED_TOTAL
from .models import Cart, CartItem, Order
from .unit_of_work import TransactionCoordinator, UnitOfWork

logger = logging.getLogger(__name__)

MAX_IDEMPOTENCY_KEY_BYTES = 255


class _KeyAlreadyClaimed(Exception):
    """The (user, key) pair was inserted by a concurrent placement."""


def normalise_idempotency_key(raw_key: str | None, *, max_bytes: int = MAX_IDEMPOTENCY_KEY_BYTES) -> str:
    key = (raw_key or "").strip()
    if not key:
        raise ValidationError("idempotency key required")
    if len(key.encode("utf-8")) > max_bytes:
        raise ValidationError("idempotency key too long")
    return key


class OrderPlacer:
    """Turns the ACTIVE cart into a PENDING order exactly once per idempotency key.

    Every placement runs in one transaction: address check, replay lookup,
    conditional stock decrements, order and item inserts and the cart
    checkout all commit together or not at all. Two requests racing with the
    same key converge on the order whose insert won the unique constraint.
    """

    def __init__(
        self,
        coordinator: TransactionCoordinator,
        *,
        max_key_bytes: int = MAX_IDEMPOTENCY_KEY_BYTES,
    ) -> None:
        self.coordinator = coordinator
        self.max_key_bytes = max_key_bytes

    async def place_order(self, user_id: int, address_id: int, idempotency_key: str | None) -> Order:
        if user_id <= 0 or address_id <= 0:
            raise ValidationError("invalid")
        key = normalise_idempotency_key(idempotency_key, max_bytes=self.max_key_bytes)

        with operation_span(__name__, "checkout.place_order", {"user.id": user_id}) as span:
            try:
                order, replay_path = await self._place(user_id, address_id, key)
            except CheckoutError as exc:
                ORDER_PLACEMENTS_TOTAL.labels(outcome=exc.code).inc()
                logger.info("Order placement for user %s rejected: %s", user_id, exc.code)
                raise

            span.set_attribute("order.id", order.id)
            if replay_path is not None:
                span.set_attribute("checkout.replayed", True)
                ORDER_PLACEMENTS_TOTAL.labels(outcome="replayed").inc()
                ORDER_IDEMPOTENT_REPLAYS_TOTAL.labels(path=replay_path).inc()
                logger.info("Replayed order %s for user %s via %s", order.id, user_id, replay_path)
            else:
                ORDER_PLACEMENTS_TOTAL.labels(outcome="created").inc()
                logger.info(
                    "Placed order %s for user %s with %d items totalling %d",
                    order.id,
                    user_id,
                    len(order.items),
                    order.total_price,
                )
        return order

    async def _place(self, user_id: int, address_id: int, key: str) -> tuple[Order, str | None]:
        async with self.coordinator.begin() as uow:
            address = await uow.addresses.get(address_id)
            if address is None:
                raise NotFoundError("address not found")
            if address.user_id != user_id:
                raise ForbiddenError("address does not belong to user")

            existing = await uow.orders.find_by_idempotency_key(user_id, key)
            if existing is not None:
                return existing, "lookup"

            cart = await uow.carts.find_active(user_id, for_update=True)
            # A same-key request may have committed while we waited on the cart lock
            # and already checked the cart out.
            existing = await uow.orders.find_by_idempotency_key(user_id, key)
            if existing is not None:
                return existing, "locked"
            if cart is None:
                raise CartEmptyError()
            items = await uow.carts.list_items(cart.id)
            if not items:
                raise CartEmptyError()

            try:
                async with uow.savepoint():
                    order = await self._convert(uow, user_id, address_id, key, cart, items)
            except _KeyAlreadyClaimed:
                # The savepoint rollback has already undone this attempt's decrements.
                winner = await uow.orders.find_by_idempotency_key(user_id, key)
                if winner is None:
                    raise IdempotencyConflictError() from None
                return winner, "conflict"
            return order, None

    async def _convert(
        self,
        uow: UnitOfWork,
        user_id: int,
        address_id: int,
        key: str,
        cart: Cart,
        items: list[CartItem],
    ) -> Order:
        snapshots: list[dict[str, Any]] = []
        total = 0
        for item in sorted(items, key=lambda entry: entry.id):
            product = await uow.products.get(item.product_id)
            if product is None or not product.is_purchasable:
                raise ValidationError("invalid")
            if not await uow.inventory.decrease_if_enough(product.id, item.quantity):
                STOCK_DECREMENT_REJECTED_TOTAL.inc()
                raise OutOfStockError(product.id)
            snapshots.append(
                {
                    "product_id": product.id,
                    "name": product.name,
                    "unit_price": item.unit_price_snapshot,
                    "quantity": item.quantity,
                }
            )
            total += item.unit_price_snapshot * item.quantity

        try:
            order = await uow.orders.create_order(
                user_id=user_id,
                address_id=address_id,
                total_price=total,
                idempotency_key=key,
            )
        except IntegrityError as exc:
            raise _KeyAlreadyClaimed() from exc

        order = await uow.orders.add_items(order, snapshots)
        await uow.carts.check_out(cart.id)
        return order
