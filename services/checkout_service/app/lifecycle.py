"""Administrative order status transitions."""

from __future__ import annotations

import logging
from typing import Final

from services.common import operation_span

from .errors import InvalidTransitionError, NotFoundError, ValidationError
from .metrics import ORDER_STATUS_TRANSITIONS_TOTAL
from .models import AuditAction, AuditResource, Order, OrderStatus
from .unit_of_work import TransactionCoordinator

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Final[dict[OrderStatus, frozenset[OrderStatus]]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PAID, OrderStatus.SHIPPED, OrderStatus.CANCELED}),
    OrderStatus.PAID: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELED}),
    OrderStatus.SHIPPED: frozenset(),
    OrderStatus.CANCELED: frozenset(),
}


def parse_order_status(raw_status: str | None) -> OrderStatus:
    try:
        return OrderStatus((raw_status or "").strip())
    except ValueError as exc:
        raise ValidationError("invalid status") from exc


def check_transition(current: OrderStatus, target: OrderStatus) -> None:
    """Raise ``InvalidTransitionError`` unless ``current -> target`` is allowed."""

    if current is OrderStatus.SHIPPED:
        raise InvalidTransitionError("cannot change shipped order")
    if current is OrderStatus.CANCELED:
        raise InvalidTransitionError("cannot change canceled order")
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(f"cannot change {current.value} order to {target.value}")


class OrderLifecycleManager:
    """Moves orders through PENDING -> PAID -> SHIPPED, or to CANCELED.

    Cancelling returns every line's quantity to stock in the same transaction
    as the status write and its audit row.
    """

    def __init__(self, coordinator: TransactionCoordinator) -> None:
        self.coordinator = coordinator

    async def update_status(self, actor_user_id: int, order_id: int, new_status: str) -> Order:
        if actor_user_id <= 0 or order_id <= 0:
            raise ValidationError("invalid")
        target = parse_order_status(new_status)

        with operation_span(
            __name__,
            "orders.update_status",
            {"order.id": order_id, "order.status.target": target.value},
        ):
            async with self.coordinator.begin() as uow:
                order = await uow.orders.get(order_id, for_update=True)
                if order is None:
                    raise NotFoundError("order not found")

                current = OrderStatus(order.status)
                if current is target:
                    return order
                check_transition(current, target)

                if target is OrderStatus.CANCELED:
                    for item in order.items:
                        await uow.inventory.increase_stock(item.product_id, item.quantity)

                order = await uow.orders.update_status(order, status=target.value)
                await uow.audit_logs.record(
                    actor_user_id=actor_user_id,
                    action=AuditAction.UPDATE_ORDER_STATUS.value,
                    resource_type=AuditResource.ORDER.value,
                    resource_id=order.id,
                    before={"status": current.value},
                    after={"status": target.value},
                )

        ORDER_STATUS_TRANSITIONS_TOTAL.labels(from_status=current.value, to_status=target.value).inc()
        logger.info(
            "Admin %s moved order %s from %s to %s", actor_user_id, order_id, current.value, target.value
        )
        return order
