"""Prometheus metrics for the checkout service."""

from __future__ import annotations

from typing import Final

from prometheus_client import Counter

# Order placement ---------------------------------------------------------------------------
ORDER_PLACEMENTS_TOTAL: Final = Counter(
    "checkout_order_placements_total",
    "Order placement attempts grouped by outcome.",
    labelnames=("outcome",),
)

ORDER_IDEMPOTENT_REPLAYS_TOTAL: Final = Counter(
    "checkout_order_idempotent_replays_total",
    "Placements answered with an existing order for the same idempotency key.",
    labelnames=("path",),
)

STOCK_DECREMENT_REJECTED_TOTAL: Final = Counter(
    "checkout_stock_decrement_rejected_total",
    "Conditional stock decrements refused because stock was insufficient.",
)

# Administration ----------------------------------------------------------------------------
ORDER_STATUS_TRANSITIONS_TOTAL: Final = Counter(
    "checkout_order_status_transitions_total",
    "Applied order status transitions.",
    labelnames=("from_status", "to_status"),
)

INVENTORY_SETS_TOTAL: Final = Counter(
    "checkout_inventory_sets_total",
    "Manual stock overrides applied by administrators.",
)
