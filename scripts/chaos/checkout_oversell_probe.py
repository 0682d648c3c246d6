#!/usr/bin/env python3
"""Chaos scenario: burst concurrent checkouts at a running checkout service.

Two checks are run against the HTTP API:

* oversell: the product's stock is reset through the admin inventory route,
  every configured user puts one unit in their cart and all users check out at
  once. No more orders than units of stock may succeed; the rest must be
  rejected as out of stock.
* duplicate burst: one user fires the same placement several times in parallel
  with a shared idempotency key. Every successful response must carry the same
  order id.

The result is printed as JSON; the exit code is non-zero when an invariant is
violated or the service could not be driven.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
import uuid
from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Sequence, Tuple

import httpx


@dataclass(slots=True)
class PlacementResult:
    user_id: int
    status_code: int
    order_id: int | None
    detail: str | None


class ProbeError(RuntimeError):
    def __init__(self, message: str, *, context: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.context: Dict[str, Any] = dict(context or {})


def _env_default(name: str, default: str) -> str:
    value = os.getenv(name)
    return value if value else default


def _parse_user(raw: str) -> Tuple[int, int]:
    try:
        user_id, address_id = (int(part) for part in raw.split(":", 1))
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected USER_ID:ADDRESS_ID, got {raw!r}") from exc
    if user_id <= 0 or address_id <= 0:
        raise argparse.ArgumentTypeError("user and address ids must be positive")
    return user_id, address_id


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Burst concurrent checkouts to probe oversell and idempotency")
    parser.add_argument(
        "--base-url",
        default=_env_default("CHECKOUT_BASE_URL", "http://127.0.0.1:8000"),
        help="Base URL for the checkout service (default: %(default)s or CHECKOUT_BASE_URL)",
    )
    parser.add_argument("--product-id", type=int, required=True, help="Active product to sell")
    parser.add_argument(
        "--stock",
        type=int,
        default=int(_env_default("CHECKOUT_PROBE_STOCK", "3")),
        help="Stock to set before the burst (default: %(default)s or CHECKOUT_PROBE_STOCK)",
    )
    parser.add_argument(
        "--user",
        dest="users",
        type=_parse_user,
        action="append",
        required=True,
        help="USER_ID:ADDRESS_ID pair taking part in the burst. Pass once per user.",
    )
    parser.add_argument(
        "--admin-id",
        type=int,
        default=int(_env_default("CHECKOUT_PROBE_ADMIN_ID", "1")),
        help="Administrator id used for the stock reset (default: %(default)s)",
    )
    parser.add_argument(
        "--duplicates",
        type=int,
        default=5,
        help="Parallel requests sharing one idempotency key (default: %(default)s, 0 disables)",
    )
    parser.add_argument(
        "--request-timeout",
        type=float,
        default=10.0,
        help="HTTP client timeout in seconds (default: %(default)s)",
    )

    args = parser.parse_args()
    if args.stock < 0:
        parser.error("--stock must not be negative")
    if args.duplicates < 0:
        parser.error("--duplicates must not be negative")
    return args


def _user_headers(user_id: int) -> Dict[str, str]:
    return {"X-User-Id": str(user_id), "X-User-Role": "USER"}


def _admin_headers(admin_id: int) -> Dict[str, str]:
    return {"X-User-Id": str(admin_id), "X-User-Role": "ADMIN"}


async def reset_stock(client: httpx.AsyncClient, args: argparse.Namespace, stock: int) -> None:
    response = await client.put(
        f"/admin/products/{args.product_id}/inventory",
        json={"newStock": stock, "reason": "checkout oversell probe"},
        headers=_admin_headers(args.admin_id),
    )
    if response.status_code != 200:
        raise ProbeError(
            "stock reset failed",
            context={"status": response.status_code, "body": response.text},
        )


async def fill_cart(client: httpx.AsyncClient, product_id: int, user_id: int) -> None:
    response = await client.post(
        "/cart/items",
        json={"productId": product_id, "quantity": 1},
        headers=_user_headers(user_id),
    )
    if response.status_code != 200:
        raise ProbeError(
            "adding to cart failed",
            context={"user": user_id, "status": response.status_code, "body": response.text},
        )


async def place(client: httpx.AsyncClient, user_id: int, address_id: int, key: str) -> PlacementResult:
    response = await client.post(
        "/orders",
        json={"addressId": address_id},
        headers={**_user_headers(user_id), "Idempotency-Key": key},
    )
    body = response.json() if response.headers.get("content-type", "").startswith("application/json") else {}
    return PlacementResult(
        user_id=user_id,
        status_code=response.status_code,
        order_id=body.get("id") if response.status_code == 201 else None,
        detail=body.get("detail") if response.status_code != 201 else None,
    )


async def oversell_check(client: httpx.AsyncClient, args: argparse.Namespace) -> Mapping[str, Any]:
    users: Sequence[Tuple[int, int]] = args.users
    # Carts are filled while stock is plentiful so the advisory cart check never interferes.
    await reset_stock(client, args, len(users))
    for user_id, _ in users:
        await fill_cart(client, args.product_id, user_id)
    await reset_stock(client, args, args.stock)

    run_id = uuid.uuid4().hex[:12]
    results: List[PlacementResult] = await asyncio.gather(
        *(place(client, user_id, address_id, f"oversell-{run_id}-{user_id}") for user_id, address_id in users)
    )
    outcomes = Counter(result.status_code for result in results)
    placed = outcomes.get(201, 0)
    expected = min(args.stock, len(users))
    return {
        "stock": args.stock,
        "participants": len(users),
        "placed": placed,
        "outOfStock": outcomes.get(409, 0),
        "statusCounts": {str(code): count for code, count in sorted(outcomes.items())},
        "ok": placed == expected and placed + outcomes.get(409, 0) == len(users),
    }


async def duplicate_check(client: httpx.AsyncClient, args: argparse.Namespace) -> Mapping[str, Any]:
    user_id, address_id = args.users[0]
    await reset_stock(client, args, len(args.users) + 1)
    await fill_cart(client, args.product_id, user_id)

    key = f"duplicate-{uuid.uuid4().hex[:12]}"
    results: List[PlacementResult] = await asyncio.gather(
        *(place(client, user_id, address_id, key) for _ in range(args.duplicates))
    )
    order_ids = sorted({result.order_id for result in results if result.order_id is not None})
    failures = [
        {"status": result.status_code, "detail": result.detail} for result in results if result.order_id is None
    ]
    return {
        "requests": args.duplicates,
        "orderIds": order_ids,
        "failures": failures,
        "ok": len(order_ids) == 1 and not failures,
    }


async def run(args: argparse.Namespace) -> Mapping[str, Any]:
    timeout = httpx.Timeout(args.request_timeout)
    async with httpx.AsyncClient(base_url=args.base_url, timeout=timeout) as client:
        oversell = await oversell_check(client, args)
        duplicates = await duplicate_check(client, args) if args.duplicates else None
    ok = oversell["ok"] and (duplicates is None or duplicates["ok"])
    return {
        "status": "ok" if ok else "violated",
        "baseUrl": args.base_url,
        "productId": args.product_id,
        "oversell": oversell,
        "duplicates": duplicates,
    }


def main() -> int:
    args = parse_args()
    try:
        result = asyncio.run(run(args))
    except ProbeError as exc:
        payload = {
            "status": "error",
            "message": str(exc),
            "context": exc.context,
        }
        json.dump(payload, sys.stdout, indent=2)
        sys.stdout.write("\n")
        return 2
    except httpx.HTTPError as exc:
        payload = {
            "status": "error",
            "message": str(exc),
        }
        json.dump(payload, sys.stdout, indent=2)
        sys.stdout.write("\n")
        return 3

    json.dump(result, sys.stdout, indent=2)
    sys.stdout.write("\n")
    return 0 if result["status"] == "ok" else 1


if __name__ == "__main__":
    raise SystemExit(main())
