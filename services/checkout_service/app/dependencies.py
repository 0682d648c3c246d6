"""Dependency helpers for checkout service."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

from fastapi import Depends, Header, HTTPException, Request, status

from services.common import ServiceSettings

from .checkout import OrderPlacer
from .errors import CheckoutError
from .lifecycle import OrderLifecycleManager
from .services import CartService, InventoryAdminService, OrderQueryService
from .unit_of_work import TransactionCoordinator

ROLE_USER = "USER"
ROLE_ADMIN = "ADMIN"

_STATUS_BY_CODE: Final[dict[str, int]] = {
    "validation": status.HTTP_400_BAD_REQUEST,
    "cart_empty": status.HTTP_400_BAD_REQUEST,
    "invalid_transition": status.HTTP_400_BAD_REQUEST,
    "out_of_stock": status.HTTP_409_CONFLICT,
    "idempotency_conflict": status.HTTP_409_CONFLICT,
    "not_found": status.HTTP_404_NOT_FOUND,
    "forbidden": status.HTTP_403_FORBIDDEN,
    "internal": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


@dataclass(frozen=True)
class CurrentUser:
    id: int
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


def http_error(exc: CheckoutError) -> HTTPException:
    """Translate a checkout error into the matching HTTP response."""

    status_code = _STATUS_BY_CODE.get(exc.code, status.HTTP_500_INTERNAL_SERVER_ERROR)
    return HTTPException(status_code=status_code, detail=exc.message)


def get_settings(request: Request) -> ServiceSettings:
    return request.app.state.settings


def get_coordinator(request: Request) -> TransactionCoordinator:
    return TransactionCoordinator(request.app.state.session_factory)


def get_current_user(
    user_id: str | None = Header(default=None, alias="X-User-Id"),
    role: str | None = Header(default=None, alias="X-User-Role"),
) -> CurrentUser:
    """Read the identity asserted by the authentication layer in front of this service."""

    if user_id is None or not user_id.strip().isdigit() or int(user_id) <= 0:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="unauthorized")
    resolved_role = (role or ROLE_USER).strip().upper()
    if resolved_role not in (ROLE_USER, ROLE_ADMIN):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="unauthorized")
    return CurrentUser(id=int(user_id), role=resolved_role)


def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="forbidden")
    return user


def get_cart_service(coordinator: TransactionCoordinator = Depends(get_coordinator)) -> CartService:
    return CartService(coordinator)


def get_order_placer(
    coordinator: TransactionCoordinator = Depends(get_coordinator),
    settings: ServiceSettings = Depends(get_settings),
) -> OrderPlacer:
    return OrderPlacer(coordinator, max_key_bytes=settings.max_idempotency_key_bytes)


def get_order_query_service(
    coordinator: TransactionCoordinator = Depends(get_coordinator),
    settings: ServiceSettings = Depends(get_settings),
) -> OrderQueryService:
    return OrderQueryService(coordinator, default_limit=settings.order_page_limit_default)


def get_lifecycle_manager(coordinator: TransactionCoordinator = Depends(get_coordinator)) -> OrderLifecycleManager:
    return OrderLifecycleManager(coordinator)


def get_inventory_admin_service(
    coordinator: TransactionCoordinator = Depends(get_coordinator),
) -> InventoryAdminService:
    return InventoryAdminService(coordinator)
