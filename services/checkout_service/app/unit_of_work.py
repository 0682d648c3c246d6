"""Transaction boundary for checkout operations."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, AsyncSessionTransaction, async_sessionmaker

from services.common import transactional_session

from .errors import InternalError
from .interfaces import CartStore, InventoryLedger, OrderStore
from .repository import (
    AddressRepository,
    AuditLogRepository,
    CartRepository,
    InventoryRepository,
    OrderRepository,
    ProductRepository,
)

logger = logging.getLogger(__name__)


@dataclass
class UnitOfWork:
    """Repositories sharing one open transaction."""

    session: AsyncSession
    carts: CartStore
    inventory: InventoryLedger
    orders: OrderStore
    products: ProductRepository
    addresses: AddressRepository
    audit_logs: AuditLogRepository

    @classmethod
    def bind(cls, session: AsyncSession) -> UnitOfWork:
        return cls(
            session=session,
            carts=CartRepository(session),
            inventory=InventoryRepository(session),
            orders=OrderRepository(session),
            products=ProductRepository(session),
            addresses=AddressRepository(session),
            audit_logs=AuditLogRepository(session),
        )

    def savepoint(self) -> AsyncSessionTransaction:
        """Open a nested transaction; leaving it with an exception rolls back only its work."""

        return self.session.begin_nested()


class TransactionCoordinator:
    """Runs each unit of work in its own transaction.

    The transaction commits when the ``begin()`` block exits normally and rolls
    back on any exception, cancellation included. Storage failures that escape
    the block are reported as ``InternalError``; checkout errors pass through.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    @asynccontextmanager
    async def begin(self) -> AsyncIterator[UnitOfWork]:
        try:
            async with transactional_session(self.session_factory) as session:
                yield UnitOfWork.bind(session)
        except SQLAlchemyError as exc:
            logger.exception("Transaction rolled back after a storage error")
            raise InternalError() from exc
