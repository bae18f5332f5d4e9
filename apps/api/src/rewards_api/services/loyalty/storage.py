"""Translation of driver failures into loyalty domain errors."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from loguru import logger
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_api.observability.loyalty import get_loyalty_store
from rewards_api.services.loyalty.errors import LoyaltyStorageUnavailableError


@asynccontextmanager
async def store_guard(db: AsyncSession, operation: str) -> AsyncIterator[None]:
    """Roll back and raise ``LoyaltyStorageUnavailableError`` when the store fails.

    ``IntegrityError`` is re-raised untouched so callers keep mapping constraint
    violations themselves.
    """

    try:
        yield
    except IntegrityError:
        raise
    except DBAPIError as exc:
        await db.rollback()
        get_loyalty_store().record_failure("storage_unavailable")
        logger.exception("Loyalty store failure", operation=operation)
        raise LoyaltyStorageUnavailableError("Loyalty store is unavailable") from exc


__all__ = ["store_guard"]
