"""Identity lookups the loyalty services depend on."""

from __future__ import annotations

from enum import Enum
from typing import TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_api.models.user import User
from rewards_api.services.loyalty.errors import LoyaltyInvalidArgumentError, LoyaltyNotFoundError


EnumT = TypeVar("EnumT", bound=Enum)


async def require_customer(db: AsyncSession, customer_id: UUID) -> User:
    """Return the customer or raise ``LoyaltyNotFoundError``."""

    result = await db.execute(select(User).where(User.id == customer_id))
    customer = result.scalar_one_or_none()
    if customer is None:
        raise LoyaltyNotFoundError(f"Customer {customer_id} not found")
    return customer


def coerce_enum(enum_cls: type[EnumT], value: EnumT | str, label: str) -> EnumT:
    """Resolve a raw value into ``enum_cls`` or fail with an invalid argument error."""

    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value))
    except ValueError as exc:
        allowed = ", ".join(member.value for member in enum_cls)
        raise LoyaltyInvalidArgumentError(f"Unknown {label}: {value!r} (expected one of {allowed})") from exc
