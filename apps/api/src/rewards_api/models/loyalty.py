"""Loyalty ledger domain models."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from rewards_api.db.base import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def enum_values(enum_cls: type[Enum]) -> list[str]:
    """Persist enum values rather than member names."""

    return [member.value for member in enum_cls]


class LoyaltyTier(str, Enum):
    """Membership ranks derived from lifetime points."""

    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"
    DIAMOND = "diamond"


class LoyaltyTransactionKind(str, Enum):
    EARNED = "earned"
    REDEEMED = "redeemed"


class LoyaltySourceType(str, Enum):
    """Events that are allowed to credit points."""

    PURCHASE = "purchase"
    REVIEW = "review"
    QUEST = "quest"
    MANUAL = "manual"
    SUBSCRIPTION = "subscription"


class LoyaltyBalance(Base):
    """Derived per-customer balance; only the award engine writes it."""

    __tablename__ = "loyalty_balances"
    __table_args__ = (
        UniqueConstraint("customer_id", name="uq_loyalty_balances_customer_id"),
        CheckConstraint("current_points >= 0", name="ck_loyalty_balances_current_non_negative"),
        CheckConstraint("lifetime_points >= 0", name="ck_loyalty_balances_lifetime_non_negative"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    customer_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    current_points = Column(Integer, nullable=False, default=0, server_default="0")
    lifetime_points = Column(Integer, nullable=False, default=0, server_default="0")
    tier = Column(
        SqlEnum(LoyaltyTier, name="loyalty_tier", values_callable=enum_values),
        nullable=False,
        default=LoyaltyTier.BRONZE,
        server_default=LoyaltyTier.BRONZE.value,
    )
    last_activity_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )

    __mapper_args__ = {"version_id_col": version}


class LoyaltyTransaction(Base):
    """Append-only ledger row; balances are reconstructible from these."""

    __tablename__ = "loyalty_transactions"
    __table_args__ = (
        UniqueConstraint(
            "customer_id",
            "source_type",
            "source_id",
            name="uq_loyalty_transactions_customer_source",
        ),
        CheckConstraint("delta <> 0", name="ck_loyalty_transactions_non_zero_delta"),
        Index("ix_loyalty_transactions_customer_created", "customer_id", "created_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    customer_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    delta = Column(Integer, nullable=False)
    kind = Column(
        SqlEnum(LoyaltyTransactionKind, name="loyalty_transaction_kind", values_callable=enum_values),
        nullable=False,
    )
    source_type = Column(
        SqlEnum(LoyaltySourceType, name="loyalty_source_type", values_callable=enum_values),
        nullable=True,
    )
    source_id = Column(String, nullable=True)
    description = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    customer = relationship("User")
