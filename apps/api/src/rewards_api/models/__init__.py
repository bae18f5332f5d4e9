"""SQLAlchemy models package."""

from .loyalty import (  # noqa: F401
    LoyaltyBalance,
    LoyaltySourceType,
    LoyaltyTier,
    LoyaltyTransaction,
    LoyaltyTransactionKind,
)
from .quest import Quest, QuestDifficulty, QuestKind, QuestProgress, QuestProgressStatus  # noqa: F401
from .user import User, UserRoleEnum, UserStatusEnum  # noqa: F401
