"""Loyalty service exports."""

from .errors import (  # noqa: F401
    InsufficientBalanceError,
    LoyaltyConflictError,
    LoyaltyError,
    LoyaltyInvalidArgumentError,
    LoyaltyNotFoundError,
    LoyaltyStorageUnavailableError,
)
from .ledger_service import (  # noqa: F401
    LedgerReconciliation,
    LoyaltyBalanceSnapshot,
    LoyaltyLedgerService,
    QuestCompletionResult,
    decode_time_uuid_cursor,
    encode_time_uuid_cursor,
)
from .quest_service import QuestProgressTracker, QuestRegistry, QuestStartResult  # noqa: F401
from .tiers import benefits_for, next_tier_for, tier_for, tier_progress  # noqa: F401
