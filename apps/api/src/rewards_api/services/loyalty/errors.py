"""Domain errors raised by the loyalty ledger and quest services."""

from __future__ import annotations


class LoyaltyError(RuntimeError):
    """Base exception for loyalty failures; ``code`` is stable for API clients."""

    code = "loyalty_error"


class LoyaltyNotFoundError(LoyaltyError):
    """Raised when a customer, quest or progress record does not exist."""

    code = "not_found"


class LoyaltyConflictError(LoyaltyError):
    """Raised on duplicate awards, completed quests and no-op state changes."""

    code = "conflict"


class InsufficientBalanceError(LoyaltyError):
    """Raised when a redemption exceeds the spendable balance."""

    code = "insufficient_balance"

    def __init__(self, requested: int, available: int) -> None:
        super().__init__(f"Cannot redeem {requested} points; only {available} available")
        self.requested = requested
        self.available = available


class LoyaltyInvalidArgumentError(LoyaltyError, ValueError):
    """Raised for malformed input such as non-positive deltas or unknown enum values."""

    code = "invalid_argument"


class LoyaltyStorageUnavailableError(LoyaltyError):
    """Raised when the transactional store fails or keeps rejecting a write."""

    code = "storage_unavailable"


__all__ = [
    "InsufficientBalanceError",
    "LoyaltyConflictError",
    "LoyaltyError",
    "LoyaltyInvalidArgumentError",
    "LoyaltyNotFoundError",
    "LoyaltyStorageUnavailableError",
]
