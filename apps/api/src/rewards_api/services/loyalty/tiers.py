"""Tier classification from lifetime points."""

from __future__ import annotations

from dataclasses import dataclass

from rewards_api.models.loyalty import LoyaltyTier
from rewards_api.services.loyalty.errors import LoyaltyInvalidArgumentError


# Inclusive lower bounds, ascending.
TIER_THRESHOLDS: tuple[tuple[LoyaltyTier, int], ...] = (
    (LoyaltyTier.BRONZE, 0),
    (LoyaltyTier.SILVER, 500),
    (LoyaltyTier.GOLD, 2000),
    (LoyaltyTier.PLATINUM, 5000),
    (LoyaltyTier.DIAMOND, 10000),
)

TIER_BENEFITS: dict[LoyaltyTier, tuple[str, ...]] = {
    LoyaltyTier.BRONZE: ("5% off first order", "Early access to sales"),
    LoyaltyTier.SILVER: ("10% off orders", "Free shipping over $100", "Birthday gift"),
    LoyaltyTier.GOLD: ("15% off orders", "Free shipping always", "Exclusive products", "Priority support"),
    LoyaltyTier.PLATINUM: (
        "20% off orders",
        "Early product launches",
        "Personal beauty consultant",
        "VIP events",
    ),
    LoyaltyTier.DIAMOND: (
        "25% off orders",
        "Luxury gift set",
        "Dedicated account manager",
        "Private consultations",
    ),
}


@dataclass(frozen=True, slots=True)
class TierProgress:
    """Where a lifetime total sits between its tier and the next one."""

    tier: LoyaltyTier
    next_tier: LoyaltyTier | None
    points_to_next_tier: int
    percent: float


def _validate(lifetime_points: int) -> int:
    if isinstance(lifetime_points, bool) or not isinstance(lifetime_points, int):
        raise LoyaltyInvalidArgumentError("Lifetime points must be an integer")
    if lifetime_points < 0:
        raise LoyaltyInvalidArgumentError("Lifetime points cannot be negative")
    return lifetime_points


def threshold_for(tier: LoyaltyTier) -> int:
    for candidate, threshold in TIER_THRESHOLDS:
        if candidate == tier:
            return threshold
    raise LoyaltyInvalidArgumentError(f"Unknown tier: {tier}")


def tier_for(lifetime_points: int) -> LoyaltyTier:
    """Return the highest tier whose threshold ``lifetime_points`` has reached."""

    points = _validate(lifetime_points)
    resolved = LoyaltyTier.BRONZE
    for tier, threshold in TIER_THRESHOLDS:
        if points >= threshold:
            resolved = tier
    return resolved


def next_tier_for(lifetime_points: int) -> tuple[LoyaltyTier | None, int]:
    """Return the next tier and the points still missing, ``(None, 0)`` at the top."""

    points = _validate(lifetime_points)
    for tier, threshold in TIER_THRESHOLDS:
        if threshold > points:
            return tier, threshold - points
    return None, 0


def tier_progress(lifetime_points: int) -> TierProgress:
    current = tier_for(lifetime_points)
    upcoming, remaining = next_tier_for(lifetime_points)
    if upcoming is None:
        return TierProgress(tier=current, next_tier=None, points_to_next_tier=0, percent=100.0)

    floor = threshold_for(current)
    span = threshold_for(upcoming) - floor
    percent = round(min(100.0, (lifetime_points - floor) / span * 100), 2)
    return TierProgress(tier=current, next_tier=upcoming, points_to_next_tier=remaining, percent=percent)


def benefits_for(tier: LoyaltyTier) -> list[str]:
    return list(TIER_BENEFITS.get(tier, ()))


__all__ = [
    "TIER_BENEFITS",
    "TIER_THRESHOLDS",
    "TierProgress",
    "benefits_for",
    "next_tier_for",
    "threshold_for",
    "tier_for",
    "tier_progress",
]
