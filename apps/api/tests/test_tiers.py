import pytest

from rewards_api.models.loyalty import LoyaltyTier
from rewards_api.services.loyalty import LoyaltyInvalidArgumentError, next_tier_for, tier_for, tier_progress
from rewards_api.services.loyalty.tiers import benefits_for


@pytest.mark.parametrize(
    ("lifetime_points", "expected"),
    [
        (0, LoyaltyTier.BRONZE),
        (499, LoyaltyTier.BRONZE),
        (500, LoyaltyTier.SILVER),
        (1999, LoyaltyTier.SILVER),
        (2000, LoyaltyTier.GOLD),
        (4999, LoyaltyTier.GOLD),
        (5000, LoyaltyTier.PLATINUM),
        (9999, LoyaltyTier.PLATINUM),
        (10000, LoyaltyTier.DIAMOND),
        (250000, LoyaltyTier.DIAMOND),
    ],
)
def test_tier_for_uses_inclusive_thresholds(lifetime_points: int, expected: LoyaltyTier) -> None:
    assert tier_for(lifetime_points) == expected


@pytest.mark.parametrize("value", [-1, 1.5, "500", True])
def test_tier_for_rejects_invalid_totals(value) -> None:
    with pytest.raises(LoyaltyInvalidArgumentError):
        tier_for(value)


def test_next_tier_reports_remaining_points() -> None:
    assert next_tier_for(0) == (LoyaltyTier.SILVER, 500)
    assert next_tier_for(1500) == (LoyaltyTier.GOLD, 500)
    assert next_tier_for(10000) == (None, 0)


def test_tier_progress_within_band() -> None:
    progress = tier_progress(1250)

    assert progress.tier == LoyaltyTier.SILVER
    assert progress.next_tier == LoyaltyTier.GOLD
    assert progress.points_to_next_tier == 750
    assert progress.percent == 50.0


def test_tier_progress_caps_at_top_tier() -> None:
    progress = tier_progress(12000)

    assert progress.tier == LoyaltyTier.DIAMOND
    assert progress.next_tier is None
    assert progress.percent == 100.0


def test_every_tier_has_benefits() -> None:
    for tier in LoyaltyTier:
        assert benefits_for(tier), tier
