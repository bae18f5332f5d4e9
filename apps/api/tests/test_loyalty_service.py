from uuid import uuid4

import pytest
from pydantic import ValidationError
from sqlalchemy import func, select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from rewards_api.core.settings import Settings
from rewards_api.models.loyalty import (
    LoyaltyBalance,
    LoyaltySourceType,
    LoyaltyTier,
    LoyaltyTransaction,
    LoyaltyTransactionKind,
)
from rewards_api.services.loyalty import (
    InsufficientBalanceError,
    LoyaltyConflictError,
    LoyaltyInvalidArgumentError,
    LoyaltyLedgerService,
    LoyaltyNotFoundError,
    LoyaltyStorageUnavailableError,
    QuestProgressTracker,
    QuestRegistry,
    decode_time_uuid_cursor,
    encode_time_uuid_cursor,
)


async def _ledger_totals(session, customer_id):
    result = await session.execute(
        select(func.coalesce(func.sum(LoyaltyTransaction.delta), 0)).where(
            LoyaltyTransaction.customer_id == customer_id
        )
    )
    return int(result.scalar_one())


@pytest.mark.asyncio
async def test_balance_without_activity_reads_as_zero(session_factory, customer) -> None:
    async with session_factory() as session:
        snapshot = await LoyaltyLedgerService(session).get_balance(customer.id)

    assert snapshot.current_points == 0
    assert snapshot.lifetime_points == 0
    assert snapshot.tier == LoyaltyTier.BRONZE
    assert snapshot.next_tier == LoyaltyTier.SILVER
    assert snapshot.points_to_next_tier == 500
    assert snapshot.last_activity_at is None


@pytest.mark.asyncio
async def test_balance_for_unknown_customer_raises(session_factory) -> None:
    async with session_factory() as session:
        with pytest.raises(LoyaltyNotFoundError):
            await LoyaltyLedgerService(session).get_balance(uuid4())


@pytest.mark.asyncio
async def test_earn_updates_balance_and_ledger(session_factory, customer, reset_loyalty_store) -> None:
    async with session_factory() as session:
        service = LoyaltyLedgerService(session)
        await service.earn(customer.id, 300, LoyaltySourceType.MANUAL, description="Welcome bonus")
        snapshot = await service.earn(customer.id, 250, "purchase", source_id="order-1")

    assert snapshot.current_points == 550
    assert snapshot.lifetime_points == 550
    assert snapshot.tier == LoyaltyTier.SILVER
    assert snapshot.last_activity_at is not None

    async with session_factory() as session:
        balance = (
            await session.execute(select(LoyaltyBalance).where(LoyaltyBalance.customer_id == customer.id))
        ).scalar_one()
        assert balance.tier == LoyaltyTier.SILVER
        assert await _ledger_totals(session, customer.id) == balance.current_points

        entries = (
            await session.execute(
                select(LoyaltyTransaction)
                .where(LoyaltyTransaction.customer_id == customer.id)
                .order_by(LoyaltyTransaction.delta)
            )
        ).scalars().all()
        assert [entry.delta for entry in entries] == [250, 300]
        assert all(entry.kind == LoyaltyTransactionKind.EARNED for entry in entries)
        assert entries[0].source_type == LoyaltySourceType.PURCHASE
        assert entries[0].source_id == "order-1"

    snapshot = reset_loyalty_store.snapshot()
    assert snapshot.awards["earn:manual"] == 1
    assert snapshot.awards["earn:purchase"] == 1
    assert snapshot.points["earned"] == 550


@pytest.mark.asyncio
@pytest.mark.parametrize("delta", [0, -10, 2.5, True])
async def test_earn_rejects_non_positive_or_non_integer_delta(session_factory, customer, delta) -> None:
    async with session_factory() as session:
        with pytest.raises(LoyaltyInvalidArgumentError):
            await LoyaltyLedgerService(session).earn(customer.id, delta, LoyaltySourceType.MANUAL)


@pytest.mark.asyncio
async def test_earn_rejects_unknown_source_type(session_factory, customer) -> None:
    async with session_factory() as session:
        with pytest.raises(LoyaltyInvalidArgumentError):
            await LoyaltyLedgerService(session).earn(customer.id, 10, "referral")


@pytest.mark.asyncio
async def test_earn_for_unknown_customer_raises_not_found(session_factory) -> None:
    async with session_factory() as session:
        with pytest.raises(LoyaltyNotFoundError):
            await LoyaltyLedgerService(session).earn(uuid4(), 10, LoyaltySourceType.MANUAL)


@pytest.mark.asyncio
async def test_duplicate_source_reference_is_rejected(session_factory, customer, reset_loyalty_store) -> None:
    async with session_factory() as session:
        service = LoyaltyLedgerService(session)
        await service.earn(customer.id, 40, LoyaltySourceType.REVIEW, source_id="review-9")

        with pytest.raises(LoyaltyConflictError):
            await service.earn(customer.id, 40, LoyaltySourceType.REVIEW, source_id="review-9")

        snapshot = await service.get_balance(customer.id)

    assert snapshot.current_points == 40
    assert snapshot.lifetime_points == 40
    assert reset_loyalty_store.snapshot().failures["duplicate_award"] == 1


@pytest.mark.asyncio
async def test_redeem_boundary(session_factory, customer) -> None:
    async with session_factory() as session:
        service = LoyaltyLedgerService(session)
        await service.earn(customer.id, 300, LoyaltySourceType.MANUAL)

        snapshot = await service.redeem(customer.id, 300, description="Gift card")
        assert snapshot.current_points == 0
        assert snapshot.lifetime_points == 300

        with pytest.raises(InsufficientBalanceError) as excinfo:
            await service.redeem(customer.id, 1)
        assert excinfo.value.requested == 1
        assert excinfo.value.available == 0

        snapshot = await service.get_balance(customer.id)

    assert snapshot.current_points == 0
    assert snapshot.lifetime_points == 300

    async with session_factory() as session:
        count = (
            await session.execute(
                select(func.count(LoyaltyTransaction.id)).where(LoyaltyTransaction.customer_id == customer.id)
            )
        ).scalar_one()
        assert count == 2


@pytest.mark.asyncio
async def test_redeem_without_balance_row_is_insufficient(session_factory, customer) -> None:
    async with session_factory() as session:
        with pytest.raises(InsufficientBalanceError):
            await LoyaltyLedgerService(session).redeem(customer.id, 5)


@pytest.mark.asyncio
async def test_redemption_keeps_tier(session_factory, customer) -> None:
    async with session_factory() as session:
        service = LoyaltyLedgerService(session)
        earned = await service.earn(customer.id, 2100, LoyaltySourceType.MANUAL)
        assert earned.tier == LoyaltyTier.GOLD

        redeemed = await service.redeem(customer.id, 2000)

    assert redeemed.current_points == 100
    assert redeemed.lifetime_points == 2100
    assert redeemed.tier == LoyaltyTier.GOLD

    async with session_factory() as session:
        entry = (
            await session.execute(
                select(LoyaltyTransaction).where(LoyaltyTransaction.kind == LoyaltyTransactionKind.REDEEMED)
            )
        ).scalar_one()
        assert entry.delta == -2000
        assert entry.source_type is None


@pytest.mark.asyncio
async def test_quest_reward_then_redeem_scenario(session_factory, customer) -> None:
    async with session_factory() as session:
        quest = await QuestRegistry(session).create_quest(name="Big spender", kind="purchase", points_reward=600)
        await QuestProgressTracker(session).start_quest(customer.id, quest.id)

        service = LoyaltyLedgerService(session)
        completion = await service.complete_quest(customer.id, quest.id)
        assert (
            completion.balance.current_points,
            completion.balance.lifetime_points,
            completion.balance.tier,
        ) == (600, 600, LoyaltyTier.SILVER)

        snapshot = await service.redeem(customer.id, 600)

    assert (snapshot.current_points, snapshot.lifetime_points, snapshot.tier) == (0, 600, LoyaltyTier.SILVER)


@pytest.mark.asyncio
async def test_award_rules_use_configured_points(session_factory, customer) -> None:
    async with session_factory() as session:
        service = LoyaltyLedgerService(session)
        await service.award_purchase(customer.id, order_id="order-77", amount_spent=120)
        await service.award_review(customer.id, review_id="review-1")
        snapshot = await service.award_subscription(customer.id, subscription_id="sub-1")

        with pytest.raises(LoyaltyConflictError):
            await service.award_purchase(customer.id, order_id="order-77", amount_spent=120)

        with pytest.raises(LoyaltyInvalidArgumentError):
            await service.award_purchase(customer.id, order_id="order-78", amount_spent=0)

    assert snapshot.lifetime_points == 120 + 50 + 200
    assert snapshot.current_points == 370


@pytest.mark.asyncio
async def test_list_transactions_paginates_with_cursor(session_factory, customer) -> None:
    async with session_factory() as session:
        service = LoyaltyLedgerService(session)
        for index in range(3):
            await service.earn(customer.id, 10 + index, LoyaltySourceType.MANUAL, source_id=f"grant-{index}")
        await service.redeem(customer.id, 5)

    async with session_factory() as session:
        service = LoyaltyLedgerService(session)
        first_page, cursor = await service.list_transactions(customer.id, limit=2)
        assert len(first_page) == 2
        assert cursor is not None

        decoded = decode_time_uuid_cursor(encode_time_uuid_cursor(*cursor))
        second_page, next_cursor = await service.list_transactions(customer.id, limit=2, cursor=decoded)
        assert len(second_page) == 2
        assert next_cursor is None

        seen = {entry.id for entry in first_page} | {entry.id for entry in second_page}
        assert len(seen) == 4

        redeemed, _ = await service.list_transactions(customer.id, kinds=[LoyaltyTransactionKind.REDEEMED])
        assert [entry.delta for entry in redeemed] == [-5]


def test_decode_cursor_rejects_garbage() -> None:
    with pytest.raises(LoyaltyInvalidArgumentError):
        decode_time_uuid_cursor("not-a-cursor")


@pytest.mark.asyncio
async def test_reconcile_reports_consistent_ledger(session_factory, customer) -> None:
    async with session_factory() as session:
        service = LoyaltyLedgerService(session)
        await service.earn(customer.id, 800, LoyaltySourceType.MANUAL)
        await service.redeem(customer.id, 300)
        report = await service.reconcile_balance(customer.id)

    assert report.consistent
    assert report.ledger_current_points == 500
    assert report.ledger_lifetime_points == 800
    assert report.transaction_count == 2


@pytest.mark.asyncio
async def test_reconcile_detects_drift(session_factory, customer) -> None:
    async with session_factory() as session:
        await LoyaltyLedgerService(session).earn(customer.id, 800, LoyaltySourceType.MANUAL)

    async with session_factory() as session:
        await session.execute(
            update(LoyaltyBalance)
            .where(LoyaltyBalance.customer_id == customer.id)
            .values(current_points=900, tier=LoyaltyTier.GOLD)
        )
        await session.commit()

    async with session_factory() as session:
        report = await LoyaltyLedgerService(session).reconcile_balance(customer.id)

    assert not report.consistent
    assert "current_points_mismatch" in report.issues
    assert "tier_mismatch" in report.issues
    assert "lifetime_points_mismatch" not in report.issues


@pytest.mark.asyncio
async def test_stale_balance_is_retried(session_factory, customer, reset_loyalty_store) -> None:
    attempts = {"count": 0}

    async with session_factory() as session:
        service = LoyaltyLedgerService(session, max_attempts=3)

        async def flaky_unit() -> str:
            attempts["count"] += 1
            if attempts["count"] < 3:
                raise StaleDataError("version mismatch")
            return "applied"

        result = await service._run_unit(customer.id, flaky_unit, operation="earn")

    assert result == "applied"
    assert attempts["count"] == 3
    assert reset_loyalty_store.snapshot().failures["stale_balance"] == 2


@pytest.mark.asyncio
async def test_exhausted_retries_surface_storage_unavailable(session_factory, customer, reset_loyalty_store) -> None:
    async with session_factory() as session:
        service = LoyaltyLedgerService(session, max_attempts=2)

        async def always_stale() -> None:
            raise StaleDataError("version mismatch")

        with pytest.raises(LoyaltyStorageUnavailableError):
            await service._run_unit(customer.id, always_stale, operation="earn")

    failures = reset_loyalty_store.snapshot().failures
    assert failures["stale_balance"] == 2
    assert failures["retries_exhausted"] == 1


@pytest.mark.asyncio
async def test_store_failure_maps_to_storage_unavailable(session_factory, customer) -> None:
    async with session_factory() as session:
        service = LoyaltyLedgerService(session)

        async def broken_unit() -> None:
            raise OperationalError("SELECT 1", {}, Exception("database is locked"))

        with pytest.raises(LoyaltyStorageUnavailableError):
            await service._run_unit(customer.id, broken_unit, operation="redeem")


@pytest.mark.asyncio
async def test_ledger_reads_map_store_failures(session_factory, customer, monkeypatch) -> None:
    async def locked_execute(self, *args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    async with session_factory() as session:
        service = LoyaltyLedgerService(session)
        monkeypatch.setattr(AsyncSession, "execute", locked_execute)

        for read in (service.get_balance, service.list_transactions, service.reconcile_balance):
            with pytest.raises(LoyaltyStorageUnavailableError):
                await read(customer.id)


@pytest.mark.parametrize(
    "field",
    ["loyalty_purchase_points_per_unit", "loyalty_review_points", "loyalty_subscription_points"],
)
def test_earn_rule_amounts_must_be_positive(field) -> None:
    with pytest.raises(ValidationError):
        Settings(**{field: 0})
