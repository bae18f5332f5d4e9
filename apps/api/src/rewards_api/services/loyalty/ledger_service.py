"""Award engine: the single writer of loyalty balances and ledger transactions.

Every mutation (earn, redeem, quest completion) runs as one unit of work:

* the customer's balance row is read with ``SELECT ... FOR UPDATE`` so concurrent
  writers on PostgreSQL queue behind the row lock;
* ``LoyaltyBalance.version`` is a SQLAlchemy version counter, so a writer that still
  slipped past with a stale read (SQLite, replicas) fails with ``StaleDataError``
  and the whole unit is rolled back and re-run from a fresh read;
* quest payouts are additionally guarded by the unique
  ``(customer_id, source_type, source_id)`` constraint on transactions and by the
  ``QuestProgress.version`` counter, which also covers zero-reward completions.

An in-process ``asyncio.Lock`` per customer serializes writers inside one worker so
the retry path is only exercised across processes.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import weakref
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Sequence, Tuple, TypeVar
from uuid import UUID

from loguru import logger
from sqlalchemy import and_, case, func, or_, select
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from rewards_api.core.settings import settings
from rewards_api.models.loyalty import (
    LoyaltyBalance,
    LoyaltySourceType,
    LoyaltyTier,
    LoyaltyTransaction,
    LoyaltyTransactionKind,
    utcnow,
)
from rewards_api.models.quest import QuestProgress, QuestProgressStatus
from rewards_api.observability.loyalty import get_loyalty_store
from rewards_api.observability.tracing import get_tracer
from rewards_api.services.loyalty.customers import coerce_enum, require_customer
from rewards_api.services.loyalty.errors import (
    InsufficientBalanceError,
    LoyaltyConflictError,
    LoyaltyError,
    LoyaltyInvalidArgumentError,
    LoyaltyNotFoundError,
    LoyaltyStorageUnavailableError,
)
from rewards_api.services.loyalty.quest_service import QuestProgressTracker
from rewards_api.services.loyalty.storage import store_guard
from rewards_api.services.loyalty.tiers import benefits_for, tier_for, tier_progress


T = TypeVar("T")

_tracer = get_tracer(__name__)

_CUSTOMER_LOCKS: "weakref.WeakValueDictionary[UUID, asyncio.Lock]" = weakref.WeakValueDictionary()


def _customer_lock(customer_id: UUID) -> asyncio.Lock:
    lock = _CUSTOMER_LOCKS.get(customer_id)
    if lock is None:
        lock = asyncio.Lock()
        _CUSTOMER_LOCKS[customer_id] = lock
    return lock


@dataclass
class LoyaltyBalanceSnapshot:
    """Serializable balance view; ``tier`` is always re-derived from lifetime points."""

    customer_id: UUID
    current_points: int
    lifetime_points: int
    tier: LoyaltyTier
    next_tier: LoyaltyTier | None
    points_to_next_tier: int
    progress_percent: float
    benefits: list[str]
    last_activity_at: datetime | None


@dataclass
class QuestCompletionResult:
    balance: LoyaltyBalanceSnapshot
    points_earned: int
    secondary_reward: dict[str, Any] | None
    progress: QuestProgress


@dataclass
class LedgerReconciliation:
    """Ledger totals compared with the stored balance row."""

    customer_id: UUID
    ledger_current_points: int
    ledger_lifetime_points: int
    stored_current_points: int
    stored_lifetime_points: int
    stored_tier: LoyaltyTier
    expected_tier: LoyaltyTier
    transaction_count: int
    issues: list[str] = field(default_factory=list)

    @property
    def consistent(self) -> bool:
        return not self.issues


def _validate_delta(delta: Any) -> int:
    if isinstance(delta, bool) or not isinstance(delta, int):
        raise LoyaltyInvalidArgumentError("Point delta must be an integer")
    if delta <= 0:
        raise LoyaltyInvalidArgumentError("Point delta must be positive")
    return delta


def _snapshot(
    customer_id: UUID,
    *,
    current_points: int,
    lifetime_points: int,
    last_activity_at: datetime | None,
) -> LoyaltyBalanceSnapshot:
    progress = tier_progress(lifetime_points)
    return LoyaltyBalanceSnapshot(
        customer_id=customer_id,
        current_points=current_points,
        lifetime_points=lifetime_points,
        tier=progress.tier,
        next_tier=progress.next_tier,
        points_to_next_tier=progress.points_to_next_tier,
        progress_percent=progress.percent,
        benefits=benefits_for(progress.tier),
        last_activity_at=last_activity_at,
    )


def _snapshot_balance(balance: LoyaltyBalance) -> LoyaltyBalanceSnapshot:
    return _snapshot(
        balance.customer_id,
        current_points=int(balance.current_points or 0),
        lifetime_points=int(balance.lifetime_points or 0),
        last_activity_at=balance.last_activity_at,
    )


class LoyaltyLedgerService:
    """Coordinates point awards, redemptions and quest payouts."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        tracker: QuestProgressTracker | None = None,
        max_attempts: int | None = None,
    ) -> None:
        self._db = db_session
        self._tracker = tracker or QuestProgressTracker(db_session)
        self._max_attempts = max_attempts or settings.loyalty_write_max_attempts
        self._store = get_loyalty_store()

    async def get_balance(self, customer_id: UUID) -> LoyaltyBalanceSnapshot:
        """Return the customer's balance; customers without activity read as zero."""

        stmt = (
            select(LoyaltyBalance)
            .where(LoyaltyBalance.customer_id == customer_id)
            .execution_options(populate_existing=True)
        )
        async with store_guard(self._db, "get_balance"):
            await require_customer(self._db, customer_id)
            balance = (await self._db.execute(stmt)).scalar_one_or_none()
        if balance is None:
            return _snapshot(customer_id, current_points=0, lifetime_points=0, last_activity_at=None)

        snapshot = _snapshot_balance(balance)
        if balance.tier != snapshot.tier:
            logger.warning(
                "Stored loyalty tier drifted from lifetime points",
                customer_id=str(customer_id),
                stored_tier=balance.tier.value if balance.tier else None,
                derived_tier=snapshot.tier.value,
            )
        return snapshot

    async def earn(
        self,
        customer_id: UUID,
        delta: int,
        source_type: LoyaltySourceType | str,
        *,
        source_id: str | None = None,
        description: str | None = None,
        expires_at: datetime | None = None,
    ) -> LoyaltyBalanceSnapshot:
        """Credit ``delta`` points and return the new balance.

        Quest rewards are not accepted here; ``complete_quest`` writes them together
        with the progress transition.
        """

        points = _validate_delta(delta)
        source = coerce_enum(LoyaltySourceType, source_type, "source type")
        if source == LoyaltySourceType.QUEST:
            raise LoyaltyInvalidArgumentError("Quest rewards are credited by completing the quest")
        source_ref = str(source_id) if source_id is not None else None

        async def _unit() -> LoyaltyBalanceSnapshot:
            await require_customer(self._db, customer_id)
            balance = await self._lock_balance(customer_id)
            self._apply_earn(
                balance,
                points,
                source_type=source,
                source_id=source_ref,
                description=description or "Points earned",
                expires_at=expires_at,
            )
            await self._db.flush()
            return _snapshot_balance(balance)

        snapshot = await self._run_unit(customer_id, _unit, operation="earn")
        self._store.record_earn(source.value, points)
        logger.info(
            "Recorded loyalty earn",
            customer_id=str(customer_id),
            delta=points,
            source_type=source.value,
            source_id=source_ref,
            tier=snapshot.tier.value,
        )
        return snapshot

    async def redeem(
        self,
        customer_id: UUID,
        delta: int,
        *,
        description: str | None = None,
    ) -> LoyaltyBalanceSnapshot:
        """Spend ``delta`` points; lifetime points and therefore tier are untouched."""

        points = _validate_delta(delta)

        async def _unit() -> LoyaltyBalanceSnapshot:
            await require_customer(self._db, customer_id)
            balance = await self._lock_balance(customer_id)
            available = int(balance.current_points or 0)
            if available < points:
                raise InsufficientBalanceError(points, available)

            now = utcnow()
            self._db.add(
                LoyaltyTransaction(
                    customer_id=customer_id,
                    delta=-points,
                    kind=LoyaltyTransactionKind.REDEEMED,
                    source_type=None,
                    source_id=None,
                    description=description or "Points redeemed",
                    created_at=now,
                )
            )
            balance.current_points = available - points
            balance.tier = tier_for(int(balance.lifetime_points or 0))
            balance.last_activity_at = now
            await self._db.flush()
            return _snapshot_balance(balance)

        snapshot = await self._run_unit(customer_id, _unit, operation="redeem")
        self._store.record_redeem(points)
        logger.info(
            "Recorded loyalty redemption",
            customer_id=str(customer_id),
            delta=-points,
            remaining=snapshot.current_points,
        )
        return snapshot

    async def complete_quest(self, customer_id: UUID, quest_id: UUID) -> QuestCompletionResult:
        """Mark a started quest completed and pay out its reward in the same unit."""

        async def _unit() -> QuestCompletionResult:
            await require_customer(self._db, customer_id)
            progress = await self._tracker.find_progress(customer_id, quest_id, for_update=True)
            if progress is None:
                raise LoyaltyNotFoundError(f"Quest {quest_id} has not been started by customer {customer_id}")
            if progress.status == QuestProgressStatus.COMPLETED:
                raise LoyaltyConflictError(f"Quest {quest_id} already completed")

            quest = progress.quest
            if quest is None:  # pragma: no cover - guarded by the foreign key
                raise LoyaltyNotFoundError(f"Quest {quest_id} not found")

            balance = await self._lock_balance(customer_id)
            now = utcnow()
            self._tracker.mark_completed(progress, completed_at=now)
            reward = int(quest.points_reward or 0)
            if reward > 0:
                self._apply_earn(
                    balance,
                    reward,
                    source_type=LoyaltySourceType.QUEST,
                    source_id=str(quest.id),
                    description=f"Completed quest: {quest.name}",
                    expires_at=None,
                    occurred_at=now,
                )
            await self._db.flush()
            return QuestCompletionResult(
                balance=_snapshot_balance(balance),
                points_earned=reward,
                secondary_reward=quest.secondary_reward,
                progress=progress,
            )

        try:
            result = await self._run_unit(customer_id, _unit, operation="complete_quest")
        except LoyaltyConflictError:
            self._store.record_quest_event("duplicate_completion")
            raise

        self._store.record_quest_event("completed")
        if result.points_earned:
            self._store.record_earn(LoyaltySourceType.QUEST.value, result.points_earned)
        logger.info(
            "Completed quest",
            customer_id=str(customer_id),
            quest_id=str(quest_id),
            points_earned=result.points_earned,
            tier=result.balance.tier.value,
        )
        return result

    async def award_purchase(
        self,
        customer_id: UUID,
        *,
        order_id: str,
        amount_spent: int,
    ) -> LoyaltyBalanceSnapshot:
        """Credit points for a completed order; one award per order id."""

        if isinstance(amount_spent, bool) or not isinstance(amount_spent, int) or amount_spent <= 0:
            raise LoyaltyInvalidArgumentError("Purchase amount must be a positive integer")
        points = amount_spent * settings.loyalty_purchase_points_per_unit
        return await self.earn(
            customer_id,
            points,
            LoyaltySourceType.PURCHASE,
            source_id=order_id,
            description=f"Purchase {order_id}",
        )

    async def award_review(self, customer_id: UUID, *, review_id: str) -> LoyaltyBalanceSnapshot:
        return await self.earn(
            customer_id,
            settings.loyalty_review_points,
            LoyaltySourceType.REVIEW,
            source_id=review_id,
            description="Product review",
        )

    async def award_subscription(self, customer_id: UUID, *, subscription_id: str) -> LoyaltyBalanceSnapshot:
        return await self.earn(
            customer_id,
            settings.loyalty_subscription_points,
            LoyaltySourceType.SUBSCRIPTION,
            source_id=subscription_id,
            description="Subscription sign-up",
        )

    async def list_transactions(
        self,
        customer_id: UUID,
        *,
        limit: int = 25,
        cursor: Tuple[datetime, UUID] | None = None,
        kinds: Sequence[LoyaltyTransactionKind] | None = None,
    ) -> tuple[list[LoyaltyTransaction], Tuple[datetime, UUID] | None]:
        """Return a paginated slice of the customer's ledger, newest first."""

        bounded_limit = max(1, min(limit, settings.loyalty_transactions_page_limit))
        stmt = (
            select(LoyaltyTransaction)
            .where(LoyaltyTransaction.customer_id == customer_id)
            .order_by(LoyaltyTransaction.created_at.desc(), LoyaltyTransaction.id.desc())
        )
        if kinds:
            stmt = stmt.where(LoyaltyTransaction.kind.in_(list(kinds)))
        if cursor:
            cursor_time, cursor_id = cursor
            stmt = stmt.where(
                or_(
                    LoyaltyTransaction.created_at < cursor_time,
                    and_(
                        LoyaltyTransaction.created_at == cursor_time,
                        LoyaltyTransaction.id < cursor_id,
                    ),
                )
            )

        stmt = stmt.limit(bounded_limit + 1)
        async with store_guard(self._db, "list_transactions"):
            await require_customer(self._db, customer_id)
            result = await self._db.execute(stmt)
        rows = list(result.scalars().all())
        has_more = len(rows) > bounded_limit
        entries = rows[:bounded_limit]
        next_cursor: Tuple[datetime, UUID] | None = None
        if has_more and entries:
            tail = entries[-1]
            next_cursor = (tail.created_at, tail.id)

        return entries, next_cursor

    async def reconcile_balance(self, customer_id: UUID) -> LedgerReconciliation:
        """Recompute totals from the ledger and report any drift from the balance row."""

        totals_stmt = select(
            func.coalesce(func.sum(LoyaltyTransaction.delta), 0),
            func.coalesce(
                func.sum(case((LoyaltyTransaction.delta > 0, LoyaltyTransaction.delta), else_=0)),
                0,
            ),
            func.count(LoyaltyTransaction.id),
        ).where(LoyaltyTransaction.customer_id == customer_id)
        async with store_guard(self._db, "reconcile_balance"):
            await require_customer(self._db, customer_id)
            ledger_current, ledger_lifetime, count = (await self._db.execute(totals_stmt)).one()
            balance = (
                await self._db.execute(
                    select(LoyaltyBalance)
                    .where(LoyaltyBalance.customer_id == customer_id)
                    .execution_options(populate_existing=True)
                )
            ).scalar_one_or_none()
        stored_current = int(balance.current_points or 0) if balance else 0
        stored_lifetime = int(balance.lifetime_points or 0) if balance else 0
        stored_tier = balance.tier if balance and balance.tier else LoyaltyTier.BRONZE
        expected_tier = tier_for(stored_lifetime)

        report = LedgerReconciliation(
            customer_id=customer_id,
            ledger_current_points=int(ledger_current),
            ledger_lifetime_points=int(ledger_lifetime),
            stored_current_points=stored_current,
            stored_lifetime_points=stored_lifetime,
            stored_tier=stored_tier,
            expected_tier=expected_tier,
            transaction_count=int(count),
        )
        if report.ledger_current_points != stored_current:
            report.issues.append("current_points_mismatch")
        if report.ledger_lifetime_points != stored_lifetime:
            report.issues.append("lifetime_points_mismatch")
        if stored_tier != expected_tier:
            report.issues.append("tier_mismatch")

        if report.issues:
            logger.warning(
                "Loyalty ledger drift detected",
                customer_id=str(customer_id),
                issues=report.issues,
            )
        return report

    def _apply_earn(
        self,
        balance: LoyaltyBalance,
        points: int,
        *,
        source_type: LoyaltySourceType,
        source_id: str | None,
        description: str,
        expires_at: datetime | None,
        occurred_at: datetime | None = None,
    ) -> None:
        now = occurred_at or utcnow()
        self._db.add(
            LoyaltyTransaction(
                customer_id=balance.customer_id,
                delta=points,
                kind=LoyaltyTransactionKind.EARNED,
                source_type=source_type,
                source_id=source_id,
                description=description,
                created_at=now,
                expires_at=expires_at,
            )
        )
        balance.current_points = int(balance.current_points or 0) + points
        balance.lifetime_points = int(balance.lifetime_points or 0) + points
        previous_tier = balance.tier
        balance.tier = tier_for(balance.lifetime_points)
        balance.last_activity_at = now
        if previous_tier is not None and previous_tier != balance.tier:
            logger.info(
                "Loyalty tier changed",
                customer_id=str(balance.customer_id),
                from_tier=previous_tier.value,
                to_tier=balance.tier.value,
            )

    async def _lock_balance(self, customer_id: UUID) -> LoyaltyBalance:
        stmt = (
            select(LoyaltyBalance)
            .where(LoyaltyBalance.customer_id == customer_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        balance = (await self._db.execute(stmt)).scalar_one_or_none()
        if balance is not None:
            return balance

        balance = LoyaltyBalance(
            customer_id=customer_id,
            current_points=0,
            lifetime_points=0,
            tier=LoyaltyTier.BRONZE,
        )
        self._db.add(balance)
        try:
            await self._db.flush()
        except IntegrityError as exc:
            # Another writer created the row first; re-run the unit against it.
            raise StaleDataError("Concurrent loyalty balance creation") from exc
        logger.info("Created loyalty balance", customer_id=str(customer_id))
        return balance

    async def _run_unit(
        self,
        customer_id: UUID,
        unit: Callable[[], Awaitable[T]],
        *,
        operation: str,
    ) -> T:
        """Run ``unit`` and commit it, re-running from scratch on stale balance versions."""

        with _tracer.start_as_current_span(f"loyalty.{operation}") as span:
            span.set_attribute("loyalty.customer_id", str(customer_id))
            return await self._run_unit_locked(customer_id, unit, operation=operation)

    async def _run_unit_locked(
        self,
        customer_id: UUID,
        unit: Callable[[], Awaitable[T]],
        *,
        operation: str,
    ) -> T:
        async with _customer_lock(customer_id):
            for attempt in range(1, self._max_attempts + 1):
                try:
                    result = await unit()
                    await self._db.commit()
                    return result
                except StaleDataError:
                    await self._db.rollback()
                    self._store.record_failure("stale_balance")
                    logger.warning(
                        "Concurrent loyalty balance update detected; retrying",
                        customer_id=str(customer_id),
                        operation=operation,
                        attempt=attempt,
                    )
                except LoyaltyError:
                    await self._db.rollback()
                    raise
                except IntegrityError as exc:
                    await self._db.rollback()
                    self._store.record_failure("duplicate_award")
                    logger.warning(
                        "Rejected duplicate loyalty award",
                        customer_id=str(customer_id),
                        operation=operation,
                    )
                    raise LoyaltyConflictError(
                        "A transaction for this customer and source has already been recorded"
                    ) from exc
                except DBAPIError as exc:
                    await self._db.rollback()
                    self._store.record_failure("storage_unavailable")
                    logger.exception(
                        "Loyalty store failure",
                        customer_id=str(customer_id),
                        operation=operation,
                    )
                    raise LoyaltyStorageUnavailableError("Loyalty store is unavailable") from exc

        self._store.record_failure("retries_exhausted")
        raise LoyaltyStorageUnavailableError(
            f"Could not apply {operation} after {self._max_attempts} concurrent update attempts"
        )


def encode_time_uuid_cursor(timestamp: datetime, identifier: UUID) -> str:
    """Encode pagination cursor for chronological queries."""

    payload = f"{timestamp.isoformat()}|{identifier}".encode("utf-8")
    return base64.urlsafe_b64encode(payload).decode("utf-8")


def decode_time_uuid_cursor(cursor: str) -> Tuple[datetime, UUID]:
    """Decode pagination cursor into datetime and UUID parts."""

    try:
        raw = base64.urlsafe_b64decode(cursor.encode("utf-8")).decode("utf-8")
        timestamp_str, identifier_str = raw.split("|", 1)
        return datetime.fromisoformat(timestamp_str), UUID(identifier_str)
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        raise LoyaltyInvalidArgumentError("Invalid transaction cursor") from exc


__all__ = [
    "LedgerReconciliation",
    "LoyaltyBalanceSnapshot",
    "LoyaltyLedgerService",
    "QuestCompletionResult",
    "decode_time_uuid_cursor",
    "encode_time_uuid_cursor",
]
