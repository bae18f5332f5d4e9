"""Quest catalog management and per-customer quest progress tracking."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping
from uuid import UUID

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from rewards_api.models.loyalty import utcnow
from rewards_api.models.quest import (
    Quest,
    QuestDifficulty,
    QuestKind,
    QuestProgress,
    QuestProgressStatus,
)
from rewards_api.observability.loyalty import get_loyalty_store
from rewards_api.services.loyalty.customers import coerce_enum, require_customer
from rewards_api.services.loyalty.errors import (
    LoyaltyConflictError,
    LoyaltyInvalidArgumentError,
    LoyaltyNotFoundError,
)
from rewards_api.services.loyalty.storage import store_guard


_UPDATABLE_FIELDS = frozenset(
    {
        "name",
        "description",
        "kind",
        "difficulty",
        "points_reward",
        "badge_reward",
        "discount_percent",
        "non_fungible_reward",
        "requirements",
        "is_active",
    }
)


@dataclass(slots=True)
class QuestStartResult:
    """Progress row returned by ``start_quest`` and whether it was just created."""

    progress: QuestProgress
    created: bool


def _validate_name(name: Any) -> str:
    if not isinstance(name, str) or not name.strip():
        raise LoyaltyInvalidArgumentError("Quest name is required")
    return name.strip()


def _validate_points_reward(points_reward: Any) -> int:
    if isinstance(points_reward, bool) or not isinstance(points_reward, int):
        raise LoyaltyInvalidArgumentError("Quest points reward must be an integer")
    if points_reward < 0:
        raise LoyaltyInvalidArgumentError("Quest points reward cannot be negative")
    return points_reward


def _validate_discount(discount_percent: Any) -> int | None:
    if discount_percent is None:
        return None
    if isinstance(discount_percent, bool) or not isinstance(discount_percent, int):
        raise LoyaltyInvalidArgumentError("Discount percent must be an integer")
    if not 0 < discount_percent <= 100:
        raise LoyaltyInvalidArgumentError("Discount percent must be between 1 and 100")
    return discount_percent


def _validate_requirements(requirements: Any) -> dict[str, Any]:
    if requirements is None:
        return {}
    if not isinstance(requirements, Mapping):
        raise LoyaltyInvalidArgumentError("Quest requirements must be an object")
    return dict(requirements)


class QuestRegistry:
    """Administrator-facing catalog of reward-bearing quests."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def create_quest(
        self,
        *,
        name: str,
        kind: QuestKind | str,
        points_reward: int,
        description: str | None = None,
        difficulty: QuestDifficulty | str | None = None,
        badge_reward: str | None = None,
        discount_percent: int | None = None,
        non_fungible_reward: bool = False,
        requirements: Mapping[str, Any] | None = None,
        is_active: bool = True,
    ) -> Quest:
        """Validate and persist a new quest definition."""

        quest = Quest(
            name=_validate_name(name),
            description=description,
            kind=coerce_enum(QuestKind, kind, "quest kind"),
            difficulty=coerce_enum(QuestDifficulty, difficulty, "quest difficulty") if difficulty is not None else None,
            points_reward=_validate_points_reward(points_reward),
            badge_reward=badge_reward or None,
            discount_percent=_validate_discount(discount_percent),
            non_fungible_reward=bool(non_fungible_reward),
            requirements=_validate_requirements(requirements),
            is_active=bool(is_active),
        )
        async with store_guard(self._db, "create_quest"):
            self._db.add(quest)
            await self._db.commit()
            await self._db.refresh(quest)
        logger.info(
            "Created quest",
            quest_id=str(quest.id),
            kind=quest.kind.value,
            points_reward=quest.points_reward,
        )
        return quest

    async def get_quest(self, quest_id: UUID, *, active_only: bool = False) -> Quest:
        stmt = select(Quest).where(Quest.id == quest_id)
        if active_only:
            stmt = stmt.where(Quest.is_active.is_(True))
        async with store_guard(self._db, "get_quest"):
            result = await self._db.execute(stmt)
        quest = result.scalar_one_or_none()
        if quest is None:
            suffix = " or inactive" if active_only else ""
            raise LoyaltyNotFoundError(f"Quest {quest_id} not found{suffix}")
        return quest

    async def update_quest(self, quest_id: UUID, patch: Mapping[str, Any]) -> Quest:
        """Apply a partial update; unknown fields are rejected rather than ignored."""

        unknown = set(patch) - _UPDATABLE_FIELDS
        if unknown:
            raise LoyaltyInvalidArgumentError(f"Unsupported quest fields: {', '.join(sorted(unknown))}")

        quest = await self.get_quest(quest_id)
        for field, value in patch.items():
            if field == "name":
                value = _validate_name(value)
            elif field == "kind":
                value = coerce_enum(QuestKind, value, "quest kind")
            elif field == "difficulty" and value is not None:
                value = coerce_enum(QuestDifficulty, value, "quest difficulty")
            elif field == "points_reward":
                value = _validate_points_reward(value)
            elif field == "discount_percent":
                value = _validate_discount(value)
            elif field == "requirements":
                value = _validate_requirements(value)
            elif field in {"is_active", "non_fungible_reward"}:
                if not isinstance(value, bool):
                    raise LoyaltyInvalidArgumentError(f"{field} must be a boolean")
            setattr(quest, field, value)

        async with store_guard(self._db, "update_quest"):
            await self._db.commit()
            await self._db.refresh(quest)
        logger.info("Updated quest", quest_id=str(quest.id), fields=sorted(patch))
        return quest

    async def deactivate_quest(self, quest_id: UUID) -> Quest:
        """Hide a quest from new starts; existing progress keeps running."""

        quest = await self.get_quest(quest_id)
        if not quest.is_active:
            raise LoyaltyConflictError(f"Quest {quest_id} is already inactive")

        quest.is_active = False
        async with store_guard(self._db, "deactivate_quest"):
            await self._db.commit()
            await self._db.refresh(quest)
        logger.info("Deactivated quest", quest_id=str(quest.id))
        return quest

    async def delete_quest(self, quest_id: UUID) -> None:
        """Hard-delete a quest that no customer has ever started."""

        quest = await self.get_quest(quest_id)
        async with store_guard(self._db, "delete_quest"):
            references = await self._db.execute(
                select(func.count(QuestProgress.id)).where(QuestProgress.quest_id == quest.id)
            )
            if int(references.scalar_one() or 0) > 0:
                raise LoyaltyConflictError(
                    f"Quest {quest_id} has progress records; deactivate it instead of deleting"
                )

            await self._db.delete(quest)
            await self._db.commit()
        logger.info("Deleted quest", quest_id=str(quest_id))

    async def list_active_quests(
        self,
        *,
        kind: QuestKind | str | None = None,
        difficulty: QuestDifficulty | str | None = None,
    ) -> list[Quest]:
        """Return quests open for new starts, newest first."""

        return await self.list_quests(include_inactive=False, kind=kind, difficulty=difficulty)

    async def list_quests(
        self,
        *,
        include_inactive: bool = True,
        kind: QuestKind | str | None = None,
        difficulty: QuestDifficulty | str | None = None,
        limit: int | None = None,
    ) -> list[Quest]:
        stmt = select(Quest).order_by(Quest.created_at.desc(), Quest.id.desc())
        if not include_inactive:
            stmt = stmt.where(Quest.is_active.is_(True))
        if kind is not None:
            stmt = stmt.where(Quest.kind == coerce_enum(QuestKind, kind, "quest kind"))
        if difficulty is not None:
            stmt = stmt.where(Quest.difficulty == coerce_enum(QuestDifficulty, difficulty, "quest difficulty"))
        if limit is not None:
            stmt = stmt.limit(max(1, min(limit, 200)))

        async with store_guard(self._db, "list_quests"):
            result = await self._db.execute(stmt)
        quests = list(result.scalars().all())
        logger.debug("Fetched quests", count=len(quests), include_inactive=include_inactive)
        return quests


class QuestProgressTracker:
    """Owns the in_progress -> completed state machine per customer and quest."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session
        self._store = get_loyalty_store()

    async def start_quest(self, customer_id: UUID, quest_id: UUID) -> QuestStartResult:
        """Start a quest; repeated starts return the existing row unchanged."""

        async with store_guard(self._db, "start_quest"):
            await require_customer(self._db, customer_id)
            existing = await self.find_progress(customer_id, quest_id)
            if existing is not None:
                return QuestStartResult(progress=existing, created=False)

            quest = await QuestRegistry(self._db).get_quest(quest_id, active_only=True)

            progress = QuestProgress(
                customer_id=customer_id,
                quest_id=quest.id,
                status=QuestProgressStatus.IN_PROGRESS,
                progress={},
            )
            self._db.add(progress)
            try:
                await self._db.commit()
            except IntegrityError as exc:
                await self._db.rollback()
                logger.warning(
                    "Detected race when starting quest",
                    customer_id=str(customer_id),
                    quest_id=str(quest_id),
                )
                concurrent = await self.find_progress(customer_id, quest_id)
                if concurrent is None:
                    raise LoyaltyConflictError(f"Quest {quest_id} could not be started") from exc
                return QuestStartResult(progress=concurrent, created=False)

            self._store.record_quest_event("started")
            logger.info("Started quest", customer_id=str(customer_id), quest_id=str(quest_id))
            started = await self.find_progress(customer_id, quest_id)
        if started is None:  # pragma: no cover - committed row vanished
            raise LoyaltyNotFoundError(f"Quest progress for {quest_id} not found")
        return QuestStartResult(progress=started, created=True)

    async def find_progress(
        self,
        customer_id: UUID,
        quest_id: UUID,
        *,
        for_update: bool = False,
    ) -> QuestProgress | None:
        stmt = (
            select(QuestProgress)
            .options(selectinload(QuestProgress.quest))
            .where(QuestProgress.customer_id == customer_id, QuestProgress.quest_id == quest_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_progress(self, customer_id: UUID, quest_id: UUID) -> QuestProgress:
        async with store_guard(self._db, "get_progress"):
            progress = await self.find_progress(customer_id, quest_id)
        if progress is None:
            raise LoyaltyNotFoundError(f"Quest {quest_id} has not been started by customer {customer_id}")
        return progress

    async def list_progress(
        self,
        customer_id: UUID,
        *,
        status: QuestProgressStatus | str | None = None,
    ) -> list[QuestProgress]:
        """Return the customer's quest rows with their definitions, newest first."""

        stmt = (
            select(QuestProgress)
            .options(selectinload(QuestProgress.quest))
            .where(QuestProgress.customer_id == customer_id)
            .order_by(QuestProgress.started_at.desc(), QuestProgress.id.desc())
        )
        if status is not None:
            stmt = stmt.where(
                QuestProgress.status == coerce_enum(QuestProgressStatus, status, "quest progress status")
            )
        async with store_guard(self._db, "list_progress"):
            await require_customer(self._db, customer_id)
            result = await self._db.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    def mark_completed(progress: QuestProgress, *, completed_at: datetime | None = None) -> None:
        """Flip a row to completed without flushing.

        Only the award engine calls this, inside the unit of work that also writes the
        reward transaction, so completion and payout commit or roll back together.
        """

        if progress.status == QuestProgressStatus.COMPLETED:
            raise LoyaltyConflictError(f"Quest {progress.quest_id} already completed")
        progress.status = QuestProgressStatus.COMPLETED
        progress.completed_at = completed_at or utcnow()


__all__ = ["QuestProgressTracker", "QuestRegistry", "QuestStartResult"]
