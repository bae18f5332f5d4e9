"""Member-facing quest catalog and quest progress endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_api.api.dependencies.session import require_member_session
from rewards_api.api.v1.endpoints.loyalty import LoyaltyBalanceResponse, serialize_balance
from rewards_api.db.session import get_session
from rewards_api.models.quest import Quest, QuestDifficulty, QuestKind, QuestProgress, QuestProgressStatus
from rewards_api.models.user import User
from rewards_api.services.loyalty import LoyaltyLedgerService, QuestProgressTracker, QuestRegistry


router = APIRouter(prefix="/quests", tags=["quests"])


class SecondaryRewardResponse(BaseModel):
    badge: Optional[str]
    discountPercent: Optional[int]
    nonFungible: bool


class QuestResponse(BaseModel):
    id: UUID
    name: str
    description: Optional[str]
    kind: str
    difficulty: Optional[str]
    pointsReward: int
    secondaryReward: Optional[SecondaryRewardResponse]
    requirements: Dict[str, Any]
    isActive: bool
    createdAt: datetime
    updatedAt: datetime


class QuestProgressResponse(BaseModel):
    id: UUID
    questId: UUID
    status: str
    progress: Dict[str, Any]
    startedAt: datetime
    completedAt: Optional[datetime]
    quest: Optional[QuestResponse]


class QuestCompletionResponse(BaseModel):
    progress: QuestProgressResponse
    pointsEarned: int
    secondaryReward: Optional[SecondaryRewardResponse]
    balance: LoyaltyBalanceResponse


def _serialize_secondary_reward(reward: Dict[str, Any] | None) -> SecondaryRewardResponse | None:
    if not reward:
        return None
    return SecondaryRewardResponse(
        badge=reward.get("badge"),
        discountPercent=reward.get("discount_percent"),
        nonFungible=bool(reward.get("non_fungible")),
    )


def serialize_quest(quest: Quest) -> QuestResponse:
    return QuestResponse(
        id=quest.id,
        name=quest.name,
        description=quest.description,
        kind=quest.kind.value,
        difficulty=quest.difficulty.value if quest.difficulty else None,
        pointsReward=int(quest.points_reward or 0),
        secondaryReward=_serialize_secondary_reward(quest.secondary_reward),
        requirements=dict(quest.requirements or {}),
        isActive=bool(quest.is_active),
        createdAt=quest.created_at,
        updatedAt=quest.updated_at,
    )


def _serialize_progress(progress: QuestProgress) -> QuestProgressResponse:
    return QuestProgressResponse(
        id=progress.id,
        questId=progress.quest_id,
        status=progress.status.value,
        progress=dict(progress.progress or {}),
        startedAt=progress.started_at,
        completedAt=progress.completed_at,
        quest=serialize_quest(progress.quest) if progress.quest is not None else None,
    )


@router.get("", response_model=List[QuestResponse])
async def list_active_quests(
    kind: Optional[QuestKind] = Query(None),
    difficulty: Optional[QuestDifficulty] = Query(None),
    db: AsyncSession = Depends(get_session),
) -> List[QuestResponse]:
    """List quests currently open for new starts."""

    quests = await QuestRegistry(db).list_active_quests(kind=kind, difficulty=difficulty)
    return [serialize_quest(quest) for quest in quests]


@router.get("/progress", response_model=List[QuestProgressResponse])
async def list_my_quest_progress(
    status_filter: Optional[QuestProgressStatus] = Query(None, alias="status"),
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> List[QuestProgressResponse]:
    rows = await QuestProgressTracker(db).list_progress(user.id, status=status_filter)
    return [_serialize_progress(row) for row in rows]


@router.get("/{quest_id}", response_model=QuestResponse)
async def get_active_quest(
    quest_id: UUID,
    db: AsyncSession = Depends(get_session),
) -> QuestResponse:
    quest = await QuestRegistry(db).get_quest(quest_id, active_only=True)
    return serialize_quest(quest)


@router.get("/{quest_id}/progress", response_model=QuestProgressResponse)
async def get_my_quest_progress(
    quest_id: UUID,
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> QuestProgressResponse:
    progress = await QuestProgressTracker(db).get_progress(user.id, quest_id)
    return _serialize_progress(progress)


@router.post("/{quest_id}/start", response_model=QuestProgressResponse)
async def start_quest(
    quest_id: UUID,
    response: Response,
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> QuestProgressResponse:
    """Start a quest for the session member; starting twice returns the same row."""

    customer_id = user.id
    result = await QuestProgressTracker(db).start_quest(customer_id, quest_id)
    response.status_code = status.HTTP_201_CREATED if result.created else status.HTTP_200_OK
    return _serialize_progress(result.progress)


@router.post("/{quest_id}/complete", response_model=QuestCompletionResponse)
async def complete_quest(
    quest_id: UUID,
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> QuestCompletionResponse:
    """Complete a started quest and pay out its reward exactly once."""

    customer_id = user.id
    result = await LoyaltyLedgerService(db).complete_quest(customer_id, quest_id)
    return QuestCompletionResponse(
        progress=_serialize_progress(result.progress),
        pointsEarned=result.points_earned,
        secondaryReward=_serialize_secondary_reward(result.secondary_reward),
        balance=serialize_balance(result.balance),
    )
