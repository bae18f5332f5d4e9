"""Administrator endpoints for managing the quest catalog."""

from __future__ import annotations

from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_api.api.dependencies.session import require_admin_session
from rewards_api.api.v1.endpoints.quests import QuestResponse, serialize_quest
from rewards_api.db.session import get_session
from rewards_api.models.quest import QuestDifficulty, QuestKind
from rewards_api.services.loyalty import QuestRegistry


router = APIRouter(
    prefix="/admin/quests",
    tags=["admin-quests"],
    dependencies=[Depends(require_admin_session)],
)

_PATCH_FIELD_MAP = {
    "name": "name",
    "description": "description",
    "kind": "kind",
    "difficulty": "difficulty",
    "pointsReward": "points_reward",
    "badgeReward": "badge_reward",
    "discountPercent": "discount_percent",
    "nonFungibleReward": "non_fungible_reward",
    "requirements": "requirements",
    "isActive": "is_active",
}


class QuestCreateRequest(BaseModel):
    name: str
    kind: str
    pointsReward: int
    description: Optional[str] = None
    difficulty: Optional[str] = None
    badgeReward: Optional[str] = None
    discountPercent: Optional[int] = None
    nonFungibleReward: bool = False
    requirements: Dict[str, Any] = Field(default_factory=dict)
    isActive: bool = True


class QuestUpdateRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    kind: Optional[str] = None
    difficulty: Optional[str] = None
    pointsReward: Optional[int] = None
    badgeReward: Optional[str] = None
    discountPercent: Optional[int] = None
    nonFungibleReward: Optional[bool] = None
    requirements: Optional[Dict[str, Any]] = None
    isActive: Optional[bool] = None


@router.get("", response_model=List[QuestResponse])
async def list_quests(
    include_inactive: bool = Query(True, alias="includeInactive"),
    kind: Optional[QuestKind] = Query(None),
    difficulty: Optional[QuestDifficulty] = Query(None),
    limit: int = Query(100, ge=1, le=200),
    db: AsyncSession = Depends(get_session),
) -> List[QuestResponse]:
    quests = await QuestRegistry(db).list_quests(
        include_inactive=include_inactive,
        kind=kind,
        difficulty=difficulty,
        limit=limit,
    )
    return [serialize_quest(quest) for quest in quests]


@router.post("", response_model=QuestResponse, status_code=status.HTTP_201_CREATED)
async def create_quest(
    request: QuestCreateRequest,
    db: AsyncSession = Depends(get_session),
) -> QuestResponse:
    quest = await QuestRegistry(db).create_quest(
        name=request.name,
        kind=request.kind,
        points_reward=request.pointsReward,
        description=request.description,
        difficulty=request.difficulty,
        badge_reward=request.badgeReward,
        discount_percent=request.discountPercent,
        non_fungible_reward=request.nonFungibleReward,
        requirements=request.requirements,
        is_active=request.isActive,
    )
    return serialize_quest(quest)


@router.get("/{quest_id}", response_model=QuestResponse)
async def get_quest(
    quest_id: UUID,
    db: AsyncSession = Depends(get_session),
) -> QuestResponse:
    quest = await QuestRegistry(db).get_quest(quest_id)
    return serialize_quest(quest)


@router.patch("/{quest_id}", response_model=QuestResponse)
async def update_quest(
    quest_id: UUID,
    request: QuestUpdateRequest,
    db: AsyncSession = Depends(get_session),
) -> QuestResponse:
    """Apply only the fields present in the request body."""

    provided = request.model_dump(exclude_unset=True)
    patch = {_PATCH_FIELD_MAP[key]: value for key, value in provided.items()}
    quest = await QuestRegistry(db).update_quest(quest_id, patch)
    return serialize_quest(quest)


@router.post("/{quest_id}/deactivate", response_model=QuestResponse)
async def deactivate_quest(
    quest_id: UUID,
    db: AsyncSession = Depends(get_session),
) -> QuestResponse:
    quest = await QuestRegistry(db).deactivate_quest(quest_id)
    return serialize_quest(quest)


@router.delete("/{quest_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_quest(
    quest_id: UUID,
    db: AsyncSession = Depends(get_session),
) -> Response:
    await QuestRegistry(db).delete_quest(quest_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
