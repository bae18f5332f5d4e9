"""API endpoints for loyalty balances, the points ledger and tier progression."""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_api.api.dependencies.security import require_internal_api_key, require_internal_or_admin
from rewards_api.api.dependencies.session import require_member_session
from rewards_api.db.session import get_session
from rewards_api.models.loyalty import LoyaltyTransaction, LoyaltyTransactionKind
from rewards_api.models.user import User
from rewards_api.services.loyalty import (
    LedgerReconciliation,
    LoyaltyBalanceSnapshot,
    LoyaltyLedgerService,
    decode_time_uuid_cursor,
    encode_time_uuid_cursor,
)
from rewards_api.services.loyalty.tiers import TIER_THRESHOLDS, benefits_for


router = APIRouter(prefix="/loyalty", tags=["loyalty"])


class LoyaltyTierResponse(BaseModel):
    slug: str
    pointThreshold: int
    benefits: List[str]


class LoyaltyBalanceResponse(BaseModel):
    customerId: UUID
    currentPoints: int
    lifetimePoints: int
    tier: str
    nextTier: Optional[str]
    pointsToNextTier: int
    progressToNextTier: float
    benefits: List[str]
    lastActivityAt: Optional[datetime]


class EarnRequest(BaseModel):
    points: int = Field(..., gt=0, description="Points to credit")
    sourceType: str = Field(..., description="purchase, review, manual or subscription")
    sourceId: Optional[str] = Field(None, description="Idempotency reference such as an order id")
    description: Optional[str] = Field(None, description="Ledger description shown to the member")
    expiresAt: Optional[datetime] = Field(None, description="Optional expiry for the credited points")


class RedeemRequest(BaseModel):
    points: int = Field(..., gt=0, description="Points to spend")
    description: Optional[str] = Field(None, description="Ledger description shown to the member")


class PurchaseAwardRequest(BaseModel):
    orderId: str = Field(..., min_length=1)
    amountSpent: int = Field(..., gt=0, description="Order total in whole currency units")


class ReviewAwardRequest(BaseModel):
    reviewId: str = Field(..., min_length=1)


class SubscriptionAwardRequest(BaseModel):
    subscriptionId: str = Field(..., min_length=1)


class TransactionResponse(BaseModel):
    id: UUID
    delta: int
    kind: str
    sourceType: Optional[str]
    sourceId: Optional[str]
    description: Optional[str]
    createdAt: datetime
    expiresAt: Optional[datetime]


class TransactionWindowResponse(BaseModel):
    transactions: List[TransactionResponse]
    nextCursor: Optional[str]


class ReconciliationResponse(BaseModel):
    customerId: UUID
    consistent: bool
    issues: List[str]
    ledgerCurrentPoints: int
    ledgerLifetimePoints: int
    storedCurrentPoints: int
    storedLifetimePoints: int
    storedTier: str
    expectedTier: str
    transactionCount: int


def serialize_balance(snapshot: LoyaltyBalanceSnapshot) -> LoyaltyBalanceResponse:
    return LoyaltyBalanceResponse(
        customerId=snapshot.customer_id,
        currentPoints=snapshot.current_points,
        lifetimePoints=snapshot.lifetime_points,
        tier=snapshot.tier.value,
        nextTier=snapshot.next_tier.value if snapshot.next_tier else None,
        pointsToNextTier=snapshot.points_to_next_tier,
        progressToNextTier=snapshot.progress_percent,
        benefits=list(snapshot.benefits),
        lastActivityAt=snapshot.last_activity_at,
    )


def _serialize_transaction(entry: LoyaltyTransaction) -> TransactionResponse:
    return TransactionResponse(
        id=entry.id,
        delta=int(entry.delta),
        kind=entry.kind.value,
        sourceType=entry.source_type.value if entry.source_type else None,
        sourceId=entry.source_id,
        description=entry.description,
        createdAt=entry.created_at,
        expiresAt=entry.expires_at,
    )


def _serialize_reconciliation(report: LedgerReconciliation) -> ReconciliationResponse:
    return ReconciliationResponse(
        customerId=report.customer_id,
        consistent=report.consistent,
        issues=list(report.issues),
        ledgerCurrentPoints=report.ledger_current_points,
        ledgerLifetimePoints=report.ledger_lifetime_points,
        storedCurrentPoints=report.stored_current_points,
        storedLifetimePoints=report.stored_lifetime_points,
        storedTier=report.stored_tier.value,
        expectedTier=report.expected_tier.value,
        transactionCount=report.transaction_count,
    )


async def _transaction_window(
    db: AsyncSession,
    customer_id: UUID,
    *,
    limit: int,
    cursor: str | None,
    kind: str | None,
) -> TransactionWindowResponse:
    service = LoyaltyLedgerService(db)
    decoded_cursor = decode_time_uuid_cursor(cursor) if cursor else None
    kinds = [LoyaltyTransactionKind(kind)] if kind else None
    entries, next_cursor = await service.list_transactions(
        customer_id,
        limit=limit,
        cursor=decoded_cursor,
        kinds=kinds,
    )
    return TransactionWindowResponse(
        transactions=[_serialize_transaction(entry) for entry in entries],
        nextCursor=encode_time_uuid_cursor(*next_cursor) if next_cursor else None,
    )


@router.get("/tiers", response_model=List[LoyaltyTierResponse])
async def list_loyalty_tiers() -> List[LoyaltyTierResponse]:
    """List tiers with their lifetime point thresholds and benefits."""

    return [
        LoyaltyTierResponse(slug=tier.value, pointThreshold=threshold, benefits=benefits_for(tier))
        for tier, threshold in TIER_THRESHOLDS
    ]


@router.get("/me/balance", response_model=LoyaltyBalanceResponse)
async def get_my_balance(
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> LoyaltyBalanceResponse:
    snapshot = await LoyaltyLedgerService(db).get_balance(user.id)
    return serialize_balance(snapshot)


@router.get("/me/transactions", response_model=TransactionWindowResponse)
async def list_my_transactions(
    limit: int = Query(25, ge=1, le=100),
    cursor: Optional[str] = Query(None),
    kind: Optional[Literal["earned", "redeemed"]] = Query(None),
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> TransactionWindowResponse:
    """Return the session member's point history, newest first."""

    return await _transaction_window(db, user.id, limit=limit, cursor=cursor, kind=kind)


@router.post("/me/redeem", response_model=LoyaltyBalanceResponse)
async def redeem_my_points(
    request: RedeemRequest,
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> LoyaltyBalanceResponse:
    customer_id = user.id
    snapshot = await LoyaltyLedgerService(db).redeem(
        customer_id,
        request.points,
        description=request.description,
    )
    return serialize_balance(snapshot)


@router.get(
    "/members/{customer_id}/balance",
    response_model=LoyaltyBalanceResponse,
    dependencies=[Depends(require_internal_or_admin)],
)
async def get_member_balance(
    customer_id: UUID,
    db: AsyncSession = Depends(get_session),
) -> LoyaltyBalanceResponse:
    snapshot = await LoyaltyLedgerService(db).get_balance(customer_id)
    return serialize_balance(snapshot)


@router.get(
    "/members/{customer_id}/transactions",
    response_model=TransactionWindowResponse,
    dependencies=[Depends(require_internal_or_admin)],
)
async def list_member_transactions(
    customer_id: UUID,
    limit: int = Query(25, ge=1, le=100),
    cursor: Optional[str] = Query(None),
    kind: Optional[Literal["earned", "redeemed"]] = Query(None),
    db: AsyncSession = Depends(get_session),
) -> TransactionWindowResponse:
    return await _transaction_window(db, customer_id, limit=limit, cursor=cursor, kind=kind)


@router.post(
    "/members/{customer_id}/earn",
    response_model=LoyaltyBalanceResponse,
    dependencies=[Depends(require_internal_or_admin)],
)
async def earn_member_points(
    customer_id: UUID,
    request: EarnRequest,
    db: AsyncSession = Depends(get_session),
) -> LoyaltyBalanceResponse:
    """Credit points from an order, review, subscription or manual admin grant."""

    snapshot = await LoyaltyLedgerService(db).earn(
        customer_id,
        request.points,
        request.sourceType,
        source_id=request.sourceId,
        description=request.description,
        expires_at=request.expiresAt,
    )
    return serialize_balance(snapshot)


@router.post(
    "/members/{customer_id}/redeem",
    response_model=LoyaltyBalanceResponse,
    dependencies=[Depends(require_internal_or_admin)],
)
async def redeem_member_points(
    customer_id: UUID,
    request: RedeemRequest,
    db: AsyncSession = Depends(get_session),
) -> LoyaltyBalanceResponse:
    snapshot = await LoyaltyLedgerService(db).redeem(
        customer_id,
        request.points,
        description=request.description,
    )
    return serialize_balance(snapshot)


@router.post(
    "/members/{customer_id}/purchases",
    response_model=LoyaltyBalanceResponse,
    dependencies=[Depends(require_internal_api_key)],
)
async def award_member_purchase(
    customer_id: UUID,
    request: PurchaseAwardRequest,
    db: AsyncSession = Depends(get_session),
) -> LoyaltyBalanceResponse:
    """Called by the order flow once an order completes."""

    snapshot = await LoyaltyLedgerService(db).award_purchase(
        customer_id,
        order_id=request.orderId,
        amount_spent=request.amountSpent,
    )
    return serialize_balance(snapshot)


@router.post(
    "/members/{customer_id}/reviews",
    response_model=LoyaltyBalanceResponse,
    dependencies=[Depends(require_internal_api_key)],
)
async def award_member_review(
    customer_id: UUID,
    request: ReviewAwardRequest,
    db: AsyncSession = Depends(get_session),
) -> LoyaltyBalanceResponse:
    snapshot = await LoyaltyLedgerService(db).award_review(customer_id, review_id=request.reviewId)
    return serialize_balance(snapshot)


@router.post(
    "/members/{customer_id}/subscriptions",
    response_model=LoyaltyBalanceResponse,
    dependencies=[Depends(require_internal_api_key)],
)
async def award_member_subscription(
    customer_id: UUID,
    request: SubscriptionAwardRequest,
    db: AsyncSession = Depends(get_session),
) -> LoyaltyBalanceResponse:
    snapshot = await LoyaltyLedgerService(db).award_subscription(
        customer_id,
        subscription_id=request.subscriptionId,
    )
    return serialize_balance(snapshot)


@router.get(
    "/members/{customer_id}/reconcile",
    response_model=ReconciliationResponse,
    dependencies=[Depends(require_internal_or_admin)],
)
async def reconcile_member_balance(
    customer_id: UUID,
    db: AsyncSession = Depends(get_session),
) -> ReconciliationResponse:
    """Compare the stored balance with the totals implied by the ledger."""

    report = await LoyaltyLedgerService(db).reconcile_balance(customer_id)
    return _serialize_reconciliation(report)
