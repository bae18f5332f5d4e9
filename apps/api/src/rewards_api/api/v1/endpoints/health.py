from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_api.db.session import get_session


router = APIRouter()


class ReadinessPayload(BaseModel):
    status: Literal["ready", "error"]
    database: Literal["ready", "error"]
    detail: str | None = Field(default=None, description="Human readable status detail")


@router.get("/healthz", summary="Service health check")
async def service_health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz", summary="Service readiness", response_model=ReadinessPayload)
async def service_readiness(session: AsyncSession = Depends(get_session)) -> ReadinessPayload:
    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning("Readiness probe failed", error=str(exc))
        return ReadinessPayload(status="error", database="error", detail="Database unreachable")
    return ReadinessPayload(status="ready", database="ready")
