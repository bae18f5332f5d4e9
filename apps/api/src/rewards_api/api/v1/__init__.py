from fastapi import APIRouter

from .endpoints import (
    admin_quests,
    health,
    loyalty,
    observability,
    quests,
)

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(loyalty.router)
router.include_router(quests.router)
router.include_router(admin_quests.router)
router.include_router(observability.router)
