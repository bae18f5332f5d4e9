"""Seed development users and a starter quest catalog into the API database."""

from __future__ import annotations

import asyncio
import os
from typing import Any, TypedDict

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from rewards_api.core.settings import settings
from rewards_api.models.quest import Quest
from rewards_api.models.user import User, UserRoleEnum, UserStatusEnum
from rewards_api.services.loyalty import QuestRegistry


class SeedUser(TypedDict):
    email: str
    display_name: str
    role: str


DEV_USERS: list[SeedUser] = [
    {
        "email": os.getenv("DEV_SHORTCUT_CUSTOMER_EMAIL", "customer@rewards.dev").lower(),
        "display_name": "Customer QA",
        "role": UserRoleEnum.CLIENT.value,
    },
    {
        "email": os.getenv("DEV_SHORTCUT_EMPLOYEE_EMAIL", "employee@rewards.dev").lower(),
        "display_name": "Employee QA",
        "role": UserRoleEnum.EMPLOYEE.value,
    },
    {
        "email": os.getenv("DEV_SHORTCUT_ADMIN_EMAIL", "admin@rewards.dev").lower(),
        "display_name": "Admin QA",
        "role": UserRoleEnum.ADMIN.value,
    },
]

STARTER_QUESTS: list[dict[str, Any]] = [
    {
        "name": "First purchase",
        "description": "Complete your first order.",
        "kind": "purchase",
        "difficulty": "easy",
        "points_reward": 100,
    },
    {
        "name": "Share your thoughts",
        "description": "Review a product you bought.",
        "kind": "review",
        "difficulty": "easy",
        "points_reward": 50,
        "badge_reward": "Critic",
    },
    {
        "name": "Book a consultation",
        "description": "Meet one of our specialists.",
        "kind": "consultation",
        "difficulty": "medium",
        "points_reward": 250,
        "discount_percent": 10,
    },
    {
        "name": "Subscriber",
        "description": "Start any subscription plan.",
        "kind": "subscription",
        "difficulty": "hard",
        "points_reward": 500,
        "non_fungible_reward": True,
    },
]


async def seed_users(session: AsyncSession) -> int:
    created = 0
    for user in DEV_USERS:
        with session.no_autoflush:
            existing = await session.execute(select(User).where(User.email == user["email"]))
        record = existing.scalar_one_or_none()

        if record:
            record.display_name = user["display_name"]
            record.role = user["role"]
            record.status = UserStatusEnum.ACTIVE.value
        else:
            session.add(
                User(
                    email=user["email"],
                    display_name=user["display_name"],
                    role=user["role"],
                    status=UserStatusEnum.ACTIVE.value,
                )
            )
            created += 1
    await session.commit()
    return created


async def seed_quests(session: AsyncSession) -> int:
    """Create starter quests that are missing by name; existing ones are left alone."""

    existing = set((await session.execute(select(Quest.name))).scalars().all())
    registry = QuestRegistry(session)
    created = 0
    for definition in STARTER_QUESTS:
        if definition["name"] in existing:
            continue
        await registry.create_quest(**definition)
        created += 1
    return created


async def main() -> None:
    engine = create_async_engine(settings.database_url, future=True)
    session_factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        async with session_factory() as session:
            users = await seed_users(session)
            quests = await seed_quests(session)
        logger.info("Development data ready", users_created=users, quests_created=quests)
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
