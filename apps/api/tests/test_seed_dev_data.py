import sys
from pathlib import Path

import pytest
from sqlalchemy import func, select

from rewards_api.models import Quest, User

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "tooling"))

import seed_dev_data  # noqa: E402


@pytest.mark.asyncio
async def test_seeding_is_idempotent(session_factory) -> None:
    async with session_factory() as session:
        assert await seed_dev_data.seed_users(session) == len(seed_dev_data.DEV_USERS)
        assert await seed_dev_data.seed_quests(session) == len(seed_dev_data.STARTER_QUESTS)

    async with session_factory() as session:
        assert await seed_dev_data.seed_users(session) == 0
        assert await seed_dev_data.seed_quests(session) == 0

        users = (await session.execute(select(func.count(User.id)))).scalar_one()
        quests = (await session.execute(select(func.count(Quest.id)))).scalar_one()

    assert users == len(seed_dev_data.DEV_USERS)
    assert quests == len(seed_dev_data.STARTER_QUESTS)
