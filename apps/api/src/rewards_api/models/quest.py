"""Quest catalog and per-customer quest progress models."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from rewards_api.db.base import Base
from rewards_api.models.loyalty import utcnow, enum_values


class QuestKind(str, Enum):
    PURCHASE = "purchase"
    REVIEW = "review"
    CONSULTATION = "consultation"
    SUBSCRIPTION = "subscription"
    SOCIAL_SHARE = "social_share"
    LOOK_CREATION = "look_creation"
    EVENT_ATTENDANCE = "event_attendance"


class QuestDifficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"
    EXPERT = "expert"


class QuestProgressStatus(str, Enum):
    """Persisted progress states; "available" is the absence of a row."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class Quest(Base):
    """Administrator-defined task that pays out points on completion."""

    __tablename__ = "quests"
    __table_args__ = (
        CheckConstraint("points_reward >= 0", name="ck_quests_points_reward_non_negative"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    kind = Column(SqlEnum(QuestKind, name="quest_kind", values_callable=enum_values), nullable=False)
    difficulty = Column(
        SqlEnum(QuestDifficulty, name="quest_difficulty", values_callable=enum_values),
        nullable=True,
    )
    points_reward = Column(Integer, nullable=False, default=0, server_default="0")
    badge_reward = Column(String, nullable=True)
    discount_percent = Column(Integer, nullable=True)
    non_fungible_reward = Column(Boolean, nullable=False, default=False, server_default="false")
    requirements = Column(JSON, nullable=False, default=dict)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )

    progress_records = relationship("QuestProgress", back_populates="quest")

    @property
    def secondary_reward(self) -> dict | None:
        """Non-point reward attached to the quest, if any."""

        reward: dict = {}
        if self.badge_reward:
            reward["badge"] = self.badge_reward
        if self.discount_percent is not None:
            reward["discount_percent"] = self.discount_percent
        if self.non_fungible_reward:
            reward["non_fungible"] = True
        return reward or None


class QuestProgress(Base):
    """Per-customer quest state; completed rows are never modified again."""

    __tablename__ = "quest_progress"
    __table_args__ = (
        UniqueConstraint("customer_id", "quest_id", name="uq_quest_progress_customer_quest"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    customer_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    quest_id = Column(UUID(as_uuid=True), ForeignKey("quests.id"), nullable=False, index=True)
    status = Column(
        SqlEnum(QuestProgressStatus, name="quest_progress_status", values_callable=enum_values),
        nullable=False,
        default=QuestProgressStatus.IN_PROGRESS,
        server_default=QuestProgressStatus.IN_PROGRESS.value,
    )
    progress = Column(JSON, nullable=False, default=dict)
    started_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False)

    quest = relationship("Quest", back_populates="progress_records")

    __mapper_args__ = {"version_id_col": version}
