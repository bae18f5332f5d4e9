"""Users, loyalty ledger and quest tables.

Revision ID: 20261019_01
Revises: 
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


loyalty_tier = sa.Enum("bronze", "silver", "gold", "platinum", "diamond", name="loyalty_tier")
loyalty_transaction_kind = sa.Enum("earned", "redeemed", name="loyalty_transaction_kind")
loyalty_source_type = sa.Enum("purchase", "review", "quest", "manual", "subscription", name="loyalty_source_type")
quest_kind = sa.Enum(
    "purchase",
    "review",
    "consultation",
    "subscription",
    "social_share",
    "look_creation",
    "event_attendance",
    name="quest_kind",
)
quest_difficulty = sa.Enum("easy", "medium", "hard", "expert", name="quest_difficulty")
quest_progress_status = sa.Enum("in_progress", "completed", name="quest_progress_status")


def upgrade() -> None:
    uuid_type = sa.dialects.postgresql.UUID(as_uuid=True)

    op.create_table(
        "users",
        sa.Column("id", uuid_type, primary_key=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("display_name", sa.String(), nullable=True),
        sa.Column("role", sa.String(length=16), nullable=False, server_default="client"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "loyalty_balances",
        sa.Column("id", uuid_type, primary_key=True),
        sa.Column("customer_id", uuid_type, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("current_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("lifetime_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("tier", loyalty_tier, nullable=False, server_default="bronze"),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("customer_id", name="uq_loyalty_balances_customer_id"),
        sa.CheckConstraint("current_points >= 0", name="ck_loyalty_balances_current_non_negative"),
        sa.CheckConstraint("lifetime_points >= 0", name="ck_loyalty_balances_lifetime_non_negative"),
    )

    op.create_table(
        "loyalty_transactions",
        sa.Column("id", uuid_type, primary_key=True),
        sa.Column("customer_id", uuid_type, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("delta", sa.Integer(), nullable=False),
        sa.Column("kind", loyalty_transaction_kind, nullable=False),
        sa.Column("source_type", loyalty_source_type, nullable=True),
        sa.Column("source_id", sa.String(), nullable=True),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint(
            "customer_id",
            "source_type",
            "source_id",
            name="uq_loyalty_transactions_customer_source",
        ),
        sa.CheckConstraint("delta <> 0", name="ck_loyalty_transactions_non_zero_delta"),
    )
    op.create_index(
        "ix_loyalty_transactions_customer_created",
        "loyalty_transactions",
        ["customer_id", "created_at"],
    )

    op.create_table(
        "quests",
        sa.Column("id", uuid_type, primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("kind", quest_kind, nullable=False),
        sa.Column("difficulty", quest_difficulty, nullable=True),
        sa.Column("points_reward", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("badge_reward", sa.String(), nullable=True),
        sa.Column("discount_percent", sa.Integer(), nullable=True),
        sa.Column("non_fungible_reward", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("requirements", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint("points_reward >= 0", name="ck_quests_points_reward_non_negative"),
    )

    op.create_table(
        "quest_progress",
        sa.Column("id", uuid_type, primary_key=True),
        sa.Column("customer_id", uuid_type, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("quest_id", uuid_type, sa.ForeignKey("quests.id"), nullable=False),
        sa.Column("status", quest_progress_status, nullable=False, server_default="in_progress"),
        sa.Column("progress", sa.JSON(), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.UniqueConstraint("customer_id", "quest_id", name="uq_quest_progress_customer_quest"),
    )
    op.create_index("ix_quest_progress_quest_id", "quest_progress", ["quest_id"])


def downgrade() -> None:
    op.drop_index("ix_quest_progress_quest_id", table_name="quest_progress")
    op.drop_table("quest_progress")
    op.drop_table("quests")
    op.drop_index("ix_loyalty_transactions_customer_created", table_name="loyalty_transactions")
    op.drop_table("loyalty_transactions")
    op.drop_table("loyalty_balances")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")

    bind = op.get_bind()
    for enum_type in (
        quest_progress_status,
        quest_difficulty,
        quest_kind,
        loyalty_source_type,
        loyalty_transaction_kind,
        loyalty_tier,
    ):
        enum_type.drop(bind, checkfirst=True)
