"""initial schema

Revision ID: 3c1f0a7d9b21
Revises:
Create Date: 2026-09-14 10:12:41.508213
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '3c1f0a7d9b21'
down_revision = None
branch_labels = None
depends_on = None

plan_type = sa.Enum("basic", "pro", "yearly", name="plan_type")


def _timestamps(*, updated: bool = True) -> list[sa.Column]:
    cols = [sa.Column("created_at", sa.DateTime(timezone=True), nullable=False)]
    if updated:
        cols.append(sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False))
    return cols


def upgrade() -> None:
    op.create_table(
        "profiles",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("email", sa.String()),
        sa.Column("name", sa.String()),
        sa.Column("phone", sa.String()),
        sa.Column("address", sa.String()),
        sa.Column("date_of_birth", sa.String(length=10)),
        sa.Column("nationality", sa.String()),
        sa.Column("countryofresidence", sa.String()),
        sa.Column("intended_major", sa.String()),
        sa.Column("budget", sa.Integer()),
        sa.Column("preferred_country", sa.String()),
        sa.Column("preferred_university_type", sa.String()),
        sa.Column("study_level", sa.String()),
        sa.Column("sat_score", sa.Integer()),
        sa.Column("act_score", sa.Integer()),
        sa.Column("english_test_type", sa.String()),
        sa.Column("english_test_score", sa.Float()),
        sa.Column("high_school_curriculum", sa.String()),
        sa.Column("curriculum_grades", sa.JSON()),
        sa.Column("curriculum_subjects", sa.JSON()),
        sa.Column("selected_domains", sa.JSON()),
        sa.Column("extracurricular_activities", sa.JSON()),
        *_timestamps(),
    )

    op.create_table(
        "message_limits",
        sa.Column("user_id", sa.String(length=36), primary_key=True),
        sa.Column("message_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("essay_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("recommender_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_reset", sa.DateTime(timezone=True)),
        sa.Column("last_reset_essays", sa.DateTime(timezone=True)),
        sa.Column("last_reset_recommender", sa.DateTime(timezone=True)),
    )

    op.create_table(
        "chat_conversations",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("title", sa.String(length=120)),
        *_timestamps(),
    )
    op.create_index("ix_chat_conversations_user_id", "chat_conversations", ["user_id"])

    op.create_table(
        "chat_messages",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "conversation_id",
            sa.String(length=36),
            sa.ForeignKey("chat_conversations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("sender", sa.String(length=8), nullable=False),
        *_timestamps(updated=False),
    )
    op.create_index("ix_chat_messages_conversation_id", "chat_messages", ["conversation_id"])

    op.create_table(
        "essay_analyses",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("essay_type", sa.String(), nullable=False),
        sa.Column("prompt", sa.Text(), nullable=False),
        sa.Column("essay", sa.Text(), nullable=False),
        sa.Column("feedback", sa.Text(), nullable=False),
        sa.Column("overall_score", sa.Integer()),
        sa.Column("ratings", sa.JSON()),
        sa.Column("highlights", sa.JSON()),
        *_timestamps(updated=False),
    )
    op.create_index("ix_essay_analyses_user_id", "essay_analyses", ["user_id"])

    op.create_table(
        "saved_universities",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("university_name", sa.String(), nullable=False),
        sa.Column("university_data", sa.JSON(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint(
            "user_id", "university_name", name="uq_saved_universities_user_name"
        ),
    )
    op.create_index("ix_saved_universities_user_id", "saved_universities", ["user_id"])

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=36), nullable=False, unique=True),
        sa.Column("plan_type", plan_type, nullable=False, server_default="basic"),
        sa.Column("stripe_customer_id", sa.String()),
        sa.Column("stripe_subscription_id", sa.String()),
        sa.Column("current_period_end", sa.DateTime(timezone=True)),
        *_timestamps(),
    )

    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("event", sa.String(), nullable=False),
        sa.Column("ts", sa.DateTime(timezone=True)),
    )
    op.create_index("ix_events_user_id", "events", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_events_user_id", table_name="events")
    op.drop_table("events")
    op.drop_table("subscriptions")
    plan_type.drop(op.get_bind(), checkfirst=True)
    op.drop_index("ix_saved_universities_user_id", table_name="saved_universities")
    op.drop_table("saved_universities")
    op.drop_index("ix_essay_analyses_user_id", table_name="essay_analyses")
    op.drop_table("essay_analyses")
    op.drop_index("ix_chat_messages_conversation_id", table_name="chat_messages")
    op.drop_table("chat_messages")
    op.drop_index("ix_chat_conversations_user_id", table_name="chat_conversations")
    op.drop_table("chat_conversations")
    op.drop_table("message_limits")
    op.drop_table("profiles")
