"""create primary store tables for the sync engine

Revision ID: 20261019_sync_engine_tables
Revises:
Create Date: 2026-10-19 09:00:00
"""

from alembic import op
import sqlalchemy as sa


revision = "20261019_sync_engine_tables"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("plan", sa.String(length=16), nullable=False, server_default="free"),
        sa.Column("trial_end_date", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_users_plan", "users", ["plan"], unique=False)

    op.create_table(
        "projects",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column("replica_id", sa.String(length=40), nullable=False),
        sa.Column("owner_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="collecting"),
        sa.Column("is_archived", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("archived_at", sa.DateTime(), nullable=True),
        sa.Column("is_completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("priority_level", sa.String(length=16), nullable=True),
        sa.Column("priority_reason", sa.Text(), nullable=True),
        sa.Column("priority_updated_at", sa.DateTime(), nullable=True),
        sa.Column("last_analysis_at", sa.DateTime(), nullable=True),
        sa.Column("last_analyzed_opinion_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("replica_id", name="uq_projects_replica_id"),
    )
    op.create_index("ix_projects_owner_id", "projects", ["owner_id"], unique=False)
    op.create_index("ix_projects_status", "projects", ["status"], unique=False)
    op.create_index("ix_projects_is_archived", "projects", ["is_archived"], unique=False)
    op.create_index("ix_projects_owner_archived", "projects", ["owner_id", "is_archived"], unique=False)

    op.create_table(
        "topics",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column("project_id", sa.String(length=32), sa.ForeignKey("projects.id"), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=24), nullable=False, server_default="unhandled"),
        sa.Column("count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("has_active_actions", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_action_date", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_topics_project_id", "topics", ["project_id"], unique=False)
    op.create_index("ix_topics_project_status", "topics", ["project_id", "status"], unique=False)

    op.create_table(
        "opinions",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column("project_id", sa.String(length=32), sa.ForeignKey("projects.id"), nullable=False),
        sa.Column("topic_id", sa.String(length=32), sa.ForeignKey("topics.id"), nullable=True),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("sentiment", sa.String(length=16), nullable=False, server_default="neutral"),
        sa.Column("character_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("submitted_at", sa.DateTime(), nullable=False, server_default=sa.text("now()")),
        sa.Column("is_bookmarked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("action_status", sa.String(length=24), nullable=True),
        sa.Column("action_status_reason", sa.Text(), nullable=True),
        sa.Column("action_status_updated_at", sa.DateTime(), nullable=True),
        sa.Column("priority_level", sa.String(length=16), nullable=True),
        sa.Column("priority_reason", sa.Text(), nullable=True),
        sa.Column("priority_updated_at", sa.DateTime(), nullable=True),
        sa.Column("due_date", sa.DateTime(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_opinions_project_id", "opinions", ["project_id"], unique=False)
    op.create_index("ix_opinions_topic_id", "opinions", ["topic_id"], unique=False)
    op.create_index("ix_opinions_submitted_at", "opinions", ["submitted_at"], unique=False)
    op.create_index("ix_opinions_action_status", "opinions", ["action_status"], unique=False)
    op.create_index("ix_opinions_project_submitted", "opinions", ["project_id", "submitted_at"], unique=False)
    op.create_index("ix_opinions_topic_action", "opinions", ["topic_id", "action_status"], unique=False)

    op.create_table(
        "opinion_analysis_states",
        sa.Column("opinion_id", sa.String(length=32), sa.ForeignKey("opinions.id"), primary_key=True),
        sa.Column("last_analyzed_at", sa.DateTime(), nullable=True),
        sa.Column("analysis_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("classification_confidence", sa.Float(), nullable=True),
        sa.Column("manual_review_flag", sa.Boolean(), nullable=False, server_default=sa.false()),
    )

    op.create_table(
        "tasks",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column("project_id", sa.String(length=32), sa.ForeignKey("projects.id"), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=24), nullable=False, server_default="pending"),
        sa.Column("due_date", sa.DateTime(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_tasks_project_id", "tasks", ["project_id"], unique=False)

    op.create_table(
        "analysis_usage",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("project_id", sa.String(length=32), nullable=False),
        sa.Column("analysis_type", sa.String(length=32), nullable=False, server_default="incremental"),
        sa.Column("opinions_processed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("execution_time_ms", sa.Integer(), nullable=True),
        sa.Column("executed_at", sa.DateTime(), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_analysis_usage_user_id", "analysis_usage", ["user_id"], unique=False)
    op.create_index("ix_analysis_usage_project_id", "analysis_usage", ["project_id"], unique=False)
    op.create_index("ix_analysis_usage_executed_at", "analysis_usage", ["executed_at"], unique=False)
    op.create_index("ix_analysis_usage_user_executed", "analysis_usage", ["user_id", "executed_at"], unique=False)

    op.create_table(
        "sync_operation_keys",
        sa.Column("operation_id", sa.String(length=190), primary_key=True),
        sa.Column("entity_kind", sa.String(length=16), nullable=False),
        sa.Column("operation", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=24), nullable=False, server_default="running"),
        sa.Column("entity_id", sa.String(length=32), nullable=True),
        sa.Column("result_json", sa.JSON(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
    )
    op.create_index("ix_sync_operation_keys_entity_kind", "sync_operation_keys", ["entity_kind"], unique=False)
    op.create_index("ix_sync_operation_keys_status", "sync_operation_keys", ["status"], unique=False)
    op.create_index("ix_sync_operation_keys_entity_id", "sync_operation_keys", ["entity_id"], unique=False)
    op.create_index("ix_sync_operation_keys_created_at", "sync_operation_keys", ["created_at"], unique=False)
    op.create_index("ix_sync_operation_keys_updated_at", "sync_operation_keys", ["updated_at"], unique=False)
    op.create_index("ix_sync_operation_kind_status", "sync_operation_keys", ["entity_kind", "status"], unique=False)


def downgrade() -> None:
    op.drop_table("sync_operation_keys")
    op.drop_table("analysis_usage")
    op.drop_table("tasks")
    op.drop_table("opinion_analysis_states")
    op.drop_table("opinions")
    op.drop_table("topics")
    op.drop_table("projects")
    op.drop_table("users")
