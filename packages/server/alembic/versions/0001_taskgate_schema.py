"""TaskGate schema: users, projects, tasks, assignments, edit requests,
status log and notifications.

Revision ID: 0001_taskgate_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "0001_taskgate_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _uuid():
    return postgresql.UUID(as_uuid=True)


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    ]


def _tombstone():
    return [
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_by", _uuid(), nullable=True),
    ]


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    # users
    op.create_table(
        "users",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("email", sa.Text(), nullable=False),
        sa.Column("full_name", sa.Text(), nullable=False),
        sa.Column("role", sa.Text(), nullable=False, server_default="user"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        *_tombstone(),
        sa.CheckConstraint("role IN ('super_admin', 'admin', 'user')", name="ck_users_role"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index(
        "ix_users_deleted_at", "users", ["deleted_at"],
        postgresql_where=sa.text("deleted_at IS NOT NULL"),
    )

    # projects
    op.create_table(
        "projects",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.Text(), nullable=False, server_default="active"),
        sa.Column("created_by", _uuid(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("status IN ('active', 'closed')", name="ck_projects_status"),
    )

    op.create_table(
        "project_members",
        sa.Column("project_id", _uuid(), sa.ForeignKey("projects.id"), primary_key=True),
        sa.Column("user_id", _uuid(), sa.ForeignKey("users.id"), primary_key=True),
        sa.Column("added_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_project_members_user_id", "project_members", ["user_id"])

    # tasks
    op.create_table(
        "tasks",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("priority", sa.Text(), nullable=False, server_default="medium"),
        sa.Column("status", sa.Text(), nullable=False, server_default="ToDo"),
        sa.Column("project_id", _uuid(), sa.ForeignKey("projects.id"), nullable=True),
        sa.Column("assigned_to", _uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("created_by", _uuid(), nullable=True),
        sa.Column("review_requested_by", _uuid(), nullable=True),
        sa.Column("review_requested_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reviewed_by", _uuid(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("review_comments", sa.Text(), nullable=True),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("archived_by", _uuid(), nullable=True),
        sa.Column("closed_reason", sa.Text(), nullable=True),
        sa.Column("status_before_closure", sa.Text(), nullable=True),
        *_timestamps(),
        *_tombstone(),
        sa.CheckConstraint(
            "status IN ('ToDo', 'Work-In-Progress', 'Done', 'Closed')", name="ck_tasks_status"
        ),
        sa.CheckConstraint(
            "priority IN ('low', 'medium', 'high', 'urgent')", name="ck_tasks_priority"
        ),
        sa.CheckConstraint(
            "(status = 'Closed') = (archived_at IS NOT NULL)", name="ck_tasks_closed_archived"
        ),
        sa.CheckConstraint(
            "closed_reason IS NULL OR closed_reason IN ('manual', 'project_closed')",
            name="ck_tasks_closed_reason",
        ),
    )
    op.create_index("ix_tasks_status", "tasks", ["status"])
    op.create_index("ix_tasks_project_id", "tasks", ["project_id"])
    op.create_index(
        "ix_tasks_deleted_at", "tasks", ["deleted_at"],
        postgresql_where=sa.text("deleted_at IS NOT NULL"),
    )

    # task_assignees
    op.create_table(
        "task_assignees",
        sa.Column("task_id", _uuid(), sa.ForeignKey("tasks.id"), primary_key=True),
        sa.Column("user_id", _uuid(), sa.ForeignKey("users.id"), primary_key=True),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("assigned_by", _uuid(), nullable=True),
    )
    op.create_index("ix_task_assignees_user_id", "task_assignees", ["user_id"])

    # task_edit_requests (no FK to tasks: rows outlive a purge)
    op.create_table(
        "task_edit_requests",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("task_id", _uuid(), nullable=False),
        sa.Column("requested_by", _uuid(), nullable=False),
        sa.Column("proposed_changes", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.Column("status", sa.Text(), nullable=False, server_default="pending"),
        sa.Column("reviewed_by", _uuid(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("comments", sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')", name="ck_task_edit_requests_status"
        ),
    )
    op.create_index("ix_task_edit_requests_task_id", "task_edit_requests", ["task_id"])
    op.create_index("ix_task_edit_requests_requested_by", "task_edit_requests", ["requested_by"])
    op.create_index(
        "uq_task_edit_requests_pending", "task_edit_requests", ["task_id"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
    )

    # task_status_log
    op.create_table(
        "task_status_log",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("task_id", _uuid(), sa.ForeignKey("tasks.id"), nullable=False),
        sa.Column("user_id", _uuid(), nullable=True),
        sa.Column("from_status", sa.Text(), nullable=True),
        sa.Column("to_status", sa.Text(), nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_task_status_log_task_id", "task_status_log", ["task_id"])

    # notifications
    op.create_table(
        "notifications",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("event_id", _uuid(), nullable=False),
        sa.Column("recipient_id", _uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("type", sa.Text(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("related_entity_type", sa.Text(), nullable=True),
        sa.Column("related_entity_id", _uuid(), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("event_id", "recipient_id", name="uq_notifications_event_recipient"),
    )
    op.create_index("ix_notifications_recipient_id", "notifications", ["recipient_id"])
    op.create_index(
        "ix_notifications_unread", "notifications", ["recipient_id"],
        postgresql_where=sa.text("is_read = false"),
    )


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    op.drop_table("notifications")
    op.drop_table("task_status_log")
    op.drop_table("task_edit_requests")
    op.drop_table("task_assignees")
    op.drop_table("tasks")
    op.drop_table("project_members")
    op.drop_table("projects")
    op.drop_table("users")
