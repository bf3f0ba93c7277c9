"""initial schema (users, groups, notes, comments, assignments, sync log, sync queue)

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 00:00:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def _versioned_columns() -> list[sa.Column]:
    return [
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def _index_versioned(table: str) -> None:
    op.create_index(f"ix_{table}_created_at", table, ["created_at"], unique=False)
    op.create_index(f"ix_{table}_updated_at", table, ["updated_at"], unique=False)


def upgrade() -> None:
    _ = op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("username", sa.String(length=64), nullable=False),
        sa.Column("display_name", sa.String(length=200), nullable=True),
        sa.Column("api_token", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("api_token", name="uq_users_api_token"),
    )
    op.create_index("ix_users_username", "users", ["username"], unique=True)
    op.create_index("ix_users_is_active", "users", ["is_active"], unique=False)
    op.create_index("ix_users_created_at", "users", ["created_at"], unique=False)

    _ = op.create_table(
        "groups",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_groups_created_at", "groups", ["created_at"], unique=False)

    _ = op.create_table(
        "group_members",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("group_id", sa.String(length=36), sa.ForeignKey("groups.id"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False, server_default=sa.text("'member'")),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("group_id", "user_id", name="uq_group_members_group_id_user_id"),
    )
    op.create_index("ix_group_members_group_id", "group_members", ["group_id"], unique=False)
    op.create_index("ix_group_members_user_id", "group_members", ["user_id"], unique=False)
    op.create_index("ix_group_members_joined_at", "group_members", ["joined_at"], unique=False)

    _ = op.create_table(
        "notes",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("group_id", sa.String(length=36), sa.ForeignKey("groups.id"), nullable=False),
        sa.Column("creator_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("last_modified_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("parent_id", sa.String(length=36), nullable=True),
        sa.Column("title", sa.String(length=500), nullable=False, server_default=sa.text("''")),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column("type", sa.String(length=20), nullable=False, server_default=sa.text("'note'")),
        sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'open'")),
        sa.Column("priority", sa.String(length=20), nullable=True),
        sa.Column("severity", sa.String(length=20), nullable=True),
        sa.Column("deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("estimated_time", sa.Integer(), nullable=True),
        sa.Column("tags_json", sa.JSON(), nullable=True),
        sa.Column("is_pinned", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("content_hash", sa.String(length=64), nullable=True),
        *_versioned_columns(),
    )
    op.create_index("ix_notes_group_id", "notes", ["group_id"], unique=False)
    op.create_index("ix_notes_creator_id", "notes", ["creator_id"], unique=False)
    op.create_index("ix_notes_parent_id", "notes", ["parent_id"], unique=False)
    op.create_index("ix_notes_type", "notes", ["type"], unique=False)
    op.create_index("ix_notes_status", "notes", ["status"], unique=False)
    op.create_index("ix_notes_deadline", "notes", ["deadline"], unique=False)
    op.create_index("ix_notes_is_pinned", "notes", ["is_pinned"], unique=False)
    _index_versioned("notes")

    _ = op.create_table(
        "comments",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("note_id", sa.String(length=36), sa.ForeignKey("notes.id"), nullable=False),
        sa.Column("author_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("last_modified_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("parent_comment_id", sa.String(length=36), nullable=True),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("mentions_json", sa.JSON(), nullable=True),
        sa.Column("content_hash", sa.String(length=64), nullable=True),
        *_versioned_columns(),
    )
    op.create_index("ix_comments_note_id", "comments", ["note_id"], unique=False)
    op.create_index("ix_comments_author_id", "comments", ["author_id"], unique=False)
    op.create_index(
        "ix_comments_parent_comment_id", "comments", ["parent_comment_id"], unique=False
    )
    _index_versioned("comments")

    _ = op.create_table(
        "assignments",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("note_id", sa.String(length=36), sa.ForeignKey("notes.id"), nullable=False),
        sa.Column("assignee_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        *_versioned_columns(),
        sa.UniqueConstraint("note_id", "assignee_id", name="uq_assignments_note_id_assignee_id"),
    )
    op.create_index("ix_assignments_note_id", "assignments", ["note_id"], unique=False)
    op.create_index("ix_assignments_assignee_id", "assignments", ["assignee_id"], unique=False)
    _index_versioned("assignments")

    _ = op.create_table(
        "sync_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("group_id", sa.String(length=36), nullable=False),
        sa.Column("table_name", sa.String(length=32), nullable=False),
        sa.Column("record_id", sa.String(length=36), nullable=False),
        sa.Column("action", sa.String(length=20), nullable=False),
        sa.Column("old_data", sa.JSON(), nullable=True),
        sa.Column("new_data", sa.JSON(), nullable=True),
        sa.Column("client_change_id", sa.String(length=128), nullable=True),
        sa.Column("client_record_id", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    for col in (
        "user_id",
        "group_id",
        "table_name",
        "record_id",
        "action",
        "client_change_id",
        "client_record_id",
        "created_at",
    ):
        op.create_index(f"ix_sync_logs_{col}", "sync_logs", [col], unique=False)

    _ = op.create_table(
        "sync_queue",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("change_id", sa.String(length=128), nullable=False),
        sa.Column("table_name", sa.String(length=32), nullable=False),
        sa.Column("record_id", sa.String(length=128), nullable=False),
        sa.Column("action", sa.String(length=20), nullable=False),
        sa.Column("data_json", sa.JSON(), nullable=True),
        sa.Column("client_version", sa.Integer(), nullable=True),
        sa.Column("client_timestamp", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "status", sa.String(length=20), nullable=False, server_default=sa.text("'PENDING'")
        ),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("result_json", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    for col in ("user_id", "change_id", "record_id", "status", "created_at", "updated_at"):
        op.create_index(f"ix_sync_queue_{col}", "sync_queue", [col], unique=False)


def downgrade() -> None:
    for table in (
        "sync_queue",
        "sync_logs",
        "assignments",
        "comments",
        "notes",
        "group_members",
        "groups",
        "users",
    ):
        op.drop_table(table)
