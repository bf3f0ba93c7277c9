# basedpyright: reportAssignmentType=false
# basedpyright: reportIncompatibleVariableOverride=false

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import Column, Text, UniqueConstraint
from sqlalchemy.types import JSON as SAJSON
from sqlmodel import Field, SQLModel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class User(SQLModel, table=True):
    __tablename__ = "users"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]

    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, unique=True, min_length=1, max_length=64)
    display_name: Optional[str] = Field(default=None, max_length=200)
    # Opaque bearer token issued by the (external) auth service.
    api_token: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True, unique=True))

    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=utc_now, index=True)


class Group(SQLModel, table=True):
    __tablename__ = "groups"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]

    id: str = Field(primary_key=True, min_length=1, max_length=36)
    name: str = Field(min_length=1, max_length=200)
    created_at: datetime = Field(default_factory=utc_now, index=True)


class GroupMember(SQLModel, table=True):
    __tablename__ = "group_members"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]
    __table_args__ = (
        UniqueConstraint("group_id", "user_id", name="uq_group_members_group_id_user_id"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    group_id: str = Field(index=True, foreign_key="groups.id", max_length=36)
    user_id: int = Field(index=True, foreign_key="users.id")
    role: str = Field(default="member", max_length=20)  # admin / member
    joined_at: datetime = Field(default_factory=utc_now, index=True)


class VersionedRow(SQLModel):
    # Optimistic concurrency: starts at 1, +1 per accepted update, never reused.
    version: int = Field(default=1)
    created_at: datetime = Field(default_factory=utc_now, index=True)
    updated_at: datetime = Field(default_factory=utc_now, index=True)


class Note(VersionedRow, table=True):
    __tablename__ = "notes"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]

    id: str = Field(primary_key=True, min_length=1, max_length=36)
    group_id: str = Field(index=True, foreign_key="groups.id", max_length=36)
    creator_id: int = Field(index=True, foreign_key="users.id")
    last_modified_by: Optional[int] = Field(default=None, foreign_key="users.id")
    parent_id: Optional[str] = Field(default=None, index=True, max_length=36)

    title: str = Field(default="", max_length=500)
    content: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))

    type: str = Field(default="note", index=True, max_length=20)
    status: str = Field(default="open", index=True, max_length=20)
    priority: Optional[str] = Field(default=None, max_length=20)
    severity: Optional[str] = Field(default=None, max_length=20)
    deadline: Optional[datetime] = Field(default=None, index=True)
    estimated_time: Optional[int] = Field(default=None)
    tags_json: list[str] = Field(default_factory=list, sa_column=Column(SAJSON))
    is_pinned: bool = Field(default=False, index=True)

    # Integrity check only; conflict detection is version based.
    content_hash: Optional[str] = Field(default=None, max_length=64)


class Comment(VersionedRow, table=True):
    __tablename__ = "comments"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]

    id: str = Field(primary_key=True, min_length=1, max_length=36)
    note_id: str = Field(index=True, foreign_key="notes.id", max_length=36)
    author_id: int = Field(index=True, foreign_key="users.id")
    last_modified_by: Optional[int] = Field(default=None, foreign_key="users.id")
    parent_comment_id: Optional[str] = Field(default=None, index=True, max_length=36)

    content: str = Field(default="", sa_column=Column(Text, nullable=False))
    mentions_json: list[str] = Field(default_factory=list, sa_column=Column(SAJSON))

    content_hash: Optional[str] = Field(default=None, max_length=64)


class Assignment(VersionedRow, table=True):
    __tablename__ = "assignments"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]
    __table_args__ = (
        UniqueConstraint("note_id", "assignee_id", name="uq_assignments_note_id_assignee_id"),
    )

    id: str = Field(primary_key=True, min_length=1, max_length=36)
    note_id: str = Field(index=True, foreign_key="notes.id", max_length=36)
    assignee_id: int = Field(index=True, foreign_key="users.id")


class SyncLog(SQLModel, table=True):
    """Append-only change log; one row per accepted mutation of a syncable row."""

    __tablename__ = "sync_logs"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True, foreign_key="users.id")
    # Group that owned the record when the mutation happened (deletion deltas are scoped by it).
    group_id: str = Field(index=True, max_length=36)

    table_name: str = Field(index=True, max_length=32)
    record_id: str = Field(index=True, max_length=36)
    action: str = Field(index=True, max_length=20)  # create / update / delete

    old_data: Optional[dict[str, Any]] = Field(default=None, sa_column=Column(SAJSON, nullable=True))
    new_data: Optional[dict[str, Any]] = Field(default=None, sa_column=Column(SAJSON, nullable=True))

    client_change_id: Optional[str] = Field(default=None, index=True, max_length=128)
    client_record_id: Optional[str] = Field(default=None, index=True, max_length=128)

    created_at: datetime = Field(default_factory=utc_now, index=True)


class SyncQueueItem(SQLModel, table=True):
    __tablename__ = "sync_queue"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]

    # Autoincrement id doubles as the enqueue order.
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True, foreign_key="users.id")

    change_id: str = Field(index=True, max_length=128)
    table_name: str = Field(max_length=32)
    record_id: str = Field(index=True, max_length=128)
    action: str = Field(max_length=20)
    data_json: dict[str, Any] = Field(default_factory=dict, sa_column=Column(SAJSON))
    client_version: Optional[int] = Field(default=None)
    client_timestamp: Optional[datetime] = Field(default=None)

    # PENDING / PROCESSING / COMPLETED / FAILED / CONFLICT
    status: str = Field(default="PENDING", index=True, max_length=20)
    retry_count: int = Field(default=0)
    error_message: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    result_json: Optional[dict[str, Any]] = Field(default=None, sa_column=Column(SAJSON, nullable=True))

    created_at: datetime = Field(default_factory=utc_now, index=True)
    updated_at: datetime = Field(default_factory=utc_now, index=True)
