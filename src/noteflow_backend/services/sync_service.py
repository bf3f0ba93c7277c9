"""Delta reconciliation engine.

Applies a client's pending changes one by one (each committed or rolled back on
its own), then returns everything in the caller's groups that changed since the
client's sync token, plus ids deleted since then.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, cast

from fastapi import HTTPException, status
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel.ext.asyncio.session import AsyncSession

from noteflow_backend.config import settings
from noteflow_backend.domain.sync_planner import (
    SYNC_ACTIONS,
    SYNC_TABLES,
    ApplyCreate,
    ApplyDelete,
    ApplyUpdate,
    PayloadError,
    ServerRowSnapshot,
    normalize_payload,
    plan_change,
    singular,
    validate_payload_for_table,
)
from noteflow_backend.models import Assignment, Comment, Note, utc_now
from noteflow_backend.repositories import change_log_repo, groups_repo, records_repo
from noteflow_backend.repositories.records_repo import SyncRow
from noteflow_backend.schemas_sync import PendingChange
from noteflow_backend.sync_token import decode_sync_token, encode_sync_token, is_epoch
from noteflow_backend.sync_utils import content_sha256, isoformat_utc, record_change

logger = logging.getLogger(__name__)

# Reference keys in a payload and the table their ids live in.
_REFERENCE_TABLES: dict[str, str] = {
    "noteId": "notes",
    "parentId": "notes",
    "parentCommentId": "comments",
}


@dataclass
class BatchContext:
    """Per-call state: who is syncing, what they may see, and placeholder ids seen so far."""

    user_id: int
    group_ids: list[str]
    # client placeholder id -> server id, for creates applied earlier in this batch.
    id_map: dict[str, str] = field(default_factory=dict)


def _serialize_note(row: Note) -> dict[str, object]:
    return {
        "id": row.id,
        "groupId": row.group_id,
        "creatorId": row.creator_id,
        "lastModifiedBy": row.last_modified_by,
        "parentId": row.parent_id,
        "title": row.title,
        "content": row.content,
        "type": row.type,
        "status": row.status,
        "priority": row.priority,
        "severity": row.severity,
        "deadline": isoformat_utc(row.deadline),
        "estimatedTime": row.estimated_time,
        "tags": list(row.tags_json or []),
        "isPinned": row.is_pinned,
        "version": row.version,
        "contentHash": row.content_hash,
        "createdAt": isoformat_utc(row.created_at),
        "updatedAt": isoformat_utc(row.updated_at),
    }


def _serialize_comment(row: Comment) -> dict[str, object]:
    return {
        "id": row.id,
        "noteId": row.note_id,
        "authorId": row.author_id,
        "lastModifiedBy": row.last_modified_by,
        "parentCommentId": row.parent_comment_id,
        "content": row.content,
        "mentions": list(row.mentions_json or []),
        "version": row.version,
        "contentHash": row.content_hash,
        "createdAt": isoformat_utc(row.created_at),
        "updatedAt": isoformat_utc(row.updated_at),
    }


def _serialize_assignment(row: Assignment) -> dict[str, object]:
    return {
        "id": row.id,
        "noteId": row.note_id,
        "assigneeId": row.assignee_id,
        "version": row.version,
        "createdAt": isoformat_utc(row.created_at),
        "updatedAt": isoformat_utc(row.updated_at),
    }


def serialize_record(row: SyncRow) -> dict[str, object]:
    if isinstance(row, Note):
        return _serialize_note(row)
    if isinstance(row, Comment):
        return _serialize_comment(row)
    return _serialize_assignment(row)


def _outcome(
    change: PendingChange,
    *,
    status: str,
    server_record_id: str | None = None,
    server_version: int | None = None,
    error: str | None = None,
    conflict_data: dict[str, object] | None = None,
) -> dict[str, Any]:
    return {
        "change_id": change.id,
        "client_record_id": change.record_id,
        "server_record_id": server_record_id,
        "status": status,
        "server_version": server_version,
        "error": error,
        "conflict_data": conflict_data,
    }


def _describe_failure(exc: Exception) -> str:
    if isinstance(exc, IntegrityError):
        return f"constraint violation: {exc.orig}"
    if isinstance(exc, SQLAlchemyError):
        return f"storage error: {exc.__class__.__name__}"
    return str(exc) or exc.__class__.__name__


def _client_version(change: PendingChange) -> int | None:
    if change.client_version is not None:
        return int(change.client_version)
    raw = change.data.get("clientVersion")
    if raw is None or isinstance(raw, bool):
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise PayloadError("invalid clientVersion") from None


def resolve_tables(tables: list[str] | None) -> list[str]:
    if not tables:
        return settings.default_sync_tables()
    out: list[str] = []
    for t in tables:
        name = t.strip()
        if not name:
            continue
        if name not in SYNC_TABLES:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"unsupported table: {name}",
            )
        if name not in out:
            out.append(name)
    return out or settings.default_sync_tables()


async def _resolve_record_id(
    session: AsyncSession, ctx: BatchContext, *, table: str, record_id: str
) -> str:
    mapped = ctx.id_map.get(record_id)
    if mapped:
        return mapped
    if await records_repo.exists(session, table=table, record_id=record_id):
        return record_id
    resolved = await change_log_repo.resolve_client_record_id(
        session, user_id=ctx.user_id, table_name=table, client_record_id=record_id
    )
    return resolved or record_id


async def _map_references(
    session: AsyncSession, ctx: BatchContext, data: dict[str, Any]
) -> dict[str, Any]:
    out = dict(data)
    for key, table in _REFERENCE_TABLES.items():
        value = out.get(key)
        if isinstance(value, str) and value:
            out[key] = await _resolve_record_id(session, ctx, table=table, record_id=value)
    return out


async def _require_note(session: AsyncSession, ctx: BatchContext, note_id: object) -> Note:
    note = await records_repo.get_note_in_scope(
        session, note_id=str(note_id or ""), group_ids=ctx.group_ids
    )
    if note is None:
        raise PayloadError("note not found")
    return note


async def _require_assignee(session: AsyncSession, *, group_id: str, assignee_id: object) -> None:
    member = await groups_repo.is_member(
        session, group_id=group_id, user_id=int(cast(int, assignee_id))
    )
    if not member:
        raise PayloadError("assignee is not a member of the group")


async def _require_parent_comment(
    session: AsyncSession, ctx: BatchContext, *, parent_comment_id: object, note_id: str
) -> None:
    if not parent_comment_id:
        return
    found = await records_repo.get_scoped(
        session, table="comments", record_id=str(parent_comment_id), group_ids=ctx.group_ids
    )
    if found is None or cast(Comment, found[0]).note_id != note_id:
        raise PayloadError("parent comment not found")


async def _build_note(
    session: AsyncSession, ctx: BatchContext, normalized: dict[str, object]
) -> Note:
    group_id = normalized.pop("group_id", None)
    if not group_id and len(ctx.group_ids) == 1:
        group_id = ctx.group_ids[0]
    if not group_id:
        raise PayloadError("missing groupId")
    # Never trust a client-supplied group: it must be one of the caller's.
    if str(group_id) not in ctx.group_ids:
        raise PayloadError("group not found")
    if normalized.get("parent_id"):
        await _require_note(session, ctx, normalized["parent_id"])

    note = Note(
        id=str(uuid.uuid4()),
        group_id=str(group_id),
        creator_id=ctx.user_id,
        last_modified_by=ctx.user_id,
        **normalized,
    )
    note.content_hash = content_sha256(note.title, note.content)
    return note


async def _build_comment(
    session: AsyncSession, ctx: BatchContext, normalized: dict[str, object]
) -> tuple[Comment, str]:
    note = await _require_note(session, ctx, normalized.get("note_id"))
    await _require_parent_comment(
        session, ctx, parent_comment_id=normalized.get("parent_comment_id"), note_id=note.id
    )
    comment = Comment(
        id=str(uuid.uuid4()),
        author_id=ctx.user_id,
        last_modified_by=ctx.user_id,
        **normalized,
    )
    comment.content_hash = content_sha256(comment.content)
    return comment, note.group_id


async def _build_assignment(
    session: AsyncSession, ctx: BatchContext, normalized: dict[str, object]
) -> tuple[Assignment, str]:
    note = await _require_note(session, ctx, normalized.get("note_id"))
    await _require_assignee(session, group_id=note.group_id, assignee_id=normalized["assignee_id"])
    return Assignment(id=str(uuid.uuid4()), **normalized), note.group_id


async def _create(
    session: AsyncSession,
    ctx: BatchContext,
    change: PendingChange,
    data: dict[str, Any],
) -> dict[str, Any]:
    table = change.table_name

    if change.id:
        # Retried create: hand back the record the first attempt produced.
        previous = await change_log_repo.find_create_by_change_id(
            session, user_id=ctx.user_id, table_name=table, client_change_id=change.id
        )
        if previous is not None:
            # Never insert twice, even when the first record has since been deleted.
            found = await records_repo.get_scoped(
                session, table=table, record_id=previous.record_id, group_ids=ctx.group_ids
            )
            if found is not None:
                version = int(found[0].version)
            else:
                version = int((previous.new_data or {}).get("version") or 1)
            return _outcome(
                change,
                status="success",
                server_record_id=previous.record_id,
                server_version=version,
            )

    normalized = normalize_payload(table, data)
    reason = validate_payload_for_table(table, "create", normalized)
    if reason:
        raise PayloadError(reason)

    row: SyncRow
    if table == "notes":
        row = await _build_note(session, ctx, normalized)
        group_id = row.group_id
    elif table == "comments":
        row, group_id = await _build_comment(session, ctx, normalized)
    else:
        row, group_id = await _build_assignment(session, ctx, normalized)

    row = await records_repo.create_versioned(session, row)
    record_change(
        session,
        user_id=ctx.user_id,
        group_id=group_id,
        table_name=table,
        record_id=row.id,
        action="create",
        old_data=None,
        new_data=serialize_record(row),
        client_change_id=change.id,
        client_record_id=change.record_id,
    )
    return _outcome(change, status="success", server_record_id=row.id, server_version=row.version)


async def _update(
    session: AsyncSession,
    ctx: BatchContext,
    change: PendingChange,
    data: dict[str, Any],
    plan: ApplyUpdate,
    row: SyncRow,
    group_id: str,
) -> dict[str, Any]:
    table = change.table_name
    normalized = normalize_payload(table, data)
    reason = validate_payload_for_table(table, "update", normalized)
    if reason:
        raise PayloadError(reason)

    values: dict[str, object] = dict(normalized)
    values["updated_at"] = utc_now()
    if isinstance(row, Note):
        parent_id = values.get("parent_id")
        if parent_id:
            if parent_id == row.id:
                raise PayloadError("note cannot be its own parent")
            await _require_note(session, ctx, parent_id)
        values["last_modified_by"] = ctx.user_id
        values["content_hash"] = content_sha256(
            cast(str, values.get("title", row.title)),
            cast(str | None, values.get("content", row.content)),
        )
    elif isinstance(row, Comment):
        if "parent_comment_id" in values:
            if values["parent_comment_id"] == row.id:
                raise PayloadError("comment cannot reply to itself")
            await _require_parent_comment(
                session, ctx, parent_comment_id=values["parent_comment_id"], note_id=row.note_id
            )
        values["last_modified_by"] = ctx.user_id
        values["content_hash"] = content_sha256(cast(str, values.get("content", row.content)))
    elif "assignee_id" in values:
        await _require_assignee(session, group_id=group_id, assignee_id=values["assignee_id"])

    old_data = serialize_record(row)
    updated = await records_repo.update_versioned(
        session,
        table=table,
        record_id=plan.record_id,
        expected_version=plan.expected_version,
        values=values,
    )
    if updated is None:
        # Another writer committed between our read and our write.
        session.expire(row)
        fresh = await records_repo.get_scoped(
            session, table=table, record_id=plan.record_id, group_ids=ctx.group_ids
        )
        if fresh is None:
            raise PayloadError(f"{singular(table)} not found")
        logger.info(
            "sync update lost race user_id=%s table=%s record_id=%s expected_version=%s",
            ctx.user_id,
            table,
            plan.record_id,
            plan.expected_version,
        )
        return _outcome(
            change,
            status="conflict",
            conflict_data={"server_version": serialize_record(fresh[0]), "client_version": data},
        )

    record_change(
        session,
        user_id=ctx.user_id,
        group_id=group_id,
        table_name=table,
        record_id=updated.id,
        action="update",
        old_data=old_data,
        new_data=serialize_record(updated),
        client_change_id=change.id,
    )
    return _outcome(
        change, status="success", server_record_id=updated.id, server_version=updated.version
    )


async def _delete_logged(
    session: AsyncSession,
    ctx: BatchContext,
    *,
    table: str,
    row: SyncRow,
    group_id: str,
    client_change_id: str | None,
) -> None:
    old_data = serialize_record(row)
    if not await records_repo.delete_record(session, table=table, record_id=row.id):
        # Already gone: whoever removed it logged the delete.
        return
    record_change(
        session,
        user_id=ctx.user_id,
        group_id=group_id,
        table_name=table,
        record_id=row.id,
        action="delete",
        old_data=old_data,
        new_data=None,
        client_change_id=client_change_id,
    )


async def _delete(
    session: AsyncSession,
    ctx: BatchContext,
    change: PendingChange,
    plan: ApplyDelete,
    row: SyncRow | None,
    group_id: str | None,
) -> dict[str, Any]:
    table = change.table_name
    if not plan.exists or row is None or group_id is None:
        return _outcome(change, status="success", server_record_id=plan.record_id)

    if isinstance(row, Note):
        comments, assignments = await records_repo.list_note_children(session, note_id=row.id)
        for comment in comments:
            await _delete_logged(
                session, ctx, table="comments", row=comment, group_id=group_id, client_change_id=None
            )
        for assignment in assignments:
            await _delete_logged(
                session,
                ctx,
                table="assignments",
                row=assignment,
                group_id=group_id,
                client_change_id=None,
            )

    await _delete_logged(
        session, ctx, table=table, row=row, group_id=group_id, client_change_id=change.id
    )
    return _outcome(change, status="success", server_record_id=plan.record_id)


async def _apply_change(
    session: AsyncSession, ctx: BatchContext, change: PendingChange
) -> dict[str, Any]:
    table = change.table_name
    action = change.action
    record_id = change.record_id

    row: SyncRow | None = None
    group_id: str | None = None
    snapshot: ServerRowSnapshot | None = None
    if table in SYNC_TABLES and action in SYNC_ACTIONS and action != "create":
        record_id = await _resolve_record_id(session, ctx, table=table, record_id=record_id)
        found = await records_repo.get_scoped(
            session, table=table, record_id=record_id, group_ids=ctx.group_ids
        )
        if found is not None:
            row, group_id = found
            snapshot = ServerRowSnapshot(
                record_id=row.id,
                version=int(row.version),
                group_id=group_id,
                server=serialize_record(row),
            )

    data = await _map_references(session, ctx, dict(change.data))
    plan = plan_change(
        table=table,
        action=action,
        record_id=record_id,
        client_version=_client_version(change),
        payload=data,
        server_row=snapshot,
    )

    if plan.reject is not None:
        return _outcome(change, status="error", error=plan.reject.reason)

    if plan.conflict is not None:
        logger.info(
            "sync conflict user_id=%s table=%s record_id=%s server_version=%s client_version=%s",
            ctx.user_id,
            table,
            record_id,
            snapshot.version if snapshot else None,
            _client_version(change),
        )
        return _outcome(
            change,
            status="conflict",
            conflict_data={
                "server_version": plan.conflict.server,
                # As sent, before placeholder ids were mapped.
                "client_version": dict(change.data),
            },
        )

    if isinstance(plan.apply, ApplyCreate):
        return await _create(session, ctx, change, data)
    if isinstance(plan.apply, ApplyUpdate):
        if row is None or group_id is None:
            raise RuntimeError("update planned without a server row")
        return await _update(session, ctx, change, data, plan.apply, row, group_id)
    if isinstance(plan.apply, ApplyDelete):
        return await _delete(session, ctx, change, plan.apply, row, group_id)
    raise RuntimeError("empty sync plan")


async def apply_change(
    session: AsyncSession, *, ctx: BatchContext, change: PendingChange
) -> dict[str, Any]:
    """Apply one pending change in its own transaction.

    Never raises: failures are reported as an ``error`` outcome so sibling
    changes in the same batch still run.
    """

    try:
        outcome = await _apply_change(session, ctx, change)
        await session.commit()
    except PayloadError as exc:
        await _rollback_quietly(session)
        return _outcome(change, status="error", error=str(exc))
    except Exception as exc:
        await _rollback_quietly(session)
        logger.warning(
            "sync change failed user_id=%s table=%s action=%s record_id=%s",
            ctx.user_id,
            change.table_name,
            change.action,
            change.record_id,
            exc_info=True,
        )
        return _outcome(change, status="error", error=_describe_failure(exc))

    if change.action == "create" and outcome["status"] == "success":
        server_id = outcome.get("server_record_id")
        if server_id:
            ctx.id_map[change.record_id] = str(server_id)
    return outcome


async def _rollback_quietly(session: AsyncSession) -> None:
    try:
        await session.rollback()
    except Exception:
        logger.warning("sync rollback failed", exc_info=True)


async def new_batch_context(session: AsyncSession, *, user_id: int) -> BatchContext:
    group_ids = await groups_repo.list_group_ids(session, user_id=user_id)
    return BatchContext(user_id=user_id, group_ids=group_ids)


async def _collect_delta(
    session: AsyncSession,
    *,
    group_ids: list[str],
    cutoff: datetime | None,
    tables: list[str],
) -> tuple[dict[str, list[dict[str, object]]], dict[str, list[str]]]:
    changes: dict[str, list[dict[str, object]]] = {}
    for table in tables:
        rows = await records_repo.list_updated_since(
            session, table=table, group_ids=group_ids, cutoff=cutoff
        )
        changes[table] = [serialize_record(r) for r in rows]

    deletions: dict[str, list[str]] = {t: [] for t in tables}
    if cutoff is not None:
        deletions = await change_log_repo.list_deleted_ids_since(
            session, group_ids=group_ids, cutoff=cutoff, tables=tables
        )
    return changes, deletions


def _cutoff_from(value: datetime | None) -> datetime | None:
    if value is None or is_epoch(value):
        return None
    return value


async def get_initial_sync(
    session: AsyncSession,
    *,
    user_id: int,
    last_sync_time: datetime | None = None,
    tables: list[str] | None = None,
) -> dict[str, Any]:
    requested = resolve_tables(tables)
    group_ids = await groups_repo.list_group_ids(session, user_id=user_id)

    # Captured before reading: rows written during the read are re-sent next time, not missed.
    server_time = utc_now()
    data, deletions = await _collect_delta(
        session, group_ids=group_ids, cutoff=_cutoff_from(last_sync_time), tables=requested
    )
    return {
        "sync_token": encode_sync_token(server_time),
        "server_time": server_time,
        "data": data,
        "deletions": deletions,
    }


async def process_delta_sync(
    session: AsyncSession,
    *,
    user_id: int,
    sync_token: str | None,
    client_changes: list[PendingChange],
    tables: list[str] | None = None,
) -> dict[str, Any]:
    requested = resolve_tables(tables)
    ctx = await new_batch_context(session, user_id=user_id)

    processed: list[dict[str, Any]] = []
    for change in client_changes:
        processed.append(await apply_change(session, ctx=ctx, change=change))

    # Delta failures propagate: a response without a valid delta would read as "nothing changed".
    server_time = utc_now()
    cutoff = _cutoff_from(decode_sync_token(sync_token, now=server_time))
    server_changes, deletions = await _collect_delta(
        session, group_ids=ctx.group_ids, cutoff=cutoff, tables=requested
    )

    counts = {s: sum(1 for p in processed if p["status"] == s) for s in ("success", "conflict", "error")}
    logger.info(
        "delta sync user_id=%s changes=%s success=%s conflict=%s error=%s full_resync=%s",
        user_id,
        len(processed),
        counts["success"],
        counts["conflict"],
        counts["error"],
        cutoff is None,
    )
    return {
        "sync_token": encode_sync_token(server_time),
        "server_time": server_time,
        "processed_changes": processed,
        "server_changes": server_changes,
        "deletions": deletions,
    }
