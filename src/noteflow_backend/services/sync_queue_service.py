"""Durable per-user queue of pending changes.

Items go through the same apply logic as a delta sync, one at a time. ``drain``
must not run concurrently for the same user; if it does, the version check
turns the double apply into a conflict rather than a lost update.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any

from fastapi import HTTPException
from fastapi import status as http_status
from sqlmodel.ext.asyncio.session import AsyncSession

from noteflow_backend.config import settings
from noteflow_backend.models import SyncQueueItem, utc_now
from noteflow_backend.repositories import sync_queue_repo
from noteflow_backend.schemas_sync import PendingChange, ProcessedChange
from noteflow_backend.services import sync_service
from noteflow_backend.sync_utils import as_utc, clamp_client_timestamp

logger = logging.getLogger(__name__)

QUEUE_STATUSES = frozenset({"PENDING", "PROCESSING", "COMPLETED", "FAILED", "CONFLICT"})


def serialize_queue_item(row: SyncQueueItem) -> dict[str, object]:
    return {
        "id": row.id,
        "change_id": row.change_id,
        "table_name": row.table_name,
        "record_id": row.record_id,
        "action": row.action,
        "data": dict(row.data_json or {}),
        "client_version": row.client_version,
        "client_timestamp": row.client_timestamp,
        "status": row.status,
        "retry_count": row.retry_count,
        "error_message": row.error_message,
        "result": row.result_json,
        "created_at": row.created_at,
        "updated_at": row.updated_at,
    }


def _stale_before() -> datetime:
    return utc_now() - timedelta(seconds=settings.sync_queue_processing_lease_seconds)


def _is_abandoned(row: SyncQueueItem) -> bool:
    return row.status == "PROCESSING" and as_utc(row.updated_at) < _stale_before()


def _to_change(row: SyncQueueItem) -> PendingChange:
    return PendingChange(
        id=row.change_id,
        table_name=row.table_name,
        record_id=row.record_id,
        action=row.action,
        data=dict(row.data_json or {}),
        client_timestamp=row.client_timestamp,
        client_version=row.client_version,
    )


async def enqueue(
    session: AsyncSession, *, user_id: int, change: PendingChange
) -> dict[str, object]:
    now = utc_now()
    row = SyncQueueItem(
        user_id=user_id,
        change_id=change.id or str(uuid.uuid4()),
        table_name=change.table_name,
        record_id=change.record_id,
        action=change.action,
        data_json=dict(change.data),
        client_version=change.client_version,
        client_timestamp=clamp_client_timestamp(change.client_timestamp),
        status="PENDING",
        retry_count=0,
        created_at=now,
        updated_at=now,
    )
    try:
        session.add(row)
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    return serialize_queue_item(row)


async def list_queue(
    session: AsyncSession, *, user_id: int, status: str | None = None
) -> list[dict[str, object]]:
    if status is not None and status not in QUEUE_STATUSES:
        raise HTTPException(
            status_code=http_status.HTTP_400_BAD_REQUEST,
            detail=f"invalid status: {status}",
        )
    rows = await sync_queue_repo.list_items(session, user_id=user_id, status=status)
    return [serialize_queue_item(r) for r in rows]


async def discard(session: AsyncSession, *, user_id: int, item_id: int) -> None:
    row = await sync_queue_repo.get_item(session, user_id=user_id, item_id=item_id)
    if row is None:
        raise HTTPException(status_code=http_status.HTTP_404_NOT_FOUND, detail="queue item not found")
    if row.status == "PROCESSING" and not _is_abandoned(row):
        raise HTTPException(status_code=http_status.HTTP_409_CONFLICT, detail="queue item is processing")
    try:
        await session.delete(row)
        await session.commit()
    except Exception:
        await session.rollback()
        raise


async def _mark(session: AsyncSession, row: SyncQueueItem, **values: Any) -> None:
    for key, value in values.items():
        setattr(row, key, value)
    row.updated_at = utc_now()
    session.add(row)
    await session.commit()


async def drain(
    session: AsyncSession, *, user_id: int, limit: int | None = None
) -> dict[str, Any]:
    """Apply the caller's PENDING items in enqueue order.

    FAILED items with retries left are retried. PROCESSING items older than the
    lease belong to a drain that died mid-item and are picked up again.
    """

    batch_limit = int(limit or settings.sync_queue_drain_limit)
    rows = await sync_queue_repo.list_drainable(
        session,
        user_id=user_id,
        max_retries=settings.sync_queue_max_retries,
        stale_before=_stale_before(),
        limit=batch_limit,
    )
    summary: dict[str, Any] = {
        "processed": 0,
        "completed": 0,
        "failed": 0,
        "conflicted": 0,
        "outcomes": [],
    }
    if not rows:
        return summary

    ctx = await sync_service.new_batch_context(session, user_id=user_id)
    for row in rows:
        # A failed sibling rolls the session back and expires every loaded row.
        await session.refresh(row)
        if row.status == "PROCESSING":
            logger.warning(
                "sync queue item reclaimed user_id=%s item_id=%s", user_id, row.id
            )
        await _mark(session, row, status="PROCESSING")

        outcome = await sync_service.apply_change(session, ctx=ctx, change=_to_change(row))
        await session.refresh(row)

        # Stored in wire form so GET /sync/queue returns it as-is.
        result = ProcessedChange.model_validate(outcome).model_dump(mode="json", by_alias=True)
        if outcome["status"] == "success":
            await _mark(session, row, status="COMPLETED", error_message=None, result_json=result)
            summary["completed"] += 1
        elif outcome["status"] == "conflict":
            # Kept for the user to resolve; never retried automatically.
            await _mark(
                session, row, status="CONFLICT", error_message="version conflict", result_json=result
            )
            summary["conflicted"] += 1
        else:
            await _mark(
                session,
                row,
                status="FAILED",
                retry_count=int(row.retry_count or 0) + 1,
                error_message=str(outcome.get("error") or "unknown error"),
                result_json=result,
            )
            summary["failed"] += 1
            logger.warning(
                "sync queue item failed user_id=%s item_id=%s retry_count=%s error=%s",
                user_id,
                row.id,
                row.retry_count,
                row.error_message,
            )

        summary["processed"] += 1
        summary["outcomes"].append(outcome)

    logger.info(
        "sync queue drained user_id=%s processed=%s completed=%s failed=%s conflicted=%s",
        user_id,
        summary["processed"],
        summary["completed"],
        summary["failed"],
        summary["conflicted"],
    )
    return summary
