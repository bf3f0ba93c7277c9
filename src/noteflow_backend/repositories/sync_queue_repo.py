from __future__ import annotations

from datetime import datetime
from typing import cast

from sqlalchemy import or_
from sqlalchemy.sql.elements import ColumnElement
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from ..models import SyncQueueItem


def _id_col() -> ColumnElement[int]:
    return cast(ColumnElement[int], cast(object, SyncQueueItem.id))


async def list_items(
    session: AsyncSession, *, user_id: int, status: str | None = None
) -> list[SyncQueueItem]:
    stmt = select(SyncQueueItem).where(SyncQueueItem.user_id == user_id)
    if status:
        stmt = stmt.where(SyncQueueItem.status == status)
    stmt = stmt.order_by(_id_col().asc())
    return list((await session.exec(stmt)).all())


async def list_drainable(
    session: AsyncSession,
    *,
    user_id: int,
    max_retries: int,
    stale_before: datetime,
    limit: int,
) -> list[SyncQueueItem]:
    """PENDING items, FAILED items with retries left and abandoned PROCESSING items, oldest first."""

    retry_col = cast(ColumnElement[int], cast(object, SyncQueueItem.retry_count))
    status_col = cast(ColumnElement[str], cast(object, SyncQueueItem.status))
    updated_col = cast(ColumnElement[datetime], cast(object, SyncQueueItem.updated_at))
    stmt = (
        select(SyncQueueItem)
        .where(SyncQueueItem.user_id == user_id)
        .where(
            or_(
                status_col == "PENDING",
                (status_col == "FAILED") & (retry_col < int(max_retries)),
                (status_col == "PROCESSING") & (updated_col < stale_before),
            )
        )
        .order_by(_id_col().asc())
        .limit(limit)
    )
    return list((await session.exec(stmt)).all())


async def get_item(session: AsyncSession, *, user_id: int, item_id: int) -> SyncQueueItem | None:
    result = await session.exec(
        select(SyncQueueItem)
        .where(SyncQueueItem.user_id == user_id)
        .where(SyncQueueItem.id == item_id)
    )
    return result.first()
