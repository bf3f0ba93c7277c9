from __future__ import annotations

from datetime import datetime
from typing import cast

from sqlalchemy.sql.elements import ColumnElement
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from ..models import SyncLog


async def list_deleted_ids_since(
    session: AsyncSession,
    *,
    group_ids: list[str],
    cutoff: datetime,
    tables: list[str],
) -> dict[str, list[str]]:
    """Record ids deleted at or after ``cutoff`` within ``group_ids``, grouped by table."""

    out: dict[str, list[str]] = {t: [] for t in tables}
    if not group_ids or not tables:
        return out

    rows = (
        await session.exec(
            select(SyncLog.table_name, SyncLog.record_id)
            .where(SyncLog.action == "delete")
            .where(cast(ColumnElement[datetime], cast(object, SyncLog.created_at)) >= cutoff)
            .where(cast(ColumnElement[str], cast(object, SyncLog.group_id)).in_(group_ids))
            .where(cast(ColumnElement[str], cast(object, SyncLog.table_name)).in_(tables))
            .order_by(cast(ColumnElement[int], cast(object, SyncLog.id)).asc())
        )
    ).all()

    seen: set[tuple[str, str]] = set()
    for table_name, record_id in rows:
        key = (str(table_name), str(record_id))
        # The log is at-least-once; report each id once.
        if key in seen:
            continue
        seen.add(key)
        out.setdefault(key[0], []).append(key[1])
    return out


async def find_create_by_change_id(
    session: AsyncSession, *, user_id: int, table_name: str, client_change_id: str
) -> SyncLog | None:
    result = await session.exec(
        select(SyncLog)
        .where(SyncLog.user_id == user_id)
        .where(SyncLog.table_name == table_name)
        .where(SyncLog.action == "create")
        .where(SyncLog.client_change_id == client_change_id)
        .order_by(cast(ColumnElement[int], cast(object, SyncLog.id)).asc())
        .limit(1)
    )
    return result.first()


async def resolve_client_record_id(
    session: AsyncSession, *, user_id: int, table_name: str, client_record_id: str
) -> str | None:
    """Server id assigned to a placeholder id by an earlier create of this actor."""

    result = await session.exec(
        select(SyncLog.record_id)
        .where(SyncLog.user_id == user_id)
        .where(SyncLog.table_name == table_name)
        .where(SyncLog.action == "create")
        .where(SyncLog.client_record_id == client_record_id)
        .order_by(cast(ColumnElement[int], cast(object, SyncLog.id)).desc())
        .limit(1)
    )
    found = result.first()
    return str(found) if found else None

