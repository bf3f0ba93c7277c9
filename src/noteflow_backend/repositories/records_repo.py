"""Versioned record store for the syncable tables (notes, comments, assignments).

Every update goes through ``update_versioned``, a compare-and-increment:

    UPDATE <table> SET ..., version = version + 1 WHERE id = :id AND version = :expected

An affected-row count of zero means another writer committed first.
"""

from __future__ import annotations

from datetime import datetime
from typing import cast

import sqlalchemy as sa
from sqlalchemy.sql.elements import ColumnElement
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from ..models import Assignment, Comment, Note

SyncRow = Note | Comment | Assignment

_MODELS: dict[str, type[Note] | type[Comment] | type[Assignment]] = {
    "notes": Note,
    "comments": Comment,
    "assignments": Assignment,
}


def model_for(table: str) -> type[Note] | type[Comment] | type[Assignment]:
    try:
        return _MODELS[table]
    except KeyError:
        raise ValueError(f"unsupported table: {table}") from None


def _col(attr: object) -> ColumnElement[object]:
    return cast(ColumnElement[object], attr)


async def get_note_in_scope(
    session: AsyncSession, *, note_id: str, group_ids: list[str]
) -> Note | None:
    if not group_ids:
        return None
    stmt = (
        select(Note)
        .where(Note.id == note_id)
        .where(_col(Note.group_id).in_(group_ids))
    )
    return (await session.exec(stmt)).first()


async def get_scoped(
    session: AsyncSession, *, table: str, record_id: str, group_ids: list[str]
) -> tuple[SyncRow, str] | None:
    """Load a record together with its owning group id.

    Records outside ``group_ids`` are reported as missing.
    """

    if not group_ids:
        return None

    if table == "notes":
        note = await get_note_in_scope(session, note_id=record_id, group_ids=group_ids)
        if note is None:
            return None
        return note, note.group_id

    model = model_for(table)
    if model is Note:
        return None
    child_model = cast(type[Comment] | type[Assignment], model)
    stmt = (
        select(child_model, Note.group_id)
        .join(Note, _col(child_model.note_id) == _col(Note.id))
        .where(_col(child_model.id) == record_id)
        .where(_col(Note.group_id).in_(group_ids))
    )
    row = (await session.exec(stmt)).first()
    if row is None:
        return None
    record, group_id = row
    return cast(SyncRow, record), str(group_id)


async def exists(session: AsyncSession, *, table: str, record_id: str) -> bool:
    model = model_for(table)
    result = await session.exec(select(model.id).where(_col(model.id) == record_id))
    return result.first() is not None


async def create_versioned(session: AsyncSession, row: SyncRow) -> SyncRow:
    row.version = 1
    session.add(row)
    await session.flush()
    return row


async def update_versioned(
    session: AsyncSession,
    *,
    table: str,
    record_id: str,
    expected_version: int,
    values: dict[str, object],
) -> SyncRow | None:
    """Apply ``values`` iff the row is still at ``expected_version``.

    Returns the refreshed row, or None when the version moved (or the row vanished).
    """

    model = model_for(table)
    version_col = cast(ColumnElement[int], cast(object, model.version))
    stmt = (
        sa.update(model)
        .where(_col(model.id) == record_id)
        .where(version_col == int(expected_version))
        .values(**values, version=version_col + 1)
        .execution_options(synchronize_session=False)
    )
    result = await session.exec(stmt)  # pyright: ignore[reportCallIssue,reportArgumentType]
    if int(getattr(result, "rowcount", 0) or 0) != 1:
        return None
    return cast(
        SyncRow | None,
        await session.get(model, record_id, populate_existing=True),
    )


async def delete_record(session: AsyncSession, *, table: str, record_id: str) -> bool:
    model = model_for(table)
    stmt = (
        sa.delete(model)
        .where(_col(model.id) == record_id)
        .execution_options(synchronize_session=False)
    )
    result = await session.exec(stmt)  # pyright: ignore[reportCallIssue,reportArgumentType]
    return int(getattr(result, "rowcount", 0) or 0) > 0


async def list_note_children(
    session: AsyncSession, *, note_id: str
) -> tuple[list[Comment], list[Assignment]]:
    comments = list(
        (await session.exec(select(Comment).where(Comment.note_id == note_id))).all()
    )
    assignments = list(
        (await session.exec(select(Assignment).where(Assignment.note_id == note_id))).all()
    )
    return comments, assignments


async def list_updated_since(
    session: AsyncSession,
    *,
    table: str,
    group_ids: list[str],
    cutoff: datetime | None,
) -> list[SyncRow]:
    """Rows in scope whose ``updated_at`` is at or after ``cutoff`` (all rows if None)."""

    if not group_ids:
        return []

    model = model_for(table)
    if model is Note:
        stmt = select(Note).where(_col(Note.group_id).in_(group_ids))
    else:
        child_model = cast(type[Comment] | type[Assignment], model)
        stmt = (
            select(child_model)
            .join(Note, _col(child_model.note_id) == _col(Note.id))
            .where(_col(Note.group_id).in_(group_ids))
        )

    updated_col = cast(ColumnElement[datetime], cast(object, model.updated_at))
    if cutoff is not None:
        stmt = stmt.where(updated_col >= cutoff)
    stmt = stmt.order_by(updated_col.asc(), _col(model.id).asc())
    return list(cast(list[SyncRow], (await session.exec(stmt)).all()))
