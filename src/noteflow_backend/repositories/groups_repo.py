from __future__ import annotations

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from ..models import GroupMember


async def list_group_ids(session: AsyncSession, *, user_id: int) -> list[str]:
    result = await session.exec(select(GroupMember.group_id).where(GroupMember.user_id == user_id))
    return sorted({str(gid) for gid in result.all()})


async def is_member(session: AsyncSession, *, group_id: str, user_id: int) -> bool:
    result = await session.exec(
        select(GroupMember.id)
        .where(GroupMember.group_id == group_id)
        .where(GroupMember.user_id == user_id)
    )
    return result.first() is not None
