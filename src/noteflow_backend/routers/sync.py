from __future__ import annotations

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlmodel.ext.asyncio.session import AsyncSession

from noteflow_backend.db import get_session
from noteflow_backend.deps import get_current_user
from noteflow_backend.models import User
from noteflow_backend.schemas_sync import (
    DeltaSyncRequest,
    DeltaSyncResponse,
    InitialSyncResponse,
    PendingChange,
    SyncQueueDrainResponse,
    SyncQueueItemOut,
)
from noteflow_backend.services import sync_queue_service, sync_service
from noteflow_backend.sync_token import decode_sync_token

router = APIRouter(prefix="/sync", tags=["sync"])


def _user_id(user: User) -> int:
    if user.id is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="user missing id",
        )
    return int(user.id)


def _split_tables(tables: list[str] | None) -> list[str] | None:
    # Accept both ?tables=notes&tables=comments and ?tables=notes,comments.
    if not tables:
        return None
    out: list[str] = []
    for raw in tables:
        out.extend(t.strip() for t in raw.split(",") if t.strip())
    return out or None


@router.get(
    "/initial",
    response_model=InitialSyncResponse,
    response_model_by_alias=True,
)
async def initial_sync(
    sync_token: Annotated[str | None, Query(alias="syncToken")] = None,
    last_sync_time: Annotated[datetime | None, Query(alias="lastSyncTime")] = None,
    tables: Annotated[list[str] | None, Query()] = None,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> InitialSyncResponse:
    since = last_sync_time
    if sync_token:
        since = decode_sync_token(sync_token)

    data = await sync_service.get_initial_sync(
        session,
        user_id=_user_id(user),
        last_sync_time=since,
        tables=_split_tables(tables),
    )
    return InitialSyncResponse.model_validate(data)


@router.post(
    "/delta",
    response_model=DeltaSyncResponse,
    response_model_by_alias=True,
)
async def delta_sync(
    payload: DeltaSyncRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> DeltaSyncResponse:
    data = await sync_service.process_delta_sync(
        session,
        user_id=_user_id(user),
        sync_token=payload.sync_token,
        client_changes=payload.client_changes,
        tables=payload.tables,
    )
    return DeltaSyncResponse.model_validate(data)


@router.get("/queue", response_model=list[SyncQueueItemOut], response_model_by_alias=True)
async def list_queue(
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> list[SyncQueueItemOut]:
    rows = await sync_queue_service.list_queue(
        session, user_id=_user_id(user), status=status_filter
    )
    return [SyncQueueItemOut.model_validate(r) for r in rows]


@router.post(
    "/queue",
    response_model=SyncQueueItemOut,
    response_model_by_alias=True,
    status_code=status.HTTP_201_CREATED,
)
async def enqueue_change(
    change: PendingChange,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> SyncQueueItemOut:
    row = await sync_queue_service.enqueue(session, user_id=_user_id(user), change=change)
    return SyncQueueItemOut.model_validate(row)


@router.post(
    "/queue/drain",
    response_model=SyncQueueDrainResponse,
    response_model_by_alias=True,
)
async def drain_queue(
    limit: Annotated[int | None, Query(ge=1, le=1000)] = None,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> SyncQueueDrainResponse:
    data = await sync_queue_service.drain(session, user_id=_user_id(user), limit=limit)
    return SyncQueueDrainResponse.model_validate(data)


@router.delete("/queue/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
async def discard_queue_item(
    item_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Response:
    await sync_queue_service.discard(session, user_id=_user_id(user), item_id=item_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
