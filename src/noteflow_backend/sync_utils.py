from __future__ import annotations

import hashlib
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlmodel.ext.asyncio.session import AsyncSession

from noteflow_backend.config import settings
from noteflow_backend.models import SyncLog, utc_now


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat_utc(value: datetime | None) -> str | None:
    if value is None:
        return None
    return as_utc(value).isoformat().replace("+00:00", "Z")


def clamp_client_timestamp(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    server_now = utc_now()
    max_ahead = server_now + timedelta(seconds=settings.sync_max_client_clock_skew_seconds)
    value = as_utc(value)
    if value > max_ahead:
        return max_ahead
    return value


def content_sha256(*parts: str | None) -> str:
    h = hashlib.sha256()
    for part in parts:
        h.update((part or "").encode("utf-8"))
        h.update(b"\x00")
    return h.hexdigest()


def record_change(
    session: AsyncSession,
    *,
    user_id: int,
    group_id: str,
    table_name: str,
    record_id: str,
    action: str,
    old_data: dict[str, Any] | None,
    new_data: dict[str, Any] | None,
    client_change_id: str | None = None,
    client_record_id: str | None = None,
) -> None:
    # Added to the caller's transaction so the entry commits with the write it describes.
    session.add(
        SyncLog(
            user_id=user_id,
            group_id=group_id,
            table_name=table_name,
            record_id=record_id,
            action=action,
            old_data=old_data,
            new_data=new_data,
            client_change_id=client_change_id,
            client_record_id=client_record_id,
            created_at=utc_now(),
        )
    )
