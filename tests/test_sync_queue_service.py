from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest
from fastapi import HTTPException

from noteflow_backend.config import settings
from noteflow_backend.db import init_db, reset_engine_cache, session_scope
from noteflow_backend.models import Group, GroupMember, Note, SyncQueueItem, User
from noteflow_backend.schemas_sync import PendingChange
from noteflow_backend.services import sync_queue_service
from noteflow_backend.sync_utils import as_utc


async def _seed(tmp_path: Path, name: str) -> tuple[int, int]:
    settings.database_url = f"sqlite:///{tmp_path / name}"
    reset_engine_cache()
    await init_db()

    async with session_scope() as session:
        owner = User(username="owner", api_token="tok-owner")
        stranger = User(username="stranger", api_token="tok-stranger")
        session.add_all([owner, stranger])
        session.add(Group(id="g1", name="team"))
        await session.commit()
        owner_id, stranger_id = int(owner.id or 0), int(stranger.id or 0)

        session.add(GroupMember(group_id="g1", user_id=owner_id))
        session.add(Note(id="n1", group_id="g1", creator_id=owner_id, title="seed", version=4))
        await session.commit()
    return owner_id, stranger_id


async def _enqueue(user_id: int, **fields: Any) -> dict[str, object]:
    async with session_scope() as session:
        return await sync_queue_service.enqueue(
            session, user_id=user_id, change=PendingChange(**fields)
        )


async def _drain(user_id: int, limit: int | None = None) -> dict[str, Any]:
    async with session_scope() as session:
        return await sync_queue_service.drain(session, user_id=user_id, limit=limit)


async def _items(user_id: int, status: str | None = None) -> list[dict[str, object]]:
    async with session_scope() as session:
        return await sync_queue_service.list_queue(session, user_id=user_id, status=status)


@pytest.mark.anyio
async def test_enqueue_assigns_change_id_and_clamps_client_clock(tmp_path: Path) -> None:
    owner_id, _ = await _seed(tmp_path, "queue_enqueue.db")

    far_future = datetime.now(timezone.utc) + timedelta(days=30)
    item = await _enqueue(
        owner_id,
        table_name="notes",
        record_id="tmp-1",
        action="create",
        data={"title": "offline"},
        client_timestamp=far_future,
    )
    assert item["status"] == "PENDING"
    assert item["retry_count"] == 0
    assert isinstance(item["change_id"], str) and item["change_id"]

    ts = item["client_timestamp"]
    assert isinstance(ts, datetime)
    limit = datetime.now(timezone.utc) + timedelta(
        seconds=settings.sync_max_client_clock_skew_seconds + 1
    )
    assert as_utc(ts) <= limit


@pytest.mark.anyio
async def test_drain_applies_in_order_and_records_outcomes(tmp_path: Path) -> None:
    owner_id, _ = await _seed(tmp_path, "queue_drain.db")

    await _enqueue(
        owner_id, id="q1", table_name="notes", record_id="tmp-n", action="create",
        data={"title": "queued"},
    )
    await _enqueue(
        owner_id, id="q2", table_name="comments", record_id="tmp-c", action="create",
        data={"noteId": "tmp-n", "content": "on the queued note"},
    )
    await _enqueue(
        owner_id, id="q3", table_name="notes", record_id="n1", action="update",
        data={"title": "stale edit"}, client_version=2,
    )
    await _enqueue(
        owner_id, id="q4", table_name="notes", record_id="ghost", action="update",
        data={"title": "x"}, client_version=1,
    )

    summary = await _drain(owner_id)
    assert (summary["processed"], summary["completed"], summary["conflicted"], summary["failed"]) == (
        4,
        2,
        1,
        1,
    )
    assert [o["change_id"] for o in summary["outcomes"]] == ["q1", "q2", "q3", "q4"]

    by_change = {str(i["change_id"]): i for i in await _items(owner_id)}
    assert by_change["q1"]["status"] == "COMPLETED"
    assert by_change["q2"]["status"] == "COMPLETED"
    assert by_change["q3"]["status"] == "CONFLICT"
    assert by_change["q3"]["error_message"] == "version conflict"
    assert by_change["q4"]["status"] == "FAILED"
    assert by_change["q4"]["retry_count"] == 1
    assert by_change["q4"]["error_message"] == "note not found"

    result = by_change["q3"]["result"]
    assert isinstance(result, dict)
    assert result["status"] == "conflict"
    assert result["conflictData"]["serverVersion"]["version"] == 4

    completed = by_change["q1"]["result"]
    assert isinstance(completed, dict)
    async with session_scope() as session:
        note = await session.get(Note, str(completed["serverRecordId"]))
    assert note is not None
    assert note.title == "queued"


@pytest.mark.anyio
async def test_failed_items_retry_until_limit_and_conflicts_are_kept(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    owner_id, _ = await _seed(tmp_path, "queue_retry.db")
    monkeypatch.setattr(settings, "sync_queue_max_retries", 2)

    await _enqueue(
        owner_id, id="bad", table_name="notes", record_id="ghost", action="update",
        data={"title": "x"}, client_version=1,
    )
    await _enqueue(
        owner_id, id="stale", table_name="notes", record_id="n1", action="update",
        data={"title": "y"}, client_version=1,
    )

    first = await _drain(owner_id)
    second = await _drain(owner_id)
    third = await _drain(owner_id)

    assert (first["failed"], first["conflicted"]) == (1, 1)
    # Conflicted items are never picked up again.
    assert (second["processed"], second["failed"], second["conflicted"]) == (1, 1, 0)
    assert third["processed"] == 0

    [failed] = await _items(owner_id, status="FAILED")
    assert failed["change_id"] == "bad"
    assert failed["retry_count"] == 2
    [conflicted] = await _items(owner_id, status="CONFLICT")
    assert conflicted["change_id"] == "stale"


@pytest.mark.anyio
async def test_drain_limit(tmp_path: Path) -> None:
    owner_id, _ = await _seed(tmp_path, "queue_limit.db")
    for i in range(3):
        await _enqueue(
            owner_id, table_name="notes", record_id=f"tmp-{i}", action="create",
            data={"title": f"t{i}"},
        )

    summary = await _drain(owner_id, limit=2)
    assert summary["processed"] == 2
    assert [i["record_id"] for i in await _items(owner_id, status="PENDING")] == ["tmp-2"]


@pytest.mark.anyio
async def test_queue_is_private_to_its_owner(tmp_path: Path) -> None:
    owner_id, stranger_id = await _seed(tmp_path, "queue_private.db")
    item = await _enqueue(
        owner_id, table_name="notes", record_id="tmp", action="create", data={"title": "t"}
    )

    assert await _items(stranger_id) == []
    assert (await _drain(stranger_id))["processed"] == 0

    async with session_scope() as session:
        with pytest.raises(HTTPException) as excinfo:
            await sync_queue_service.discard(
                session, user_id=stranger_id, item_id=int(str(item["id"]))
            )
    assert excinfo.value.status_code == 404

    async with session_scope() as session:
        await sync_queue_service.discard(session, user_id=owner_id, item_id=int(str(item["id"])))
    assert await _items(owner_id) == []


@pytest.mark.anyio
async def test_list_queue_rejects_unknown_status(tmp_path: Path) -> None:
    owner_id, _ = await _seed(tmp_path, "queue_status.db")
    with pytest.raises(HTTPException) as excinfo:
        await _items(owner_id, status="DONE")
    assert excinfo.value.status_code == 400


async def _set_processing(item_id: int, *, age: timedelta) -> None:
    async with session_scope() as session:
        row = await session.get(SyncQueueItem, item_id)
        assert row is not None
        row.status = "PROCESSING"
        row.updated_at = datetime.now(timezone.utc) - age
        session.add(row)
        await session.commit()


@pytest.mark.anyio
async def test_abandoned_processing_item_is_reclaimed_by_next_drain(tmp_path: Path) -> None:
    owner_id, _ = await _seed(tmp_path, "queue_reclaim.db")
    item = await _enqueue(
        owner_id, id="crashed", table_name="notes", record_id="tmp", action="create",
        data={"title": "half done"},
    )
    item_id = int(str(item["id"]))

    # A drain that died right after claiming the item.
    await _set_processing(item_id, age=timedelta(seconds=5))
    assert (await _drain(owner_id))["processed"] == 0

    await _set_processing(
        item_id, age=timedelta(seconds=settings.sync_queue_processing_lease_seconds + 60)
    )
    summary = await _drain(owner_id)
    assert (summary["processed"], summary["completed"]) == (1, 1)

    [done] = await _items(owner_id, status="COMPLETED")
    assert done["change_id"] == "crashed"


@pytest.mark.anyio
async def test_discard_of_processing_item_waits_for_the_lease(tmp_path: Path) -> None:
    owner_id, _ = await _seed(tmp_path, "queue_discard_processing.db")
    item = await _enqueue(
        owner_id, table_name="notes", record_id="tmp", action="create", data={"title": "t"}
    )
    item_id = int(str(item["id"]))

    await _set_processing(item_id, age=timedelta(seconds=5))
    async with session_scope() as session:
        with pytest.raises(HTTPException) as excinfo:
            await sync_queue_service.discard(session, user_id=owner_id, item_id=item_id)
    assert excinfo.value.status_code == 409

    await _set_processing(
        item_id, age=timedelta(seconds=settings.sync_queue_processing_lease_seconds + 60)
    )
    async with session_scope() as session:
        await sync_queue_service.discard(session, user_id=owner_id, item_id=item_id)
    assert await _items(owner_id) == []
