from __future__ import annotations

from datetime import datetime, timezone

import pytest

from noteflow_backend.domain.sync_planner import (
    ApplyCreate,
    ApplyDelete,
    ApplyUpdate,
    PayloadError,
    ServerRowSnapshot,
    is_stale,
    normalize_note_payload,
    normalize_payload,
    plan_change,
    validate_payload_for_table,
)


def _row(version: int) -> ServerRowSnapshot:
    return ServerRowSnapshot(
        record_id="n1", version=version, group_id="g1", server={"id": "n1", "version": version}
    )


@pytest.mark.parametrize(
    "case",
    [
        {
            "name": "create applies",
            "table": "notes",
            "action": "create",
            "server": None,
            "client_version": None,
            "expect": ApplyCreate,
        },
        {
            "name": "update without declared version applies",
            "table": "notes",
            "action": "update",
            "server": _row(3),
            "client_version": None,
            "expect": ApplyUpdate,
        },
        {
            "name": "update at current version applies",
            "table": "notes",
            "action": "update",
            "server": _row(3),
            "client_version": 3,
            "expect": ApplyUpdate,
        },
        {
            "name": "update ahead of server applies",
            "table": "notes",
            "action": "update",
            "server": _row(3),
            "client_version": 4,
            "expect": ApplyUpdate,
        },
        {
            "name": "stale update conflicts",
            "table": "notes",
            "action": "update",
            "server": _row(3),
            "client_version": 2,
            "expect": "conflict",
        },
        {
            "name": "update of missing record rejects",
            "table": "comments",
            "action": "update",
            "server": None,
            "client_version": 1,
            "expect": "reject",
        },
        {
            "name": "delete of missing record applies as no-op",
            "table": "assignments",
            "action": "delete",
            "server": None,
            "client_version": None,
            "expect": ApplyDelete,
        },
        {
            "name": "stale delete still applies",
            "table": "notes",
            "action": "delete",
            "server": _row(9),
            "client_version": 1,
            "expect": ApplyDelete,
        },
        {
            "name": "unknown table rejects",
            "table": "widgets",
            "action": "create",
            "server": None,
            "client_version": None,
            "expect": "reject",
        },
        {
            "name": "unknown action rejects",
            "table": "notes",
            "action": "upsert",
            "server": _row(1),
            "client_version": None,
            "expect": "reject",
        },
    ],
    ids=lambda c: c["name"],
)
def test_plan_change_matrix(case: dict[str, object]):
    plan = plan_change(
        table=str(case["table"]),
        action=str(case["action"]),
        record_id="n1",
        client_version=case["client_version"],  # type: ignore[arg-type]
        payload={"title": "t"},
        server_row=case["server"],  # type: ignore[arg-type]
    )
    expect = case["expect"]
    if expect == "conflict":
        assert plan.conflict is not None
        assert plan.apply is None and plan.reject is None
        assert plan.conflict.server == {"id": "n1", "version": 3}
        assert plan.conflict.client == {"title": "t"}
    elif expect == "reject":
        assert plan.reject is not None
        assert plan.apply is None and plan.conflict is None
    else:
        assert isinstance(plan.apply, expect)  # type: ignore[arg-type]
        assert plan.reject is None and plan.conflict is None


def test_update_plan_carries_read_version():
    plan = plan_change(
        table="notes",
        action="update",
        record_id="n1",
        client_version=None,
        payload={},
        server_row=_row(7),
    )
    assert isinstance(plan.apply, ApplyUpdate)
    assert plan.apply.expected_version == 7


def test_delete_plan_reports_existence():
    present = plan_change(
        table="notes", action="delete", record_id="n1", client_version=None, payload=None,
        server_row=_row(1),
    )
    absent = plan_change(
        table="notes", action="delete", record_id="n1", client_version=None, payload=None,
        server_row=None,
    )
    assert isinstance(present.apply, ApplyDelete) and present.apply.exists
    assert isinstance(absent.apply, ApplyDelete) and not absent.apply.exists


@pytest.mark.parametrize(
    ("server_version", "client_version", "stale"),
    [(3, 2, True), (3, 3, False), (3, 4, False), (1, None, False)],
)
def test_is_stale(server_version: int, client_version: int | None, stale: bool):
    assert is_stale(server_version=server_version, client_version=client_version) is stale


def test_normalize_note_payload_maps_camel_case_and_keeps_partial():
    out = normalize_note_payload(
        {
            "title": "Plan",
            "isPinned": True,
            "estimatedTime": "30",
            "tags": ["a", " ", "b"],
            "deadline": "2026-10-20T09:00:00Z",
        }
    )
    assert out == {
        "title": "Plan",
        "is_pinned": True,
        "estimated_time": 30,
        "tags_json": ["a", "b"],
        "deadline": datetime(2026, 10, 20, 9, 0, tzinfo=timezone.utc),
    }
    assert "content" not in out


def test_normalize_note_payload_accepts_epoch_millis_deadline():
    out = normalize_note_payload({"deadline": 1_700_000_000_000})
    assert out["deadline"] == datetime.fromtimestamp(1_700_000_000, tz=timezone.utc)


@pytest.mark.parametrize(
    "payload",
    [
        {"type": "diary"},
        {"status": "done"},
        {"priority": "urgent"},
        {"deadline": "next tuesday"},
        {"estimatedTime": "soon"},
        {"tags": "a,b"},
    ],
)
def test_normalize_note_payload_rejects_bad_values(payload: dict[str, object]):
    with pytest.raises(PayloadError):
        normalize_note_payload(payload)


def test_normalize_payload_for_children():
    assert normalize_payload("comments", {"noteId": "n1", "content": "hi", "mentions": ["u2"]}) == {
        "note_id": "n1",
        "content": "hi",
        "mentions_json": ["u2"],
    }
    assert normalize_payload("assignments", {"noteId": "n1", "assigneeId": "4"}) == {
        "note_id": "n1",
        "assignee_id": 4,
    }
    with pytest.raises(PayloadError):
        normalize_payload("widgets", {})


@pytest.mark.parametrize(
    ("table", "action", "normalized", "reason"),
    [
        ("notes", "create", {}, "missing title"),
        ("notes", "create", {"title": "  "}, "missing title"),
        ("notes", "create", {"title": "ok"}, None),
        ("comments", "create", {"content": "x"}, "missing noteId"),
        ("comments", "create", {"note_id": "n1", "content": " "}, "missing content"),
        ("assignments", "create", {"note_id": "n1"}, "missing assigneeId"),
        ("notes", "update", {"title": ""}, "title must not be empty"),
        ("notes", "update", {"group_id": "g2"}, "groupId cannot be changed"),
        ("comments", "update", {"note_id": "n2"}, "noteId cannot be changed"),
        ("comments", "update", {"content": ""}, "content must not be empty"),
        ("notes", "update", {"is_pinned": True}, None),
    ],
)
def test_validate_payload_for_table(
    table: str, action: str, normalized: dict[str, object], reason: str | None
):
    assert validate_payload_for_table(table, action, normalized) == reason
