from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import cast


SYNC_TABLES: frozenset[str] = frozenset({"notes", "comments", "assignments"})
SYNC_ACTIONS: frozenset[str] = frozenset({"create", "update", "delete"})

NOTE_TYPES = frozenset({"note", "task", "meeting", "announcement"})
NOTE_STATUSES = frozenset({"open", "in_progress", "completed", "archived"})
PRIORITIES = frozenset({"low", "medium", "high"})
SEVERITIES = frozenset({"low", "medium", "critical"})

_SINGULAR: dict[str, str] = {"notes": "note", "comments": "comment", "assignments": "assignment"}


class PayloadError(ValueError):
    """Client payload cannot be mapped onto the target table."""


@dataclass(frozen=True)
class ServerRowSnapshot:
    record_id: str
    version: int
    group_id: str
    # Full serialized record, returned to the client on conflict.
    server: dict[str, object]


@dataclass(frozen=True)
class ApplyCreate:
    data: dict[str, object]


@dataclass(frozen=True)
class ApplyUpdate:
    record_id: str
    # Version read from the server; the write only lands if it is still current.
    expected_version: int
    data: dict[str, object]


@dataclass(frozen=True)
class ApplyDelete:
    record_id: str
    # False: nothing to remove, report success anyway (idempotent delete).
    exists: bool


@dataclass(frozen=True)
class Conflict:
    record_id: str
    server: dict[str, object]
    client: dict[str, object]


@dataclass(frozen=True)
class Reject:
    record_id: str
    reason: str


@dataclass(frozen=True)
class PlanResult:
    apply: ApplyCreate | ApplyUpdate | ApplyDelete | None = None
    conflict: Conflict | None = None
    reject: Reject | None = None


def singular(table: str) -> str:
    return _SINGULAR.get(table, table.rstrip("s"))


def is_stale(*, server_version: int, client_version: int | None) -> bool:
    """Server wins ties: only a declared base older than the server is stale."""
    if client_version is None:
        return False
    return int(server_version) > int(client_version)


def plan_change(
    *,
    table: str,
    action: str,
    record_id: str,
    client_version: int | None,
    payload: dict[str, object] | None,
    server_row: ServerRowSnapshot | None,
) -> PlanResult:
    """Pure conflict planner.

    - No DB/network/time.
    - Deterministic.
    - ``server_row`` must already be scoped to the caller (out-of-scope rows are None).
    """

    if table not in SYNC_TABLES:
        return PlanResult(reject=Reject(record_id=record_id, reason=f"unsupported table: {table}"))
    if action not in SYNC_ACTIONS:
        return PlanResult(
            reject=Reject(record_id=record_id, reason=f"unsupported action: {action}")
        )

    data = dict(payload or {})

    if action == "create":
        return PlanResult(apply=ApplyCreate(data=data))

    if action == "delete":
        return PlanResult(apply=ApplyDelete(record_id=record_id, exists=server_row is not None))

    if server_row is None:
        return PlanResult(
            reject=Reject(record_id=record_id, reason=f"{singular(table)} not found")
        )

    if is_stale(server_version=server_row.version, client_version=client_version):
        return PlanResult(
            conflict=Conflict(record_id=record_id, server=server_row.server, client=data)
        )

    return PlanResult(
        apply=ApplyUpdate(record_id=record_id, expected_version=server_row.version, data=data)
    )


def _parse_datetime(value: object, field: str) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        # Epoch milliseconds, as sent by the mobile clients.
        parsed = datetime.fromtimestamp(float(value) / 1000, tz=timezone.utc)
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError as exc:
            raise PayloadError(f"invalid {field}") from exc
    else:
        raise PayloadError(f"invalid {field}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _str_list(value: object, field: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise PayloadError(f"invalid {field}")
    items = cast(list[object], value)
    return [str(v) for v in items if str(v).strip()]


def _choice(value: object, field: str, allowed: frozenset[str], *, nullable: bool) -> str | None:
    if value is None or value == "":
        if nullable:
            return None
        raise PayloadError(f"missing {field}")
    v = str(value).strip()
    if v not in allowed:
        raise PayloadError(f"invalid {field}: {v}")
    return v


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    v = str(value)
    return v if v.strip() else None


def _optional_int(value: object, field: str) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise PayloadError(f"invalid {field}")
    try:
        return int(cast(int, value))
    except (TypeError, ValueError) as exc:
        raise PayloadError(f"invalid {field}") from exc


def normalize_note_payload(payload: dict[str, object]) -> dict[str, object]:
    """Map a client note payload (camelCase) onto Note columns.

    Only keys present in the payload are returned so updates stay partial.
    """

    out: dict[str, object] = {}
    if "title" in payload:
        out["title"] = str(payload.get("title") or "")
    if "content" in payload:
        out["content"] = _optional_str(payload.get("content"))
    if "type" in payload:
        out["type"] = _choice(payload.get("type"), "type", NOTE_TYPES, nullable=False)
    if "status" in payload:
        out["status"] = _choice(payload.get("status"), "status", NOTE_STATUSES, nullable=False)
    if "priority" in payload:
        out["priority"] = _choice(payload.get("priority"), "priority", PRIORITIES, nullable=True)
    if "severity" in payload:
        out["severity"] = _choice(payload.get("severity"), "severity", SEVERITIES, nullable=True)
    if "deadline" in payload:
        out["deadline"] = _parse_datetime(payload.get("deadline"), "deadline")
    if "estimatedTime" in payload:
        out["estimated_time"] = _optional_int(payload.get("estimatedTime"), "estimatedTime")
    if "tags" in payload:
        out["tags_json"] = _str_list(payload.get("tags"), "tags")
    if "isPinned" in payload:
        out["is_pinned"] = bool(payload.get("isPinned") or False)
    if "parentId" in payload:
        out["parent_id"] = _optional_str(payload.get("parentId"))
    if "groupId" in payload:
        out["group_id"] = _optional_str(payload.get("groupId"))
    return out


def normalize_comment_payload(payload: dict[str, object]) -> dict[str, object]:
    out: dict[str, object] = {}
    if "content" in payload:
        out["content"] = str(payload.get("content") or "")
    if "mentions" in payload:
        out["mentions_json"] = _str_list(payload.get("mentions"), "mentions")
    if "noteId" in payload:
        out["note_id"] = _optional_str(payload.get("noteId"))
    if "parentCommentId" in payload:
        out["parent_comment_id"] = _optional_str(payload.get("parentCommentId"))
    return out


def normalize_assignment_payload(payload: dict[str, object]) -> dict[str, object]:
    out: dict[str, object] = {}
    if "noteId" in payload:
        out["note_id"] = _optional_str(payload.get("noteId"))
    if "assigneeId" in payload:
        out["assignee_id"] = _optional_int(payload.get("assigneeId"), "assigneeId")
    return out


def normalize_payload(table: str, payload: dict[str, object]) -> dict[str, object]:
    if table == "notes":
        return normalize_note_payload(payload)
    if table == "comments":
        return normalize_comment_payload(payload)
    if table == "assignments":
        return normalize_assignment_payload(payload)
    raise PayloadError(f"unsupported table: {table}")


def validate_payload_for_table(
    table: str, action: str, normalized: dict[str, object]
) -> str | None:
    """Return rejection reason if invalid, else None."""

    if action == "create":
        if table == "notes" and not str(normalized.get("title") or "").strip():
            return "missing title"
        if table == "comments":
            if not normalized.get("note_id"):
                return "missing noteId"
            if not str(normalized.get("content") or "").strip():
                return "missing content"
        if table == "assignments":
            if not normalized.get("note_id"):
                return "missing noteId"
            if normalized.get("assignee_id") is None:
                return "missing assigneeId"
        return None

    if action == "update":
        if table == "notes":
            if "title" in normalized and not str(normalized.get("title") or "").strip():
                return "title must not be empty"
            if "group_id" in normalized:
                return "groupId cannot be changed"
        if table in {"comments", "assignments"} and "note_id" in normalized:
            return "noteId cannot be changed"
        if table == "comments" and "content" in normalized:
            if not str(normalized.get("content") or "").strip():
                return "content must not be empty"
        if table == "assignments" and "assignee_id" in normalized:
            if normalized.get("assignee_id") is None:
                return "missing assigneeId"
    return None
