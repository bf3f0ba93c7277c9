from __future__ import annotations

from datetime import datetime
from typing import Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


ChangeStatus = Literal["success", "conflict", "error"]
QueueStatus = Literal["PENDING", "PROCESSING", "COMPLETED", "FAILED", "CONFLICT"]


class CamelModel(BaseModel):
    # Clients speak camelCase; Python code may use field names.
    model_config: ClassVar[ConfigDict] = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class PendingChange(CamelModel):
    # Client-assigned change id, stable across retries.
    id: str | None = Field(default=None, max_length=128)
    # Kept as plain strings: an unknown table/action fails that change only.
    table_name: str = Field(min_length=1, max_length=32)
    record_id: str = Field(min_length=1, max_length=128)
    action: str = Field(min_length=1, max_length=20)
    data: dict[str, Any] = Field(default_factory=dict)
    client_timestamp: datetime | None = None
    client_version: int | None = None


class DeltaSyncRequest(CamelModel):
    sync_token: str | None = None
    client_changes: list[PendingChange] = Field(default_factory=list)
    tables: list[str] | None = None


class ConflictData(CamelModel):
    server_version: dict[str, Any]
    client_version: dict[str, Any]


class ProcessedChange(CamelModel):
    change_id: str | None = None
    client_record_id: str
    server_record_id: str | None = None
    status: ChangeStatus
    server_version: int | None = None
    error: str | None = None
    conflict_data: ConflictData | None = None


class InitialSyncResponse(CamelModel):
    sync_token: str
    server_time: datetime
    data: dict[str, list[dict[str, Any]]] = Field(default_factory=dict)
    deletions: dict[str, list[str]] = Field(default_factory=dict)


class DeltaSyncResponse(CamelModel):
    sync_token: str
    server_time: datetime
    processed_changes: list[ProcessedChange] = Field(default_factory=list)
    server_changes: dict[str, list[dict[str, Any]]] = Field(default_factory=dict)
    deletions: dict[str, list[str]] = Field(default_factory=dict)


class SyncQueueItemOut(CamelModel):
    id: int
    change_id: str
    table_name: str
    record_id: str
    action: str
    data: dict[str, Any] = Field(default_factory=dict)
    client_version: int | None = None
    client_timestamp: datetime | None = None
    status: QueueStatus
    retry_count: int
    error_message: str | None = None
    result: dict[str, Any] | None = None
    created_at: datetime
    updated_at: datetime


class SyncQueueDrainResponse(CamelModel):
    processed: int
    completed: int
    failed: int
    conflicted: int
    outcomes: list[ProcessedChange] = Field(default_factory=list)
