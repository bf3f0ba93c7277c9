from __future__ import annotations

from typing import ClassVar, final

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


SYNC_TABLES: tuple[str, ...] = ("notes", "comments", "assignments")


def _split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [x.strip() for x in value.split(",") if x.strip()]


@final
class Settings(BaseSettings):
    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )
    app_name: str = "NoteFlow Backend"
    api_prefix: str = "/api/v1"

    # Environment (ENVIRONMENT): development | production
    environment: str = "development"

    database_url: str = "sqlite:///./dev.db"
    log_level: str = "INFO"

    # Primary env: CORS_ALLOW_ORIGINS; also accept CORS_ORIGINS as alias.
    cors_allow_origins: str = Field(
        default="*",
        validation_alias=AliasChoices("CORS_ALLOW_ORIGINS", "CORS_ORIGINS"),
    )

    # Tables returned by initial/delta sync when the client does not ask for a subset.
    sync_default_tables: str = "notes,comments,assignments"

    # Pending-change queue: max items handled per drain call, and how many times
    # a FAILED item is retried before it is left for manual resolution.
    sync_queue_drain_limit: int = 100
    sync_queue_max_retries: int = 5

    # A PROCESSING item untouched for this long is treated as abandoned by a
    # crashed drain: the next drain picks it up again and discard is allowed.
    sync_queue_processing_lease_seconds: int = 300

    # Client timestamps further ahead of server time than this are clamped.
    sync_max_client_clock_skew_seconds: int = 300

    @model_validator(mode="after")
    def _validate_production_settings(self) -> "Settings":  # pyright: ignore[reportUnusedFunction]
        if self.environment.strip().lower() != "production":
            return self

        errors: list[str] = []

        cors_v = self.cors_allow_origins.strip()
        if not cors_v or cors_v == "*":
            errors.append("CORS_ALLOW_ORIGINS must be explicit (not '*') in production")

        if self.database_url.strip().lower().startswith("sqlite"):
            errors.append("DATABASE_URL must not point at SQLite in production")

        unknown = [t for t in _split_csv(self.sync_default_tables) if t not in SYNC_TABLES]
        if unknown:
            errors.append(f"SYNC_DEFAULT_TABLES has unknown tables: {','.join(unknown)}")

        if errors:
            raise ValueError("Invalid production settings: " + "; ".join(errors))
        return self

    def cors_origins_list(self) -> list[str]:
        v = self.cors_allow_origins.strip()
        if not v:
            return []
        if v == "*":
            return ["*"]
        return _split_csv(v)

    def default_sync_tables(self) -> list[str]:
        tables = [t for t in _split_csv(self.sync_default_tables) if t in SYNC_TABLES]
        return tables or list(SYNC_TABLES)

    def security_warnings(self) -> list[str]:
        warnings: list[str] = []
        if self.cors_allow_origins.strip() == "*":
            warnings.append("CORS_ALLOW_ORIGINS='*' is permissive")
        if self.sync_queue_max_retries <= 0:
            warnings.append("SYNC_QUEUE_MAX_RETRIES<=0 disables retries of failed queue items")
        return warnings


settings = Settings()
