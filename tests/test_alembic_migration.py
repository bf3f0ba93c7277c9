from __future__ import annotations

from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect

from noteflow_backend.config import settings
from noteflow_backend.db import reset_engine_cache, session_scope
from noteflow_backend.models import Group, GroupMember, User
from noteflow_backend.schemas_sync import PendingChange
from noteflow_backend.services import sync_service

ROOT = Path(__file__).resolve().parents[1]


def _alembic_upgrade_head() -> None:
    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "alembic"))
    cfg.attributes["configure_logger"] = False
    command.upgrade(cfg, "head")


@pytest.mark.anyio
async def test_migrated_schema_supports_delta_sync(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    db_path = tmp_path / "migrated.db"
    monkeypatch.delenv("DATABASE_URL", raising=False)
    settings.database_url = f"sqlite:///{db_path}"
    reset_engine_cache()
    _alembic_upgrade_head()

    engine = create_engine(f"sqlite:///{db_path}")
    try:
        tables = set(inspect(engine).get_table_names())
    finally:
        engine.dispose()
    assert {
        "users",
        "groups",
        "group_members",
        "notes",
        "comments",
        "assignments",
        "sync_logs",
        "sync_queue",
    } <= tables

    async with session_scope() as session:
        user = User(username="migrated", api_token="tok-migrated")
        session.add(user)
        session.add(Group(id="g1", name="team"))
        await session.commit()
        user_id = int(user.id or 0)
        session.add(GroupMember(group_id="g1", user_id=user_id))
        await session.commit()

    async with session_scope() as session:
        out = await sync_service.process_delta_sync(
            session,
            user_id=user_id,
            sync_token=None,
            client_changes=[
                PendingChange(
                    table_name="notes", record_id="tmp", action="create", data={"title": "t"}
                ),
            ],
        )
    assert out["processed_changes"][0]["status"] == "success"
    assert [n["title"] for n in out["server_changes"]["notes"]] == ["t"]
