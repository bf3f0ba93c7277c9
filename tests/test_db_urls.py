from __future__ import annotations

import pytest

from noteflow_backend.db_urls import (
    normalize_database_url_for_alembic,
    normalize_database_url_for_async,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("sqlite:///./dev.db", "sqlite+aiosqlite:///./dev.db"),
        ("sqlite+aiosqlite:///./dev.db", "sqlite+aiosqlite:///./dev.db"),
        ("postgres://u:p@h/db", "postgresql+psycopg://u:p@h/db"),
        ("postgresql://u:p@h/db", "postgresql+psycopg://u:p@h/db"),
        ("postgresql+psycopg2://u:p@h/db", "postgresql+psycopg://u:p@h/db"),
        ("  ", ""),
    ],
)
def test_async_url(raw: str, expected: str):
    assert normalize_database_url_for_async(raw) == expected


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("sqlite+aiosqlite:///./dev.db", "sqlite:///./dev.db"),
        ("sqlite:///./dev.db", "sqlite:///./dev.db"),
        ("postgresql://u:p@h/db", "postgresql+psycopg://u:p@h/db"),
    ],
)
def test_alembic_url(raw: str, expected: str):
    assert normalize_database_url_for_alembic(raw) == expected
