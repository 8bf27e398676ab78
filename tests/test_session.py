from __future__ import annotations

import pytest

from qbo_sync.db.session import normalize_database_url


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("postgresql://sync:pw@db:5432/qbo", "postgresql+asyncpg://sync:pw@db:5432/qbo"),
        ("postgresql+asyncpg://sync:pw@db:5432/qbo", "postgresql+asyncpg://sync:pw@db:5432/qbo"),
        ("sqlite:///./qbo_sync.db", "sqlite+aiosqlite:///./qbo_sync.db"),
        ("sqlite+aiosqlite://", "sqlite+aiosqlite://"),
    ],
)
def test_database_url_uses_async_driver(url, expected):
    assert normalize_database_url(url) == expected
