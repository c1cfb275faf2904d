"""Unit-specific fixtures (no I/O beyond in-memory SQLite and tmp_path)."""

from __future__ import annotations

import aiosqlite
import pytest

from typeacquire.cache import MetadataCache


@pytest.fixture()
async def metadata_cache():
    """In-memory SQLite metadata cache for unit tests."""
    async with aiosqlite.connect(":memory:") as db:
        c = MetadataCache(db)
        await c.init_db()
        yield c
