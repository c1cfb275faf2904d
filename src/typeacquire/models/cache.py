from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel


class PackumentCacheEntry(BaseModel):
    """Cached registry document for one package."""

    name: str
    content: dict[str, Any]  # Parsed packument JSON
    fetched_at: datetime
    expires_at: datetime
    stale: bool = False
