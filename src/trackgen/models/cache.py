"""Shared cache entry model (see trackgen.db.cache)."""
from typing import Optional

from sqlmodel import Field, SQLModel


class CacheEntry(SQLModel, table=True):
    key: str = Field(primary_key=True)
    value: Optional[str] = None  # JSON-encoded
    counter: int = 0  # used by atomic increments
    expires_at: float = Field(index=True)  # unix seconds
