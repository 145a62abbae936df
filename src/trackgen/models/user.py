"""User record holding per-user track generation settings."""
from typing import Optional

from sqlmodel import Field, SQLModel


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(default="", index=True)

    # Null means "use the application default" (see Settings)
    minutes_between_routes: Optional[int] = None
    meters_between_routes: Optional[int] = None
