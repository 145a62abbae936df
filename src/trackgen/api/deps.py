"""Request-scoped dependencies shared by the routes."""
from typing import Generator

from fastapi import Request
from sqlmodel import Session

from trackgen.db.cache import Cache


def get_db_engine(request: Request):
    return request.app.state.engine


def get_session(request: Request) -> Generator[Session, None, None]:
    """Read-only session for query routes. Services open their own."""
    with Session(request.app.state.engine) as session:
        yield session


def get_queue(request: Request):
    return request.app.state.queue


def get_cache(request: Request) -> Cache:
    return Cache(request.app.state.engine)
