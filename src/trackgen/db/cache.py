"""
Shared key/value cache with TTL, backed by the CacheEntry table.

Generation sessions, debounce markers and incomplete-segment buffers live
here. Because entries are rows in the application database, every worker
that shares the database shares the cache.

Expired entries are treated as absent and overwritten lazily; there is no
background sweeper (``purge_expired`` can be called from a job if needed).
"""
import json
import time
from typing import Any, Callable, Optional

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from trackgen.models.cache import CacheEntry


class Cache:
    """Key/value store with per-key TTL and atomic counters."""

    def __init__(self, engine, clock: Callable[[], float] = time.time):
        """
        Args:
            engine: SQLAlchemy engine.
            clock: Returns the current unix time; injectable for tests.
        """
        self.engine = engine
        self.clock = clock

    def read(self, key: str) -> Any:
        """Return the decoded value for a live key, or None."""
        with Session(self.engine) as s:
            entry = self._live_entry(s, key)
            if entry is None or entry.value is None:
                return None
            return json.loads(entry.value)

    def write(self, key: str, value: Any, ttl: float) -> None:
        """Set ``key`` to ``value`` (insert or overwrite) with a fresh TTL."""
        with Session(self.engine) as s:
            entry = s.get(CacheEntry, key)
            if entry is None:
                entry = CacheEntry(key=key)
            entry.value = json.dumps(value)
            entry.counter = 0
            entry.expires_at = self.clock() + ttl
            s.add(entry)
            s.commit()

    def add(self, key: str, value: Any, ttl: float) -> bool:
        """
        Set ``key`` only if it is absent or expired.

        Returns:
            True if this call created the entry, False if a live entry
            already existed. Two racing callers cannot both get True: the
            primary key rejects the second insert.
        """
        now = self.clock()
        try:
            with Session(self.engine) as s:
                s.exec(
                    delete(CacheEntry).where(
                        CacheEntry.key == key, CacheEntry.expires_at <= now
                    )
                )
                s.add(CacheEntry(key=key, value=json.dumps(value), expires_at=now + ttl))
                s.commit()
        except IntegrityError:
            return False
        return True

    def touch(self, key: str, ttl: float) -> bool:
        """Push a live key's expiry to now + ttl. Returns False if absent."""
        now = self.clock()
        with Session(self.engine) as s:
            result = s.exec(
                update(CacheEntry)
                .where(CacheEntry.key == key, CacheEntry.expires_at > now)
                .values(expires_at=now + ttl)
            )
            s.commit()
            return result.rowcount > 0

    def exists(self, key: str) -> bool:
        with Session(self.engine) as s:
            return self._live_entry(s, key) is not None

    def delete(self, *keys: str) -> None:
        if not keys:
            return
        with Session(self.engine) as s:
            s.exec(delete(CacheEntry).where(CacheEntry.key.in_(keys)))
            s.commit()

    def increment(self, key: str, amount: int = 1, ttl: float = 3600) -> int:
        """
        Atomically add ``amount`` to the counter stored at ``key``.

        A missing or expired key starts from zero with the given TTL. The
        increment itself is a single ``UPDATE ... SET counter = counter + n``
        so concurrent callers never lose updates.

        Returns:
            The counter value after the increment.
        """
        now = self.clock()
        with Session(self.engine) as s:
            result = s.exec(
                update(CacheEntry)
                .where(CacheEntry.key == key, CacheEntry.expires_at > now)
                .values(counter=CacheEntry.counter + amount)
            )
            s.commit()
        if result.rowcount == 0:
            if not self._insert_counter(key, amount, now + ttl):
                # Lost the insert race; the row exists now, increment it
                return self.increment(key, amount, ttl)
        return self.counter(key)

    def counter(self, key: str) -> int:
        with Session(self.engine) as s:
            entry = self._live_entry(s, key)
            return entry.counter if entry is not None else 0

    def ttl(self, key: str) -> Optional[float]:
        """Seconds until ``key`` expires, or None if it is absent."""
        with Session(self.engine) as s:
            entry = self._live_entry(s, key)
            if entry is None:
                return None
            return entry.expires_at - self.clock()

    def purge_expired(self) -> int:
        """Delete expired rows. Returns the number removed."""
        with Session(self.engine) as s:
            result = s.exec(delete(CacheEntry).where(CacheEntry.expires_at <= self.clock()))
            s.commit()
            return result.rowcount

    # ─── Internal helpers ─────────────────────────────────────────────────────

    def _live_entry(self, s: Session, key: str) -> Optional[CacheEntry]:
        return s.exec(
            select(CacheEntry).where(
                CacheEntry.key == key, CacheEntry.expires_at > self.clock()
            )
        ).first()

    def _insert_counter(self, key: str, amount: int, expires_at: float) -> bool:
        try:
            with Session(self.engine) as s:
                s.exec(
                    delete(CacheEntry).where(
                        CacheEntry.key == key, CacheEntry.expires_at <= self.clock()
                    )
                )
                s.add(CacheEntry(key=key, counter=amount, expires_at=expires_at))
                s.commit()
        except IntegrityError:
            return False
        return True
