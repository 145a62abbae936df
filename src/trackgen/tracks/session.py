"""
Progress state of one parallel generation run.

Stored in the shared cache under
``track_generation:user:<user_id>:session:<session_id>`` with a 24h TTL.
The two counters live in separate keys and use the cache's atomic
increment, so concurrently finishing chunk jobs do not lose updates.

The session is a progress indicator only. Boundary resolution is triggered
by a time delay, not by ``completed_chunks == total_chunks``.
"""
import logging
import uuid
from typing import Any, Dict, Optional

from trackgen.timeutils import utcnow

logger = logging.getLogger(__name__)

CACHE_KEY_PREFIX = "track_generation"
DEFAULT_TTL = 24 * 3600

PENDING = "pending"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"


class GenerationSession:
    def __init__(self, cache, user_id: int, session_id: Optional[str] = None, ttl: int = DEFAULT_TTL):
        self.cache = cache
        self.user_id = user_id
        self.session_id = session_id or str(uuid.uuid4())
        self.ttl = ttl
        # False when the cache could not store the session; progress is not recorded
        self.tracked = True

    # ─── Lifecycle ────────────────────────────────────────────────────────────

    def create_session(self, metadata: Optional[Dict[str, Any]] = None) -> "GenerationSession":
        data = {
            "status": PENDING,
            "total_chunks": 0,
            "completed_chunks": 0,
            "tracks_created": 0,
            "started_at": utcnow().isoformat(),
            "completed_at": None,
            "error_message": None,
            "metadata": metadata or {},
        }
        self.cache.write(self.cache_key, data, self.ttl)
        self.cache.delete(self._counter_key("completed_chunks"), self._counter_key("tracks_created"))
        return self

    def update_session(self, **updates) -> bool:
        data = self.get_session_data()
        if data is None:
            return False
        data.update(updates)
        self.cache.write(self.cache_key, data, self.ttl)
        return True

    def get_session_data(self) -> Optional[Dict[str, Any]]:
        """Session fields with live counter values, or None if expired/missing."""
        data = self.cache.read(self.cache_key)
        if data is None:
            return None
        data["completed_chunks"] = self.cache.counter(self._counter_key("completed_chunks"))
        data["tracks_created"] = self.cache.counter(self._counter_key("tracks_created"))
        return data

    def session_exists(self) -> bool:
        return self.cache.exists(self.cache_key)

    def mark_started(self, total_chunks: int) -> bool:
        return self.update_session(
            status=PROCESSING,
            total_chunks=total_chunks,
            started_at=utcnow().isoformat(),
        )

    def mark_completed(self, **extra_metadata) -> bool:
        data = self.get_session_data()
        if data is None:
            return False
        metadata = dict(data.get("metadata") or {}, **extra_metadata)
        return self.update_session(
            status=COMPLETED,
            completed_at=utcnow().isoformat(),
            metadata=metadata,
        )

    def mark_failed(self, error_message: str) -> bool:
        return self.update_session(
            status=FAILED,
            error_message=error_message,
            completed_at=utcnow().isoformat(),
        )

    def cleanup_session(self) -> None:
        self.cache.delete(
            self.cache_key,
            self._counter_key("completed_chunks"),
            self._counter_key("tracks_created"),
        )

    # ─── Counters ─────────────────────────────────────────────────────────────

    def increment_completed_chunks(self) -> bool:
        if not self.session_exists():
            return False
        self.cache.increment(self._counter_key("completed_chunks"), 1, self.ttl)
        return True

    def increment_tracks_created(self, count: int = 1) -> bool:
        if not self.session_exists():
            return False
        self.cache.increment(self._counter_key("tracks_created"), count, self.ttl)
        return True

    # ─── Progress ─────────────────────────────────────────────────────────────

    def all_chunks_completed(self) -> bool:
        data = self.get_session_data()
        if data is None:
            return False
        return data["completed_chunks"] >= data["total_chunks"]

    def progress_percentage(self) -> float:
        data = self.get_session_data()
        if data is None:
            return 0
        total = data["total_chunks"]
        if total == 0:
            return 100
        return round(data["completed_chunks"] / total * 100, 2)

    def progress(self) -> Optional[Dict[str, Any]]:
        """Polling view: status, counters and percentage."""
        data = self.get_session_data()
        if data is None:
            return None
        total = data["total_chunks"]
        percentage = 100 if total == 0 else round(data["completed_chunks"] / total * 100, 2)
        return {
            "session_id": self.session_id,
            "status": data["status"],
            "completed_chunks": data["completed_chunks"],
            "total_chunks": total,
            "tracks_created": data["tracks_created"],
            "progress_percentage": percentage,
            "error_message": data.get("error_message"),
        }

    # ─── Lookup ───────────────────────────────────────────────────────────────

    @classmethod
    def create_for_user(cls, cache, user_id: int, metadata: Optional[Dict[str, Any]] = None, ttl: int = DEFAULT_TTL):
        return cls(cache, user_id, ttl=ttl).create_session(metadata)

    @classmethod
    def find_session(cls, cache, user_id: int, session_id: str) -> Optional["GenerationSession"]:
        session = cls(cache, user_id, session_id)
        return session if session.session_exists() else None

    @property
    def cache_key(self) -> str:
        return f"{CACHE_KEY_PREFIX}:user:{self.user_id}:session:{self.session_id}"

    def _counter_key(self, name: str) -> str:
        return f"{self.cache_key}:{name}"
