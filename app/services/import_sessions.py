"""Validation session storage with lazy expiry and single-use claiming."""
import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol, Set

import redis
from pydantic import BaseModel

from app.config import Settings
from app.database import utcnow
from app.schemas.imports import ValidationIssue, ValidationStats

logger = logging.getLogger(__name__)


class SessionResult(BaseModel):
    is_valid: bool
    errors: List[ValidationIssue]
    warnings: List[ValidationIssue]
    stats: ValidationStats


class ImportSession(BaseModel):
    """Validated snapshot of an uploaded file awaiting import confirmation."""

    session_id: str
    module_name: str
    file_name: str
    file_type: str
    file_size: int
    uploaded_at: datetime
    expires_at: datetime
    rows: List[Dict[str, Any]]
    result: SessionResult
    can_proceed: bool
    created_by: str = "system"
    created_by_name: Optional[str] = None
    consumed_by_job: Optional[str] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    def error_row_numbers(self) -> Set[int]:
        return {issue.row for issue in self.result.errors}


class SessionStore(Protocol):
    def save(self, session: ImportSession) -> None:
        ...

    def get(self, session_id: str) -> Optional[ImportSession]:
        ...

    def claim(self, session_id: str, job_id: str) -> Optional[ImportSession]:
        ...

    def delete(self, session_id: str) -> None:
        ...


class InMemorySessionStore:
    """
    Process-local session store.

    Expired sessions are dropped when they are next read and whenever a new
    session is saved. Suitable for a single API process running jobs with
    FastAPI background tasks.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._sessions: Dict[str, ImportSession] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def save(self, session: ImportSession) -> None:
        with self._lock:
            self._purge_expired_locked(self._clock())
            self._sessions[session.session_id] = session

    def get(self, session_id: str) -> Optional[ImportSession]:
        with self._lock:
            return self._get_live(session_id)

    def claim(self, session_id: str, job_id: str) -> Optional[ImportSession]:
        with self._lock:
            session = self._get_live(session_id)
            if session is None or session.consumed_by_job:
                return None
            session.consumed_by_job = job_id
            return session

    def delete(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def purge_expired(self) -> int:
        with self._lock:
            return self._purge_expired_locked(self._clock())

    def _purge_expired_locked(self, now: datetime) -> int:
        expired = [sid for sid, s in self._sessions.items() if s.is_expired(now)]
        for session_id in expired:
            del self._sessions[session_id]
        return len(expired)

    def _get_live(self, session_id: str) -> Optional[ImportSession]:
        session = self._sessions.get(session_id)
        if session is None:
            return None
        if session.is_expired(self._clock()):
            logger.info(f"Validation session expired: {session_id}")
            del self._sessions[session_id]
            return None
        return session


class RedisSessionStore:
    """Session store shared between API processes and Celery workers."""

    def __init__(
        self,
        client: redis.Redis,
        prefix: str = "import:session:",
        clock: Callable[[], datetime] = utcnow,
    ):
        self._client = client
        self._prefix = prefix
        self._clock = clock

    def _key(self, session_id: str) -> str:
        return f"{self._prefix}{session_id}"

    def _ttl_seconds(self, session: ImportSession) -> int:
        return max(1, int((session.expires_at - self._clock()).total_seconds()))

    def save(self, session: ImportSession) -> None:
        self._client.set(
            self._key(session.session_id),
            session.model_dump_json(),
            ex=self._ttl_seconds(session),
        )

    def get(self, session_id: str) -> Optional[ImportSession]:
        raw = self._client.get(self._key(session_id))
        if raw is None:
            return None
        session = ImportSession.model_validate_json(raw)
        if session.is_expired(self._clock()):
            self.delete(session_id)
            return None
        return session

    def claim(self, session_id: str, job_id: str) -> Optional[ImportSession]:
        session = self.get(session_id)
        if session is None or session.consumed_by_job:
            return None
        claimed = self._client.set(
            f"{self._key(session_id)}:claim",
            job_id,
            nx=True,
            ex=self._ttl_seconds(session),
        )
        if not claimed:
            return None
        session.consumed_by_job = job_id
        self.save(session)
        return session

    def delete(self, session_id: str) -> None:
        key = self._key(session_id)
        self._client.delete(key, f"{key}:claim")


def create_session_store(settings: Settings) -> SessionStore:
    """Build the session store selected by IMPORT_SESSION_STORE."""
    if settings.import_session_store == "redis":
        return RedisSessionStore(redis.Redis.from_url(settings.redis_url, decode_responses=True))
    if settings.import_executor == "celery":
        logger.warning("Celery executor with in-memory sessions: workers cannot see API sessions")
    return InMemorySessionStore()
