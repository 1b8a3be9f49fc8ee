from abc import ABC, abstractmethod
from datetime import timedelta
import secrets
import threading
from typing import Callable, Optional

from sqlalchemy import delete, func, select

from secureauth.database import Database
from secureauth.models.session import SessionEntry
from secureauth.schemas.sessions import SessionRecord
from secureauth.utils import as_utc, normalize_email, utcnow


def new_session_id() -> str:
    return secrets.token_urlsafe(32)


class SessionStore(ABC):
    """Opaque session id -> session record.

    ``get_by_id`` never returns a session whose ``expires_at`` has passed; such
    records are removed on the read that finds them.
    """

    def __init__(self, clock: Callable = utcnow) -> None:
        self._clock = clock

    @abstractmethod
    def create(
        self,
        user_id: int,
        email: str,
        ttl_hours: int,
        client_ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> SessionRecord: ...

    @abstractmethod
    def get_by_id(self, session_id: str) -> SessionRecord | None: ...

    @abstractmethod
    def delete(self, session_id: str) -> bool: ...

    @abstractmethod
    def delete_all_by_email(self, email: str) -> int: ...

    @abstractmethod
    def sweep_expired(self, now=None) -> int: ...

    @abstractmethod
    def count(self) -> int: ...


class InMemorySessionStore(SessionStore):
    def __init__(self, clock: Callable = utcnow) -> None:
        super().__init__(clock)
        self._lock = threading.RLock()
        self._sessions: dict[str, SessionRecord] = {}

    def create(
        self,
        user_id: int,
        email: str,
        ttl_hours: int,
        client_ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> SessionRecord:
        now = self._clock()
        with self._lock:
            session_id = new_session_id()
            while session_id in self._sessions:
                session_id = new_session_id()
            record = SessionRecord(
                id=session_id,
                user_id=user_id,
                email=normalize_email(email),
                created_at=now,
                expires_at=now + timedelta(hours=ttl_hours),
                client_ip=client_ip,
                user_agent=user_agent,
            )
            self._sessions[session_id] = record
        return record

    def get_by_id(self, session_id: str) -> SessionRecord | None:
        with self._lock:
            record = self._sessions.get(session_id)
            if record is None:
                return None
            if record.expires_at <= self._clock():
                del self._sessions[session_id]
                return None
            return record

    def delete(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def delete_all_by_email(self, email: str) -> int:
        key = normalize_email(email)
        with self._lock:
            matching = [sid for sid, record in self._sessions.items() if record.email == key]
            for session_id in matching:
                del self._sessions[session_id]
        return len(matching)

    def sweep_expired(self, now=None) -> int:
        now = now or self._clock()
        with self._lock:
            expired = [
                sid for sid, record in self._sessions.items() if record.expires_at <= now
            ]
            for session_id in expired:
                del self._sessions[session_id]
        return len(expired)

    def count(self) -> int:
        with self._lock:
            return len(self._sessions)


class SqlSessionStore(SessionStore):
    def __init__(self, database: Database, clock: Callable = utcnow) -> None:
        super().__init__(clock)
        self._database = database

    def create(
        self,
        user_id: int,
        email: str,
        ttl_hours: int,
        client_ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> SessionRecord:
        now = self._clock()
        with self._database.session_scope() as session:
            session.execute(delete(SessionEntry).where(SessionEntry.expires_at <= now))
            entry = SessionEntry(
                token=new_session_id(),
                user_id=user_id,
                email=normalize_email(email),
                created_at=now,
                expires_at=now + timedelta(hours=ttl_hours),
                client_ip=client_ip,
                user_agent=user_agent,
            )
            session.add(entry)
            session.flush()
            return self._to_record(entry)

    def get_by_id(self, session_id: str) -> SessionRecord | None:
        now = self._clock()
        with self._database.session_scope() as session:
            entry = session.execute(
                select(SessionEntry).where(SessionEntry.token == session_id)
            ).scalar_one_or_none()
            if entry is None:
                return None
            if as_utc(entry.expires_at) <= now:
                session.delete(entry)
                return None
            return self._to_record(entry)

    def delete(self, session_id: str) -> bool:
        with self._database.session_scope() as session:
            result = session.execute(
                delete(SessionEntry).where(SessionEntry.token == session_id)
            )
            return result.rowcount > 0

    def delete_all_by_email(self, email: str) -> int:
        with self._database.session_scope() as session:
            result = session.execute(
                delete(SessionEntry).where(SessionEntry.email == normalize_email(email))
            )
            return result.rowcount

    def sweep_expired(self, now=None) -> int:
        now = now or self._clock()
        with self._database.session_scope() as session:
            result = session.execute(
                delete(SessionEntry).where(SessionEntry.expires_at <= now)
            )
            return result.rowcount

    def count(self) -> int:
        with self._database.session_scope() as session:
            return session.execute(select(func.count(SessionEntry.id))).scalar_one()

    def _to_record(self, entry: SessionEntry) -> SessionRecord:
        return SessionRecord(
            id=entry.token,
            user_id=entry.user_id,
            email=entry.email,
            created_at=as_utc(entry.created_at),
            expires_at=as_utc(entry.expires_at),
            client_ip=entry.client_ip,
            user_agent=entry.user_agent,
        )
