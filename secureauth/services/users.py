from abc import ABC, abstractmethod
from dataclasses import replace
from itertools import count
import threading
from typing import Callable

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from secureauth.database import Database
from secureauth.models.user import UserEntry
from secureauth.schemas.users import UserRecord
from secureauth.utils import as_utc, normalize_email, utcnow


class UserStore(ABC):
    """Normalized email -> user record."""

    def __init__(self, clock: Callable = utcnow) -> None:
        self._clock = clock

    @abstractmethod
    def upsert(self, email: str) -> UserRecord:
        """Return the user for ``email`` with ``last_login_at`` refreshed, creating it if needed."""

    @abstractmethod
    def find_by_email(self, email: str) -> UserRecord | None: ...

    @abstractmethod
    def get(self, user_id: int) -> UserRecord | None: ...

    @abstractmethod
    def count(self) -> int: ...


class InMemoryUserStore(UserStore):
    def __init__(self, clock: Callable = utcnow) -> None:
        super().__init__(clock)
        self._lock = threading.RLock()
        self._ids = count(1)
        self._users: dict[int, UserRecord] = {}
        self._ids_by_email: dict[str, int] = {}

    def upsert(self, email: str) -> UserRecord:
        key = normalize_email(email)
        now = self._clock()
        with self._lock:
            user = self._lookup(key)
            if user is None:
                user = UserRecord(
                    id=next(self._ids), email=key, created_at=now, last_login_at=now
                )
            else:
                user = replace(user, last_login_at=now)
            self._save(user)
            return user

    def find_by_email(self, email: str) -> UserRecord | None:
        with self._lock:
            return self._lookup(normalize_email(email))

    def get(self, user_id: int) -> UserRecord | None:
        with self._lock:
            return self._users.get(user_id)

    def count(self) -> int:
        with self._lock:
            return len(self._users)

    def _lookup(self, key: str) -> UserRecord | None:
        user_id = self._ids_by_email.get(key)
        return self._users.get(user_id) if user_id is not None else None

    def _save(self, user: UserRecord) -> None:
        self._users[user.id] = user
        self._ids_by_email[user.email] = user.id


class SqlUserStore(UserStore):
    def __init__(self, database: Database, clock: Callable = utcnow) -> None:
        super().__init__(clock)
        self._database = database

    def upsert(self, email: str) -> UserRecord:
        key = normalize_email(email)
        now = self._clock()
        try:
            return self._upsert(key, now)
        except IntegrityError:
            # A concurrent insert for the same email committed first.
            return self._upsert(key, now)

    def _upsert(self, key: str, now) -> UserRecord:
        with self._database.session_scope() as session:
            entry = session.execute(
                select(UserEntry).where(UserEntry.email == key)
            ).scalar_one_or_none()
            if entry is None:
                entry = UserEntry(email=key, created_at=now, last_login_at=now)
                session.add(entry)
            else:
                entry.last_login_at = now
            session.flush()
            return self._to_record(entry)

    def find_by_email(self, email: str) -> UserRecord | None:
        key = normalize_email(email)
        with self._database.session_scope() as session:
            entry = session.execute(
                select(UserEntry).where(UserEntry.email == key)
            ).scalar_one_or_none()
            if entry is None:
                return None
            return self._to_record(entry)

    def get(self, user_id: int) -> UserRecord | None:
        with self._database.session_scope() as session:
            entry = session.get(UserEntry, user_id)
            if entry is None:
                return None
            return self._to_record(entry)

    def count(self) -> int:
        with self._database.session_scope() as session:
            return session.execute(select(func.count(UserEntry.id))).scalar_one()

    def _to_record(self, entry: UserEntry) -> UserRecord:
        return UserRecord(
            id=entry.id,
            email=entry.email,
            created_at=as_utc(entry.created_at),
            last_login_at=as_utc(entry.last_login_at),
        )
