from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import timedelta
from itertools import count
import secrets
import threading
from typing import Callable

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError

from secureauth.database import Database
from secureauth.models.otp import OtpEntry
from secureauth.schemas.otp import OtpRecord
from secureauth.utils import as_utc, normalize_email, utcnow

DEFAULT_MAX_ATTEMPTS = 5


def generate_code(length: int) -> str:
    value = secrets.randbelow(10**length)
    return str(value).zfill(length)


def codes_match(expected: str, submitted: str) -> bool:
    return secrets.compare_digest(
        expected.encode("utf-8"), submitted.strip().encode("utf-8")
    )


class OtpStore(ABC):
    """Per-email one-time codes with a fixed verification budget.

    Every record expires ``ttl_minutes`` after issuance. Reads treat expired
    records as absent, so ``sweep_expired`` only reclaims space.
    """

    def __init__(
        self, max_attempts: int = DEFAULT_MAX_ATTEMPTS, clock: Callable = utcnow
    ) -> None:
        self._max_attempts = max_attempts
        self._clock = clock

    @abstractmethod
    def issue(self, email: str, length: int, ttl_minutes: int) -> OtpRecord:
        """Store a fresh code for ``email``, replacing whatever was there."""

    @abstractmethod
    def find_live(self, email: str) -> OtpRecord | None:
        """Most recent unexpired record for ``email``."""

    @abstractmethod
    def verify(self, email: str, submitted_code: str) -> bool:
        """Spend one attempt on the live record and consume it on a match.

        Returns False when there is no live record, when its attempts are
        already exhausted (the record is deleted), or on a mismatch (the
        incremented attempt count is kept).
        """

    @abstractmethod
    def delete_by_email(self, email: str) -> int: ...

    @abstractmethod
    def sweep_expired(self, now=None) -> int: ...

    @abstractmethod
    def count(self) -> int: ...

    def _new_expiry(self, now, ttl_minutes: int):
        return now + timedelta(minutes=ttl_minutes)


class InMemoryOtpStore(OtpStore):
    def __init__(
        self, max_attempts: int = DEFAULT_MAX_ATTEMPTS, clock: Callable = utcnow
    ) -> None:
        super().__init__(max_attempts, clock)
        self._lock = threading.RLock()
        self._ids = count(1)
        self._records: dict[str, OtpRecord] = {}

    def issue(self, email: str, length: int, ttl_minutes: int) -> OtpRecord:
        key = normalize_email(email)
        now = self._clock()
        record = OtpRecord(
            id=next(self._ids),
            email=key,
            code=generate_code(length),
            created_at=now,
            expires_at=self._new_expiry(now, ttl_minutes),
            attempts=0,
            max_attempts=self._max_attempts,
        )
        with self._lock:
            self._records[key] = record
        return record

    def find_live(self, email: str) -> OtpRecord | None:
        key = normalize_email(email)
        with self._lock:
            record = self._records.get(key)
            if record is None or record.expires_at <= self._clock():
                return None
            return record

    def verify(self, email: str, submitted_code: str) -> bool:
        key = normalize_email(email)
        with self._lock:
            record = self._records.get(key)
            if record is None:
                return False
            if record.expires_at <= self._clock():
                del self._records[key]
                return False
            if record.attempts >= record.max_attempts:
                del self._records[key]
                return False
            record = replace(record, attempts=record.attempts + 1)
            if codes_match(record.code, submitted_code):
                del self._records[key]
                return True
            self._records[key] = record
            return False

    def delete_by_email(self, email: str) -> int:
        with self._lock:
            return 0 if self._records.pop(normalize_email(email), None) is None else 1

    def sweep_expired(self, now=None) -> int:
        now = now or self._clock()
        with self._lock:
            expired = [
                key for key, record in self._records.items() if record.expires_at <= now
            ]
            for key in expired:
                del self._records[key]
        return len(expired)

    def count(self) -> int:
        with self._lock:
            return len(self._records)


class SqlOtpStore(OtpStore):
    def __init__(
        self,
        database: Database,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        clock: Callable = utcnow,
    ) -> None:
        super().__init__(max_attempts, clock)
        self._database = database

    def issue(self, email: str, length: int, ttl_minutes: int) -> OtpRecord:
        key = normalize_email(email)
        now = self._clock()
        try:
            return self._issue(key, length, ttl_minutes, now)
        except IntegrityError:
            # A concurrent issue for the same email committed first; replace it.
            return self._issue(key, length, ttl_minutes, now)

    def _issue(self, key: str, length: int, ttl_minutes: int, now) -> OtpRecord:
        with self._database.session_scope() as session:
            session.execute(delete(OtpEntry).where(OtpEntry.expires_at <= now))
            session.execute(delete(OtpEntry).where(OtpEntry.email == key))
            entry = OtpEntry(
                email=key,
                code=generate_code(length),
                attempts=0,
                max_attempts=self._max_attempts,
                expires_at=self._new_expiry(now, ttl_minutes),
                created_at=now,
            )
            session.add(entry)
            session.flush()
            return self._to_record(entry)

    def find_live(self, email: str) -> OtpRecord | None:
        key = normalize_email(email)
        now = self._clock()
        with self._database.session_scope() as session:
            entry = (
                session.execute(
                    select(OtpEntry)
                    .where(OtpEntry.email == key, OtpEntry.expires_at > now)
                    .order_by(OtpEntry.created_at.desc(), OtpEntry.id.desc())
                )
                .scalars()
                .first()
            )
            if entry is None:
                return None
            return self._to_record(entry)

    def verify(self, email: str, submitted_code: str) -> bool:
        key = normalize_email(email)
        now = self._clock()
        with self._database.session_scope() as session:
            entry = (
                session.execute(
                    select(OtpEntry)
                    .where(OtpEntry.email == key)
                    .order_by(OtpEntry.created_at.desc(), OtpEntry.id.desc())
                    .with_for_update()
                )
                .scalars()
                .first()
            )
            if entry is None:
                return False
            if as_utc(entry.expires_at) <= now:
                session.delete(entry)
                return False
            if entry.attempts >= entry.max_attempts:
                session.delete(entry)
                return False
            entry.attempts += 1
            if codes_match(entry.code, submitted_code):
                session.delete(entry)
                return True
            return False

    def delete_by_email(self, email: str) -> int:
        with self._database.session_scope() as session:
            result = session.execute(
                delete(OtpEntry).where(OtpEntry.email == normalize_email(email))
            )
            return result.rowcount

    def sweep_expired(self, now=None) -> int:
        now = now or self._clock()
        with self._database.session_scope() as session:
            result = session.execute(delete(OtpEntry).where(OtpEntry.expires_at <= now))
            return result.rowcount

    def count(self) -> int:
        with self._database.session_scope() as session:
            return session.execute(select(func.count(OtpEntry.id))).scalar_one()

    def _to_record(self, entry: OtpEntry) -> OtpRecord:
        return OtpRecord(
            id=entry.id,
            email=entry.email,
            code=entry.code,
            created_at=as_utc(entry.created_at),
            expires_at=as_utc(entry.expires_at),
            attempts=entry.attempts,
            max_attempts=entry.max_attempts,
        )
