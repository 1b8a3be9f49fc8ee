"""Email OTP login protocol.

Per email the flow moves NO_OTP -> OTP_PENDING -> VERIFIED | OTP_EXPIRED |
ATTEMPTS_EXCEEDED. No state field is stored; the state is read back from the
OTP ledger and the session registry.
"""

from contextlib import contextmanager
import logging
import math
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from secureauth.config import Settings
from secureauth.database import Database
from secureauth.schemas.otp import OtpRecord
from secureauth.schemas.sessions import SessionRecord
from secureauth.schemas.users import UserRecord
from secureauth.services.email import EmailTransport, build_transport
from secureauth.services.errors import (
    AttemptsExceeded,
    DeliveryFailed,
    InternalError,
    InvalidCode,
    InvalidEmail,
    InvalidSession,
    OtpExpired,
    RateLimited,
    SessionNotFound,
)
from secureauth.services.otp import InMemoryOtpStore, OtpStore, SqlOtpStore
from secureauth.services.sessions import (
    InMemorySessionStore,
    SessionStore,
    SqlSessionStore,
)
from secureauth.services.users import InMemoryUserStore, SqlUserStore, UserStore
from secureauth.utils import is_valid_email, normalize_email, utcnow

LOGGER = logging.getLogger(__name__)

PROVISION_ON_REQUEST = "on_request"
PROVISION_ON_VERIFY = "on_verify"


class AuthService:
    def __init__(
        self,
        otp_store: OtpStore,
        user_store: UserStore,
        session_store: SessionStore,
        transport: EmailTransport,
        settings: Settings,
        clock: Callable = utcnow,
    ) -> None:
        if settings.user_provisioning not in {PROVISION_ON_REQUEST, PROVISION_ON_VERIFY}:
            raise ValueError(f"Unknown user provisioning policy: {settings.user_provisioning}")
        self.otp_store = otp_store
        self.user_store = user_store
        self.session_store = session_store
        self._transport = transport
        self._settings = settings
        self._clock = clock

    def now(self):
        return self._clock()

    def request_code(self, email: str) -> OtpRecord:
        key = self._validated_email(email)
        with self._store_errors():
            live = self.otp_store.find_live(key)
            if live is not None:
                elapsed = (self._clock() - live.created_at).total_seconds()
                cooldown = self._settings.otp_resend_cooldown_seconds
                if elapsed < cooldown:
                    retry_after = max(1, math.ceil(cooldown - elapsed))
                    LOGGER.info("OTP request rate limited email=%s retry_after=%s", key, retry_after)
                    raise RateLimited(retry_after)
                self.otp_store.delete_by_email(key)
            record = self._issue_and_send(key)
            if self._settings.user_provisioning == PROVISION_ON_REQUEST:
                self.user_store.upsert(key)
        return record

    def resend_code(self, email: str) -> OtpRecord:
        key = self._validated_email(email)
        with self._store_errors():
            self.otp_store.delete_by_email(key)
            return self._issue_and_send(key)

    def verify_code(
        self,
        email: str,
        code: str,
        client_ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> SessionRecord:
        key = self._validated_email(email)
        with self._store_errors():
            if not self.otp_store.verify(key, code or ""):
                self._raise_verification_failure(key)
            user = self.user_store.upsert(key)
            session = self.session_store.create(
                user.id,
                key,
                self._settings.session_ttl_hours,
                client_ip=client_ip,
                user_agent=user_agent,
            )
        LOGGER.info("Session created user_id=%s", user.id)
        self._notify_session_created(key)
        return session

    def get_session(self, session_id: str) -> SessionRecord:
        with self._store_errors():
            session = self.session_store.get_by_id(session_id) if session_id else None
        if session is None:
            raise InvalidSession()
        return session

    def logout(self, session_id: str) -> None:
        with self._store_errors():
            deleted = self.session_store.delete(session_id) if session_id else False
        if not deleted:
            raise SessionNotFound()
        LOGGER.info("Session revoked")

    def logout_everywhere(self, session_id: str) -> int:
        session = self.get_session(session_id)
        with self._store_errors():
            revoked = self.session_store.delete_all_by_email(session.email)
        LOGGER.info("Revoked %s session(s) for user_id=%s", revoked, session.user_id)
        return revoked

    def current_user(self, session_id: str) -> UserRecord:
        session = self.get_session(session_id)
        with self._store_errors():
            user = self.user_store.get(session.user_id)
        if user is None:
            raise InvalidSession()
        return user

    def sweep_expired(self) -> tuple[int, int]:
        now = self._clock()
        with self._store_errors():
            otps = self.otp_store.sweep_expired(now)
            sessions = self.session_store.sweep_expired(now)
        return otps, sessions

    def stats(self) -> dict:
        with self._store_errors():
            return {
                "total_users": self.user_store.count(),
                "active_otps": self.otp_store.count(),
                "active_sessions": self.session_store.count(),
            }

    def _validated_email(self, email: str) -> str:
        if not is_valid_email(email):
            raise InvalidEmail()
        return normalize_email(email)

    def _issue_and_send(self, key: str) -> OtpRecord:
        record = self.otp_store.issue(
            key, self._settings.otp_length, self._settings.otp_ttl_minutes
        )
        LOGGER.info("OTP issued email=%s", key)
        # The record stays stored when delivery fails so the user can resend.
        if not self._transport.send_otp(key, record.code):
            LOGGER.warning("OTP delivery failed email=%s", key)
            raise DeliveryFailed()
        return record

    def _raise_verification_failure(self, key: str) -> None:
        live = self.otp_store.find_live(key)
        if live is None:
            raise OtpExpired()
        if live.attempts >= live.max_attempts:
            self.otp_store.delete_by_email(key)
            LOGGER.warning("OTP attempts exhausted email=%s", key)
            raise AttemptsExceeded()
        raise InvalidCode(live.max_attempts - live.attempts)

    def _notify_session_created(self, key: str) -> None:
        delivered = self._transport.send_session_confirmation(key)
        if not delivered:
            LOGGER.warning("Session confirmation email not delivered email=%s", key)

    @contextmanager
    def _store_errors(self):
        try:
            yield
        except SQLAlchemyError as exc:
            LOGGER.exception("Auth store failure")
            raise InternalError() from exc


def build_auth_service(
    settings: Settings,
    database: Database | None = None,
    transport: EmailTransport | None = None,
    clock: Callable = utcnow,
) -> AuthService:
    transport = transport or build_transport(settings)
    if settings.store_backend == "memory":
        otp_store = InMemoryOtpStore(settings.otp_max_attempts, clock=clock)
        user_store = InMemoryUserStore(clock=clock)
        session_store = InMemorySessionStore(clock=clock)
    elif settings.store_backend == "database":
        database = database or Database(settings.database_url)
        otp_store = SqlOtpStore(database, settings.otp_max_attempts, clock=clock)
        user_store = SqlUserStore(database, clock=clock)
        session_store = SqlSessionStore(database, clock=clock)
    else:
        raise ValueError(f"Unknown store backend: {settings.store_backend}")
    return AuthService(otp_store, user_store, session_store, transport, settings, clock=clock)
