from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from secureauth.config import Settings
from secureauth.database import Database
from secureauth.main import create_app
from secureauth.services.auth import AuthService
from secureauth.services.email import EmailTransport
from secureauth.services.otp import InMemoryOtpStore, SqlOtpStore
from secureauth.services.sessions import InMemorySessionStore, SqlSessionStore
from secureauth.services.users import InMemoryUserStore, SqlUserStore


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


class RecordingTransport(EmailTransport):
    def __init__(self, settings: Settings) -> None:
        super().__init__(settings)
        self.otp_codes: list[tuple[str, str]] = []
        self.confirmations: list[str] = []
        self.fail_otp = False
        self.fail_confirmation = False

    def send_otp(self, to_email: str, code: str) -> bool:
        self.otp_codes.append((to_email, code))
        return not self.fail_otp

    def send_session_confirmation(self, to_email: str) -> bool:
        self.confirmations.append(to_email)
        return not self.fail_confirmation

    def send(self, to_email: str, subject: str, body: str) -> None:
        raise AssertionError("RecordingTransport does not send raw messages")

    def last_code(self, email: str) -> str:
        return [code for to_email, code in self.otp_codes if to_email == email][-1]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        otp_length=6,
        otp_ttl_minutes=10,
        otp_max_attempts=5,
        otp_resend_cooldown_seconds=60,
        session_ttl_hours=24,
        user_provisioning="on_request",
        store_backend="memory",
        cleanup_interval_seconds=0,
        email_transport="console",
        otp_debug=False,
    )


@pytest.fixture
def database():
    database = Database("sqlite://")
    database.init_db()
    yield database
    database.dispose()


@pytest.fixture(params=["memory", "sql"])
def backend(request) -> str:
    return request.param


@pytest.fixture
def otp_store(backend, clock, request):
    if backend == "memory":
        return InMemoryOtpStore(max_attempts=5, clock=clock)
    return SqlOtpStore(request.getfixturevalue("database"), max_attempts=5, clock=clock)


@pytest.fixture
def user_store(backend, clock, request):
    if backend == "memory":
        return InMemoryUserStore(clock=clock)
    return SqlUserStore(request.getfixturevalue("database"), clock=clock)


@pytest.fixture
def session_store(backend, clock, request):
    if backend == "memory":
        return InMemorySessionStore(clock=clock)
    return SqlSessionStore(request.getfixturevalue("database"), clock=clock)


@pytest.fixture
def transport(settings) -> RecordingTransport:
    return RecordingTransport(settings)


@pytest.fixture
def make_service(otp_store, user_store, session_store, transport, clock):
    def factory(settings: Settings) -> AuthService:
        return AuthService(
            otp_store, user_store, session_store, transport, settings, clock=clock
        )

    return factory


@pytest.fixture
def service(make_service, settings) -> AuthService:
    return make_service(settings)


@pytest.fixture
def client(settings, transport, clock):
    auth_service = AuthService(
        InMemoryOtpStore(settings.otp_max_attempts, clock=clock),
        InMemoryUserStore(clock=clock),
        InMemorySessionStore(clock=clock),
        transport,
        settings,
        clock=clock,
    )
    app = create_app(settings, auth_service=auth_service)
    with TestClient(app) as test_client:
        yield test_client
