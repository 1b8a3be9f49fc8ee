from dataclasses import replace

from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from secureauth.main import create_app
from secureauth.services.auth import AuthService
from secureauth.services.otp import InMemoryOtpStore
from secureauth.services.sessions import InMemorySessionStore
from secureauth.services.users import InMemoryUserStore


def _login(client, transport, email="user@test.com", **headers):
    response = client.post("/api/auth/email", json={"email": email})
    assert response.status_code == 200
    code = transport.last_code(email.strip().lower())
    return client.post(
        "/api/auth/verify", json={"email": email, "code": code}, headers=headers
    )


def test_health(client):
    assert client.get("/api/health").json() == {"status": "ok"}
    assert client.get("/").status_code == 200


def test_request_otp(client, transport):
    response = client.post("/api/auth/email", json={"email": "User@Test.com"})

    assert response.status_code == 200
    body = response.json()
    assert body["email"] == "user@test.com"
    assert body["expires_in_seconds"] == 600
    assert "otp" not in body
    assert transport.otp_codes[0][0] == "user@test.com"


def test_request_otp_invalid_email(client):
    response = client.post("/api/auth/email", json={"email": "not-an-email"})

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "INVALID_EMAIL"


def test_request_otp_rate_limited(client, clock):
    client.post("/api/auth/email", json={"email": "a@b.com"})
    clock.advance(seconds=15)

    response = client.post("/api/auth/email", json={"email": "a@b.com"})

    assert response.status_code == 429
    assert response.headers["Retry-After"] == "45"
    detail = response.json()["detail"]
    assert detail["code"] == "OTP_RECENTLY_SENT"
    assert detail["retry_after"] == 45


def test_request_otp_delivery_failed(client, transport):
    transport.fail_otp = True

    response = client.post("/api/auth/email", json={"email": "a@b.com"})

    assert response.status_code == 502
    assert response.json()["detail"]["code"] == "EMAIL_SEND_FAILED"


def test_resend_otp(client, transport):
    client.post("/api/auth/email", json={"email": "a@b.com"})

    response = client.post("/api/auth/resend-otp", json={"email": "a@b.com"})

    assert response.status_code == 200
    assert response.json()["message"] == "OTP resent successfully"
    assert len(transport.otp_codes) == 2


def test_debug_mode_echoes_code(settings, transport, clock):
    debug_settings = replace(settings, otp_debug=True)
    auth_service = AuthService(
        InMemoryOtpStore(clock=clock),
        InMemoryUserStore(clock=clock),
        InMemorySessionStore(clock=clock),
        transport,
        debug_settings,
        clock=clock,
    )
    with TestClient(create_app(debug_settings, auth_service=auth_service)) as client:
        response = client.post("/api/auth/email", json={"email": "a@b.com"})

    assert response.json()["otp"] == transport.last_code("a@b.com")


def test_verify_creates_session(client, transport):
    response = _login(
        client,
        transport,
        **{"User-Agent": "pytest-agent", "X-Forwarded-For": "9.9.9.9, 10.0.0.1"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["email"] == "user@test.com"
    assert body["expires_in_seconds"] == 24 * 3600
    assert body["is_valid"] is True
    session = client.app.state.auth_service.get_session(body["session_id"])
    assert session.client_ip == "9.9.9.9"
    assert session.user_agent == "pytest-agent"


def test_verify_wrong_code_reports_remaining(client, transport):
    client.post("/api/auth/email", json={"email": "a@b.com"})
    code = transport.last_code("a@b.com")
    wrong = "000000" if code != "000000" else "111111"

    response = client.post("/api/auth/verify", json={"email": "a@b.com", "code": wrong})

    assert response.status_code == 401
    assert response.json()["detail"] == {
        "code": "INVALID_OTP",
        "message": "Invalid OTP. 4 attempts remaining.",
        "remaining": 4,
    }


def test_verify_expired(client):
    response = client.post("/api/auth/verify", json={"email": "a@b.com", "code": "123456"})

    assert response.status_code == 401
    assert response.json()["detail"]["code"] == "OTP_EXPIRED"


def test_verify_rejects_empty_or_oversized_code(client):
    empty = client.post("/api/auth/verify", json={"email": "a@b.com", "code": ""})
    oversized = client.post("/api/auth/verify", json={"email": "a@b.com", "code": "1" * 17})

    assert empty.status_code == 422
    assert oversized.status_code == 422


def test_verify_short_code_spends_an_attempt(client, transport):
    client.post("/api/auth/email", json={"email": "a@b.com"})

    response = client.post("/api/auth/verify", json={"email": "a@b.com", "code": "12"})

    assert response.status_code == 401
    assert response.json()["detail"]["remaining"] == 4


def test_verify_accepts_configured_code_length(settings, transport, clock):
    short_settings = replace(settings, otp_length=4)
    auth_service = AuthService(
        InMemoryOtpStore(clock=clock),
        InMemoryUserStore(clock=clock),
        InMemorySessionStore(clock=clock),
        transport,
        short_settings,
        clock=clock,
    )
    with TestClient(create_app(short_settings, auth_service=auth_service)) as client:
        client.post("/api/auth/email", json={"email": "a@b.com"})
        code = transport.last_code("a@b.com")
        response = client.post(
            "/api/auth/verify", json={"email": "a@b.com", "code": f" {code} "}
        )

    assert len(code) == 4
    assert response.status_code == 200
    assert response.json()["email"] == "a@b.com"


def test_get_session_and_logout(client, transport):
    session_id = _login(client, transport).json()["session_id"]

    response = client.get(f"/api/auth/session/{session_id}")
    assert response.status_code == 200
    assert response.json()["session_id"] == session_id

    assert client.post("/api/auth/logout", json={"session_id": session_id}).status_code == 200

    second = client.post("/api/auth/logout", json={"session_id": session_id})
    assert second.status_code == 404
    assert second.json()["detail"]["code"] == "SESSION_NOT_FOUND"

    missing = client.get(f"/api/auth/session/{session_id}")
    assert missing.status_code == 401
    assert missing.json()["detail"]["code"] == "INVALID_SESSION"


def test_session_expires(client, transport, clock):
    session_id = _login(client, transport).json()["session_id"]
    clock.advance(hours=24)

    assert client.get(f"/api/auth/session/{session_id}").status_code == 401


def test_me_requires_bearer_session(client, transport):
    session_id = _login(client, transport).json()["session_id"]

    assert client.get("/api/users/me").status_code == 401
    assert client.get("/api/users/me", headers={"Authorization": "Basic x"}).status_code == 401
    assert (
        client.get("/api/users/me", headers={"Authorization": "Bearer nope"}).status_code
        == 401
    )

    response = client.get("/api/users/me", headers={"Authorization": f"Bearer {session_id}"})
    assert response.status_code == 200
    assert response.json()["email"] == "user@test.com"


def test_logout_all(client, transport, clock):
    first = _login(client, transport).json()["session_id"]
    clock.advance(seconds=61)
    second = _login(client, transport).json()["session_id"]

    response = client.post(
        "/api/auth/logout-all", headers={"Authorization": f"Bearer {first}"}
    )

    assert response.status_code == 200
    assert response.json()["revoked_sessions"] == 2
    assert client.get(f"/api/auth/session/{second}").status_code == 401


def test_stats(client, transport):
    _login(client, transport)

    response = client.get("/api/auth/stats")

    assert response.json() == {"total_users": 1, "active_otps": 0, "active_sessions": 1}


def test_internal_error_is_masked(client, monkeypatch):
    def broken(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("connection refused"))

    monkeypatch.setattr(client.app.state.auth_service.session_store, "get_by_id", broken)

    response = client.get("/api/auth/session/abc")

    assert response.status_code == 500
    assert response.json() == {
        "detail": {
            "code": "INTERNAL_SERVER_ERROR",
            "message": "An unexpected error occurred",
        }
    }


def test_database_backend_end_to_end(settings):
    db_settings = replace(
        settings, store_backend="database", database_url="sqlite://", otp_debug=True
    )

    with TestClient(create_app(db_settings)) as client:
        issued = client.post("/api/auth/email", json={"email": "db@test.com"}).json()
        verified = client.post(
            "/api/auth/verify", json={"email": "DB@test.com", "code": issued["otp"]}
        )
        session_id = verified.json()["session_id"]
        me = client.get("/api/users/me", headers={"Authorization": f"Bearer {session_id}"})
        stats = client.get("/api/auth/stats").json()

    assert verified.status_code == 200
    assert me.json()["email"] == "db@test.com"
    assert stats == {"total_users": 1, "active_otps": 0, "active_sessions": 1}
