from fastapi import APIRouter, Depends, Header, Request

from secureauth.config import Settings
from secureauth.routers.dependencies import (
    client_ip,
    get_auth_service,
    get_bearer_token,
    http_error,
)
from secureauth.schemas.otp import OtpRecord, OtpRequest, OtpResponse, OtpVerifyRequest
from secureauth.schemas.sessions import (
    LogoutAllResponse,
    LogoutRequest,
    MessageResponse,
    SessionRecord,
    SessionResponse,
    StatsResponse,
)
from secureauth.services.auth import AuthService
from secureauth.services.errors import AuthError

router = APIRouter(prefix="/auth", tags=["auth"])


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def _otp_response(message: str, record: OtpRecord, settings: Settings) -> OtpResponse:
    return OtpResponse(
        message=message,
        email=record.email,
        expires_in_seconds=settings.otp_ttl_minutes * 60,
        otp=record.code if settings.otp_debug else None,
    )


def _session_response(session: SessionRecord, auth_service: AuthService) -> SessionResponse:
    remaining = (session.expires_at - auth_service.now()).total_seconds()
    return SessionResponse(
        session_id=session.id,
        user_id=session.user_id,
        email=session.email,
        created_at=session.created_at,
        expires_at=session.expires_at,
        expires_in_seconds=max(0, int(remaining)),
    )


@router.post("/email", response_model=OtpResponse, response_model_exclude_none=True)
def request_otp(
    payload: OtpRequest,
    auth_service: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_settings),
) -> OtpResponse:
    try:
        record = auth_service.request_code(payload.email)
    except AuthError as exc:
        raise http_error(exc) from exc
    return _otp_response("OTP sent successfully", record, settings)


@router.post("/resend-otp", response_model=OtpResponse, response_model_exclude_none=True)
def resend_otp(
    payload: OtpRequest,
    auth_service: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_settings),
) -> OtpResponse:
    try:
        record = auth_service.resend_code(payload.email)
    except AuthError as exc:
        raise http_error(exc) from exc
    return _otp_response("OTP resent successfully", record, settings)


@router.post("/verify", response_model=SessionResponse)
def verify_otp(
    payload: OtpVerifyRequest,
    request: Request,
    user_agent: str | None = Header(default=None),
    auth_service: AuthService = Depends(get_auth_service),
) -> SessionResponse:
    try:
        session = auth_service.verify_code(
            payload.email,
            payload.code,
            client_ip=client_ip(request),
            user_agent=user_agent,
        )
    except AuthError as exc:
        raise http_error(exc) from exc
    return _session_response(session, auth_service)


@router.get("/session/{session_id}", response_model=SessionResponse)
def get_session(
    session_id: str, auth_service: AuthService = Depends(get_auth_service)
) -> SessionResponse:
    try:
        session = auth_service.get_session(session_id)
    except AuthError as exc:
        raise http_error(exc) from exc
    return _session_response(session, auth_service)


@router.post("/logout", response_model=MessageResponse)
def logout(
    payload: LogoutRequest, auth_service: AuthService = Depends(get_auth_service)
) -> MessageResponse:
    try:
        auth_service.logout(payload.session_id)
    except AuthError as exc:
        raise http_error(exc) from exc
    return MessageResponse(message="Logged out successfully")


@router.post("/logout-all", response_model=LogoutAllResponse)
def logout_all(
    token: str = Depends(get_bearer_token),
    auth_service: AuthService = Depends(get_auth_service),
) -> LogoutAllResponse:
    try:
        revoked = auth_service.logout_everywhere(token)
    except AuthError as exc:
        raise http_error(exc) from exc
    return LogoutAllResponse(message="Logged out everywhere", revoked_sessions=revoked)


@router.get("/stats", response_model=StatsResponse)
def stats(auth_service: AuthService = Depends(get_auth_service)) -> StatsResponse:
    return StatsResponse(**auth_service.stats())
