from fastapi import Depends, Header, HTTPException, Request, status

from secureauth.schemas.sessions import SessionRecord
from secureauth.services.auth import AuthService
from secureauth.services.errors import AuthError, InvalidSession

ERROR_STATUS = {
    "INVALID_EMAIL": status.HTTP_400_BAD_REQUEST,
    "OTP_RECENTLY_SENT": status.HTTP_429_TOO_MANY_REQUESTS,
    "EMAIL_SEND_FAILED": status.HTTP_502_BAD_GATEWAY,
    "OTP_EXPIRED": status.HTTP_401_UNAUTHORIZED,
    "OTP_ATTEMPTS_EXCEEDED": status.HTTP_401_UNAUTHORIZED,
    "INVALID_OTP": status.HTTP_401_UNAUTHORIZED,
    "SESSION_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "INVALID_SESSION": status.HTTP_401_UNAUTHORIZED,
}


def http_error(exc: AuthError) -> HTTPException:
    headers = None
    retry_after = getattr(exc, "retry_after", None)
    if retry_after is not None:
        headers = {"Retry-After": str(retry_after)}
    return HTTPException(
        status_code=ERROR_STATUS.get(exc.code, status.HTTP_400_BAD_REQUEST),
        detail=exc.details(),
        headers=headers,
    )


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_bearer_token(authorization: str | None = Header(default=None)) -> str:
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "MISSING_AUTH_HEADER", "message": "Authorization header is required"},
        )
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "MISSING_AUTH_HEADER", "message": "Invalid Authorization header"},
        )
    return token.strip()


def get_current_session(
    token: str = Depends(get_bearer_token),
    auth_service: AuthService = Depends(get_auth_service),
) -> SessionRecord:
    try:
        return auth_service.get_session(token)
    except InvalidSession as exc:
        raise http_error(exc) from exc


def client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.client.host if request.client else None
