from fastapi import APIRouter, Depends

from secureauth.routers.dependencies import (
    get_auth_service,
    get_current_session,
    http_error,
)
from secureauth.schemas.sessions import SessionRecord
from secureauth.schemas.users import UserResponse
from secureauth.services.auth import AuthService
from secureauth.services.errors import InvalidSession

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me", response_model=UserResponse)
def get_me(
    session: SessionRecord = Depends(get_current_session),
    auth_service: AuthService = Depends(get_auth_service),
) -> UserResponse:
    try:
        user = auth_service.current_user(session.id)
    except InvalidSession as exc:
        raise http_error(exc) from exc
    return UserResponse(
        id=user.id,
        email=user.email,
        created_at=user.created_at,
        last_login_at=user.last_login_at,
    )
