from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


@dataclass(frozen=True)
class SessionRecord:
    id: str
    user_id: int
    email: str
    created_at: datetime
    expires_at: datetime
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None


class SessionResponse(BaseModel):
    session_id: str
    user_id: int
    email: str
    created_at: datetime
    expires_at: datetime
    expires_in_seconds: int
    is_valid: bool = True


class LogoutRequest(BaseModel):
    session_id: str = Field(min_length=1, max_length=128)


class MessageResponse(BaseModel):
    message: str


class LogoutAllResponse(BaseModel):
    message: str
    revoked_sessions: int


class StatsResponse(BaseModel):
    total_users: int
    active_otps: int
    active_sessions: int
