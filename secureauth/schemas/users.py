from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from pydantic import BaseModel


@dataclass(frozen=True)
class UserRecord:
    id: int
    email: str
    created_at: datetime
    last_login_at: Optional[datetime] = None


class UserResponse(BaseModel):
    id: int
    email: str
    created_at: datetime
    last_login_at: Optional[datetime] = None
