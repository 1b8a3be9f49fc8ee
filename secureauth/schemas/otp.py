from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


@dataclass(frozen=True)
class OtpRecord:
    id: int
    email: str
    code: str
    created_at: datetime
    expires_at: datetime
    attempts: int
    max_attempts: int

    @property
    def remaining_attempts(self) -> int:
        return max(0, self.max_attempts - self.attempts)


class OtpRequest(BaseModel):
    email: str = Field(min_length=3, max_length=255)


class OtpResponse(BaseModel):
    message: str
    email: str
    expires_in_seconds: int
    otp: Optional[str] = None


class OtpVerifyRequest(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    # Length is checked against the configured OTP length when the code is compared.
    code: str = Field(min_length=1, max_length=16)
