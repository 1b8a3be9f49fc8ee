class AuthError(Exception):
    code = "AUTH_ERROR"
    default_message = "Authentication failed"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    def details(self) -> dict:
        return {"code": self.code, "message": str(self)}


class InvalidEmail(AuthError):
    code = "INVALID_EMAIL"
    default_message = "Please provide a valid email address"


class RateLimited(AuthError):
    code = "OTP_RECENTLY_SENT"

    def __init__(self, retry_after: int) -> None:
        self.retry_after = retry_after
        super().__init__(
            "Please wait before requesting a new OTP. "
            f"Try again in {retry_after} seconds."
        )

    def details(self) -> dict:
        return {**super().details(), "retry_after": self.retry_after}


class DeliveryFailed(AuthError):
    code = "EMAIL_SEND_FAILED"
    default_message = "Failed to send OTP email"


class OtpExpired(AuthError):
    code = "OTP_EXPIRED"
    default_message = "OTP has expired. Please request a new one."


class AttemptsExceeded(AuthError):
    code = "OTP_ATTEMPTS_EXCEEDED"
    default_message = (
        "Maximum OTP verification attempts exceeded. Please request a new OTP."
    )


class InvalidCode(AuthError):
    code = "INVALID_OTP"

    def __init__(self, remaining: int) -> None:
        self.remaining = remaining
        plural = "" if remaining == 1 else "s"
        super().__init__(f"Invalid OTP. {remaining} attempt{plural} remaining.")

    def details(self) -> dict:
        return {**super().details(), "remaining": self.remaining}


class SessionNotFound(AuthError):
    code = "SESSION_NOT_FOUND"
    default_message = "Session not found"


class InvalidSession(AuthError):
    code = "INVALID_SESSION"
    default_message = "Session is invalid or expired"


class InternalError(RuntimeError):
    code = "INTERNAL_SERVER_ERROR"

    def __init__(self, message: str = "An unexpected error occurred") -> None:
        super().__init__(message)
