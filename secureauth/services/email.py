from __future__ import annotations

import base64
import json
import logging
import smtplib
import ssl
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from email.message import EmailMessage
from pathlib import Path
from typing import Any, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from secureauth.config import Settings

LOGGER = logging.getLogger(__name__)

GMAIL_SEND_ENDPOINT = "https://gmail.googleapis.com/gmail/v1/users/me/messages/send"


class EmailSendError(RuntimeError):
    pass


class EmailTransport(ABC):
    """Delivers auth emails. Failures are reported as ``False``, never raised."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def send_otp(self, to_email: str, code: str) -> bool:
        body = build_otp_body(code, self._settings.otp_ttl_minutes)
        return self._deliver(to_email, self._settings.otp_email_subject, body)

    def send_session_confirmation(self, to_email: str) -> bool:
        body = build_session_body(to_email, self._settings.session_ttl_hours)
        return self._deliver(to_email, self._settings.session_email_subject, body)

    def _deliver(self, to_email: str, subject: str, body: str) -> bool:
        try:
            self.send(to_email, subject, body)
        except (EmailSendError, OSError, ValueError) as exc:
            LOGGER.error("Email delivery failed to=%s subject=%s: %s", to_email, subject, exc)
            return False
        except Exception:
            LOGGER.exception("Unexpected email transport error to=%s subject=%s", to_email, subject)
            return False
        return True

    @abstractmethod
    def send(self, to_email: str, subject: str, body: str) -> None:
        """Send one plain-text message; raise EmailSendError on failure."""


class ConsoleEmailTransport(EmailTransport):
    """Development transport that writes messages to the log."""

    def send(self, to_email: str, subject: str, body: str) -> None:
        LOGGER.warning("[DEV] Email to=%s subject=%s\n%s", to_email, subject, body)


class GmailEmailTransport(EmailTransport):
    def send(self, to_email: str, subject: str, body: str) -> None:
        sender = self._settings.otp_email_sender
        if not sender:
            raise EmailSendError("Email sender is not configured")

        raw_message = _build_raw_message(sender, to_email, subject, body)
        token = self._get_access_token()

        payload = json.dumps({"raw": raw_message}).encode("utf-8")
        request = Request(
            GMAIL_SEND_ENDPOINT,
            data=payload,
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
            },
            method="POST",
        )

        try:
            with urlopen(request, timeout=10) as response:
                response.read()
        except HTTPError as exc:
            error_body = exc.read().decode("utf-8", errors="replace")
            LOGGER.error("Gmail API error: %s", error_body)
            raise EmailSendError("Failed to send email") from exc
        except URLError as exc:
            raise EmailSendError("Failed to reach Gmail API") from exc

    def _token_file_path(self) -> Path:
        if self._settings.gmail_token_file:
            return Path(self._settings.gmail_token_file)
        root = Path(__file__).resolve().parents[2]
        return root / "credentials" / "token.json"

    def _credentials_file_path(self) -> Path:
        if self._settings.gmail_credentials_file:
            return Path(self._settings.gmail_credentials_file)
        root = Path(__file__).resolve().parents[2]
        return root / "credentials" / "credentials.json"

    def _get_access_token(self) -> str:
        token_path = self._token_file_path()
        token_data = _load_json(token_path)

        token = token_data.get("token")
        expiry = _parse_expiry(token_data.get("expiry"))
        if token and expiry and expiry > datetime.now(timezone.utc) + timedelta(minutes=1):
            return token

        refresh_token = token_data.get("refresh_token")
        if not refresh_token:
            raise EmailSendError("Gmail refresh token is missing")

        client_id, client_secret = self._resolve_client_details(token_data)
        token_uri = token_data.get("token_uri") or "https://oauth2.googleapis.com/token"

        payload = urlencode(
            {
                "client_id": client_id,
                "client_secret": client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            }
        ).encode("utf-8")

        request = Request(token_uri, data=payload, method="POST")
        try:
            with urlopen(request, timeout=10) as response:
                data = json.loads(response.read().decode("utf-8"))
        except HTTPError as exc:
            error_body = exc.read().decode("utf-8", errors="replace")
            LOGGER.error("Gmail token refresh error: %s", error_body)
            raise EmailSendError("Failed to refresh Gmail token") from exc
        except URLError as exc:
            raise EmailSendError("Failed to reach Gmail token endpoint") from exc

        if not isinstance(data, dict):
            raise EmailSendError("Gmail token refresh returned an unexpected payload")
        access_token = data.get("access_token")
        if not access_token:
            raise EmailSendError("Gmail token refresh did not return an access token")
        try:
            expires_in = int(data.get("expires_in") or 3600)
        except (TypeError, ValueError) as exc:
            raise EmailSendError("Gmail token refresh returned an invalid expiry") from exc

        token_data["token"] = access_token
        token_data["expiry"] = (
            datetime.now(timezone.utc) + timedelta(seconds=expires_in)
        ).isoformat()
        token_path.write_text(json.dumps(token_data), encoding="utf-8")
        return access_token

    def _resolve_client_details(self, token_data: dict[str, Any]) -> tuple[str, str]:
        client_id = token_data.get("client_id")
        client_secret = token_data.get("client_secret")
        if client_id and client_secret:
            return client_id, client_secret

        credentials = _load_json(self._credentials_file_path())
        installed = credentials.get("installed") or {}
        if not isinstance(installed, dict):
            raise EmailSendError("Gmail client credentials are malformed")
        client_id = installed.get("client_id") or credentials.get("client_id")
        client_secret = installed.get("client_secret") or credentials.get("client_secret")
        if not client_id or not client_secret:
            raise EmailSendError("Gmail client credentials are missing")
        return client_id, client_secret


class SmtpEmailTransport(EmailTransport):
    """SMTP relay delivery; implicit TLS on port 465, STARTTLS otherwise."""

    def send(self, to_email: str, subject: str, body: str) -> None:
        host = self._settings.smtp_host
        user = self._settings.smtp_user
        password = self._settings.smtp_password
        if not host or not user or not password:
            raise EmailSendError("SMTP host or credentials are not configured")

        message = EmailMessage()
        message["From"] = self._settings.otp_email_sender
        message["To"] = to_email
        message["Subject"] = subject
        message.set_content(body)

        port = self._settings.smtp_port
        context = ssl.create_default_context()
        timeout = self._settings.smtp_timeout_seconds
        try:
            if port == 465:
                with smtplib.SMTP_SSL(host, port, context=context, timeout=timeout) as client:
                    client.login(user, password)
                    client.send_message(message)
            else:
                with smtplib.SMTP(host, port, timeout=timeout) as client:
                    client.ehlo()
                    client.starttls(context=context)
                    client.ehlo()
                    client.login(user, password)
                    client.send_message(message)
        except smtplib.SMTPException as exc:
            raise EmailSendError(f"SMTP delivery via {host}:{port} failed") from exc
        LOGGER.info("Email sent via SMTP to=%s subject=%s", to_email, subject)


def build_transport(settings: Settings) -> EmailTransport:
    if settings.email_transport == "smtp":
        return SmtpEmailTransport(settings)
    if settings.email_transport == "gmail":
        return GmailEmailTransport(settings)
    if settings.email_transport == "console":
        return ConsoleEmailTransport(settings)
    raise ValueError(f"Unknown email transport: {settings.email_transport}")


def build_otp_body(code: str, ttl_minutes: int) -> str:
    return (
        f"Your SecureAuth OTP code is {code}.\n\n"
        f"It expires in {ttl_minutes} minute(s).\n"
        "Never share this code with anyone.\n\n"
        "If you did not request this code, you can ignore this email."
    )


def build_session_body(email: str, ttl_hours: int) -> str:
    created = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
    return (
        "Your session has been created successfully. You're now authenticated.\n\n"
        f"Email: {email}\n"
        f"Created at: {created}\n"
        f"Session duration: {ttl_hours} hour(s)\n\n"
        "If you did not create this session, please contact us immediately."
    )


def _build_raw_message(sender: str, recipient: str, subject: str, body: str) -> str:
    lines = [
        f"From: {sender}",
        f"To: {recipient}",
        f"Subject: {subject}",
        "MIME-Version: 1.0",
        "Content-Type: text/plain; charset=utf-8",
        "",
        body,
    ]
    message = "\r\n".join(lines)
    # Gmail API expects base64url-encoded RFC 2822 content.
    return base64.urlsafe_b64encode(message.encode("utf-8")).decode("ascii")


def _parse_expiry(raw_value: Optional[str]) -> Optional[datetime]:
    if not raw_value or not isinstance(raw_value, str):
        return None
    try:
        return datetime.fromisoformat(raw_value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _load_json(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise EmailSendError(f"Missing Gmail file: {path}")
    with path.open("r", encoding="utf-8") as handle:
        data = json.load(handle)
    if not isinstance(data, dict):
        raise EmailSendError(f"Gmail file is not a JSON object: {path}")
    return data
