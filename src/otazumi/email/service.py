"""
Email service with provider abstraction.

Supports a console provider (development), SMTP and the Resend API. The
provider is selected via configuration. Delivery is best-effort: providers
log failures and return False instead of raising.
"""

from __future__ import annotations

import enum
import hashlib
import ssl
from abc import ABC, abstractmethod
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import TYPE_CHECKING

import structlog
from fastapi import Request

from otazumi.config import Settings, get_settings
from otazumi.email.templates import (
    account_deleted_email,
    password_reset_email,
    verification_email,
    welcome_email,
)

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = structlog.get_logger()


class MailKind(enum.StrEnum):
    VERIFICATION = "verification"
    PASSWORD_RESET = "password_reset"
    WELCOME = "welcome"
    ACCOUNT_DELETED = "account_deleted"


class BaseEmailProvider(ABC):
    """Abstract base class for email delivery providers."""

    name = "base"

    @abstractmethod
    async def send(
        self,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: str,
    ) -> bool:
        """Send an email. Returns True on success."""
        ...


class ConsoleProvider(BaseEmailProvider):
    """Log emails instead of sending them."""

    name = "console"

    async def send(
        self,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: str,
    ) -> bool:
        logger.info("email_logged", to=to_email, subject=subject, body=text_body, provider=self.name)
        return True


class SMTPProvider(BaseEmailProvider):
    """Send emails via SMTP using aiosmtplib."""

    name = "smtp"

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        from_address: str,
        from_name: str,
        use_tls: bool = True,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_address = from_address
        self.from_name = from_name
        self.use_tls = use_tls

    async def send(
        self,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: str,
    ) -> bool:
        """Send via SMTP."""
        import aiosmtplib

        msg = MIMEMultipart("alternative")
        msg["From"] = f"{self.from_name} <{self.from_address}>"
        msg["To"] = to_email
        msg["Subject"] = subject
        msg.attach(MIMEText(text_body, "plain", "utf-8"))
        msg.attach(MIMEText(html_body, "html", "utf-8"))

        try:
            tls_context = ssl.create_default_context() if self.use_tls else None
            await aiosmtplib.send(
                msg,
                hostname=self.host,
                port=self.port,
                username=self.username or None,
                password=self.password or None,
                start_tls=self.use_tls,
                tls_context=tls_context,
            )
            logger.info("email_sent", to=to_email, subject=subject, provider=self.name)
            return True
        except Exception:
            logger.exception("email_send_failed", to=to_email, provider=self.name)
            return False


class ResendProvider(BaseEmailProvider):
    """Send emails via Resend API."""

    name = "resend"

    def __init__(self, api_key: str, from_address: str, from_name: str) -> None:
        self.api_key = api_key
        self.from_address = from_address
        self.from_name = from_name

    async def send(
        self,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: str,
    ) -> bool:
        """Send via Resend HTTP API."""
        import httpx

        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    "https://api.resend.com/emails",
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json={
                        "from": f"{self.from_name} <{self.from_address}>",
                        "to": [to_email],
                        "subject": subject,
                        "html": html_body,
                        "text": text_body,
                    },
                    timeout=10.0,
                )
                response.raise_for_status()
                logger.info("email_sent", to=to_email, subject=subject, provider=self.name)
                return True
        except Exception:
            logger.exception("email_send_failed", to=to_email, provider=self.name)
            return False


def create_provider(settings: Settings | None = None) -> BaseEmailProvider:
    """Create email provider based on configuration."""
    settings = settings or get_settings()
    provider_name = settings.email_provider.lower()

    if provider_name == "console":
        return ConsoleProvider()
    if provider_name == "smtp":
        return SMTPProvider(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            from_address=settings.email_from_address,
            from_name=settings.email_from_name,
            use_tls=settings.smtp_use_tls,
        )
    if provider_name == "resend":
        return ResendProvider(
            api_key=settings.resend_api_key,
            from_address=settings.email_from_address,
            from_name=settings.email_from_name,
        )
    msg = f"Unsupported email provider: {provider_name}"
    raise ValueError(msg)


class EmailService:
    """
    Mail channel used by the HTTP layer.

    Renders the template for a mail kind, applies the optional per-recipient
    hourly cap and hands the message to the provider.
    """

    RATE_LIMIT_WINDOW = 3600

    def __init__(
        self,
        provider: BaseEmailProvider | None = None,
        redis: Redis | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.provider = provider or create_provider(self.settings)
        self.redis = redis

    async def _check_rate_limit(self, email: str) -> bool:
        """Check if we can send another email to this address."""
        if self.redis is None:
            return True
        key = f"email_rate:{hashlib.sha256(email.lower().encode()).hexdigest()}"
        count = await self.redis.incr(key)
        if count == 1:
            await self.redis.expire(key, self.RATE_LIMIT_WINDOW)
        return int(count) <= self.settings.email_rate_limit_per_hour

    def render(self, kind: MailKind, username: str, token: str | None = None) -> tuple[str, str, str]:
        """
        Build (subject, html_body, text_body) for a mail kind.

        Raises:
            ValueError: If a link mail is requested without a token.
        """
        base_url = self.settings.frontend_base_url.rstrip("/")
        if kind in (MailKind.VERIFICATION, MailKind.PASSWORD_RESET) and not token:
            msg = f"Mail kind '{kind}' needs a token"
            raise ValueError(msg)

        if kind is MailKind.VERIFICATION:
            return verification_email(
                username,
                f"{base_url}/verify-email?token={token}",
                expires_hours=self.settings.email_verification_token_ttl_hours,
            )
        if kind is MailKind.PASSWORD_RESET:
            return password_reset_email(
                username,
                f"{base_url}/reset-password?token={token}",
                expires_minutes=self.settings.password_reset_token_ttl_minutes,
            )
        if kind is MailKind.WELCOME:
            return welcome_email(username)
        return account_deleted_email(username)

    async def send(
        self,
        kind: MailKind,
        to: str,
        username: str,
        token: str | None = None,
    ) -> bool:
        """
        Render and send one mail.

        Returns True if sent, False if rate limited or the provider failed.
        """
        subject, html_body, text_body = self.render(kind, username, token)
        if not await self._check_rate_limit(to):
            logger.warning("email_rate_limited", to=to, kind=kind.value)
            return False
        return await self.provider.send(to, subject, html_body, text_body)


def get_email_service(request: Request) -> EmailService:
    """Return the process-wide mail channel (FastAPI dependency)."""
    service: EmailService = request.app.state.email_service
    return service
