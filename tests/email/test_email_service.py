"""Tests for email service and templates."""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from otazumi.config import Settings
from otazumi.email.service import (
    ConsoleProvider,
    EmailService,
    MailKind,
    ResendProvider,
    SMTPProvider,
    create_provider,
)
from otazumi.email.templates import (
    account_deleted_email,
    password_reset_email,
    verification_email,
    welcome_email,
)


class TestEmailTemplates:
    def test_verification_email(self):
        subject, html, text = verification_email("Rin", "https://otazumi.test/verify-email?token=abc")
        assert subject == "Verify your email - Otazumi"
        assert "Rin" in html
        assert "verify-email?token=abc" in html
        assert "verify-email?token=abc" in text
        assert "24 hours" in text

    def test_password_reset_email(self):
        subject, html, text = password_reset_email("Rin", "https://otazumi.test/reset-password?token=xyz")
        assert subject == "Reset your password - Otazumi"
        assert "reset-password?token=xyz" in html
        assert "1 hour" in text

    def test_welcome_email(self):
        subject, html, text = welcome_email("Rin")
        assert subject == "Welcome to Otazumi!"
        assert "Rin" in text

    def test_account_deleted_email(self):
        subject, _html, text = account_deleted_email("Rin")
        assert subject == "Account Deleted - Otazumi"
        assert "Rin" in text

    def test_username_is_escaped_in_html(self):
        _subject, html, _text = welcome_email("<script>alert(1)</script>")
        assert "<script>alert(1)</script>" not in html
        assert "&lt;script&gt;" in html


class TestCreateProvider:
    def test_console(self, settings: Settings):
        assert isinstance(create_provider(settings), ConsoleProvider)

    def test_smtp(self, settings: Settings):
        provider = create_provider(settings.model_copy(update={"email_provider": "smtp"}))
        assert isinstance(provider, SMTPProvider)
        assert provider.host == settings.smtp_host

    def test_resend(self, settings: Settings):
        provider = create_provider(settings.model_copy(update={"email_provider": "Resend", "resend_api_key": "re_x"}))
        assert isinstance(provider, ResendProvider)

    def test_unknown_provider(self, settings: Settings):
        with pytest.raises(ValueError, match="Unsupported email provider"):
            create_provider(settings.model_copy(update={"email_provider": "pigeon"}))


class TestEmailService:
    async def test_verification_link(self, settings: Settings, mail_provider):
        service = EmailService(provider=mail_provider, settings=settings)
        assert await service.send(MailKind.VERIFICATION, "a@example.com", "Rin", "tok123") is True
        mail = mail_provider.sent[0]
        assert mail.to == "a@example.com"
        assert "https://otazumi.test/verify-email?token=tok123" in mail.text

    async def test_reset_link(self, settings: Settings, mail_provider):
        service = EmailService(provider=mail_provider, settings=settings)
        await service.send(MailKind.PASSWORD_RESET, "a@example.com", "Rin", "tok456")
        assert "https://otazumi.test/reset-password?token=tok456" in mail_provider.sent[0].text

    async def test_link_kind_without_token_raises(self, settings: Settings, mail_provider):
        service = EmailService(provider=mail_provider, settings=settings)
        with pytest.raises(ValueError):
            await service.send(MailKind.VERIFICATION, "a@example.com", "Rin")
        assert mail_provider.sent == []

    async def test_per_recipient_hourly_cap(self, settings: Settings, mail_provider, fake_redis):
        service = EmailService(provider=mail_provider, redis=fake_redis, settings=settings)
        results = [
            await service.send(MailKind.WELCOME, "a@example.com", "Rin")
            for _ in range(settings.email_rate_limit_per_hour + 1)
        ]
        assert results[:-1] == [True] * settings.email_rate_limit_per_hour
        assert results[-1] is False
        assert await service.send(MailKind.WELCOME, "b@example.com", "Ren") is True

    async def test_no_cap_without_redis(self, settings: Settings, mail_provider):
        service = EmailService(provider=mail_provider, settings=settings)
        for _ in range(settings.email_rate_limit_per_hour + 3):
            assert await service.send(MailKind.WELCOME, "a@example.com", "Rin") is True


class TestProviders:
    async def test_console_provider_succeeds(self):
        assert await ConsoleProvider().send("a@example.com", "Hi", "<p>Hi</p>", "Hi") is True

    async def test_smtp_failure_returns_false(self):
        provider = SMTPProvider("smtp.invalid", 587, "", "", "noreply@otazumi.com", "Otazumi")
        with patch("aiosmtplib.send", new=AsyncMock(side_effect=OSError("connection refused"))):
            assert await provider.send("a@example.com", "Hi", "<p>Hi</p>", "Hi") is False

    async def test_smtp_success(self):
        provider = SMTPProvider("smtp.test", 587, "user", "pass", "noreply@otazumi.com", "Otazumi")
        with patch("aiosmtplib.send", new=AsyncMock(return_value=({}, "OK"))) as send:
            assert await provider.send("a@example.com", "Hi", "<p>Hi</p>", "Hi") is True
        message = send.call_args.args[0]
        assert message["To"] == "a@example.com"
        assert message["From"] == "Otazumi <noreply@otazumi.com>"

    async def test_resend_http_error_returns_false(self):
        provider = ResendProvider("re_key", "noreply@otazumi.com", "Otazumi")
        error = httpx.HTTPStatusError(
            "boom", request=httpx.Request("POST", "https://api.resend.com/emails"), response=httpx.Response(500)
        )
        with patch("httpx.AsyncClient.post", new=AsyncMock(side_effect=error)):
            assert await provider.send("a@example.com", "Hi", "<p>Hi</p>", "Hi") is False
