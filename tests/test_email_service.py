"""Tests for the SMTP email service."""

import smtplib
from unittest.mock import AsyncMock, patch

import pytest

from firesession.config import settings
from firesession.services.email_service import EmailService, redact_email

SMTP = "firesession.services.email_service.smtplib.SMTP"
SMTP_SSL = "firesession.services.email_service.smtplib.SMTP_SSL"


@pytest.fixture
def email_service() -> EmailService:
    return EmailService(
        smtp_host="smtp.example.com",
        smtp_port=587,
        smtp_user="mailer@example.com",
        smtp_password="app-password",
        from_email="no-reply@example.com",
        from_name="Firesession",
    )


def test_redact_email():
    assert redact_email("alice@example.com") == "al***@example.com"
    assert redact_email("nonsense") == "redacted"


def test_is_configured():
    assert EmailService(smtp_host="smtp.example.com", smtp_user="mailer@example.com").is_configured
    assert not EmailService(smtp_user="mailer@example.com").is_configured
    assert not EmailService(smtp_host="smtp.example.com").is_configured


def test_from_settings():
    service = EmailService.from_settings(settings)

    assert service.smtp_port == settings.smtp_port
    assert service.from_name == settings.email_from_name


@pytest.mark.asyncio
class TestSend:
    """Tests for EmailService.send."""

    async def test_dev_mode_only_logs(self):
        service = EmailService()

        with patch(SMTP) as mock_smtp:
            sent = await service.send("alice@example.com", "Hi", "<p>Hi</p>", "Hi")

        assert sent is True
        mock_smtp.assert_not_called()

    async def test_dev_mode_log_leaves_out_the_reset_link(self):
        service = EmailService()

        with patch("firesession.services.email_service.logger") as mock_logger:
            sent = await service.send_password_reset(
                "alice@example.com",
                "http://localhost:3000/auth/reset-password/confirm?token=secret-reset-token",
                "Alice",
            )

        assert sent is True
        event, kwargs = mock_logger.info.call_args.args[0], mock_logger.info.call_args.kwargs
        assert event == "email_dev_mode"
        assert kwargs["to"] == redact_email("alice@example.com")
        assert "secret-reset-token" not in repr(mock_logger.mock_calls)

    async def test_send_with_starttls(self, email_service: EmailService):
        with patch(SMTP) as mock_smtp:
            sent = await email_service.send("alice@example.com", "Hi", "<p>Hi</p>", "Hi")

        server = mock_smtp.return_value.__enter__.return_value
        assert sent is True
        mock_smtp.assert_called_once_with("smtp.example.com", 587, timeout=30.0)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("mailer@example.com", "app-password")
        from_addr, to_addr, message = server.sendmail.call_args.args
        assert from_addr == "no-reply@example.com"
        assert to_addr == "alice@example.com"
        assert "Subject: Hi" in message

    async def test_send_with_implicit_tls(self, email_service: EmailService):
        email_service.smtp_use_tls = False
        email_service.smtp_port = 465

        with patch(SMTP_SSL) as mock_smtp_ssl:
            sent = await email_service.send("alice@example.com", "Hi", "<p>Hi</p>", "Hi")

        assert sent is True
        mock_smtp_ssl.return_value.__enter__.return_value.sendmail.assert_called_once()

    async def test_auth_failure(self, email_service: EmailService):
        with patch(SMTP) as mock_smtp:
            server = mock_smtp.return_value.__enter__.return_value
            server.login.side_effect = smtplib.SMTPAuthenticationError(535, b"Bad credentials")
            sent = await email_service.send("alice@example.com", "Hi", "<p>Hi</p>", "Hi")

        assert sent is False

    async def test_recipient_refused(self, email_service: EmailService):
        with patch(SMTP) as mock_smtp:
            server = mock_smtp.return_value.__enter__.return_value
            server.sendmail.side_effect = smtplib.SMTPRecipientsRefused({"alice@example.com": (550, b"No")})
            sent = await email_service.send("alice@example.com", "Hi", "<p>Hi</p>", "Hi")

        assert sent is False

    async def test_connection_refused(self, email_service: EmailService):
        with patch(SMTP, side_effect=ConnectionRefusedError("refused")):
            sent = await email_service.send("alice@example.com", "Hi", "<p>Hi</p>", "Hi")

        assert sent is False


@pytest.mark.asyncio
class TestTemplates:
    """Tests for the password reset messages."""

    async def test_password_reset_message(self, email_service: EmailService):
        email_service.send = AsyncMock(return_value=True)  # type: ignore[method-assign]

        sent = await email_service.send_password_reset(
            "alice@example.com",
            "http://localhost:3000/auth/reset-password/confirm?token=abc",
            "Alice",
            expires_minutes=30,
        )

        to_email, subject, html_body, text_body = email_service.send.call_args.args
        assert sent is True
        assert to_email == "alice@example.com"
        assert subject == "Reset your password"
        assert "http://localhost:3000/auth/reset-password/confirm?token=abc" in text_body
        assert "30 minutes" in text_body
        assert "Hi Alice," in html_body

    async def test_display_name_is_escaped(self, email_service: EmailService):
        email_service.send = AsyncMock(return_value=True)  # type: ignore[method-assign]

        await email_service.send_password_reset_success("alice@example.com", "<script>x</script>")

        html_body = email_service.send.call_args.args[2]
        assert "<script>" not in html_body
        assert "&lt;script&gt;" in html_body

    async def test_reset_success_propagates_failure(self, email_service: EmailService):
        email_service.send = AsyncMock(return_value=False)  # type: ignore[method-assign]

        assert await email_service.send_password_reset_success("alice@example.com", "Alice") is False


def test_message_has_text_and_html_parts(email_service: EmailService):
    message = email_service._build_message("alice@example.com", "Hi", "<p>Hi</p>", "Hi")

    assert "multipart/alternative" in message
    assert "text/plain" in message
    assert "text/html" in message
