"""Email service for password reset notifications."""

import asyncio
import html
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import structlog

from firesession.config import Settings

logger = structlog.get_logger(__name__)


def redact_email(email: str) -> str:
    """Redact an email address for logging to avoid PII leakage."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class EmailService:
    """
    Transactional mail sender over SMTP.

    When no SMTP host is configured (development), messages are logged
    instead of sent and reported as delivered.
    """

    def __init__(
        self,
        *,
        smtp_host: str | None = None,
        smtp_port: int = 587,
        smtp_user: str | None = None,
        smtp_password: str | None = None,
        smtp_use_tls: bool = True,
        timeout_seconds: float = 30.0,
        from_email: str | None = None,
        from_name: str = "Firesession",
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.timeout_seconds = timeout_seconds
        self.from_email = from_email or smtp_user
        self.from_name = from_name

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmailService":
        """Build the mail sender from application settings."""
        return cls(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            smtp_user=settings.smtp_user,
            smtp_password=settings.smtp_password,
            smtp_use_tls=settings.smtp_use_tls,
            timeout_seconds=settings.smtp_timeout_seconds,
            from_email=settings.email_from,
            from_name=settings.email_from_name,
        )

    @property
    def is_configured(self) -> bool:
        """Check if email sending is properly configured."""
        return bool(self.smtp_host and self.from_email)

    def _build_message(self, to_email: str, subject: str, html_body: str, text_body: str) -> str:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email
        msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))
        return msg.as_string()

    def _deliver(self, to_email: str, message: str) -> None:
        context = ssl.create_default_context()
        host = self.smtp_host or ""

        if self.smtp_use_tls:
            with smtplib.SMTP(host, self.smtp_port, timeout=self.timeout_seconds) as server:
                server.starttls(context=context)
                if self.smtp_user and self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.sendmail(self.from_email, to_email, message)
        else:
            with smtplib.SMTP_SSL(
                host, self.smtp_port, context=context, timeout=self.timeout_seconds
            ) as server:
                if self.smtp_user and self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.sendmail(self.from_email, to_email, message)

    async def send(self, to_email: str, subject: str, html_body: str, text_body: str) -> bool:
        """
        Send an email.

        Returns:
            True if delivered (or logged in dev mode), False otherwise
        """
        if not self.is_configured:
            logger.info(
                "email_dev_mode",
                to=redact_email(to_email),
                subject=subject,
            )
            return True

        message = self._build_message(to_email, subject, html_body, text_body)
        try:
            await asyncio.to_thread(self._deliver, to_email, message)
        except smtplib.SMTPAuthenticationError as e:
            logger.error("email_auth_failed", to=redact_email(to_email), error=str(e))
            return False
        except smtplib.SMTPRecipientsRefused as e:
            logger.error("email_recipient_refused", to=redact_email(to_email), error=str(e))
            return False
        except smtplib.SMTPException as e:
            logger.error(
                "email_smtp_error",
                to=redact_email(to_email),
                host=self.smtp_host,
                error_type=type(e).__name__,
                error=str(e),
            )
            return False
        except (ssl.SSLError, TimeoutError, OSError) as e:
            logger.error(
                "email_connection_failed",
                to=redact_email(to_email),
                host=self.smtp_host,
                port=self.smtp_port,
                error_type=type(e).__name__,
                error=str(e),
            )
            return False

        logger.info("email_sent", to=redact_email(to_email), subject=subject)
        return True

    async def send_password_reset(
        self, to_email: str, reset_url: str, display_name: str, expires_minutes: int = 60
    ) -> bool:
        """Send the password reset link."""
        subject = "Reset your password"

        html_body = f"""<!DOCTYPE html>
<html>
<body>
    <h1>Reset your password</h1>
    <p>Hi {html.escape(display_name)},</p>
    <p>We received a request to reset your password. Use the link below to choose a new one:</p>
    <p><a href="{html.escape(reset_url)}">Reset Password</a></p>
    <p>This link will expire in {expires_minutes} minutes.</p>
    <p>If you didn't request this, you can safely ignore this email.</p>
</body>
</html>
"""

        text_body = f"""Hi {display_name},

We received a request to reset your password. Visit the link below to choose a new one:

{reset_url}

This link will expire in {expires_minutes} minutes.

If you didn't request this, you can safely ignore this email.
"""

        return await self.send(to_email, subject, html_body, text_body)

    async def send_password_reset_success(self, to_email: str, display_name: str) -> bool:
        """Confirm that the password was changed."""
        subject = "Your password was reset"

        html_body = f"""<!DOCTYPE html>
<html>
<body>
    <h1>Password reset successful</h1>
    <p>Hi {html.escape(display_name)},</p>
    <p>Your password has been changed. You can now sign in with your new password.</p>
    <p>If you did not make this change, contact support immediately.</p>
</body>
</html>
"""

        text_body = f"""Hi {display_name},

Your password has been changed. You can now sign in with your new password.

If you did not make this change, contact support immediately.
"""

        return await self.send(to_email, subject, html_body, text_body)
