import smtplib
from html import escape
from email.mime.text import MIMEText
from typing import Protocol

from fastapi.concurrency import run_in_threadpool
from loguru import logger

from .errors import MailDeliveryError
from .settings import Settings


def verification_email_html(name: str, verify_link: str) -> str:
    return f"""
    <div style="font-family:Arial,Helvetica,sans-serif;line-height:1.6">
      <h2>Hi {escape(name)}, confirm your email</h2>
      <p>Click the button below to verify your email address:</p>
      <p><a href="{verify_link}" style="background:#086dd6;color:#fff;padding:10px 16px;border-radius:6px;text-decoration:none">Verify email</a></p>
      <p>If the button doesn't work, copy and paste this link into your browser:</p>
      <p><code>{verify_link}</code></p>
    </div>
    """


def reset_password_email_html(name: str, reset_link: str, minutes: int) -> str:
    return f"""
    <html>
      <body>
        <p>Hi {escape(name)}, you requested a password reset.</p>
        <p>Click the link below to set a new password. It expires in {minutes} minutes.</p>
        <p><a href="{reset_link}">Reset your password</a></p>
        <p>If you did not request this, you can ignore this email.</p>
      </body>
    </html>
    """


class Mailer(Protocol):
    async def send(self, to: str, subject: str, html: str) -> None: ...


class SmtpMailer:
    """Sends HTML mail over SMTP from a worker thread."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def _send(self, to: str, subject: str, html: str) -> None:
        msg = MIMEText(html, "html")
        msg["Subject"] = subject
        msg["From"] = self.settings.mail_from
        msg["To"] = to

        with smtplib.SMTP(self.settings.smtp_host, self.settings.smtp_port, timeout=10) as s:
            if self.settings.smtp_tls:
                s.starttls()
            if self.settings.smtp_user:
                s.login(self.settings.smtp_user, self.settings.smtp_password)
            s.send_message(msg)

    async def send(self, to: str, subject: str, html: str) -> None:
        try:
            await run_in_threadpool(self._send, to, subject, html)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Mail to {to} failed: {e!r}")
            raise MailDeliveryError(context={"subject": subject})
        logger.debug(f"Mail '{subject}' sent to {to}")
