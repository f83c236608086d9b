"""
Email service for sending profile verification links
ProofPanel - Verification Email Templates
"""
import smtplib
from datetime import datetime
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from email.utils import formataddr, make_msgid
from typing import Optional, Tuple
import logging

from config import settings
from services.errors import SmtpConfigurationError, EmailDeliveryError

logger = logging.getLogger(__name__)

# Branding
BRAND_NAME = "ProofPanel"
BRAND_TAGLINE = "Zero-Knowledge Proof Verification"
BRAND_COLOR_PRIMARY = "#7c3aed"
BRAND_COLOR_SECONDARY = "#6d28d9"

VERIFICATION_SUBJECT = "Verify Your Profile - ProofPanel"
LINK_EXPIRY_DAYS = 7


def _get_email_header() -> str:
    """Gradient header with the ProofPanel wordmark"""
    return f"""
    <td style="background: linear-gradient(135deg, {BRAND_COLOR_PRIMARY} 0%, {BRAND_COLOR_SECONDARY} 100%); padding: 40px; text-align: center;">
        <h1 style="color: #ffffff; margin: 0; font-size: 28px; font-weight: bold;">{BRAND_NAME}</h1>
        <p style="color: #e9d5ff; margin: 10px 0 0 0; font-size: 14px;">{BRAND_TAGLINE}</p>
    </td>
    """


def _get_email_footer() -> str:
    return f"""
    <td style="background-color: #f9fafb; padding: 24px 40px; border-top: 1px solid #e5e7eb;">
        <p style="color: #9ca3af; font-size: 12px; margin: 0; text-align: center;">
            This email was sent by {BRAND_NAME}. Your privacy is protected using Zero-Knowledge Proofs.
        </p>
        <p style="color: #9ca3af; font-size: 12px; margin: 10px 0 0 0; text-align: center;">
            &copy; {datetime.utcnow().year} {BRAND_NAME}. All rights reserved.
        </p>
    </td>
    """


def _get_base_template(content: str) -> str:
    """Wrap content in the email layout"""
    return f"""
    <!DOCTYPE html>
    <html>
    <head>
        <meta charset="utf-8">
        <meta name="viewport" content="width=device-width, initial-scale=1.0">
        <title>Verify Your Profile</title>
    </head>
    <body style="margin: 0; padding: 0; font-family: Arial, sans-serif; background-color: #f5f5f5;">
        <table width="100%" cellpadding="0" cellspacing="0" style="background-color: #f5f5f5; padding: 40px 20px;">
            <tr>
                <td align="center">
                    <table width="600" cellpadding="0" cellspacing="0" style="background-color: #ffffff; border-radius: 12px; overflow: hidden; box-shadow: 0 4px 6px rgba(0, 0, 0, 0.1);">
                        <tr>{_get_email_header()}</tr>
                        <tr>
                            <td style="padding: 40px;">
                                {content}
                            </td>
                        </tr>
                        <tr>{_get_email_footer()}</tr>
                    </table>
                </td>
            </tr>
        </table>
    </body>
    </html>
    """


def build_verification_link(hash_id: str, token: str) -> str:
    """Frontend verification page for a respondent"""
    return f"{settings.FRONTEND_URL.rstrip('/')}/verify/{hash_id}?token={token}"


def build_verification_email(
    hash_id: str,
    verification_link: str,
    first_name: Optional[str] = None,
) -> Tuple[str, str, str]:
    """
    Render the verification email.

    Args:
        hash_id: Respondent identifier shown as the verification ID
        verification_link: Link to the frontend verification page
        first_name: Optional first name for personalization

    Returns:
        (subject, html_content, text_content)
    """
    greeting = f"Hi {first_name}," if first_name else "Hi there,"

    content = f"""
        <h2 style="color: #1f2937; margin: 0 0 20px 0; font-size: 24px;">Verify Your Profile</h2>
        <p style="color: #4b5563; font-size: 16px; line-height: 1.6; margin: 0 0 20px 0;">
            {greeting} you've been invited to verify your professional profile using our secure
            Zero-Knowledge Proof system. This verification helps ensure data quality while protecting your privacy.
        </p>
        <div style="background-color: #f3f4f6; border-radius: 8px; padding: 20px; margin: 24px 0;">
            <p style="color: #6b7280; font-size: 14px; margin: 0 0 8px 0;">Verification ID:</p>
            <p style="color: #1f2937; font-size: 16px; font-family: monospace; margin: 0; word-break: break-all;">{hash_id}</p>
        </div>
        <p style="color: #4b5563; font-size: 16px; line-height: 1.6; margin: 0 0 30px 0;">
            Click the button below to complete your profile verification. This link will expire in {LINK_EXPIRY_DAYS} days.
        </p>
        <div style="text-align: center;">
            <a href="{verification_link}" style="display: inline-block; background: linear-gradient(135deg, {BRAND_COLOR_PRIMARY} 0%, {BRAND_COLOR_SECONDARY} 100%); color: #ffffff; text-decoration: none; padding: 16px 40px; border-radius: 8px; font-size: 16px; font-weight: bold;">
                Verify My Profile
            </a>
        </div>
        <p style="color: #9ca3af; font-size: 14px; line-height: 1.6; margin: 30px 0 0 0;">
            If you didn't request this verification, you can safely ignore this email.
        </p>
    """

    text_content = f"""
{BRAND_NAME} - Verify Your Profile

{greeting} you've been invited to verify your professional profile.

Verification ID: {hash_id}

Complete your verification here (expires in {LINK_EXPIRY_DAYS} days):
{verification_link}

If you didn't request this verification, you can safely ignore this email.
"""

    return VERIFICATION_SUBJECT, _get_base_template(content), text_content


class SmtpMailer:
    """
    SMTP connection held open for a bulk send.

    Usage:
        with SmtpMailer(email, password) as mailer:
            message_id = mailer.send(to_email, subject, html, text)

    Entering the context connects, upgrades to TLS and logs in, so bad
    credentials surface before any recipient is processed.
    """

    def __init__(
        self,
        sender_email: Optional[str] = None,
        password: Optional[str] = None,
        host: Optional[str] = None,
        port: Optional[int] = None,
        from_name: Optional[str] = None,
        timeout: float = 30.0,
    ):
        self.sender_email = sender_email or settings.SMTP_EMAIL
        self.password = password or settings.SMTP_PASSWORD
        self.host = host or settings.SMTP_HOST
        self.port = port or settings.SMTP_PORT
        self.from_name = from_name or settings.EMAIL_FROM_NAME
        self.timeout = timeout
        self._server: Optional[smtplib.SMTP] = None

        if not self.sender_email or not self.password:
            raise SmtpConfigurationError("SMTP credentials are required")

    @property
    def from_address(self) -> str:
        return formataddr((self.from_name, self.sender_email))

    def __enter__(self) -> "SmtpMailer":
        try:
            self._server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
            self._server.starttls()
            self._server.login(self.sender_email, self.password)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP connection to {self.host}:{self.port} failed: {e}")
            self._close()
            raise EmailDeliveryError(f"Failed to connect to SMTP server: {e}") from e

        logger.info(f"SMTP session opened as {self.sender_email}")
        return self

    def __exit__(self, exc_type, exc, tb):
        self._close()
        return False

    def _close(self):
        if self._server is None:
            return
        try:
            self._server.quit()
        except (smtplib.SMTPException, OSError):
            self._server.close()
        self._server = None

    def send(self, to_email: str, subject: str, html_content: str, text_content: str) -> str:
        """
        Send one message over the open session.

        Returns:
            The Message-ID header of the sent message

        Raises:
            smtplib.SMTPException: the relay rejected this recipient
        """
        if self._server is None:
            raise RuntimeError("SmtpMailer must be used as a context manager")

        message_id = make_msgid(domain=self.sender_email.split("@")[-1])

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.from_address
        msg["To"] = to_email
        msg["Message-ID"] = message_id

        # Attach both plain text and HTML versions
        msg.attach(MIMEText(text_content, "plain", "utf-8"))
        msg.attach(MIMEText(html_content, "html", "utf-8"))

        self._server.sendmail(self.sender_email, to_email, msg.as_string())
        logger.info(f"Email sent successfully to {to_email}")
        return message_id
