"""
Transactional email: templates and delivery

Messages are rendered here and handed to a Celery task for delivery so
that request handlers never wait on the mail server.
"""

import html
import logging
import smtplib
from dataclasses import dataclass
from datetime import datetime, timezone
from email.message import EmailMessage

from tenant_auth.core.config import settings

logger = logging.getLogger(__name__)

BRAND_COLOR = "#1E40AF"


class EmailDeliveryError(Exception):
    """Raised when the mail transport rejects or cannot accept a message"""
    pass


@dataclass(frozen=True)
class RenderedEmail:
    to: str
    subject: str
    html: str
    text: str


def _support_address() -> str:
    return settings.FROM_EMAIL or settings.SMTP_USER or "support@localhost"


def _render_html(heading: str, intro: str, button_label: str, url: str, outro: str) -> str:
    product = html.escape(settings.PRODUCT_NAME)
    link = html.escape(url, quote=True)
    support = html.escape(_support_address())
    year = datetime.now(timezone.utc).year
    return f"""
  <div style="font-family: Arial, sans-serif; max-width: 600px; margin: auto; padding: 20px; color: #333; line-height: 1.5;">
    <h2 style="color: {BRAND_COLOR}; text-align: center;">{html.escape(heading)}</h2>

    <p>Hello,</p>

    <p>{intro}</p>

    <div style="text-align: center; margin: 30px 0;">
      <a href="{link}" style="background-color: {BRAND_COLOR}; color: #ffffff; padding: 14px 28px; text-decoration: none; border-radius: 6px; font-weight: bold; display: inline-block; font-size: 16px;">{html.escape(button_label)}</a>
    </div>

    <p>If the button doesn't work, copy and paste this link into your browser:</p>
    <p style="word-break: break-all;"><a href="{link}" style="color: {BRAND_COLOR};">{link}</a></p>

    <p>{html.escape(outro)}</p>

    <p>Thanks,<br/><strong>The {product} Team</strong></p>

    <hr style="border: none; border-top: 1px solid #ddd; margin: 30px 0;" />

    <p style="font-size: 12px; color: #888; text-align: center;">
      {product} | <a href="mailto:{support}" style="color: #888;">{support}</a><br/>
      &copy; {year} {product}. All rights reserved.
    </p>
  </div>
"""


def _render_text(heading: str, intro: str, url: str, outro: str) -> str:
    return (
        f"{heading}\n\n"
        "Hello,\n\n"
        f"{intro}\n\n"
        f"{url}\n\n"
        f"{outro}\n\n"
        "Thanks,\n"
        f"The {settings.PRODUCT_NAME} Team\n"
        f"{_support_address()}\n"
    )


def render_email_confirmation(to: str, confirm_url: str) -> RenderedEmail:
    product = settings.PRODUCT_NAME
    heading = f"Welcome to {product}!"
    outro = "If you didn't create an account, you can safely ignore this email."
    return RenderedEmail(
        to=to,
        subject=f"Confirm your {product} account",
        html=_render_html(
            heading,
            f"Thank you for signing up for <strong>{html.escape(product)}</strong>. "
            "Please confirm your email address by clicking the button below:",
            "Confirm Email",
            confirm_url,
            outro,
        ),
        text=_render_text(
            heading,
            f"Thank you for signing up for {product}. "
            "Please confirm your email address by visiting this link:",
            confirm_url,
            outro,
        ),
    )


def render_password_reset(to: str, reset_url: str) -> RenderedEmail:
    product = settings.PRODUCT_NAME
    heading = "Reset Your Password"
    outro = (
        "If you did not request a password reset, you can safely ignore this email. "
        "Your account remains secure."
    )
    return RenderedEmail(
        to=to,
        subject=f"Reset your {product} password",
        html=_render_html(
            heading,
            "We received a request to reset the password for your "
            f"<strong>{html.escape(product)}</strong> account. "
            "Click the button below to set a new password:",
            "Reset Password",
            reset_url,
            outro,
        ),
        text=_render_text(
            heading,
            f"We received a request to reset the password for your {product} account. "
            "Use this link to set a new password:",
            reset_url,
            outro,
        ),
    )


def deliver_email(to: str, subject: str, html_body: str, text_body: str) -> None:
    """
    Send one message through the configured transport

    Raises:
        EmailDeliveryError: SMTP failure; the calling task retries
    """
    if settings.EMAIL_DELIVERY == "console":
        logger.info(f"[console email] to={to} subject={subject!r}\n{text_body}")
        return

    message = EmailMessage()
    message["Subject"] = subject
    message["From"] = f'"{settings.FROM_NAME}" <{_support_address()}>'
    message["To"] = to
    message.set_content(text_body)
    message.add_alternative(html_body, subtype="html")

    try:
        with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=30) as server:
            if settings.SMTP_USE_TLS:
                server.starttls()
            if settings.SMTP_USER and settings.SMTP_PASSWORD:
                server.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
            server.send_message(message)
    except (smtplib.SMTPException, OSError) as e:
        raise EmailDeliveryError(f"Failed to send email to {to}: {e}") from e

    logger.info(f"Sent email {subject!r} to {to}")


def _enqueue(email: RenderedEmail) -> None:
    from tenant_auth.tasks.email_tasks import send_email_task

    send_email_task.delay(email.to, email.subject, email.html, email.text)


def send_email_confirmation(to: str, confirm_url: str) -> None:
    _enqueue(render_email_confirmation(to, confirm_url))


def send_password_reset(to: str, reset_url: str) -> None:
    _enqueue(render_password_reset(to, reset_url))
