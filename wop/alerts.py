from __future__ import annotations

import smtplib
from email.message import EmailMessage

from .models import ObjectKey
from .settings import settings


def _smtp_ready() -> bool:
    s = settings
    return bool(
        s.enable_email and s.smtp_host and s.smtp_port and s.smtp_user and s.smtp_password and s.email_from and s.email_to
    )


def _fatal_message(key: ObjectKey, reason: str) -> EmailMessage:
    msg = EmailMessage()
    msg["From"] = settings.email_from
    msg["To"] = settings.email_to
    msg["Subject"] = f"[website-operator] {key} failed: not retrying"
    msg.set_content(
        f"Website: {key}\n"
        f"Reason: {reason}\n\n"
        "The pass stopped at this resource. Resources converged earlier in the\n"
        "pass were left as they are. The Website is queued again when it\n"
        "changes or on the next resync."
    )
    return msg


def notify_fatal(key: ObjectKey, reason: str) -> bool:
    """Mail the on-call address about a Website that failed fatally.

    Returns False when mail is disabled or the SMTP server refuses; alerting
    never fails the pass.
    """
    if not _smtp_ready():
        return False
    try:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=10) as server:
            server.starttls()
            server.login(settings.smtp_user, settings.smtp_password)
            server.send_message(_fatal_message(key, reason))
    except (smtplib.SMTPException, OSError):
        return False
    return True
