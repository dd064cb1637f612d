"""
Outbound email for account confirmation and password reset links.

With SMTP_HOST unset (development, tests) the message is logged instead of sent,
so the link can be copied from the log.
"""

from __future__ import annotations

import logging
import smtplib
from email.mime.text import MIMEText

from flask import current_app

logger = logging.getLogger(__name__)


def send_mail(to_email: str, subject: str, body: str) -> bool:
    """Returns True when the message was handed to SMTP (or logged); False on SMTP failure."""
    cfg = current_app.config
    host = cfg.get("SMTP_HOST") or ""
    if not host:
        logger.info("SMTP_HOST not set; email to %s not sent.\nSubject: %s\n%s", to_email, subject, body)
        return True

    msg = MIMEText(body, "plain", "utf-8")
    msg["Subject"] = subject
    msg["From"] = cfg.get("MAIL_FROM") or "no-reply@salescrm.local"
    msg["To"] = to_email

    try:
        username = cfg.get("SMTP_USER") or ""
        password = cfg.get("SMTP_PASSWORD") or ""
        with smtplib.SMTP(host, int(cfg.get("SMTP_PORT") or 587), timeout=10) as server:
            server.starttls()
            if username:
                server.login(username, password)
            server.send_message(msg)
    except smtplib.SMTPAuthenticationError:
        logger.error("SMTP authentication failed sending to %s", to_email)
        return False
    except (smtplib.SMTPException, OSError):
        logger.exception("Error sending email to %s", to_email)
        return False
    logger.info("Email sent to %s (%s)", to_email, subject)
    return True
