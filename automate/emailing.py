"""SMTP notifier.

Sends plain‑text mail to the single configured recipient.  Nothing here
retries – a failed send is reported back to the caller, who decides whether
it matters (it never aborts a configuration switch).
"""
from __future__ import annotations

import logging
import smtplib
from email.mime.text import MIMEText
from typing import Callable

from .config import EmailSettings

_LOG = logging.getLogger("automate.emailing")

SMTP_TIMEOUT = 15


def send_email(
    settings: EmailSettings,
    subject: str,
    body: str,
    *,
    smtp_factory: Callable[..., smtplib.SMTP] = smtplib.SMTP,
) -> None:
    """
    Deliver *subject*/*body* to ``settings.to``.

    :param settings: SMTP endpoint and credentials
    :param smtp_factory: ``smtplib.SMTP`` or a stand‑in with the same API
    :raises smtplib.SMTPException, OSError: on any delivery failure
    """
    msg = MIMEText(body)
    msg["To"] = settings.to
    msg["From"] = settings.sender or settings.user
    msg["Subject"] = subject

    with smtp_factory(settings.server, settings.port, timeout=SMTP_TIMEOUT) as smtp:
        smtp.ehlo()
        if smtp.has_extn("starttls"):
            smtp.starttls()
            smtp.ehlo()
        if settings.user:
            smtp.login(settings.user, settings.password)
        smtp.sendmail(msg["From"], [settings.to], msg.as_string())
    _LOG.info("Sent '%s' to %s", subject, settings.to)


class Notifier:
    """Fire‑and‑forget wrapper around :func:`send_email`.

    ``notify`` returns *False* instead of raising so callers on the hot path
    (configuration switch, log handler) never die because the mail server is
    down.
    """

    def __init__(self, settings: EmailSettings, sender: Callable[..., None] = send_email) -> None:
        self.settings = settings
        self._send = sender

    @property
    def enabled(self) -> bool:
        return self.settings.enabled

    def notify(self, subject: str, body: str) -> bool:
        if not self.enabled:
            return False
        try:
            self._send(self.settings, subject, body)
            return True
        except Exception as exc:  # noqa: BLE001
            _LOG.warning("E-mail '%s' could not be sent: %s", subject, exc)
            return False
