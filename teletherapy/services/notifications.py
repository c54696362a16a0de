import logging
import smtplib
from email.message import EmailMessage

from teletherapy.core import config
from teletherapy.core.exceptions import UpstreamError

logger = logging.getLogger(__name__)

ANONYMOUS_TEEN_NAME = 'Anonymous Teen'


def teen_confirmation(recipient_name: str, details: dict) -> tuple[str, str]:
    subject = f"Session booked with {details['therapistName']}"
    body = (
        f"Hi {recipient_name},\n\n"
        f"Your {details['duration']}-minute session with {details['therapistName']} is confirmed.\n\n"
        f"When: {details['date']} {details['startTime']} - {details['endTime']} (UTC)\n"
        f"Amount paid: {details['amount']} {details['currency']}\n"
        f"Booking reference: {details['appointmentId']}\n\n"
        f"You can join the video room from your appointments page once the session opens.\n"
    )
    return subject, body


def therapist_notice(recipient_name: str, details: dict) -> tuple[str, str]:
    subject = f"New instant session at {details['startTime']} (UTC)"
    body = (
        f"Hi {recipient_name},\n\n"
        f"{ANONYMOUS_TEEN_NAME} booked a {details['duration']}-minute session with you.\n\n"
        f"When: {details['date']} {details['startTime']} - {details['endTime']} (UTC)\n"
        f"Booking reference: {details['appointmentId']}\n"
    )
    return subject, body


class EmailNotifier:
    """Best-effort email delivery. Failures surface as ``UpstreamError``."""

    def __init__(self, enabled: bool | None = None, timeout: int | None = None) -> None:
        self.enabled = config.EMAIL_ENABLED if enabled is None else enabled
        self.timeout = timeout or config.NOTIFICATION_TIMEOUT_SECONDS

    def _configured(self) -> bool:
        return bool(config.SMTP_HOST and config.SMTP_PORT and config.SMTP_USERNAME and config.SMTP_PASSWORD)

    def notify(self, recipient: str, subject: str, body: str) -> bool:
        if not self.enabled or not self._configured():
            logger.debug('Email disabled; skipping notification to %s', recipient)
            return False

        msg = EmailMessage()
        msg['From'] = config.EMAIL_FROM
        msg['To'] = recipient
        msg['Subject'] = subject
        msg.set_content(body)

        try:
            with smtplib.SMTP(config.SMTP_HOST, config.SMTP_PORT, timeout=self.timeout) as server:
                if config.SMTP_USE_TLS:
                    server.starttls()
                server.login(config.SMTP_USERNAME, config.SMTP_PASSWORD)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            raise UpstreamError(f'Failed to send email to {recipient}', details={'error': str(exc)}) from exc

        return True
