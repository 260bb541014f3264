"""Mail delivery: SMTP with STARTTLS (implicit TLS on port 465)."""

import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr

from logsentry.config.settings import ConfigBundle
from logsentry.core.errors import DispatchError
from logsentry.core.models import Message

logger = logging.getLogger(__name__)


class SmtpNotifier:
    """Sends composed messages to the single configured recipient."""

    def __init__(self, bundle: ConfigBundle, server: str, port: int, timeout: int = 30):
        self.bundle = bundle
        self.server = server
        self.port = port
        self.timeout = timeout

    def build(self, message: Message) -> EmailMessage:
        msg = EmailMessage()
        msg['Subject'] = message.subject
        msg['From'] = formataddr((self.bundle.from_name, self.bundle.email_from))
        msg['To'] = self.bundle.email_to
        msg.set_content(message.body)
        for filename, text in message.attachments:
            msg.add_attachment(text, filename=filename)
        return msg

    def send(self, message: Message):
        """Deliver message. Raises DispatchError; does not retry."""
        msg = self.build(message)
        try:
            if self.port == 465:
                with smtplib.SMTP_SSL(self.server, self.port, timeout=self.timeout) as s:
                    self._login(s)
                    s.send_message(msg)
            else:
                with smtplib.SMTP(self.server, self.port, timeout=self.timeout) as s:
                    s.ehlo()
                    s.starttls()
                    s.ehlo()
                    self._login(s)
                    s.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise DispatchError(f"Failed to send '{message.subject}': {e}") from e
        logger.info("Sent '%s' to %s", message.subject, self.bundle.email_to)

    def _login(self, s: smtplib.SMTP):
        if self.bundle.smtp_user and self.bundle.smtp_pass:
            s.login(self.bundle.smtp_user, self.bundle.smtp_pass)
