"""
Email channel — one HTML message addressed to all recipients via SMTP (async).
"""

from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid

import aiosmtplib
import structlog
from pydantic import BaseModel

from crisiscomm.channels.base import DeliveryResult
from crisiscomm.exceptions import ChannelDeliveryError
from crisiscomm.schemas.room import Attachment, Channel, Communication

logger = structlog.get_logger(__name__)


class EmailConfig(BaseModel):
    smtp_host: str
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    from_email: str = "noreply@crisis-comm.com"
    start_tls: bool = True
    timeout_seconds: float = 10.0


class EmailSender:
    """
    Dispatch communications via email (SMTP).

    Recipients without an email address are skipped; a communication with
    no addressable recipient fails.
    """

    def __init__(self, config: EmailConfig):
        self._config = config

    async def send(self, communication: Communication) -> DeliveryResult:
        to_emails = [r.email for r in communication.recipients if r.email]
        if not to_emails:
            raise ChannelDeliveryError(Channel.EMAIL, "No recipient emails")

        message_id = await self.send_message(
            to=to_emails,
            subject=communication.subject,
            html=communication.content,
            attachments=communication.attachments,
        )
        logger.info(
            "email_communication_sent",
            communication_id=communication.id,
            recipients=len(to_emails),
        )
        return DeliveryResult.sent(provider_ref=message_id)

    async def send_message(
        self,
        to: list[str],
        subject: str,
        html: str,
        attachments: list[Attachment],
    ) -> str:
        """Send one message. Returns the Message-ID."""
        msg = MIMEMultipart("alternative")
        message_id = make_msgid(domain=self._config.from_email.split("@")[-1])
        msg["Message-ID"] = message_id
        msg["Subject"] = subject
        msg["From"] = self._config.from_email
        msg["To"] = ", ".join(to)
        msg.attach(MIMEText(self._with_attachment_links(html, attachments), "html"))

        try:
            await aiosmtplib.send(
                msg,
                hostname=self._config.smtp_host,
                port=self._config.smtp_port,
                username=self._config.smtp_user or None,
                password=self._config.smtp_password or None,
                start_tls=self._config.start_tls,
                timeout=self._config.timeout_seconds,
            )
        except aiosmtplib.SMTPException as e:
            logger.error("email_send_error", error=str(e))
            raise ChannelDeliveryError(Channel.EMAIL, str(e)) from e
        return message_id

    @staticmethod
    def _with_attachment_links(html: str, attachments: list[Attachment]) -> str:
        """Attachments are referenced by URL, not embedded."""
        if not attachments:
            return html
        links = "".join(
            f'<li><a href="{a.url}">{a.filename}</a></li>' for a in attachments
        )
        return f"{html}<hr/><p>Attachments:</p><ul>{links}</ul>"
