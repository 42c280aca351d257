import logging
import smtplib
import ssl
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from email.utils import formataddr, make_msgid
from typing import Optional

from bikemanager.core.config import Settings, settings

logger = logging.getLogger(__name__)


class EmailDeliveryError(Exception):
    """SMTP transport failure."""


class EmailService:
    def __init__(self, config: Optional[Settings] = None):
        config = config or settings
        # Validate required email configuration
        if not config.SMTP_SERVER:
            raise ValueError("SMTP_SERVER is required but not configured")
        if not config.SMTP_PORT:
            raise ValueError("SMTP_PORT is required but not configured")
        if not config.FROM_EMAIL:
            raise ValueError("FROM_EMAIL is required but not configured")

        self.smtp_server = config.SMTP_SERVER
        self.smtp_port = int(config.SMTP_PORT)
        self.smtp_username = config.SMTP_USERNAME
        self.smtp_password = config.SMTP_PASSWORD
        self.from_email = config.FROM_EMAIL
        self.from_name = config.FROM_NAME
        self.timeout = config.SMTP_TIMEOUT_SECONDS

    def send(self, to_email: str, subject: str, html_content: str, text_content: str) -> str:
        """
        Send a multipart (plain + HTML) email. Returns the Message-ID.
        Raises EmailDeliveryError when the SMTP exchange fails.
        """
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = formataddr((self.from_name, self.from_email))
        msg["To"] = to_email
        message_id = make_msgid(domain=self.from_email.split("@")[-1])
        msg["Message-ID"] = message_id

        # Attach parts
        msg.attach(MIMEText(text_content, "plain", "utf-8"))
        msg.attach(MIMEText(html_content, "html", "utf-8"))

        self._send_email(msg, to_email)
        return message_id

    def _send_email(self, msg: MIMEMultipart, to_email: str) -> None:
        """Send email using SMTP"""
        logger.info(f"📧 [Email] Sending to {to_email} via {self.smtp_server}:{self.smtp_port}")
        context = ssl.create_default_context()
        try:
            if self.smtp_port == 465:
                # SSL connection for port 465
                with smtplib.SMTP_SSL(self.smtp_server, self.smtp_port, context=context, timeout=self.timeout) as server:
                    self._login(server)
                    server.send_message(msg)
            else:
                # STARTTLS for port 587
                with smtplib.SMTP(self.smtp_server, self.smtp_port, timeout=self.timeout) as server:
                    server.starttls(context=context)
                    self._login(server)
                    server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"❌ [Email] SMTP error sending to {to_email}: {e}")
            raise EmailDeliveryError(str(e)) from e

        logger.info(f"✅ [Email] Email sent successfully to {to_email}")

    def _login(self, server: smtplib.SMTP) -> None:
        if self.smtp_username and self.smtp_password:
            server.login(self.smtp_username, self.smtp_password)
