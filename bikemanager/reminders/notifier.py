import html
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol
from zoneinfo import ZoneInfo

from bikemanager.core.config import settings as core_settings
from bikemanager.services.email_service import EmailDeliveryError, EmailService
from .exceptions import NotifierError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SendResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class Notifier(Protocol):
    def send_maintenance_reminder(
        self,
        recipient_email: str,
        recipient_name: str,
        bike_name: str,
        service_description: str,
        due_date: datetime,
        *,
        bike_id: Optional[str] = None,
        days_until: Optional[int] = None,
    ) -> SendResult: ...


def reminder_subject(days_until: int) -> str:
    if days_until <= 0:
        return "🚨 Maintenance due TODAY - BikeManager"
    if days_until == 1:
        return "⏰ Maintenance due TOMORROW - BikeManager"
    return f"🔧 Maintenance reminder: due in {days_until} days - BikeManager"


class ReminderNotifier:
    """Renders maintenance reminder emails and hands them to the email service."""

    def __init__(
        self,
        email_service: Optional[EmailService] = None,
        frontend_url: Optional[str] = None,
        display_timezone: Optional[str] = None,
    ):
        self.email_service = email_service or EmailService()
        self.display_tz = ZoneInfo(display_timezone or core_settings.DEFAULT_TIMEZONE)
        self.frontend_url = (frontend_url or core_settings.FRONTEND_URL).rstrip("/")

    def bike_url(self, bike_id: Optional[str]) -> str:
        if bike_id:
            return f"{self.frontend_url}/bikes/{bike_id}"
        return f"{self.frontend_url}/dashboard"

    @property
    def unsubscribe_url(self) -> str:
        return f"{self.frontend_url}/settings/email-preferences"

    def send_maintenance_reminder(
        self,
        recipient_email: str,
        recipient_name: str,
        bike_name: str,
        service_description: str,
        due_date: datetime,
        *,
        bike_id: Optional[str] = None,
        days_until: Optional[int] = None,
    ) -> SendResult:
        # Due dates are stored in UTC; show the owner's calendar day
        due_date = due_date.astimezone(self.display_tz)
        if days_until is None:
            days_until = max((due_date.date() - datetime.now(due_date.tzinfo).date()).days, 0)
        bike_url = self.bike_url(bike_id)
        subject = reminder_subject(days_until)
        html_content = self._create_reminder_html(
            recipient_name, bike_name, service_description, due_date, days_until, bike_url
        )
        text_content = self._create_reminder_text(
            recipient_name, bike_name, service_description, due_date, days_until, bike_url
        )
        try:
            message_id = self.email_service.send(recipient_email, subject, html_content, text_content)
        except EmailDeliveryError as e:
            raise NotifierError(str(e)) from e
        logger.info(f"✅ [Notifier] Maintenance reminder sent to {recipient_email} ({message_id})")
        return SendResult(success=True, message_id=message_id)

    def _when(self, days_until: int) -> str:
        if days_until <= 0:
            return "today"
        if days_until == 1:
            return "tomorrow"
        return f"in {days_until} days"

    def _create_reminder_html(
        self,
        user_name: str,
        bike_name: str,
        service_description: str,
        due_date: datetime,
        days_until: int,
        bike_url: str,
    ) -> str:
        """Create HTML email content"""
        esc = html.escape
        return f"""
        <!DOCTYPE html>
        <html>
        <head>
            <meta charset="utf-8">
            <meta name="viewport" content="width=device-width, initial-scale=1.0">
            <title>Maintenance Reminder</title>
            <style>
                body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
                .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
                .header {{ background-color: #2c3e50; color: white; padding: 20px; text-align: center; }}
                .content {{ padding: 30px; background-color: #f9f9f9; }}
                .button {{ display: inline-block; background-color: #27ae60; color: white; padding: 12px 30px; text-decoration: none; border-radius: 5px; margin: 20px 0; }}
                .footer {{ padding: 20px; text-align: center; color: #666; font-size: 12px; }}
            </style>
        </head>
        <body>
            <div class="container">
                <div class="header">
                    <h1>BikeManager</h1>
                </div>
                <div class="content">
                    <h2>Maintenance due {self._when(days_until)}</h2>
                    <p>Hello {esc(user_name)},</p>
                    <p>Your bike <strong>{esc(bike_name)}</strong> has a scheduled service on
                    <strong>{due_date.strftime('%Y-%m-%d')}</strong>:</p>
                    <p>{esc(service_description)}</p>
                    <a href="{bike_url}" class="button">View bike</a>
                    <p>If the button doesn't work, copy and paste this link into your browser:</p>
                    <p><a href="{bike_url}">{bike_url}</a></p>
                </div>
                <div class="footer">
                    <p>Don't want these emails? <a href="{self.unsubscribe_url}">Manage email preferences</a></p>
                </div>
            </div>
        </body>
        </html>
        """

    def _create_reminder_text(
        self,
        user_name: str,
        bike_name: str,
        service_description: str,
        due_date: datetime,
        days_until: int,
        bike_url: str,
    ) -> str:
        """Create plain text email content"""
        return f"""
        BikeManager - Maintenance due {self._when(days_until)}

        Hello {user_name},

        Your bike {bike_name} has a scheduled service on {due_date.strftime('%Y-%m-%d')}:
        {service_description}

        View your bike: {bike_url}

        Manage email preferences: {self.unsubscribe_url}
        """
