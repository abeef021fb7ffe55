"""
Notification channels for the contact relay.

Each channel delivers one visitor message through one third-party API:

- EmailChannel: Resend REST API
- SmsChannel / WhatsAppChannel: Twilio Messages API
- SlackChannel: Slack incoming webhook

Channels share one httpx.AsyncClient. `send` always returns a
ChannelResult: missing configuration and provider errors become failure
results instead of exceptions, so one broken integration cannot stop the
others from reporting.
"""

import html
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import List, Optional

import httpx

from app.config import Settings
from app.metrics import record_channel_delivery
from app.schemas import ChannelResult, Platform, VisitorInfo

logger = logging.getLogger(__name__)

MESSAGE_SUBJECT = "New Portfolio Message"


class ChannelDeliveryError(Exception):
    """The provider answered, but refused the message."""


def _sent_at() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def _raise_for_provider_error(response: httpx.Response, provider: str) -> None:
    """Turn a non-2xx provider response into ChannelDeliveryError."""
    if response.is_success:
        return

    detail = None
    try:
        body = response.json()
        if isinstance(body, dict):
            detail = body.get("message") or body.get("error")
    except ValueError:
        pass
    if not detail:
        detail = response.text[:200] or response.reason_phrase

    raise ChannelDeliveryError(
        f"{provider} API responded with status {response.status_code}: {detail}"
    )


class NotificationChannel(ABC):
    """
    Base class for a delivery channel.

    Subclasses declare which settings they need and implement `_deliver`;
    the configuration check and error conversion live here.
    """

    platform: Platform
    success_message: str
    failure_message: str
    not_configured_message: str
    not_configured_error: str

    def __init__(self, settings: Settings, client: httpx.AsyncClient) -> None:
        self.settings = settings
        self.client = client

    @abstractmethod
    def missing_settings(self) -> List[str]:
        """Names of required settings that are empty."""

    @property
    def is_configured(self) -> bool:
        return not self.missing_settings()

    @abstractmethod
    async def _deliver(self, content: str, visitor: Optional[VisitorInfo]) -> None:
        """Send the message. Raise on any failure."""

    async def send(self, content: str, visitor: Optional[VisitorInfo] = None) -> ChannelResult:
        missing = self.missing_settings()
        if missing:
            logger.warning(
                f"{self.platform.value} channel not configured",
                extra={"platform": self.platform.value, "missing": missing},
            )
            result = ChannelResult(
                platform=self.platform,
                success=False,
                message=self.not_configured_message,
                error=self.not_configured_error,
            )
            record_channel_delivery(self.platform.value, False)
            return result

        try:
            await self._deliver(content, visitor)
        except (httpx.HTTPError, ChannelDeliveryError) as e:
            logger.warning(
                f"{self.platform.value} delivery failed: {e}",
                extra={"platform": self.platform.value},
            )
            return self._failure(e)
        except Exception as e:
            # Bad configuration (e.g. httpx.InvalidURL) surfaces here
            logger.exception(
                f"{self.platform.value} delivery raised unexpectedly",
                extra={"platform": self.platform.value},
            )
            return self._failure(e)

        logger.info(f"{self.platform.value} delivery succeeded")
        record_channel_delivery(self.platform.value, True)
        return ChannelResult(
            platform=self.platform,
            success=True,
            message=self.success_message,
        )

    def _failure(self, error: Exception) -> ChannelResult:
        record_channel_delivery(self.platform.value, False)
        return ChannelResult(
            platform=self.platform,
            success=False,
            message=self.failure_message,
            error=str(error) or type(error).__name__,
        )


def _missing(settings: Settings, *names: str) -> List[str]:
    return [name for name in names if not getattr(settings, name)]


def _slack_escape(text: str) -> str:
    """Escape the three characters Slack treats as control sequences."""
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


# =============================================================================
# Email
# =============================================================================

class EmailChannel(NotificationChannel):
    platform = Platform.EMAIL
    success_message = "Email sent successfully"
    failure_message = "Failed to send email"
    not_configured_message = "Resend email not configured"
    not_configured_error = "Missing API key or email addresses"

    def missing_settings(self) -> List[str]:
        return _missing(self.settings, "RESEND_API_KEY", "RESEND_FROM_EMAIL", "RESEND_TO_EMAIL")

    def build_html(self, content: str, visitor: Optional[VisitorInfo]) -> str:
        visitor_block = ""
        if visitor is not None:
            visitor_block = (
                '<div style="background-color: #f1f5f9; padding: 15px; border-radius: 6px; '
                'font-size: 12px; color: #64748b;">'
                "<strong>Visitor Details</strong><br>"
                f"IP: {html.escape(visitor.ip)}<br>"
                f"User Agent: {html.escape(visitor.user_agent)}"
                "</div>"
            )

        return (
            '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
            f'<h2 style="color: #2563eb;">{MESSAGE_SUBJECT}</h2>'
            '<div style="background-color: #f8fafc; padding: 20px; border-radius: 8px; margin: 20px 0;">'
            f'<p style="font-size: 16px; line-height: 1.6; margin: 0;">{html.escape(content)}</p>'
            "</div>"
            f"{visitor_block}"
            '<p style="color: #64748b; font-size: 14px; margin-top: 20px;">'
            f"Sent from your portfolio terminal at {_sent_at()}</p>"
            "</div>"
        )

    async def _deliver(self, content, visitor):
        response = await self.client.post(
            f"{self.settings.RESEND_API_URL.rstrip('/')}/emails",
            headers={"Authorization": f"Bearer {self.settings.RESEND_API_KEY}"},
            json={
                "from": self.settings.RESEND_FROM_EMAIL,
                "to": [self.settings.RESEND_TO_EMAIL],
                "subject": MESSAGE_SUBJECT,
                "html": self.build_html(content, visitor),
            },
        )
        _raise_for_provider_error(response, "Resend")


# =============================================================================
# SMS / WhatsApp
# =============================================================================

class TwilioChannel(NotificationChannel):
    """Shared Twilio Messages API call for SMS and WhatsApp."""

    not_configured_message = "Twilio credentials not configured"
    not_configured_error = "Missing credentials"

    from_setting: str
    to_setting: str

    def missing_settings(self) -> List[str]:
        return _missing(
            self.settings,
            "TWILIO_ACCOUNT_SID",
            "TWILIO_AUTH_TOKEN",
            self.from_setting,
            self.to_setting,
        )

    def addresses(self) -> tuple:
        return getattr(self.settings, self.from_setting), getattr(self.settings, self.to_setting)

    @staticmethod
    def build_body(content: str, visitor: Optional[VisitorInfo]) -> str:
        body = f"{MESSAGE_SUBJECT}: {content}"
        if visitor is not None:
            body += (
                "\n\nVisitor Details:"
                f"\nIP: {visitor.ip}"
                f"\nUser Agent: {visitor.user_agent}"
            )
        return body

    async def _deliver(self, content, visitor):
        account_sid = self.settings.TWILIO_ACCOUNT_SID
        from_address, to_address = self.addresses()
        response = await self.client.post(
            f"{self.settings.TWILIO_API_URL.rstrip('/')}/2010-04-01/Accounts/{account_sid}/Messages.json",
            auth=(account_sid, self.settings.TWILIO_AUTH_TOKEN),
            data={
                "From": from_address,
                "To": to_address,
                "Body": self.build_body(content, visitor),
            },
        )
        _raise_for_provider_error(response, "Twilio")


class SmsChannel(TwilioChannel):
    platform = Platform.SMS
    success_message = "SMS sent successfully"
    failure_message = "Failed to send SMS"
    from_setting = "TWILIO_FROM_PHONE"
    to_setting = "TWILIO_TO_PHONE"


class WhatsAppChannel(TwilioChannel):
    platform = Platform.WHATSAPP
    success_message = "WhatsApp message sent successfully"
    failure_message = "Failed to send WhatsApp message"
    from_setting = "TWILIO_WHATSAPP_FROM"
    to_setting = "TWILIO_WHATSAPP_TO"

    def addresses(self) -> tuple:
        # Twilio routes to WhatsApp only for whatsapp:-prefixed numbers
        return tuple(
            address if address.startswith("whatsapp:") else f"whatsapp:{address}"
            for address in super().addresses()
        )


# =============================================================================
# Slack
# =============================================================================

class SlackChannel(NotificationChannel):
    platform = Platform.SLACK
    success_message = "Slack notification sent successfully"
    failure_message = "Failed to send Slack notification"
    not_configured_message = "Slack webhook not configured"
    not_configured_error = "Missing webhook URL"

    def missing_settings(self) -> List[str]:
        return _missing(self.settings, "SLACK_WEBHOOK_URL")

    @staticmethod
    def build_payload(content: str, visitor: Optional[VisitorInfo]) -> dict:
        visitor_details = ""
        if visitor is not None:
            visitor_details = (
                "\n\n*Visitor Details:*"
                f"\n• IP: {_slack_escape(visitor.ip)}"
                f"\n• User Agent: {_slack_escape(visitor.user_agent)}"
            )

        return {
            "text": (
                f":new: *{MESSAGE_SUBJECT}*\n\n{_slack_escape(content)}{visitor_details}"
                f"\n\n:clock1: Sent at {_sent_at()}"
            ),
            "attachments": [
                {
                    "color": "#2563eb",
                    "fields": [
                        {"title": "Platform", "value": "Portfolio Terminal", "short": True},
                        {"title": "Status", "value": "New Message", "short": True},
                    ],
                }
            ],
        }

    async def _deliver(self, content, visitor):
        response = await self.client.post(
            self.settings.SLACK_WEBHOOK_URL,
            json=self.build_payload(content, visitor),
        )
        _raise_for_provider_error(response, "Slack")


def build_channels(settings: Settings, client: httpx.AsyncClient) -> List[NotificationChannel]:
    """All channels, in reporting order."""
    return [
        EmailChannel(settings, client),
        SmsChannel(settings, client),
        WhatsAppChannel(settings, client),
        SlackChannel(settings, client),
    ]
