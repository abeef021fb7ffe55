"""
Pytest configuration and shared fixtures.

Outbound integrations are never reached from tests: channel credentials are
cleared here, and tests swap the notification service, chat relay and store
through FastAPI dependency overrides.
"""

import asyncio
import os
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent

os.environ["LOG_LEVEL"] = "WARNING"
os.environ["CONTEXT_DIR"] = str(PROJECT_ROOT / "public")
for name in (
    "DATABASE_URL",
    "RESEND_API_KEY",
    "RESEND_KEY",
    "TWILIO_ACCOUNT_SID",
    "TWILLIO_ACCOUNT_SID",
    "TWILIO_AUTH_TOKEN",
    "TWILLIO_AUTH_TOKEN",
    "SLACK_WEBHOOK_URL",
    "GROQ_API_KEY",
):
    os.environ[name] = ""

# Clear settings cache before any app imports to ensure test env vars are used
from app.config import Settings, get_settings  # noqa: E402
get_settings.cache_clear()

from fastapi.testclient import TestClient  # noqa: E402

from app.channels import NotificationChannel  # noqa: E402
from app.fanout import NotificationService, get_notification_service  # noqa: E402
from app.main import app  # noqa: E402
from app.schemas import ChannelResult, Platform  # noqa: E402
from app.storage import InMemoryStore  # noqa: E402

CHANNEL_FIELDS = (
    "RESEND_API_KEY",
    "RESEND_FROM_EMAIL",
    "RESEND_TO_EMAIL",
    "TWILIO_ACCOUNT_SID",
    "TWILIO_AUTH_TOKEN",
    "TWILIO_FROM_PHONE",
    "TWILIO_TO_PHONE",
    "TWILIO_WHATSAPP_FROM",
    "TWILIO_WHATSAPP_TO",
    "SLACK_WEBHOOK_URL",
    "GROQ_API_KEY",
)


def make_settings(**overrides) -> Settings:
    """Settings with every integration unconfigured unless overridden."""
    values = {name: None for name in CHANNEL_FIELDS}
    values["STREAM_DELAY_SECONDS"] = 0
    values.update(overrides)
    return Settings(_env_file=None, **values)


def configured_settings(**overrides) -> Settings:
    """Settings with every channel fully configured."""
    values = dict(
        RESEND_API_KEY="re_test",
        RESEND_FROM_EMAIL="portfolio@example.com",
        RESEND_TO_EMAIL="owner@example.com",
        TWILIO_ACCOUNT_SID="AC123",
        TWILIO_AUTH_TOKEN="token",
        TWILIO_FROM_PHONE="+15005550006",
        TWILIO_TO_PHONE="+14155550100",
        TWILIO_WHATSAPP_FROM="+14155238886",
        TWILIO_WHATSAPP_TO="whatsapp:+14155550100",
        SLACK_WEBHOOK_URL="https://hooks.slack.test/services/T000/B000/XXX",
    )
    values.update(overrides)
    return make_settings(**values)


class StubChannel(NotificationChannel):
    """Channel double that succeeds, fails or raises without any I/O."""

    def __init__(self, platform: Platform, succeed: bool = True, fault: Exception = None, delay: float = 0):
        self.platform = platform
        self.succeed = succeed
        self.fault = fault
        self.delay = delay
        self.calls = []

    def missing_settings(self):
        return []

    async def _deliver(self, content, visitor):
        pass

    async def send(self, content, visitor=None):
        self.calls.append((content, visitor))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fault is not None:
            raise self.fault
        return ChannelResult(
            platform=self.platform,
            success=self.succeed,
            message="stub sent" if self.succeed else "stub failed",
            error=None if self.succeed else "stub error",
        )


def stub_channels(*outcomes):
    """
    One StubChannel per platform, in channel order.

    Each outcome is True (success), False (failure result) or an exception
    instance to raise.
    """
    channels = []
    for platform, outcome in zip(Platform, outcomes):
        if isinstance(outcome, Exception):
            channels.append(StubChannel(platform, fault=outcome))
        else:
            channels.append(StubChannel(platform, succeed=outcome))
    return channels


def use_channels(channels):
    """Route the message endpoint's fan-out through the given channels."""
    service = NotificationService(channels)
    app.dependency_overrides[get_notification_service] = lambda: service
    return channels


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def client(store):
    """Test client with a fresh in-memory store; overrides reset afterwards."""
    from app.storage import get_store

    app.dependency_overrides[get_store] = lambda: store
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
