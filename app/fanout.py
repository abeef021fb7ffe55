"""
Multi-channel fan-out for visitor messages.

One message goes to every channel at once. The join waits for all of them
to settle; a channel that raises instead of returning a ChannelResult is
reported as a synthesized failure, so the output always has exactly one
result per channel, in channel order.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import httpx
from fastapi import Request

from app.channels import NotificationChannel, build_channels
from app.config import Settings
from app.metrics import record_channel_delivery
from app.schemas import ChannelResult, VisitorInfo

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FanoutResult:
    """Per-channel outcomes of one fan-out call."""

    results: Tuple[ChannelResult, ...]

    @property
    def successful_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed_count(self) -> int:
        return len(self.results) - self.successful_count

    @property
    def any_success(self) -> bool:
        return self.successful_count > 0


class NotificationService:
    """Sends one message to all configured channels concurrently."""

    def __init__(
        self,
        channels: Sequence[NotificationChannel],
        timeout_seconds: Optional[float] = None,
    ) -> None:
        self.channels = list(channels)
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_settings(cls, settings: Settings, client: httpx.AsyncClient) -> "NotificationService":
        return cls(
            build_channels(settings, client),
            timeout_seconds=settings.FANOUT_TIMEOUT_SECONDS,
        )

    def channel_status(self) -> dict:
        """Which channels have their configuration, keyed by platform name."""
        return {c.platform.value: c.is_configured for c in self.channels}

    async def _attempt(self, channel: NotificationChannel, content: str, visitor):
        if self.timeout_seconds is None:
            return await channel.send(content, visitor)
        return await asyncio.wait_for(channel.send(content, visitor), self.timeout_seconds)

    async def send_to_all_platforms(
        self,
        content: str,
        visitor: Optional[VisitorInfo] = None,
    ) -> FanoutResult:
        """
        Deliver `content` through every channel and collect the outcomes.

        Never raises because of a channel: faults are folded into the result.
        """
        logger.info(f"Fanning out message to {len(self.channels)} channels")

        outcomes = await asyncio.gather(
            *(self._attempt(channel, content, visitor) for channel in self.channels),
            return_exceptions=True,
        )

        results = []
        for channel, outcome in zip(self.channels, outcomes):
            if isinstance(outcome, ChannelResult):
                results.append(outcome)
                continue

            if isinstance(outcome, asyncio.TimeoutError):
                reason = f"Timed out after {self.timeout_seconds}s"
            else:
                reason = str(outcome) or type(outcome).__name__
            logger.error(
                f"{channel.platform.value} channel raised: {reason}",
                exc_info=outcome if isinstance(outcome, BaseException) else None,
            )
            record_channel_delivery(channel.platform.value, False)
            results.append(
                ChannelResult(
                    platform=channel.platform,
                    success=False,
                    message="Failed to send message",
                    error=reason,
                )
            )

        fanout = FanoutResult(results=tuple(results))
        logger.info(
            f"Fan-out complete: {fanout.successful_count} sent, {fanout.failed_count} failed"
        )
        return fanout


def get_notification_service(request: Request) -> NotificationService:
    """Dependency returning the service created by the application lifespan."""
    return request.app.state.notifier
