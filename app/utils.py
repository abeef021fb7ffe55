"""
Utility functions for the portfolio API.
"""

import logging
from datetime import datetime, timezone

from fastapi import Request

from app.config import get_settings
from app.schemas import VisitorInfo

logger = logging.getLogger(__name__)


def utc_now_iso() -> str:
    """Current server time as an ISO-8601 UTC string with Z suffix."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def get_visitor_info(request: Request) -> VisitorInfo:
    """
    Describe the visitor behind a request.

    The socket peer is the visitor IP. X-Forwarded-For can be set by any
    client, so its first hop is used only with TRUST_PROXY_HEADERS enabled.
    """
    ip = ""
    if get_settings().TRUST_PROXY_HEADERS:
        ip = request.headers.get("x-forwarded-for", "").split(",")[0].strip()
    if not ip and request.client is not None:
        ip = request.client.host

    visitor = VisitorInfo(
        ip=ip or "Unknown",
        user_agent=request.headers.get("user-agent") or "Unknown",
    )
    logger.debug(f"Visitor info: ip={visitor.ip}")
    return visitor
