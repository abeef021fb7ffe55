"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for incoming data validation
- Fan-out result models shared by the channels and the API
- Response models for API responses

JSON field names are camelCase for the browser client; Python attributes
stay snake_case through aliases.
"""

import enum
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator


# =============================================================================
# Pydantic Request Models
# =============================================================================

class MessageCreateRequest(BaseModel):
    """
    Pydantic model for a message submitted from the portfolio terminal.

    Validates:
    - content: required, not blank, max 4096 characters
    - email/phone: optional contact details left by the visitor
    """
    content: str = Field(
        ...,
        min_length=1,
        max_length=4096,
        description="Message text"
    )
    email: Optional[str] = Field(None, max_length=320, description="Visitor email")
    phone: Optional[str] = Field(None, max_length=32, description="Visitor phone number")

    @field_validator("content")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("content must not be blank")
        return v

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"content": "Hi! Loved the portfolio.", "email": "visitor@example.com"}
            ]
        }
    }


class ChatRequest(BaseModel):
    """
    Chat question plus the two context documents the client loaded.

    Fields are optional at the schema level so the route can answer a
    missing question or context with a 400 before anything streams.
    The context documents are opaque and passed through unparsed.
    """
    message: Optional[Any] = None
    linkedin_context: Optional[Any] = Field(None, alias="linkedinContext")
    resume_context: Optional[Any] = Field(None, alias="resumeContext")

    model_config = {"populate_by_name": True}


# =============================================================================
# Fan-out Models
# =============================================================================

class Platform(str, enum.Enum):
    """Delivery channels, in the order the fan-out reports them."""
    EMAIL = "Email"
    SMS = "SMS"
    WHATSAPP = "WhatsApp"
    SLACK = "Slack"


class VisitorInfo(BaseModel):
    """Where a submission came from, appended to every notification."""
    ip: str = "Unknown"
    user_agent: str = "Unknown"


class ChannelResult(BaseModel):
    """Outcome of one channel attempt."""
    platform: Platform
    success: bool
    message: str = Field(..., description="Human-readable outcome")
    error: Optional[str] = Field(None, description="Failure detail")


# =============================================================================
# Pydantic Response Models
# =============================================================================

class SendMessageResponse(BaseModel):
    """Response when at least one channel delivered the message."""
    success: bool = True
    message: str
    results: List[ChannelResult]
    successful_count: int = Field(..., ge=0, serialization_alias="successfulCount")
    failed_count: int = Field(..., ge=0, serialization_alias="failedCount")
    id: int


class SendMessageErrorResponse(BaseModel):
    """Response when no channel delivered the message."""
    error: str
    results: List[ChannelResult] = Field(default_factory=list)
    successful_count: int = Field(0, ge=0, serialization_alias="successfulCount")
    failed_count: int = Field(0, ge=0, serialization_alias="failedCount")


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    detail: str = Field(..., description="Error description")


class ChatMessageResponse(BaseModel):
    """A stored chat history record."""
    id: int
    message: str
    response: Optional[str] = None
    is_user: bool = Field(..., serialization_alias="isUser")
    timestamp: str

    model_config = {"from_attributes": True}


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
    channels: Optional[dict[str, bool]] = Field(
        None,
        description="Whether each delivery channel has its configuration"
    )
