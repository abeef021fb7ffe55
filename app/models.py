"""
SQLAlchemy ORM models for stored records.

These classes double as the record type of the in-memory store: instances
are built as plain transient objects there and never attached to a session.
For Pydantic request/response schemas, see schemas.py.
"""

import enum

from sqlalchemy import Boolean, Column, Integer, String, Text
from sqlalchemy.orm import declarative_base

# Base class for SQLAlchemy models
Base = declarative_base()


class MessageStatus(str, enum.Enum):
    """Delivery status of a submitted message. Moves once, out of PENDING."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class Message(Base):
    """
    A visitor message submitted through the contact relay.

    Table: messages
    Only `status` changes after creation.
    """
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    content = Column(Text, nullable=False)
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    created_at = Column(String, nullable=False)  # Server time ISO-8601
    status = Column(String, nullable=False, default=MessageStatus.PENDING.value)


class ChatMessage(Base):
    """Chat history record. Storage scaffolding; no request path writes it."""
    __tablename__ = "chat_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    message = Column(Text, nullable=False)
    response = Column(Text, nullable=True)
    is_user = Column(Boolean, nullable=False, default=False)
    timestamp = Column(String, nullable=False)
