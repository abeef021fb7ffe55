import logging
import threading
from abc import ABC, abstractmethod
from typing import List, Optional

from fastapi import Request
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.config import Settings
from app.models import Base, ChatMessage, Message, MessageStatus
from app.utils import utc_now_iso

logger = logging.getLogger(__name__)


class MessageStore(ABC):
    """
    Record store for submitted messages and chat history.

    Callers only depend on this interface, so the in-memory placeholder can
    be swapped for a database-backed store without touching route code.
    """

    @abstractmethod
    def create_message(
        self,
        content: str,
        email: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> Message:
        """Store a new message with status 'pending' and return it."""

    @abstractmethod
    def update_message_status(self, message_id: int, status: MessageStatus) -> bool:
        """
        Move a pending message to a terminal status.

        Returns:
            True if the status changed, False if the message is unknown or
            already terminal (both are non-fatal).

        Raises:
            ValueError: if `status` is not a terminal status.
        """

    @abstractmethod
    def list_messages(self) -> List[Message]:
        """Return all stored messages."""

    @abstractmethod
    def create_chat_message(
        self,
        message: str,
        is_user: bool,
        response: Optional[str] = None,
    ) -> ChatMessage:
        """Store a chat history record and return it."""

    @abstractmethod
    def list_chat_messages(self) -> List[ChatMessage]:
        """Return all stored chat records."""

    def is_healthy(self) -> bool:
        return True


def _check_transition(message: Message, status: MessageStatus) -> bool:
    """Validate a status change. Returns False when it must be skipped."""
    status = MessageStatus(status)
    if status == MessageStatus.PENDING:
        raise ValueError("status can only move to 'sent' or 'failed'")
    if message.status != MessageStatus.PENDING.value:
        logger.warning(
            f"Ignoring status change for message {message.id}: "
            f"already {message.status}, requested {status.value}"
        )
        return False
    return True


# =============================================================================
# In-memory Store
# =============================================================================

class InMemoryStore(MessageStore):
    """
    Non-durable store. Records live in append-only lists and a record's id
    is its index + 1. A lock keeps id assignment atomic across threads.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._messages: List[Message] = []
        self._chat_messages: List[ChatMessage] = []

    def create_message(self, content, email=None, phone=None) -> Message:
        with self._lock:
            message = Message(
                id=len(self._messages) + 1,
                content=content,
                email=email or None,
                phone=phone or None,
                created_at=utc_now_iso(),
                status=MessageStatus.PENDING.value,
            )
            self._messages.append(message)
        logger.info(f"Message created: id={message.id}")
        return message

    def update_message_status(self, message_id, status) -> bool:
        with self._lock:
            if not 1 <= message_id <= len(self._messages):
                logger.debug(f"Status update for unknown message {message_id} ignored")
                return False
            message = self._messages[message_id - 1]
            if not _check_transition(message, status):
                return False
            message.status = MessageStatus(status).value
        logger.info(f"Message {message_id} status: {message.status}")
        return True

    def list_messages(self) -> List[Message]:
        with self._lock:
            return list(self._messages)

    def create_chat_message(self, message, is_user, response=None) -> ChatMessage:
        with self._lock:
            record = ChatMessage(
                id=len(self._chat_messages) + 1,
                message=message,
                response=response,
                is_user=is_user,
                timestamp=utc_now_iso(),
            )
            self._chat_messages.append(record)
        return record

    def list_chat_messages(self) -> List[ChatMessage]:
        with self._lock:
            return list(self._chat_messages)


# =============================================================================
# SQL Store
# =============================================================================

class SqlStore(MessageStore):
    """Store backed by SQLAlchemy. Any URL SQLAlchemy accepts will do."""

    def __init__(self, database_url: str) -> None:
        engine_kwargs = {"echo": False}
        if database_url.startswith("sqlite"):
            # check_same_thread=False is required for SQLite to work with FastAPI's async
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in database_url or database_url.rstrip("/") == "sqlite:":
                # One shared connection, otherwise every session sees an empty database
                engine_kwargs["poolclass"] = StaticPool

        self.engine = create_engine(database_url, **engine_kwargs)
        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine,
        )

    def init_db(self) -> None:
        """Create all tables. Called during application startup."""
        logger.debug("Creating database tables...")
        try:
            Base.metadata.create_all(bind=self.engine)
            logger.info("Database initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            raise

    def is_healthy(self) -> bool:
        """Check that the database is reachable and the schema is applied."""
        try:
            with self.SessionLocal() as db:
                db.execute(text("SELECT 1"))
                if not inspect(db.get_bind()).has_table(Message.__tablename__):
                    logger.error("Database schema not applied: 'messages' table not found")
                    return False
            return True
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False

    def create_message(self, content, email=None, phone=None) -> Message:
        with self.SessionLocal() as db:
            message = Message(
                content=content,
                email=email or None,
                phone=phone or None,
                created_at=utc_now_iso(),
                status=MessageStatus.PENDING.value,
            )
            db.add(message)
            db.commit()
            logger.info(f"Message created: id={message.id}")
            return message

    def update_message_status(self, message_id, status) -> bool:
        with self.SessionLocal() as db:
            message = self._get_for_update(db, message_id)
            if message is None:
                logger.debug(f"Status update for unknown message {message_id} ignored")
                return False
            if not _check_transition(message, status):
                return False
            message.status = MessageStatus(status).value
            db.commit()
        logger.info(f"Message {message_id} status: {MessageStatus(status).value}")
        return True

    @staticmethod
    def _get_for_update(db: Session, message_id: int) -> Optional[Message]:
        return (
            db.query(Message)
            .filter(Message.id == message_id)
            .with_for_update()
            .first()
        )

    def list_messages(self) -> List[Message]:
        with self.SessionLocal() as db:
            return db.query(Message).order_by(Message.id.asc()).all()

    def create_chat_message(self, message, is_user, response=None) -> ChatMessage:
        with self.SessionLocal() as db:
            record = ChatMessage(
                message=message,
                response=response,
                is_user=is_user,
                timestamp=utc_now_iso(),
            )
            db.add(record)
            db.commit()
            return record

    def list_chat_messages(self) -> List[ChatMessage]:
        with self.SessionLocal() as db:
            return db.query(ChatMessage).order_by(ChatMessage.id.asc()).all()


def build_store(settings: Settings) -> MessageStore:
    """Pick the store backend from DATABASE_URL (unset keeps records in memory)."""
    if not settings.DATABASE_URL:
        logger.info("DATABASE_URL not set, using in-memory store")
        return InMemoryStore()

    store = SqlStore(settings.DATABASE_URL)
    store.init_db()
    return store


def get_store(request: Request) -> MessageStore:
    """Dependency returning the store created by the application lifespan."""
    return request.app.state.store
