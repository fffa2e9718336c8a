"""SQLAlchemy persistence for completed conversation turns.

Optional: the gateway only writes here when DATABASE_URL is set and the
request carries a conversationId. Only turns whose generation completed
are saved; aborted and failed turns leave no trace.
"""

import json
from datetime import datetime, timezone

import structlog
from sqlalchemy import Column, DateTime, Integer, String, Text, create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from backend.core.models import ChatMessage, ToolInvocation, derive_title

logger = structlog.get_logger(__name__)

Base = declarative_base()


class ConversationRow(Base):
    __tablename__ = "conversations"

    id = Column(String, primary_key=True)
    title = Column(String, nullable=False)
    model_id = Column(String, nullable=False)
    created_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))


class MessageRow(Base):
    """Persistent chat message row."""
    __tablename__ = "messages"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    message_id = Column(String, nullable=False)
    conversation_id = Column(String, index=True, nullable=False)
    role = Column(String, nullable=False)
    content = Column(Text, nullable=False, default="")
    tool_calls = Column(Text, nullable=True)  # JSON list
    created_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))


_engine = None
_SessionLocal = None


def init_db(database_url: str) -> None:
    """Create engine + tables. Call once at startup.

    Args:
        database_url: SQLAlchemy connection string, e.g. ``sqlite:///data/chat.sqlite``.
    """
    global _engine, _SessionLocal

    kwargs = {}
    if database_url.startswith("sqlite"):
        # Rows are written from the threadpool, not the creating thread.
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool

    _engine = create_engine(database_url, echo=False, **kwargs)
    _SessionLocal = sessionmaker(bind=_engine)

    Base.metadata.create_all(_engine)
    logger.info("db.initialized", url=database_url.split("://")[0] + "://***")


def is_initialized() -> bool:
    return _SessionLocal is not None


def reset() -> None:
    """Drop the engine; persistence is disabled until init_db is called again."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None


def get_session() -> Session:
    """Get a new database session."""
    if _SessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _SessionLocal()


def save_turn(
    conversation_id: str,
    model_id: str,
    user_message: ChatMessage,
    assistant_message: ChatMessage,
) -> None:
    """Persist one user/assistant exchange, creating the conversation if new.

    The conversation title comes from the first user message ever saved
    for it and is never rewritten.
    """
    now = datetime.now(timezone.utc)
    with get_session() as session:
        conversation = session.get(ConversationRow, conversation_id)
        if conversation is None:
            conversation = ConversationRow(
                id=conversation_id,
                title=derive_title(user_message.content),
                model_id=model_id,
                created_at=now,
                updated_at=now,
            )
            session.add(conversation)
        else:
            conversation.model_id = model_id
            conversation.updated_at = now

        for msg in (user_message, assistant_message):
            session.add(_message_to_row(conversation_id, msg))
        session.commit()
        logger.debug("db.turn_saved", conversation_id=conversation_id)


def get_conversation(conversation_id: str) -> tuple[str, list[ChatMessage]] | None:
    """Fetch a conversation's title and messages in insertion order.

    Returns:
        (title, messages), or None if the conversation was never saved.
    """
    with get_session() as session:
        conversation = session.get(ConversationRow, conversation_id)
        if conversation is None:
            return None
        rows = (
            session.query(MessageRow)
            .filter(MessageRow.conversation_id == conversation_id)
            .order_by(MessageRow.seq.asc())
            .all()
        )
        return conversation.title, [_row_to_message(r) for r in rows]


def _message_to_row(conversation_id: str, msg: ChatMessage) -> MessageRow:
    tool_calls = None
    if msg.tool_calls:
        tool_calls = json.dumps([t.model_dump(mode="json") for t in msg.tool_calls], ensure_ascii=False)
    return MessageRow(
        message_id=msg.id,
        conversation_id=conversation_id,
        role=msg.role,
        content=msg.content,
        tool_calls=tool_calls,
        created_at=msg.created_at,
    )


def _row_to_message(row: MessageRow) -> ChatMessage:
    """Convert a SQLAlchemy row to a ChatMessage."""
    calls = json.loads(row.tool_calls) if row.tool_calls else []
    return ChatMessage(
        id=row.message_id,
        role=row.role,
        content=row.content,
        tool_calls=tuple(ToolInvocation(**c) for c in calls),
        created_at=row.created_at,
    )
