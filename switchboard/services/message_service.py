from datetime import datetime, timedelta
from enum import Enum
from typing import Optional
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm import Session

from switchboard.models import Client, Conversation, Message
from switchboard.services.clock import ensure_utc, utcnow

PREVIEW_LENGTH = 200


class SenderKind(str, Enum):
    CLIENT = "client"
    BOT = "bot"
    OPERATOR = "operator"
    SYSTEM = "system"


def next_timestamp(conversation: Conversation, now: Optional[datetime] = None) -> datetime:
    """Strictly after the last message of the conversation, so insertion order is timestamp order."""
    now = ensure_utc(now or utcnow())
    last = ensure_utc(conversation.last_message_at)
    if last and last >= now:
        return last + timedelta(microseconds=1)
    return now


def insert_message(
    db: Session,
    conversation: Conversation,
    sender_kind: SenderKind,
    content: str,
    sender_ref: Optional[str] = None,
    transport_message_id: Optional[str] = None,
    is_read: bool = False,
    now: Optional[datetime] = None,
    client: Optional[Client] = None,
) -> Message:
    """Insert a message and bump `last_message_at` (and the client preview when given)."""
    timestamp = next_timestamp(conversation, now)
    message = Message(
        conversation_id=conversation.id,
        sender_kind=SenderKind(sender_kind).value,
        sender_ref=sender_ref,
        content=content,
        timestamp=timestamp,
        is_read=is_read,
        transport_message_id=transport_message_id,
    )
    db.add(message)
    conversation.last_message_at = timestamp
    if client is not None:
        client.last_message_at = timestamp
        if sender_kind == SenderKind.CLIENT:
            client.last_message = content[:PREVIEW_LENGTH]
    db.flush()
    return message


def mark_messages_read(db: Session, conversation_id: UUID) -> int:
    result = db.execute(
        update(Message)
        .where(Message.conversation_id == conversation_id, Message.is_read.is_(False))
        .values(is_read=True)
    )
    db.commit()
    return result.rowcount or 0


def list_messages(db: Session, conversation_id: UUID, limit: Optional[int] = None) -> list[Message]:
    query = db.query(Message).filter(Message.conversation_id == conversation_id).order_by(Message.timestamp)
    if limit:
        query = query.limit(limit)
    return query.all()


def serialize_message(message: Message, client_address: Optional[str] = None) -> dict:
    return {
        "id": str(message.id),
        "conversation_id": str(message.conversation_id),
        "client_address": client_address,
        "sender_kind": message.sender_kind,
        "sender_ref": message.sender_ref,
        "content": message.content,
        "timestamp": ensure_utc(message.timestamp).isoformat(),
        "is_read": message.is_read,
    }
