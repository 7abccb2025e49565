from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from switchboard.logging_config import get_logger
from switchboard.models import Client, Conversation
from switchboard.services.bot_engine import BotState, ClientType
from switchboard.services.clock import utcnow
from switchboard.services.state_machine import OPEN_STATUSES, ConversationStatus

logger = get_logger("conversation_service")


@dataclass
class Resolution:
    client: Client
    conversation: Conversation
    client_created: bool = False
    conversation_created: bool = False


def find_client_by_address(db: Session, address: str) -> Optional[Client]:
    return db.query(Client).filter(Client.address == address).first()


def upsert_client(db: Session, address: str, display_name: Optional[str] = None) -> tuple[Client, bool]:
    """Get client by address or create it. Returns (client, created)."""
    client = find_client_by_address(db, address)
    if client:
        if display_name and not client.display_name:
            client.display_name = display_name
        return client, False

    client = Client(
        address=address,
        display_name=display_name,
        client_type=ClientType.UNKNOWN.value,
        conversation_state=BotState.INITIAL.value,
    )
    db.add(client)
    db.flush()
    logger.info("Created client", extra={"context": {"address": address, "client_id": str(client.id)}})
    return client, True


def find_open_conversation(db: Session, client_id: UUID) -> Optional[Conversation]:
    return (
        db.query(Conversation)
        .filter(Conversation.client_id == client_id, Conversation.status.in_(OPEN_STATUSES))
        .order_by(Conversation.started_at.desc())
        .first()
    )


def create_conversation(db: Session, client: Client, now: Optional[datetime] = None) -> Conversation:
    now = now or utcnow()
    conversation = Conversation(
        client_id=client.id,
        status=ConversationStatus.ACTIVE.value,
        started_at=now,
        last_message_at=now,
    )
    db.add(conversation)
    db.flush()
    logger.info(
        "Created conversation",
        extra={"context": {"address": client.address, "conversation_id": str(conversation.id)}},
    )
    return conversation


def update_conversation(db: Session, conversation: Conversation, **fields) -> Conversation:
    for name, value in fields.items():
        if not hasattr(Conversation, name):
            raise AttributeError(f"Conversation has no field {name!r}")
        setattr(conversation, name, value)
    db.flush()
    return conversation


def get_conversation(db: Session, conversation_id: UUID) -> Optional[Conversation]:
    return db.get(Conversation, conversation_id)


def resolve(db: Session, address: str, display_name: Optional[str] = None, now: Optional[datetime] = None) -> Resolution:
    """Find or create the client and its single open conversation.

    Callers must hold the per-address lock.
    """
    client, client_created = upsert_client(db, address, display_name)
    conversation = None if client_created else find_open_conversation(db, client.id)
    if conversation:
        return Resolution(client=client, conversation=conversation, client_created=client_created)

    conversation = create_conversation(db, client, now)
    return Resolution(
        client=client,
        conversation=conversation,
        client_created=client_created,
        conversation_created=True,
    )
