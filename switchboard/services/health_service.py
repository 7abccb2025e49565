from collections import defaultdict
from datetime import datetime, timezone

from sqlalchemy import func
from sqlalchemy.orm import Session

from switchboard.logging_config import get_logger
from switchboard.models import Client, Conversation, ProcessedEvent
from switchboard.services.bot_engine import BotState
from switchboard.services.state_machine import OPEN_STATUSES, ConversationStatus

logger = get_logger("health_service")


def check_and_heal_conversations(db: Session) -> dict:
    """Check conversation invariants and repair violations."""
    healed = []
    now = datetime.now(timezone.utc)

    # Invariant 1: at most one open conversation per client. Keep the newest.
    open_conversations = (
        db.query(Conversation)
        .filter(Conversation.status.in_(OPEN_STATUSES))
        .order_by(Conversation.client_id, Conversation.started_at.desc())
        .all()
    )
    by_client = defaultdict(list)
    for conv in open_conversations:
        by_client[conv.client_id].append(conv)

    for client_id, conversations in by_client.items():
        for conv in conversations[1:]:
            conv.status = ConversationStatus.CLOSED.value
            conv.ended_at = now
            conv.close_reason = "healed"
            healed.append(
                {
                    "conversation_id": str(conv.id),
                    "issue": "duplicate_open_conversation",
                    "action": "closed",
                }
            )
            logger.warning(f"Healed conversation {conv.id}: duplicate open conversation for client {client_id}")

    # Invariant 2: closed conversations carry ended_at.
    missing_end = (
        db.query(Conversation)
        .filter(
            Conversation.status == ConversationStatus.CLOSED.value,
            Conversation.ended_at == None,  # noqa: E711
        )
        .all()
    )
    for conv in missing_end:
        conv.ended_at = conv.last_message_at or now
        healed.append(
            {
                "conversation_id": str(conv.id),
                "issue": "closed_without_ended_at",
                "action": "set_ended_at",
            }
        )
        logger.warning(f"Healed conversation {conv.id}: closed without ended_at")

    # Invariant 3: waiting conversations have no operator assigned.
    waiting_assigned = (
        db.query(Conversation)
        .filter(
            Conversation.status == ConversationStatus.WAITING.value,
            Conversation.operator_ref != None,  # noqa: E711
        )
        .all()
    )
    for conv in waiting_assigned:
        old_ref = conv.operator_ref
        conv.operator_ref = None
        healed.append(
            {
                "conversation_id": str(conv.id),
                "issue": "waiting_with_operator",
                "action": f"cleared_operator_ref (old='{old_ref}')",
            }
        )
        logger.warning(f"Healed conversation {conv.id}: waiting with operator '{old_ref}'")

    # Invariant 4: persisted bot state is a known state.
    known_states = [state.value for state in BotState]
    broken_state = db.query(Client).filter(Client.conversation_state.notin_(known_states)).all()
    for client in broken_state:
        old_state = client.conversation_state
        client.conversation_state = BotState.INITIAL.value
        healed.append(
            {
                "client_id": str(client.id),
                "issue": "unknown_bot_state",
                "action": f"reset_to_initial (old='{old_state}')",
            }
        )
        logger.warning(f"Healed client {client.id}: unknown bot state '{old_state}'")

    db.commit()

    return {
        "healed_count": len(healed),
        "details": healed,
        "checked_at": datetime.now(timezone.utc).isoformat(),
    }


def get_system_health(db: Session) -> dict:
    """Get overall system state."""

    counts = dict(db.query(Conversation.status, func.count(Conversation.id)).group_by(Conversation.status).all())

    clients = db.query(Client).count()

    processed_events = db.query(ProcessedEvent).count()

    return {
        "conversations": {status.value: counts.get(status.value, 0) for status in ConversationStatus},
        "clients": clients,
        "processed_events": processed_events,
        "checked_at": datetime.now(timezone.utc).isoformat(),
    }
