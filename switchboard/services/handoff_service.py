from sqlalchemy.orm import Session

from switchboard.logging_config import conversation_logger, get_logger
from switchboard.models import Client, Conversation
from switchboard.services.broadcast_service import Broadcaster, Topic
from switchboard.services.clock import utcnow
from switchboard.services.result import Result
from switchboard.services.session_store import BotSessionStore
from switchboard.services.state_machine import ConversationStatus, request_operator

logger = get_logger("handoff_service")


class HandoffCoordinator:
    def __init__(self, sessions: BotSessionStore, broadcaster: Broadcaster):
        self.sessions = sessions
        self.broadcaster = broadcaster

    def transfer(self, db: Session, conversation: Conversation, client: Client) -> Result[bool]:
        """Move a bot-controlled conversation to the operator queue.

        Result.success(True) when transferred, Result.success(False) when it was
        already waiting (no second notification), failure `invalid_state` when
        closed. Caller holds the address lock.
        """
        log = conversation_logger(logger, client.address, conversation.id)
        current = ConversationStatus(conversation.status)

        if current == ConversationStatus.WAITING:
            log.info("Handoff skipped: already waiting for operator")
            return Result.success(False)
        if current == ConversationStatus.CLOSED:
            return Result.failure("Conversation is closed", "invalid_state")

        conversation.status = request_operator(current).value
        conversation.operator_ref = None
        conversation.handoff_requested_at = utcnow()
        self.sessions.clear(client)
        db.commit()

        log.info("Conversation handed off to operator queue", context={"client_type": client.client_type})
        self.broadcaster.publish(
            Topic.OPERATOR_NEEDED,
            {
                "conversation_id": str(conversation.id),
                "client_address": client.address,
                "client_type": client.client_type,
            },
        )
        return Result.success(True)
