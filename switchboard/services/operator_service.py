"""Operator console actions: take, release, send, close, mark read."""

from uuid import UUID

from sqlalchemy.orm import Session

from switchboard.errors import SwitchboardError
from switchboard.logging_config import conversation_logger, get_logger
from switchboard.models import Conversation, Message
from switchboard.services.bot_engine import render_template
from switchboard.services.broadcast_service import Broadcaster, Topic
from switchboard.services.clock import utcnow
from switchboard.services.conversation_service import get_conversation
from switchboard.services.inactivity_service import InactivityReaper
from switchboard.services.keyed_lock import KeyedLocks
from switchboard.services.message_service import SenderKind, mark_messages_read
from switchboard.services.outbound_service import OutboundDispatcher
from switchboard.services.session_store import BotSessionStore
from switchboard.services.state_machine import ConversationStatus, close, operator_take

logger = get_logger("operator_service")

CLOSE_REASON = "operator"


class OperatorActionError(Exception):
    def __init__(self, message: str, code: str):
        self.message = message
        self.code = code
        super().__init__(message)


class OperatorService:
    def __init__(
        self,
        locks: KeyedLocks,
        sessions: BotSessionStore,
        dispatcher: OutboundDispatcher,
        reaper: InactivityReaper,
        broadcaster: Broadcaster,
    ):
        self.locks = locks
        self.sessions = sessions
        self.dispatcher = dispatcher
        self.reaper = reaper
        self.broadcaster = broadcaster

    async def take(self, db: Session, conversation_id: UUID, operator_ref: str) -> Conversation:
        conversation = _load(db, conversation_id)
        async with self.locks.hold(conversation.client.address):
            db.refresh(conversation)
            if conversation.status == ConversationStatus.ACTIVE.value and conversation.operator_ref == operator_ref:
                return conversation
            if conversation.status != ConversationStatus.WAITING.value:
                raise OperatorActionError(f"Conversation is {conversation.status}, not waiting", "invalid_state")

            conversation.status = operator_take(ConversationStatus(conversation.status)).value
            conversation.operator_ref = operator_ref
            db.commit()
            self.reaper.touch(conversation.id, conversation.client.address)

            conversation_logger(logger, conversation.client.address, conversation.id).info(
                "Operator took conversation", context={"operator_ref": operator_ref}
            )
            return conversation

    async def release(self, db: Session, conversation_id: UUID, operator_ref: str) -> Conversation:
        """Hand an operator-held conversation back to the bot, starting from scratch."""
        conversation = _load(db, conversation_id)
        async with self.locks.hold(conversation.client.address):
            db.refresh(conversation)
            _require_assigned(conversation, operator_ref)

            conversation.operator_ref = None
            self.sessions.clear(conversation.client)
            db.commit()
            self.reaper.touch(conversation.id, conversation.client.address)

            conversation_logger(logger, conversation.client.address, conversation.id).info(
                "Operator released conversation to bot", context={"operator_ref": operator_ref}
            )
            return conversation

    async def send(self, db: Session, conversation_id: UUID, operator_ref: str, text: str) -> Message:
        """Send as the assigned operator. Transport errors propagate."""
        conversation = _load(db, conversation_id)
        async with self.locks.hold(conversation.client.address):
            db.refresh(conversation)
            _require_assigned(conversation, operator_ref)
            return await self.dispatcher.dispatch(
                db, conversation, conversation.client, SenderKind.OPERATOR, text, sender_ref=operator_ref
            )

    async def close(self, db: Session, conversation_id: UUID, operator_ref: str) -> Conversation:
        conversation = _load(db, conversation_id)
        client = conversation.client
        async with self.locks.hold(client.address):
            db.refresh(conversation)
            if conversation.status == ConversationStatus.CLOSED.value:
                raise OperatorActionError("Conversation is already closed", "invalid_state")
            if conversation.operator_ref and conversation.operator_ref != operator_ref:
                raise OperatorActionError("Conversation is assigned to another operator", "not_assigned")

            conversation.status = close(ConversationStatus(conversation.status)).value
            conversation.ended_at = utcnow()
            conversation.closed_by_ref = operator_ref
            conversation.close_reason = CLOSE_REASON
            self.reaper.cancel(conversation.id)
            self.sessions.clear(client)
            db.commit()

            log = conversation_logger(logger, client.address, conversation.id)
            log.info("Operator closed conversation", context={"operator_ref": operator_ref})

            try:
                await self.dispatcher.dispatch(db, conversation, client, SenderKind.SYSTEM, render_template("operator_closed"))
            except SwitchboardError as e:
                log.warning("Closure notice not delivered", context={"error_code": e.code, "error": e.message})

            self.broadcaster.publish(
                Topic.CONVERSATION_CLOSED,
                {
                    "conversation_id": str(conversation.id),
                    "client_address": client.address,
                    "reason": CLOSE_REASON,
                    "closed_by": operator_ref,
                },
            )
            return conversation

    def mark_read(self, db: Session, conversation_id: UUID) -> int:
        _load(db, conversation_id)
        return mark_messages_read(db, conversation_id)


def _load(db: Session, conversation_id: UUID) -> Conversation:
    conversation = get_conversation(db, conversation_id)
    if conversation is None:
        raise OperatorActionError("Conversation not found", "not_found")
    return conversation


def _require_assigned(conversation: Conversation, operator_ref: str) -> None:
    if conversation.status != ConversationStatus.ACTIVE.value:
        raise OperatorActionError(f"Conversation is {conversation.status}", "invalid_state")
    if conversation.operator_ref != operator_ref:
        raise OperatorActionError("Conversation is not assigned to this operator", "not_assigned")
