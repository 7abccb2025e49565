from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from switchboard.errors import PersistenceFailed
from switchboard.logging_config import conversation_logger, get_logger
from switchboard.models import Client, Conversation, Message
from switchboard.services.broadcast_service import Broadcaster, Topic
from switchboard.services.message_service import SenderKind, insert_message, serialize_message
from switchboard.services.transport_supervisor import TransportSupervisor

logger = get_logger("outbound_service")


class OutboundDispatcher:
    """Single path for every outgoing text (bot, operator, system).

    A Message row exists only for confirmed deliveries.
    """

    def __init__(self, supervisor: TransportSupervisor, broadcaster: Broadcaster):
        self.supervisor = supervisor
        self.broadcaster = broadcaster

    async def dispatch(
        self,
        db: Session,
        conversation: Conversation,
        client: Client,
        sender_kind: SenderKind,
        text: str,
        sender_ref: Optional[str] = None,
    ) -> Message:
        """Send then persist. Raises TransportUnavailable, TransportSendFailed or PersistenceFailed."""
        log = conversation_logger(logger, client.address, conversation.id)

        result = await self.supervisor.send(client.address, text)
        if not result.ok:
            log.warning(
                "Outbound send failed, nothing persisted",
                context={"sender_kind": SenderKind(sender_kind).value, "error_code": result.error_code},
            )
        provider_id = result.unwrap()

        try:
            message = insert_message(
                db,
                conversation,
                sender_kind,
                text,
                sender_ref=sender_ref,
                transport_message_id=provider_id,
                is_read=True,
                client=client,
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            log.error("Delivered message could not be persisted", context={"error": str(e)})
            raise PersistenceFailed(f"Delivered message could not be persisted: {e}") from e

        self.broadcaster.publish(Topic.NEW_MESSAGE, serialize_message(message, client.address))
        return message
