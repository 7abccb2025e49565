from switchboard.schemas.operator import (
    ConversationResponse,
    MarkReadResponse,
    MessageOut,
    OperatorActionRequest,
    OperatorMessageRequest,
)
from switchboard.schemas.transport import TransportEvent, TransportStatus
from switchboard.schemas.webhook import CloudWebhook

__all__ = [
    "CloudWebhook",
    "ConversationResponse",
    "MarkReadResponse",
    "MessageOut",
    "OperatorActionRequest",
    "OperatorMessageRequest",
    "TransportEvent",
    "TransportStatus",
]
