from switchboard.models.client import Client
from switchboard.models.conversation import Conversation
from switchboard.models.message import Message
from switchboard.models.processed_event import ProcessedEvent

__all__ = [
    "Client",
    "Conversation",
    "Message",
    "ProcessedEvent",
]
