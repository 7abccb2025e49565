import hashlib
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Optional

from pydantic import ValidationError

from switchboard.errors import MalformedEvent
from switchboard.logging_config import get_logger
from switchboard.schemas.transport import TransportEvent
from switchboard.services.clock import utcnow

logger = get_logger("ingress_service")

_ADDRESS_NOISE = re.compile(r"[\s+\-().]")


@dataclass(frozen=True)
class InboundMessage:
    event_id: str
    from_address: str
    text: str
    received_at: datetime
    display_name: Optional[str] = None


def normalize_address(raw: Optional[str]) -> Optional[str]:
    """'+52 55-1234-5678' / '5215512345678:3@s.whatsapp.net' -> digits only, None if unusable."""
    if not raw:
        return None
    value = str(raw).split("@", 1)[0].split(":", 1)[0]
    value = _ADDRESS_NOISE.sub("", value)
    if not value.isdigit():
        return None
    return value


def build_event_id(address: str, text: str) -> str:
    digest = hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]
    return f"{address}:{digest}"


def normalize_event(event: TransportEvent, bound_address: Optional[str], received_at: datetime) -> Optional[InboundMessage]:
    """Turn one transport event into an InboundMessage, or None if it must be dropped.

    Raises MalformedEvent when the sender address is unusable.
    """
    address = normalize_address(event.from_address)
    if address is None:
        raise MalformedEvent(f"Event {event.event_id!r} has no usable sender address")

    if event.is_self_sent or (bound_address and address == normalize_address(bound_address)):
        return None

    text = (event.text or "").strip()
    if not text:
        return None

    return InboundMessage(
        event_id=event.event_id or build_event_id(address, text),
        from_address=address,
        text=text,
        received_at=received_at,
        display_name=event.display_name,
    )


def normalize_events(
    events: Iterable[Any],
    bound_address: Optional[str],
    now: Optional[datetime] = None,
) -> list[InboundMessage]:
    received_at = now or utcnow()
    messages: list[InboundMessage] = []

    for raw in events:
        try:
            event = raw if isinstance(raw, TransportEvent) else TransportEvent.model_validate(raw)
            message = normalize_event(event, bound_address, received_at)
        except ValidationError as e:
            logger.warning("Dropping malformed transport event", extra={"context": {"error": str(e)}})
            continue
        except MalformedEvent as e:
            logger.warning("Dropping malformed transport event", extra={"context": {"error": e.message}})
            continue

        if message is not None:
            messages.append(message)

    return messages
