from enum import Enum


class ConversationStatus(str, Enum):
    ACTIVE = "active"
    WAITING = "waiting"
    CLOSED = "closed"


OPEN_STATUSES = (ConversationStatus.ACTIVE.value, ConversationStatus.WAITING.value)

VALID_TRANSITIONS = {
    ConversationStatus.ACTIVE: [ConversationStatus.WAITING, ConversationStatus.CLOSED],
    ConversationStatus.WAITING: [ConversationStatus.ACTIVE, ConversationStatus.CLOSED],
    ConversationStatus.CLOSED: [],
}


class InvalidTransitionError(Exception):
    def __init__(self, from_status: ConversationStatus, to_status: ConversationStatus):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Invalid transition: {from_status.value} -> {to_status.value}")


def can_transition(from_status: ConversationStatus, to_status: ConversationStatus) -> bool:
    """Check if transition is valid."""
    allowed = VALID_TRANSITIONS.get(from_status, [])
    return to_status in allowed


def transition(from_status: ConversationStatus, to_status: ConversationStatus) -> ConversationStatus:
    """Perform status transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_status, to_status):
        raise InvalidTransitionError(from_status, to_status)
    return to_status


def request_operator(current: ConversationStatus) -> ConversationStatus:
    """Bot hands the conversation over to the operator queue."""
    return transition(current, ConversationStatus.WAITING)


def operator_take(current: ConversationStatus) -> ConversationStatus:
    """Operator takes a waiting conversation."""
    return transition(current, ConversationStatus.ACTIVE)


def close(current: ConversationStatus) -> ConversationStatus:
    """Close an open conversation (inactivity or operator)."""
    return transition(current, ConversationStatus.CLOSED)


def is_open(status: str | None) -> bool:
    return status in OPEN_STATUSES
