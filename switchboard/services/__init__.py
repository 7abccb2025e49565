from switchboard.services.bot_engine import (
    BotDecision,
    BotState,
    ClientType,
    render_template,
    transition,
)
from switchboard.services.conversation_service import (
    find_open_conversation,
    resolve,
    upsert_client,
)
from switchboard.services.message_service import (
    SenderKind,
    insert_message,
    mark_messages_read,
)
from switchboard.services.state_machine import (
    ConversationStatus,
    InvalidTransitionError,
    can_transition,
    close,
    operator_take,
    request_operator,
)
