"""Decision-tree bot.

`transition()` is a pure function of (state, text): it never touches the
database or the transport. The router applies the returned decision, the
outbound dispatcher sends the rendered template and the handoff coordinator
acts on `handoff`.

Commands are matched against an explicit table after normalization. There is
no substring matching: "tengo 1 problema" is not option 1.
"""

from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Optional

import yaml

from switchboard.errors import UnknownState


class BotState(str, Enum):
    INITIAL = "initial"
    WELCOME = "welcome"
    CLIENT_MENU = "client_menu"
    NON_CLIENT_MENU = "non_client_menu"
    CLIENT_BILLING = "client_billing"
    CLIENT_HOURS = "client_hours"
    PROSPECT_INFO = "prospect_info"


class ClientType(str, Enum):
    UNKNOWN = "unknown"
    EXISTING = "existing"
    PROSPECT = "prospect"


@dataclass(frozen=True)
class BotDecision:
    next_state: BotState
    template: str
    handoff: bool = False
    client_type: Optional[ClientType] = None


_TEMPLATES_PATH = Path(__file__).resolve().parent.parent / "data" / "bot_templates.yaml"

_KEYCAP_MARKS = dict.fromkeys(map(ord, "\ufe0f\u20e3"), None)
_EDGE_PUNCTUATION = " .,;:!?¡¿\"'()*-"

BACK = "back"
OPERATOR = "operator"

_COMMANDS = {
    "0": BACK,
    "menu": BACK,
    "menú": BACK,
    "volver": BACK,
    "inicio": BACK,
    "1": "1",
    "2": "2",
    "3": "3",
    "4": "4",
    "operador": OPERATOR,
    "asesor": OPERATOR,
    "agente": OPERATOR,
    "humano": OPERATOR,
    "hablar con un operador": OPERATOR,
}

# Extra phrases accepted only on the welcome screen.
_WELCOME_COMMANDS = {
    "cliente": "1",
    "soy cliente": "1",
    "si soy cliente": "1",
    "sí soy cliente": "1",
    "no soy cliente": "2",
    "no cliente": "2",
}


def _stay(state: BotState, template: str) -> BotDecision:
    return BotDecision(next_state=state, template=template)


def _handoff(template: str) -> BotDecision:
    # Session restarts from scratch once an operator releases the client.
    return BotDecision(next_state=BotState.INITIAL, template=template, handoff=True)


_BACK_TO_WELCOME = _stay(BotState.WELCOME, "welcome")
_OPERATOR_HANDOFF = _handoff("operator_connecting")
_SALES_HANDOFF = _handoff("sales")

_TRANSITIONS: dict[BotState, dict[str, BotDecision]] = {
    BotState.WELCOME: {
        "1": BotDecision(BotState.CLIENT_MENU, "client_menu", client_type=ClientType.EXISTING),
        "2": BotDecision(BotState.NON_CLIENT_MENU, "prospect_menu", client_type=ClientType.PROSPECT),
        BACK: _BACK_TO_WELCOME,
    },
    BotState.CLIENT_MENU: {
        "1": _stay(BotState.CLIENT_BILLING, "client_billing"),
        "2": _handoff("client_support"),
        "3": _OPERATOR_HANDOFF,
        OPERATOR: _OPERATOR_HANDOFF,
        "4": _stay(BotState.CLIENT_HOURS, "client_hours"),
        BACK: _BACK_TO_WELCOME,
    },
    BotState.NON_CLIENT_MENU: {
        "1": _stay(BotState.PROSPECT_INFO, "prospect_info"),
        "2": _SALES_HANDOFF,
        OPERATOR: _SALES_HANDOFF,
        BACK: _BACK_TO_WELCOME,
    },
    BotState.CLIENT_BILLING: {
        "3": _OPERATOR_HANDOFF,
        OPERATOR: _OPERATOR_HANDOFF,
        BACK: _BACK_TO_WELCOME,
    },
    BotState.CLIENT_HOURS: {
        "3": _OPERATOR_HANDOFF,
        OPERATOR: _OPERATOR_HANDOFF,
        BACK: _BACK_TO_WELCOME,
    },
    BotState.PROSPECT_INFO: {
        "2": _SALES_HANDOFF,
        OPERATOR: _SALES_HANDOFF,
        BACK: _BACK_TO_WELCOME,
    },
}

_REPROMPT_TEMPLATES = {BotState.WELCOME: "welcome"}


def normalize_input(text: str | None) -> str:
    """Lower-case, trim, collapse whitespace, drop keycap marks and edge punctuation."""
    normalized = (text or "").translate(_KEYCAP_MARKS).casefold()
    normalized = " ".join(normalized.split())
    return normalized.strip(_EDGE_PUNCTUATION)


def parse_command(state: BotState, text: str | None) -> Optional[str]:
    normalized = normalize_input(text)
    if not normalized:
        return None
    if state == BotState.WELCOME and normalized in _WELCOME_COMMANDS:
        return _WELCOME_COMMANDS[normalized]
    return _COMMANDS.get(normalized)


def transition(state: BotState, text: str | None) -> BotDecision:
    """Compute the bot reaction for `text` received in `state`."""
    if state == BotState.INITIAL:
        # First contact: greet, never treat the opening message as a menu choice.
        return _stay(BotState.WELCOME, "welcome")

    command = parse_command(state, text)
    decision = _TRANSITIONS.get(state, {}).get(command) if command else None
    if decision is None:
        return _stay(state, _REPROMPT_TEMPLATES.get(state, "default"))
    return decision


def coerce_state(value: str | None) -> BotState:
    """Map a persisted state value to BotState. Raises UnknownState for garbage."""
    if not value:
        return BotState.INITIAL
    try:
        return BotState(value)
    except ValueError:
        raise UnknownState(f"Unknown bot state {value!r}") from None


@lru_cache(maxsize=1)
def load_templates() -> dict[str, str]:
    if not _TEMPLATES_PATH.exists():
        raise FileNotFoundError(f"Bot templates not found: {_TEMPLATES_PATH}")
    with _TEMPLATES_PATH.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    return {str(key): str(value) for key, value in data.items()}


def render_template(key: str) -> str:
    templates = load_templates()
    if key not in templates:
        raise KeyError(f"Unknown bot template: {key}")
    return templates[key]
