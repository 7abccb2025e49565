from switchboard.errors import UnknownState
from switchboard.logging_config import get_logger
from switchboard.models import Client
from switchboard.services.bot_engine import BotState, coerce_state

logger = get_logger("session_store")


class BotSessionStore:
    """Address -> bot state.

    The in-memory map is a cache; `Client.conversation_state` is authoritative
    and is written on every change, so a restarted process resumes clients
    mid-flow. Callers must hold the address lock.
    """

    def __init__(self):
        self._sessions: dict[str, BotState] = {}

    def get(self, client: Client) -> BotState:
        state = self._sessions.get(client.address)
        if state is None:
            state = self._hydrate(client)
            self._sessions[client.address] = state
        return state

    def set(self, client: Client, state: BotState) -> None:
        self._sessions[client.address] = state
        client.conversation_state = state.value

    def clear(self, client: Client) -> None:
        self._sessions.pop(client.address, None)
        client.conversation_state = BotState.INITIAL.value

    def forget(self, address: str) -> None:
        """Drop the cached entry only; the persisted state is left alone."""
        self._sessions.pop(address, None)

    def __contains__(self, address: str) -> bool:
        return address in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def _hydrate(self, client: Client) -> BotState:
        try:
            return coerce_state(client.conversation_state)
        except UnknownState as e:
            logger.warning(
                "Unknown persisted bot state, falling back to welcome",
                extra={"context": {"address": client.address, "error": e.message}},
            )
            return BotState.WELCOME
