"""Auto-close of idle conversations.

One asyncio timer per open conversation. A timer fires under the client's
address lock and acts only if it is still the registered timer for that
conversation; anything that re-armed or cancelled it in the meantime wins.
"""

import asyncio
from typing import Callable, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from switchboard.errors import SwitchboardError
from switchboard.logging_config import conversation_logger, get_logger
from switchboard.models import Client, Conversation
from switchboard.services.bot_engine import render_template
from switchboard.services.broadcast_service import Broadcaster, Topic
from switchboard.services.clock import ensure_utc, utcnow
from switchboard.services.conversation_service import get_conversation
from switchboard.services.keyed_lock import KeyedLocks
from switchboard.services.message_service import SenderKind
from switchboard.services.outbound_service import OutboundDispatcher
from switchboard.services.session_store import BotSessionStore
from switchboard.services.state_machine import ConversationStatus, close

logger = get_logger("inactivity_service")

CLOSE_REASON = "inactivity"


class InactivityReaper:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        locks: KeyedLocks,
        sessions: BotSessionStore,
        dispatcher: OutboundDispatcher,
        broadcaster: Broadcaster,
        timeout_seconds: float,
    ):
        self.session_factory = session_factory
        self.locks = locks
        self.sessions = sessions
        self.dispatcher = dispatcher
        self.broadcaster = broadcaster
        self.timeout_seconds = timeout_seconds
        self._timers: dict[UUID, asyncio.Task] = {}

    def touch(self, conversation_id: UUID, address: str, delay: Optional[float] = None) -> None:
        """(Re)arm the timer for a conversation."""
        self.cancel(conversation_id)
        delay = self.timeout_seconds if delay is None else max(0.0, delay)
        task = asyncio.get_running_loop().create_task(self._fire_after(conversation_id, address, delay))
        self._timers[conversation_id] = task

    def cancel(self, conversation_id: UUID) -> None:
        task = self._timers.pop(conversation_id, None)
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()

    def pending(self, conversation_id: UUID) -> bool:
        task = self._timers.get(conversation_id)
        return task is not None and not task.done()

    def __len__(self) -> int:
        return len(self._timers)

    async def _fire_after(self, conversation_id: UUID, address: str, delay: float) -> None:
        await asyncio.sleep(delay)
        try:
            await self.expire(conversation_id, address)
        except Exception:
            logger.exception(
                "Inactivity close failed",
                extra={"context": {"conversation_id": str(conversation_id), "address": address}},
            )

    async def expire(self, conversation_id: UUID, address: str) -> bool:
        """Close the conversation if this timer is still current and it is active."""
        me = _current_task()
        async with self.locks.hold(address):
            if self._timers.get(conversation_id) is not me:
                return False
            del self._timers[conversation_id]

            db = self.session_factory()
            try:
                conversation = get_conversation(db, conversation_id)
                if conversation is None or conversation.status != ConversationStatus.ACTIVE.value:
                    return False
                await self._close(db, conversation, conversation.client)
                return True
            finally:
                db.close()

    async def _close(self, db: Session, conversation: Conversation, client: Client) -> None:
        log = conversation_logger(logger, client.address, conversation.id)

        conversation.status = close(ConversationStatus(conversation.status)).value
        conversation.ended_at = utcnow()
        conversation.close_reason = CLOSE_REASON
        self.sessions.clear(client)
        db.commit()
        log.info("Conversation closed for inactivity")

        try:
            await self.dispatcher.dispatch(db, conversation, client, SenderKind.SYSTEM, render_template("inactivity_closed"))
        except SwitchboardError as e:
            log.warning("Inactivity notice not delivered", context={"error_code": e.code, "error": e.message})

        self.broadcaster.publish(
            Topic.CONVERSATION_CLOSED,
            {
                "conversation_id": str(conversation.id),
                "client_address": client.address,
                "reason": CLOSE_REASON,
            },
        )

    def rehydrate(self) -> int:
        """Re-arm timers for active conversations after a restart."""
        db = self.session_factory()
        try:
            rows = (
                db.query(Conversation.id, Conversation.last_message_at, Conversation.started_at, Client.address)
                .join(Client, Client.id == Conversation.client_id)
                .filter(Conversation.status == ConversationStatus.ACTIVE.value)
                .all()
            )
        finally:
            db.close()

        now = utcnow()
        for conversation_id, last_message_at, started_at, address in rows:
            last = ensure_utc(last_message_at or started_at)
            elapsed = (now - last).total_seconds() if last else 0.0
            self.touch(conversation_id, address, delay=self.timeout_seconds - elapsed)

        if rows:
            logger.info(f"Rehydrated {len(rows)} inactivity timers")
        return len(rows)

    async def shutdown(self) -> None:
        tasks = list(self._timers.values())
        self._timers.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
