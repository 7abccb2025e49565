"""Inbound dispatch loop.

Each normalized message becomes one task that holds the client's address lock
for its whole unit of work: dedup, resolve, persist, timer reset, broadcast,
bot reply and handoff. Tasks are created in delivery order and the lock is
FIFO, so one client's messages are processed in the order they arrived while
different clients proceed concurrently.
"""

import asyncio
from dataclasses import dataclass
from typing import Callable, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from switchboard.errors import SwitchboardError
from switchboard.logging_config import conversation_logger, get_logger
from switchboard.models import Client, Conversation
from switchboard.services.bot_engine import render_template, transition
from switchboard.services.broadcast_service import Broadcaster, Topic
from switchboard.services.conversation_service import resolve
from switchboard.services.dedup_service import EventDeduplicator
from switchboard.services.handoff_service import HandoffCoordinator
from switchboard.services.inactivity_service import InactivityReaper
from switchboard.services.ingress_service import InboundMessage, normalize_events
from switchboard.services.keyed_lock import KeyedLocks
from switchboard.services.message_service import SenderKind, insert_message, serialize_message
from switchboard.services.outbound_service import OutboundDispatcher
from switchboard.services.session_store import BotSessionStore
from switchboard.services.state_machine import OPEN_STATUSES
from switchboard.services.transport_supervisor import InboundBatch, TransportSupervisor

logger = get_logger("routing_service")


@dataclass
class RoutingOutcome:
    event_id: str
    address: str
    conversation_id: Optional[UUID] = None
    duplicate: bool = False
    bot_replied: bool = False
    handed_off: bool = False
    error_code: Optional[str] = None


def is_bot_controlled(conversation: Conversation) -> bool:
    """Open and not assigned to an operator. A queued (waiting) client still gets bot replies."""
    return conversation.status in OPEN_STATUSES and conversation.operator_ref is None


class MessageRouter:
    def __init__(
        self,
        supervisor: TransportSupervisor,
        session_factory: Callable[[], Session],
        locks: KeyedLocks,
        sessions: BotSessionStore,
        dedup: EventDeduplicator,
        dispatcher: OutboundDispatcher,
        handoff: HandoffCoordinator,
        reaper: InactivityReaper,
        broadcaster: Broadcaster,
    ):
        self.supervisor = supervisor
        self.session_factory = session_factory
        self.locks = locks
        self.sessions = sessions
        self.dedup = dedup
        self.dispatcher = dispatcher
        self.handoff = handoff
        self.reaper = reaper
        self.broadcaster = broadcaster
        self._task: Optional[asyncio.Task] = None
        self._inflight: set[asyncio.Task] = set()

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self.run())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        await self.drain()

    async def drain(self) -> None:
        """Wait for in-flight messages to finish."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def run(self) -> None:
        logger.info("Dispatch loop started")
        while True:
            batch = await self.supervisor.inbound.get()
            try:
                self.submit(batch)
            except Exception:
                logger.exception("Failed to dispatch inbound batch")
            finally:
                self.supervisor.inbound.task_done()

    def submit(self, batch: InboundBatch) -> list[asyncio.Task]:
        messages = normalize_events(batch.events, self.supervisor.bound_address)
        loop = asyncio.get_running_loop()
        tasks = []
        for message in messages:
            task = loop.create_task(self._guarded(message))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
            tasks.append(task)
        return tasks

    async def _guarded(self, message: InboundMessage) -> Optional[RoutingOutcome]:
        try:
            return await self.handle_inbound(message)
        except Exception:
            logger.exception(
                "Inbound message processing crashed",
                extra={"context": {"address": message.from_address, "event_id": message.event_id}},
            )
            return None

    async def handle_inbound(self, message: InboundMessage) -> RoutingOutcome:
        async with self.locks.hold(message.from_address):
            db = self.session_factory()
            try:
                return await self._process(db, message)
            except SQLAlchemyError as e:
                db.rollback()
                # The cached bot state may be ahead of the rolled back row.
                self.sessions.forget(message.from_address)
                await self.dedup.release(message.event_id)
                logger.error(
                    "Inbound message not persisted",
                    extra={"context": {"address": message.from_address, "event_id": message.event_id, "error": str(e)}},
                )
                return RoutingOutcome(message.event_id, message.from_address, error_code="persistence_error")
            finally:
                db.close()

    async def _process(self, db: Session, message: InboundMessage) -> RoutingOutcome:
        outcome = RoutingOutcome(message.event_id, message.from_address)

        if not await self.dedup.claim(db, message.event_id, now=message.received_at):
            outcome.duplicate = True
            return outcome

        resolution = resolve(db, message.from_address, message.display_name, now=message.received_at)
        conversation, client = resolution.conversation, resolution.client
        outcome.conversation_id = conversation.id
        log = conversation_logger(logger, client.address, conversation.id)

        stored = insert_message(
            db,
            conversation,
            SenderKind.CLIENT,
            message.text,
            transport_message_id=message.event_id,
            now=message.received_at,
            client=client,
        )
        db.commit()
        log.info(
            "Inbound message stored",
            context={"event_id": message.event_id, "conversation_created": resolution.conversation_created},
        )

        self.reaper.touch(conversation.id, client.address)
        self.broadcaster.publish(Topic.NEW_MESSAGE, serialize_message(stored, client.address))

        if is_bot_controlled(conversation):
            outcome.bot_replied, outcome.handed_off = await self._run_bot(db, conversation, client, message.text)
        return outcome

    async def _run_bot(self, db: Session, conversation: Conversation, client: Client, text: str) -> tuple[bool, bool]:
        log = conversation_logger(logger, client.address, conversation.id)

        state = self.sessions.get(client)
        decision = transition(state, text)
        if decision.client_type is not None:
            client.client_type = decision.client_type.value
        self.sessions.set(client, decision.next_state)
        db.commit()
        log.info(
            "Bot transition",
            context={"from": state.value, "to": decision.next_state.value, "handoff": decision.handoff},
        )

        replied = False
        try:
            await self.dispatcher.dispatch(db, conversation, client, SenderKind.BOT, render_template(decision.template))
            replied = True
        except SwitchboardError as e:
            log.warning("Bot reply dropped", context={"error_code": e.code, "error": e.message})

        handed_off = False
        if decision.handoff:
            result = self.handoff.transfer(db, conversation, client)
            if not result.ok:
                log.warning("Handoff failed", context={"error_code": result.error_code, "error": result.error})
            handed_off = bool(result.unwrap_or(False))
        return replied, handed_off
