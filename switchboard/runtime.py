"""Wires the routing core together and owns its background tasks."""

import asyncio
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, Optional

from fastapi import HTTPException, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from switchboard.config import Settings
from switchboard.logging_config import get_logger
from switchboard.services.alert_service import alert_heal_report, alert_transport_logged_out
from switchboard.services.broadcast_service import Broadcaster, WebSocketHub
from switchboard.services.clock import utcnow
from switchboard.services.dedup_service import EventDeduplicator, purge_processed_events
from switchboard.services.handoff_service import HandoffCoordinator
from switchboard.services.health_service import check_and_heal_conversations
from switchboard.services.inactivity_service import InactivityReaper
from switchboard.services.keyed_lock import KeyedLocks
from switchboard.services.operator_service import OperatorService
from switchboard.services.outbound_service import OutboundDispatcher
from switchboard.services.routing_service import MessageRouter
from switchboard.services.session_store import BotSessionStore
from switchboard.services.transport_supervisor import TransportDriver, TransportSupervisor
from switchboard.services.whatsapp_service import WhatsAppCloudDriver

logger = get_logger("runtime")


@dataclass
class Runtime:
    settings: Settings
    session_factory: Callable[[], Session]
    broadcaster: Broadcaster
    supervisor: TransportSupervisor
    locks: KeyedLocks
    sessions: BotSessionStore
    dedup: EventDeduplicator
    dispatcher: OutboundDispatcher
    handoff: HandoffCoordinator
    reaper: InactivityReaper
    router: MessageRouter
    operators: OperatorService
    _tasks: set = field(default_factory=set)

    async def start(self, connect: bool = True) -> None:
        self.router.start()
        self.reaper.rehydrate()
        self._spawn(self._maintenance_loop())
        if connect:
            self._spawn(self.supervisor.connect())
        logger.info("Runtime started")

    async def stop(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        await self.router.stop()
        await self.reaper.shutdown()
        await self.supervisor.shutdown()
        await self.dedup.close()
        if isinstance(self.broadcaster, WebSocketHub):
            await self.broadcaster.close()
        logger.info("Runtime stopped")

    def run_maintenance(self) -> dict:
        """Purge expired dedup records and heal conversation invariants."""
        db = self.session_factory()
        try:
            cutoff = utcnow() - timedelta(seconds=self.settings.dedup_ttl_seconds)
            purged = purge_processed_events(db, cutoff)
            report = check_and_heal_conversations(db)
        finally:
            db.close()
        report["purged_events"] = purged
        return report

    async def _maintenance_loop(self) -> None:
        interval = max(self.settings.maintenance_interval_seconds, 1.0)
        while True:
            await asyncio.sleep(interval)
            try:
                report = self.run_maintenance()
                await alert_heal_report(report, source="maintenance")
            except SQLAlchemyError as e:
                logger.error("Maintenance pass failed", extra={"context": {"error": str(e)}})

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)


def build_runtime(
    settings: Settings,
    session_factory: Callable[[], Session],
    driver: Optional[TransportDriver] = None,
    broadcaster: Optional[Broadcaster] = None,
    redis_client=None,
) -> Runtime:
    broadcaster = broadcaster or WebSocketHub()
    driver = driver or WhatsAppCloudDriver(
        settings.whatsapp_api_url,
        settings.whatsapp_phone_id,
        settings.whatsapp_token,
    )

    supervisor = TransportSupervisor(
        driver,
        broadcaster,
        reconnect_delay_seconds=settings.transport_reconnect_delay_seconds,
    )
    supervisor.on_logged_out = lambda: alert_transport_logged_out(supervisor.last_bound_address)

    locks = KeyedLocks()
    sessions = BotSessionStore()
    dedup = EventDeduplicator(redis_client, ttl_seconds=settings.dedup_ttl_seconds)
    dispatcher = OutboundDispatcher(supervisor, broadcaster)
    handoff = HandoffCoordinator(sessions, broadcaster)
    reaper = InactivityReaper(
        session_factory,
        locks,
        sessions,
        dispatcher,
        broadcaster,
        timeout_seconds=settings.inactivity_timeout_minutes * 60,
    )
    router = MessageRouter(supervisor, session_factory, locks, sessions, dedup, dispatcher, handoff, reaper, broadcaster)
    operators = OperatorService(locks, sessions, dispatcher, reaper, broadcaster)

    return Runtime(
        settings=settings,
        session_factory=session_factory,
        broadcaster=broadcaster,
        supervisor=supervisor,
        locks=locks,
        sessions=sessions,
        dedup=dedup,
        dispatcher=dispatcher,
        handoff=handoff,
        reaper=reaper,
        router=router,
        operators=operators,
    )


def get_runtime(request: Request) -> Runtime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Runtime not started")
    return runtime
