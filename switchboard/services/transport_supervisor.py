"""Owns the single WhatsApp transport session.

Drivers report connection changes as typed events through `emit`; the
supervisor turns them into state transitions, `transport_status` broadcasts
and reconnect scheduling. Inbound batches are queued for the dispatch loop.
"""

import asyncio
from dataclasses import dataclass, field
from functools import partial
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Optional, Protocol, Union

from switchboard.errors import TransportDriverError, TransportSendFailed, TransportUnavailable
from switchboard.logging_config import get_logger
from switchboard.schemas.transport import TransportEvent, TransportStatus
from switchboard.services.broadcast_service import Broadcaster, Topic
from switchboard.services.clock import utcnow
from switchboard.services.result import Result

logger = get_logger("transport_supervisor")


class TransportState(str, Enum):
    DISCONNECTED = "disconnected"
    AWAITING_PAIRING = "awaiting_pairing"
    CONNECTED = "connected"


class DisconnectCause(str, Enum):
    LOGGED_OUT = "logged_out"
    MANUAL = "manual"
    CONNECTION_LOST = "connection_lost"
    TIMED_OUT = "timed_out"
    RESTART_REQUIRED = "restart_required"


# No reconnect after these.
TERMINAL_CAUSES = frozenset({DisconnectCause.LOGGED_OUT, DisconnectCause.MANUAL})


@dataclass(frozen=True)
class PairingRequired:
    code: str


@dataclass(frozen=True)
class ConnectionOpened:
    bound_address: str


@dataclass(frozen=True)
class ConnectionClosed:
    cause: DisconnectCause


@dataclass(frozen=True)
class InboundBatch:
    events: list[TransportEvent] = field(default_factory=list)


TransportUpdate = Union[PairingRequired, ConnectionOpened, ConnectionClosed, InboundBatch]


class TransportDriver(Protocol):
    async def open(self, emit: Callable[[TransportUpdate], None]) -> None: ...

    async def close(self) -> None: ...

    async def send_text(self, address: str, text: str) -> Optional[str]: ...


class TransportSupervisor:
    def __init__(
        self,
        driver: TransportDriver,
        broadcaster: Broadcaster,
        reconnect_delay_seconds: float = 5.0,
        on_logged_out: Optional[Callable[[], Awaitable[object]]] = None,
    ):
        self.driver = driver
        self.broadcaster = broadcaster
        self.reconnect_delay_seconds = reconnect_delay_seconds
        self.on_logged_out = on_logged_out

        self.state = TransportState.DISCONNECTED
        self.pairing_code: Optional[str] = None
        self._bound_address: Optional[str] = None
        self.last_connected_at: Optional[datetime] = None
        self.inbound: asyncio.Queue = asyncio.Queue()

        self._connecting = False
        # Bumped by every connect and manual stop; outcomes of older opens are dropped.
        self._generation = 0
        self._reconnect_task: Optional[asyncio.Task] = None
        self._background: set[asyncio.Task] = set()

    @property
    def bound_address(self) -> Optional[str]:
        return self._bound_address if self.state == TransportState.CONNECTED else None

    @property
    def last_bound_address(self) -> Optional[str]:
        """Address of the most recent session, kept after disconnect."""
        return self._bound_address

    @property
    def is_connected(self) -> bool:
        return self.state == TransportState.CONNECTED

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    async def connect(self) -> None:
        """Open the driver unless already connected or connecting."""
        if self.state == TransportState.CONNECTED or self._connecting:
            return

        self._connecting = True
        self._generation += 1
        generation = self._generation
        try:
            logger.info("Opening transport")
            await self.driver.open(partial(self._emit_for, generation))
        except TransportDriverError as e:
            if generation != self._generation:
                logger.info("Ignoring failed open superseded by a manual stop", extra={"context": {"error": e.message}})
                return
            cause = DisconnectCause.LOGGED_OUT if e.logged_out else DisconnectCause.CONNECTION_LOST
            logger.warning(
                f"Transport open failed: {e.message}",
                extra={"context": {"cause": cause.value, "status_code": e.status_code}},
            )
            self.emit(ConnectionClosed(cause))
        finally:
            if generation == self._generation:
                self._connecting = False

    async def disconnect(self) -> None:
        """Manual disconnect: no reconnect until `connect()` is called again.

        An open still in flight is superseded: whatever it reports afterwards
        is ignored.
        """
        self._stop_connecting()
        try:
            await self.driver.close()
        except TransportDriverError as e:
            logger.warning(f"Transport close failed: {e.message}")
        self.emit(ConnectionClosed(DisconnectCause.MANUAL))

    async def shutdown(self) -> None:
        self._stop_connecting()
        try:
            await self.driver.close()
        except TransportDriverError as e:
            logger.warning(f"Transport close failed: {e.message}")
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        self.state = TransportState.DISCONNECTED
        self.pairing_code = None

    def _emit_for(self, generation: int, update: TransportUpdate) -> None:
        if generation != self._generation and not isinstance(update, InboundBatch):
            logger.info(f"Ignoring stale transport update: {type(update).__name__}")
            return
        self.emit(update)

    def _stop_connecting(self) -> None:
        self._generation += 1
        self._connecting = False
        self._cancel_reconnect()

    def emit(self, update: TransportUpdate) -> None:
        if isinstance(update, InboundBatch):
            self.inbound.put_nowait(update)
            return

        if isinstance(update, PairingRequired):
            self.state = TransportState.AWAITING_PAIRING
            self.pairing_code = update.code
            logger.info("Transport awaiting pairing")
        elif isinstance(update, ConnectionOpened):
            self._cancel_reconnect()
            self.state = TransportState.CONNECTED
            self.pairing_code = None
            self._bound_address = update.bound_address
            self.last_connected_at = utcnow()
            logger.info("Transport connected", extra={"context": {"bound_address": update.bound_address}})
        elif isinstance(update, ConnectionClosed):
            self._on_closed(update.cause)
        else:
            logger.warning(f"Ignoring unknown transport update: {update!r}")
            return

        self.broadcaster.publish(Topic.TRANSPORT_STATUS, self.get_status().model_dump(mode="json"))

    async def send(self, address: str, text: str) -> Result[Optional[str]]:
        """Send a text. Never queued: fails fast with `not_connected`."""
        if self.state != TransportState.CONNECTED:
            return Result.from_error(TransportUnavailable("Transport is not connected"))

        try:
            provider_id = await self.driver.send_text(address, text)
        except TransportDriverError as e:
            logger.error(
                f"Transport send failed: {e.message}",
                extra={"context": {"address": address, "status_code": e.status_code}},
            )
            if e.logged_out:
                self.emit(ConnectionClosed(DisconnectCause.LOGGED_OUT))
            return Result.from_error(TransportSendFailed(e.message))
        return Result.success(provider_id)

    def get_status(self) -> TransportStatus:
        return TransportStatus(
            connected=self.state == TransportState.CONNECTED,
            state=self.state.value,
            pairing_code=self.pairing_code,
            bound_address=self.bound_address,
            last_connected_at=self.last_connected_at,
        )

    def _on_closed(self, cause: DisconnectCause) -> None:
        self.state = TransportState.DISCONNECTED
        self.pairing_code = None

        if cause in TERMINAL_CAUSES:
            self._cancel_reconnect()
            logger.warning("Transport closed", extra={"context": {"cause": cause.value, "reconnect": False}})
            if cause == DisconnectCause.LOGGED_OUT and self.on_logged_out is not None:
                self._spawn(self.on_logged_out())
            return

        logger.warning(
            "Transport closed",
            extra={"context": {"cause": cause.value, "reconnect_in": self.reconnect_delay_seconds}},
        )
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self.reconnect_pending and self._reconnect_task is not _current_task():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop, reconnect not scheduled")
            return
        self._reconnect_task = loop.create_task(self._reconnect_after_delay())

    async def _reconnect_after_delay(self) -> None:
        await asyncio.sleep(self.reconnect_delay_seconds)
        # A failed attempt schedules the next one from inside connect().
        await self.connect()

    def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        self._reconnect_task = None
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()

    def _spawn(self, coro) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            return
        task = loop.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
