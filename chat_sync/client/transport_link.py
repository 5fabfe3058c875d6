"""
MODULE OVERVIEW:
The TransportLink: one durable logical WebSocket connection to the messaging backend.

WHAT IS HAPPENING HERE:
We use the `websockets` library. A live connection runs two loops over the same
socket: a reader that hands every text frame to `on_frame`, and a heartbeat that
sends an application-level `ping` every 25 seconds.

When the socket drops with anything but a normal closure (1000), or the opening
handshake fails or times out, we schedule a reconnect with exponential backoff.
After the configured number of failed reconnects the link gives up and reports
itself as exhausted; only an explicit `connect()` starts it again.

The link knows nothing about what the frames mean. That is the FrameRouter's job.
"""

import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable

import websockets
from loguru import logger
from websockets.exceptions import ConnectionClosed, WebSocketException

from chat_sync.shared.client_utils import backoff_delay, make_link_stats
from chat_sync.shared.config import Settings, settings as default_settings
from chat_sync.shared.events import Signal
from chat_sync.shared.frames import OutboundFrame, ping_frame

NORMAL_CLOSURE = 1000
ABNORMAL_CLOSURE = 1006

CLOSE_REASONS = {
    1000: "normal closure",
    1001: "going away",
    1002: "protocol error",
    1003: "unsupported data",
    1005: "no status code",
    1006: "abnormal closure",
    1007: "invalid payload",
    1008: "policy violation",
    1009: "message too big",
    1010: "mandatory extension",
    1011: "internal server error",
    1012: "service restart",
    1013: "try again later",
    1015: "TLS handshake failure",
}

Connector = Callable[..., Awaitable[Any]]


class LinkState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(frozen=True)
class ConnectionSnapshot:
    state: LinkState
    attempt: int
    last_error: str | None
    exhausted: bool


@dataclass(frozen=True)
class CloseEvent:
    code: int
    reason: str = ""

    @property
    def description(self) -> str:
        return CLOSE_REASONS.get(self.code, "unknown reason")


class TransportLink:
    def __init__(
        self,
        url: str | None = None,
        settings: Settings | None = None,
        connector: Connector | None = None,
        link_id: str | None = None,
    ):
        self.settings = settings or default_settings
        self.url = url or self.settings.WS_URL
        self.link_id = link_id or f"link-{uuid.uuid4().hex[:4]}"
        self._connector: Connector = connector or websockets.connect

        self.state = LinkState.DISCONNECTED
        self.attempt = 0
        self.last_error: str | None = None
        self.exhausted = False
        self.stats = make_link_stats()

        self.on_open: Signal[ConnectionSnapshot] = Signal("link.open")
        self.on_frame: Signal[str | bytes] = Signal("link.frame")
        self.on_close: Signal[CloseEvent] = Signal("link.close")
        self.on_error: Signal[Exception] = Signal("link.error")
        self.on_state_change: Signal[ConnectionSnapshot] = Signal("link.state")

        self._ws: Any = None
        self._closing = False
        self._open_task: asyncio.Task | None = None
        self._reader_task: asyncio.Task | None = None
        self._heartbeat_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None

    @property
    def is_connected(self) -> bool:
        return self.state is LinkState.CONNECTED

    def snapshot(self) -> ConnectionSnapshot:
        return ConnectionSnapshot(self.state, self.attempt, self.last_error, self.exhausted)

    def _set_state(self, state: LinkState) -> None:
        if state is self.state:
            return
        self.state = state
        self.on_state_change.publish(self.snapshot())

    # ==========================
    # PUBLIC CONTRACT
    # ==========================
    async def connect(self) -> None:
        """Open the link. A no-op while a connection is already opening or open."""
        if self.state is not LinkState.DISCONNECTED:
            logger.debug(f"link_id={self.link_id} event=connect_skipped state={self.state.value}")
            return
        self._closing = False
        self._cancel(self._reconnect_task)
        self.attempt = 0
        self.exhausted = False
        task = self._begin_open()
        await asyncio.wait({task})

    async def disconnect(self) -> None:
        logger.info(f"link_id={self.link_id} event=disconnect reason=requested")
        self._closing = True
        tasks = [self._reconnect_task, self._open_task, self._heartbeat_task, self._reader_task]
        for task in tasks:
            self._cancel(task)
        current = asyncio.current_task()
        pending = [t for t in tasks if t is not None and t is not current]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        ws, self._ws = self._ws, None
        self._set_state(LinkState.DISCONNECTED)
        if ws is not None:
            await self._close_socket(ws, NORMAL_CLOSURE, "User disconnected")
            self.on_close.publish(CloseEvent(NORMAL_CLOSURE, "User disconnected"))

    async def send(self, frame: OutboundFrame) -> bool:
        """Best effort: False (never an exception) when the socket is not open."""
        ws = self._ws
        if ws is None or self.state is not LinkState.CONNECTED:
            logger.warning(f"link_id={self.link_id} event=send_skipped type={frame.type} reason=not_connected")
            return False
        try:
            await ws.send(frame.encode())
        except (ConnectionClosed, OSError) as e:
            logger.warning(f"link_id={self.link_id} event=send_failed type={frame.type} reason='{e}'")
            return False
        self.stats["frames_sent"] += 1
        logger.debug(f"link_id={self.link_id} event=sent type={frame.type}")
        return True

    # ==========================
    # OPENING
    # ==========================
    def _begin_open(self) -> asyncio.Task:
        # State flips synchronously so a racing connect() sees CONNECTING
        self._set_state(LinkState.CONNECTING)
        self._open_task = asyncio.get_running_loop().create_task(
            self._open(), name=f"{self.link_id}-open-{self.attempt}"
        )
        return self._open_task

    async def _open(self) -> None:
        await self._drop_socket()
        logger.info(f"link_id={self.link_id} event=connecting url={self.url} attempt={self.attempt}")
        try:
            ws = await asyncio.wait_for(
                self._connector(self.url, ping_interval=None),
                timeout=self.settings.WS_CONNECT_TIMEOUT_S,
            )
        except asyncio.TimeoutError:
            self._fail(TimeoutError(f"handshake timed out after {self.settings.WS_CONNECT_TIMEOUT_S}s"))
            return
        except (OSError, WebSocketException) as e:
            self._fail(e)
            return

        self._ws = ws
        self.stats["sockets_opened"] += 1
        self.attempt = 0
        self.last_error = None
        self._set_state(LinkState.CONNECTED)
        logger.info(f"link_id={self.link_id} event=connected")

        loop = asyncio.get_running_loop()
        self._heartbeat_task = loop.create_task(self._heartbeat(ws), name=f"{self.link_id}-heartbeat")
        self._reader_task = loop.create_task(self._read_loop(ws), name=f"{self.link_id}-reader")
        self.on_open.publish(self.snapshot())

    async def _drop_socket(self) -> None:
        """Close a leftover handle so two sockets are never open for one link."""
        ws, self._ws = self._ws, None
        if ws is None:
            return
        self._stop_heartbeat()
        self._cancel(self._reader_task)
        await self._close_socket(ws, NORMAL_CLOSURE, "superseded")

    async def _close_socket(self, ws: Any, code: int, reason: str) -> None:
        try:
            await ws.close(code, reason)
        except (ConnectionClosed, OSError) as e:
            logger.debug(f"link_id={self.link_id} event=close_error reason='{e}'")

    # ==========================
    # LIVE CONNECTION LOOPS
    # ==========================
    async def _read_loop(self, ws: Any) -> None:
        try:
            while True:
                raw = await ws.recv()
                self.stats["frames_received"] += 1
                self.stats["last_frame_at"] = datetime.now(timezone.utc).isoformat()
                self.on_frame.publish(raw)
        except ConnectionClosed as e:
            code = e.rcvd.code if e.rcvd is not None else ABNORMAL_CLOSURE
            reason = e.rcvd.reason if e.rcvd is not None else ""
        except OSError as e:
            if ws is self._ws:
                self._fail(e)
            return

        if ws is not self._ws:
            # Superseded by a newer connection; its own reader owns the state now
            return
        self._on_closed(code, reason)

    async def _heartbeat(self, ws: Any) -> None:
        while True:
            await asyncio.sleep(self.settings.WS_HEARTBEAT_INTERVAL_S)
            if ws is not self._ws or not await self.send(ping_frame()):
                return

    def _stop_heartbeat(self) -> None:
        if self._heartbeat_task is not None and self._heartbeat_task is not asyncio.current_task():
            self._heartbeat_task.cancel()
        self._heartbeat_task = None

    # ==========================
    # FAILURE & RECONNECT
    # ==========================
    def _fail(self, error: Exception) -> None:
        self.last_error = f"{type(error).__name__}: {error}"
        logger.warning(f"link_id={self.link_id} event=error attempt={self.attempt} reason='{error}'")
        self.on_error.publish(error)
        self._on_closed(ABNORMAL_CLOSURE, str(error))

    def _on_closed(self, code: int, reason: str) -> None:
        self._stop_heartbeat()
        self._ws = None
        event = CloseEvent(code, reason)
        logger.warning(
            f"link_id={self.link_id} event=closed code={code} meaning='{event.description}' reason='{reason}'"
        )
        self._set_state(LinkState.DISCONNECTED)
        self.on_close.publish(event)
        if self._closing or code == NORMAL_CLOSURE:
            return
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        max_attempts = self.settings.WS_MAX_RECONNECT_ATTEMPTS
        if self.attempt >= max_attempts:
            self.exhausted = True
            logger.error(f"link_id={self.link_id} event=gave_up attempts={self.attempt}")
            self.on_state_change.publish(self.snapshot())
            return
        delay = backoff_delay(
            self.attempt,
            self.settings.WS_RECONNECT_BASE_DELAY_S,
            self.settings.WS_RECONNECT_MIN_DELAY_S,
            self.settings.WS_RECONNECT_MAX_DELAY_S,
        )
        logger.info(
            f"link_id={self.link_id} event=reconnect_scheduled "
            f"attempt={self.attempt + 1}/{max_attempts} delay={delay:.2f}s"
        )
        self._reconnect_task = asyncio.get_running_loop().create_task(
            self._reconnect_after(delay), name=f"{self.link_id}-reconnect"
        )

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        if self._closing or self.state is not LinkState.DISCONNECTED:
            return
        self.attempt += 1
        self.stats["reconnect_count"] += 1
        self._begin_open()

    @staticmethod
    def _cancel(task: asyncio.Task | None) -> None:
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
