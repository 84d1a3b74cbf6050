from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Callable

from live_interview.agents.audio import AudioPipeline
from live_interview.agents.instructions import VOICE_BY_ROLE, build_instructions
from live_interview.agents.transport import RealtimeTransport, openai_transport_factory
from live_interview.core.errors import AgentConnectionError, TransportError
from live_interview.core.logger import log_event
from live_interview.core.state import AgentRole, AgentStatus, ConnectionState
from live_interview.session.models import SessionContext
from live_interview.system_metrics import decrement_metric, increment_metric
from live_interview.turn.status_machine import StatusStateMachine, build_status_machine
from live_interview.turn.timer import TimerScheduler

logger = logging.getLogger("live_interview.agents.connector")

EventHandler = Callable[[dict], object]
TransportFactory = Callable[[AgentRole], RealtimeTransport]


@dataclass(frozen=True)
class ConnectionHandle:
    session_id: str
    role: AgentRole
    backend_session_id: str
    connected_at: float


class AgentConnector:
    """One realtime backend connection for one role in one session.

    Owns the transport, the role's turn-taking status and the audio
    capture. Events from the backend are applied to the status machine and
    then handed to subscribers; status changes are published as
    `status_update` events.
    """

    def __init__(
        self,
        role: AgentRole,
        session_id: str = "",
        transport_factory: TransportFactory | None = None,
        scheduler: TimerScheduler | None = None,
        audio: AudioPipeline | None = None,
    ):
        self.role = AgentRole(role)
        self.session_id = session_id
        self.state = ConnectionState.DISCONNECTED
        self.handle: ConnectionHandle | None = None
        self.last_activity_at: float | None = None
        self.machine: StatusStateMachine = build_status_machine(
            self.role, scheduler=scheduler, on_change=self._on_status_change
        )
        self.audio = audio or AudioPipeline(self.role.value)
        self._transport_factory = transport_factory or openai_transport_factory
        self._transport: RealtimeTransport | None = None
        self._receive_task: asyncio.Task | None = None
        self._handlers: list[EventHandler] = []
        self._pending: set[asyncio.Task] = set()

    @property
    def status(self) -> AgentStatus:
        return self.machine.status

    @property
    def connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    def on_event(self, handler: EventHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def _unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return _unsubscribe

    def _emit(self, event: dict) -> None:
        for handler in list(self._handlers):
            try:
                result = handler(event)
            except Exception as exc:
                logger.warning("Agent event handler failed | role=%s type=%s err=%s", self.role.value, event.get("type"), exc)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._pending.add(task)
                task.add_done_callback(self._pending.discard)

    def _on_status_change(self, previous: AgentStatus, current: AgentStatus) -> None:
        log_event(
            "agent_connector",
            "status_change",
            self.session_id,
            role=self.role.value,
            previous=previous.value,
            current=current.value,
        )
        self._emit({"type": "status_update", "status": current.value, "role": self.role.value})

    async def connect(self, context: SessionContext) -> ConnectionHandle:
        if self.state == ConnectionState.CONNECTED and self.handle is not None:
            return self.handle
        if self.state == ConnectionState.CONNECTING:
            raise AgentConnectionError(f"{self.role.value} connection already in progress", role=self.role.value)

        self.state = ConnectionState.CONNECTING
        transport = self._transport_factory(self.role)
        try:
            backend_session_id = await transport.open(
                instructions=build_instructions(self.role, context),
                voice=VOICE_BY_ROLE[self.role],
            )
        except Exception as exc:
            self.state = ConnectionState.DISCONNECTED
            increment_metric("agent_connect_failures")
            log_event("agent_connector", "connect_failed", self.session_id, role=self.role.value, err=str(exc))
            try:
                await transport.close()
            except Exception as close_exc:
                logger.warning("Transport cleanup failed | role=%s err=%s", self.role.value, close_exc)
            if isinstance(exc, AgentConnectionError):
                raise
            raise AgentConnectionError(f"{self.role.value} handshake failed: {exc}", role=self.role.value) from exc

        self._transport = transport
        self.state = ConnectionState.CONNECTED
        self.last_activity_at = time.time()
        self.handle = ConnectionHandle(
            session_id=self.session_id,
            role=self.role,
            backend_session_id=str(backend_session_id or ""),
            connected_at=self.last_activity_at,
        )
        increment_metric("agent_connections_active")
        log_event("agent_connector", "connected", self.session_id, role=self.role.value)

        self.machine.on_connected()
        self._receive_task = asyncio.create_task(self._receive_loop(transport))
        return self.handle

    async def _receive_loop(self, transport: RealtimeTransport) -> None:
        try:
            async with self.audio.capture():
                async for event in transport.events():
                    self.last_activity_at = time.time()
                    self._handle_backend_event(event)
        except asyncio.CancelledError:
            raise
        except TransportError as exc:
            await self._fail(str(exc))
            return
        except Exception as exc:
            logger.exception("Agent receive loop crashed | role=%s", self.role.value)
            await self._fail(f"realtime stream failed: {exc}")
            return

        if self.state == ConnectionState.CONNECTED:
            await self._fail("realtime stream ended")

    def _handle_backend_event(self, event: dict) -> None:
        event_type = str((event or {}).get("type") or "")
        if event_type == "status_update":
            self.machine.force(event.get("status"))
            return
        if event_type in {"transcription", "agent_question", "agent_response"}:
            self.machine.apply_event(event_type, event)
            self._emit(event)
            return
        if event_type == "error":
            self._emit({"type": "error", "message": str(event.get("message") or "realtime backend error"), "role": self.role.value})
            return
        logger.debug("Ignored realtime event | role=%s type=%s", self.role.value, event_type)

    async def _fail(self, message: str) -> None:
        """Mid-session transport failure. No reconnection is attempted."""
        increment_metric("transport_errors")
        log_event("agent_connector", "transport_error", self.session_id, role=self.role.value, err=message)
        self._receive_task = None
        await self._release(reset_status=True)
        self._emit({"type": "error", "message": message, "role": self.role.value})

    async def _release(self, reset_status: bool) -> None:
        was_connected = self.state == ConnectionState.CONNECTED
        self.state = ConnectionState.DISCONNECTED
        transport = self._transport
        self._transport = None
        if transport is not None:
            try:
                await transport.close()
            except Exception as exc:
                logger.warning("Transport close failed | role=%s err=%s", self.role.value, exc)
        if reset_status:
            self.machine.reset()
        else:
            self.machine.cancel_timers()
        if was_connected:
            decrement_metric("agent_connections_active")

    async def send_audio(self, chunk: bytes) -> bool:
        """Forward one audio frame; returns False when the frame was dropped."""
        if (
            self.state != ConnectionState.CONNECTED
            or self._transport is None
            or self.machine.status != AgentStatus.LISTENING
        ):
            self.audio.drop()
            increment_metric("audio_frames_dropped")
            return False
        if not self.audio.accept(chunk):
            increment_metric("audio_frames_dropped")
            return False
        try:
            await self._transport.send_audio(chunk)
        except TransportError as exc:
            logger.warning("Audio send failed | role=%s err=%s", self.role.value, exc)
            increment_metric("audio_frames_dropped")
            return False
        self.last_activity_at = time.time()
        increment_metric("audio_frames_forwarded")
        return True

    async def disconnect(self) -> None:
        """Safe to call multiple times."""
        task = self._receive_task
        self._receive_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        if self.state == ConnectionState.DISCONNECTED and self._transport is None:
            self.machine.reset()
            return

        await self._release(reset_status=True)
        log_event("agent_connector", "disconnected", self.session_id, role=self.role.value)
