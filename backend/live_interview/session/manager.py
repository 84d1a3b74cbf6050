from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable

from live_interview.agents.connector import AgentConnector, ConnectionHandle, TransportFactory
from live_interview.answer_engine.question_detector import classify
from live_interview.answer_engine.suggestion_engine import Suggestion, SuggestionContext, SuggestionEngine
from live_interview.answer_engine.trigger_policy import SuggestionTriggerPolicy
from live_interview.api.events import EventChannel, EventSubscription
from live_interview.api.messages import (
    AgentQuestionMessage,
    AgentResponseMessage,
    ErrorMessage,
    StatusUpdateMessage,
    SuggestionMessage,
    TranscriptionMessage,
    to_payload,
)
from live_interview.core.config import SUGGESTION_COOLDOWN_SEC
from live_interview.core.errors import ConfigError, InvalidTransition, SessionNotFound
from live_interview.core.logger import log_event
from live_interview.core.state import AgentRole, SessionStatus, Speaker
from live_interview.session.models import Session, SessionContext
from live_interview.session.registry import SessionRegistry
from live_interview.session.store import LocalSessionStore, SessionStore
from live_interview.session_controller import SessionController
from live_interview.system_metrics import decrement_metric, increment_metric, observe_generation_latency_ms
from live_interview.transcript.models import TranscriptEntry
from live_interview.transcript.store import TranscriptStore
from live_interview.turn.timer import TimerScheduler

logger = logging.getLogger("live_interview.session.manager")

HISTORY_WINDOW = 5
RECENT_SUGGESTIONS = 5


@dataclass
class QuestionRequest:
    text: str
    extra_context: str = ""
    outcome: str = "inactive"


@dataclass
class SessionRuntime:
    session: Session
    transcript: TranscriptStore
    policy: SuggestionTriggerPolicy
    channel: EventChannel
    controller: SessionController
    connectors: dict[AgentRole, AgentConnector] = field(default_factory=dict)
    recent_suggestions: deque = field(default_factory=lambda: deque(maxlen=RECENT_SUGGESTIONS))
    epoch: int = 0
    connect_locks: dict[AgentRole, asyncio.Lock] = field(default_factory=dict)
    pending_request: QuestionRequest | None = None

    @property
    def session_id(self) -> str:
        return self.session.id

    def connected(self, role: AgentRole) -> bool:
        connector = self.connectors.get(role)
        return connector is not None and connector.connected


class SessionManager:
    """Session lifecycle, event routing and suggestion triggering.

    All collaborators are injected. Session records live in the
    SessionStore; the live parts of a session (transcript, connectors,
    background tasks) live in a SessionRuntime tracked by the registry.
    """

    def __init__(
        self,
        store: SessionStore | None = None,
        suggestion_engine: SuggestionEngine | None = None,
        transport_factory: TransportFactory | None = None,
        scheduler: TimerScheduler | None = None,
        registry: SessionRegistry | None = None,
        clock: Callable[[], float] = time.time,
        policy_clock: Callable[[], float] = time.monotonic,
        cooldown_sec: float = SUGGESTION_COOLDOWN_SEC,
    ):
        self.store = store or LocalSessionStore()
        self.suggestion_engine = suggestion_engine or SuggestionEngine()
        self.transport_factory = transport_factory
        self.scheduler = scheduler
        self.registry = registry or SessionRegistry()
        self._clock = clock
        self._policy_clock = policy_clock
        self.cooldown_sec = cooldown_sec

    # ---------------- lifecycle ----------------

    async def start(self, config: SessionContext | dict | None = None, session_id: str | None = None) -> Session:
        context = config if isinstance(config, SessionContext) else SessionContext.from_dict(config)
        if not context.role_title and not context.job_description:
            raise ConfigError(
                "Either roleTitle or jobDescription is required to start an interview",
                fields=["roleTitle", "jobDescription"],
            )
        if session_id and self.registry.get(session_id) is not None:
            raise ConfigError(f"Session already exists: {session_id}", fields=["sessionId"])

        session = Session(context=context)
        if session_id:
            session.id = session_id
        session.transition(SessionStatus.ACTIVE, now=self._clock())
        await self.store.save(session)

        runtime = SessionRuntime(
            session=session,
            transcript=TranscriptStore(clock=self._clock),
            policy=SuggestionTriggerPolicy(cooldown_sec=self.cooldown_sec, clock=self._policy_clock),
            channel=EventChannel(session.id),
            controller=SessionController(session.id),
        )
        runtime.transcript.subscribe(lambda entry: self._on_transcript_entry(runtime, entry))
        self.registry.register(session.id, runtime)
        self._refresh_activity(runtime)

        increment_metric("sessions_started")
        increment_metric("sessions_active")
        log_event(
            "session_manager",
            "session_started",
            session.id,
            role_title=context.role_title,
            company_name=context.company_name,
            interview_type=context.interview_type,
        )
        return session.copy()

    async def pause(self, session_id: str) -> Session:
        return await self._transition(session_id, SessionStatus.PAUSED)

    async def resume(self, session_id: str) -> Session:
        return await self._transition(session_id, SessionStatus.ACTIVE)

    async def _transition(self, session_id: str, target: SessionStatus) -> Session:
        runtime = self._runtime(session_id)
        runtime.session.transition(target, now=self._clock())
        await self.store.save(runtime.session)
        self.registry.touch(session_id)
        log_event("session_manager", f"session_{target.value}", session_id)
        return runtime.session.copy()

    async def end(self, session_id: str) -> Session:
        """Complete the session. Repeated calls return the same record."""
        runtime = self._runtime(session_id)
        session = runtime.session
        if session.status == SessionStatus.COMPLETED:
            return session.copy()

        session.transition(SessionStatus.COMPLETED, now=self._clock())
        runtime.epoch += 1
        await self.store.save(session)

        await runtime.controller.stop()
        for role, connector in list(runtime.connectors.items()):
            await connector.disconnect()
            runtime.connectors.pop(role, None)

        self.registry.mark_inactive(session_id)
        decrement_metric("sessions_active")
        increment_metric("sessions_completed")
        log_event(
            "session_manager",
            "session_completed",
            session_id,
            duration_sec=round(float(session.end_time or 0.0) - float(session.start_time or 0.0), 3),
            transcript_entries=len(runtime.transcript),
        )
        return session.copy()

    async def get(self, session_id: str) -> Session:
        session = await self.store.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def exists(self, session_id: str) -> bool:
        return bool(session_id) and self.registry.get(session_id) is not None

    def _runtime(self, session_id: str) -> SessionRuntime:
        runtime = self.registry.runtime(session_id) if session_id else None
        if runtime is None:
            raise SessionNotFound(session_id)
        return runtime

    # ---------------- connections ----------------

    async def connect_agent(
        self,
        session_id: str,
        role: AgentRole,
        context: SessionContext | None = None,
    ) -> ConnectionHandle:
        runtime = self._runtime(session_id)
        role = AgentRole(role)
        # One handshake per role at a time; later callers reuse its connection.
        lock = runtime.connect_locks.setdefault(role, asyncio.Lock())
        async with lock:
            if runtime.session.status == SessionStatus.COMPLETED:
                raise InvalidTransition(runtime.session.status.value, f"{role.value}_connected")

            existing = runtime.connectors.get(role)
            if existing is not None and existing.connected and existing.handle is not None:
                return existing.handle
            if existing is not None:
                await existing.disconnect()

            connector = AgentConnector(
                role,
                session_id=session_id,
                transport_factory=self.transport_factory,
                scheduler=self.scheduler,
            )
            connector.on_event(lambda event: self._on_agent_event(runtime, role, event))
            runtime.connectors[role] = connector

            epoch = runtime.epoch
            try:
                handle = await connector.connect(context or runtime.session.context)
            except Exception:
                if runtime.connectors.get(role) is connector:
                    runtime.connectors.pop(role, None)
                self._refresh_activity(runtime)
                raise

            if runtime.epoch != epoch or runtime.session.status == SessionStatus.COMPLETED:
                await connector.disconnect()
                if runtime.connectors.get(role) is connector:
                    runtime.connectors.pop(role, None)
                raise InvalidTransition(SessionStatus.COMPLETED.value, f"{role.value}_connected")

            self._refresh_activity(runtime)
            return handle

    async def disconnect_agent(self, session_id: str, role: AgentRole) -> None:
        runtime = self._runtime(session_id)
        connector = runtime.connectors.pop(AgentRole(role), None)
        if connector is not None:
            await connector.disconnect()
        self._refresh_activity(runtime)

    def _refresh_activity(self, runtime: SessionRuntime) -> None:
        """A session is active while a connected agent or a subscriber is attached."""
        attached = runtime.session.status != SessionStatus.COMPLETED and (
            any(connector.connected for connector in runtime.connectors.values())
            or runtime.channel.subscriber_count > 0
        )
        if attached:
            self.registry.mark_active(runtime.session_id)
        else:
            self.registry.mark_inactive(runtime.session_id)

    async def send_audio(self, session_id: str, role: AgentRole, chunk: bytes) -> bool:
        runtime = self._runtime(session_id)
        connector = runtime.connectors.get(AgentRole(role))
        if connector is None:
            increment_metric("audio_frames_dropped")
            return False
        return await connector.send_audio(chunk)

    def connection_status(self, session_id: str) -> dict:
        runtime = self._runtime(session_id)
        return {
            role.value: {
                "state": connector.state.value,
                "status": connector.status.value,
                "lastActivityAt": connector.last_activity_at,
            }
            for role, connector in runtime.connectors.items()
        }

    # ---------------- event routing ----------------

    def _on_agent_event(self, runtime: SessionRuntime, role: AgentRole, event: dict) -> None:
        event_type = str(event.get("type") or "")
        self.registry.touch(runtime.session_id)

        if event_type == "status_update":
            runtime.channel.publish(to_payload(StatusUpdateMessage(status=event["status"], role=role)))
            return

        if event_type == "error":
            runtime.channel.publish(to_payload(ErrorMessage(message=str(event.get("message") or "agent error"))))
            self._refresh_activity(runtime)
            return

        if event_type == "agent_question":
            question = str(event.get("question") or "")
            runtime.channel.publish(to_payload(AgentQuestionMessage(question=question)))
            self._append(runtime, Speaker.INTERVIEWER, question)
            return

        if event_type == "agent_response":
            response = str(event.get("response") or "")
            runtime.channel.publish(to_payload(AgentResponseMessage(response=response)))
            self._append(runtime, Speaker.INTERVIEWER, response)
            return

        if event_type == "transcription":
            speaker = Speaker(str(event.get("speaker") or Speaker.CANDIDATE.value))
            if (
                speaker == Speaker.INTERVIEWER
                and role == AgentRole.ASSISTANT
                and runtime.connected(AgentRole.INTERVIEWER)
            ):
                # The interviewer agent's own output is already the transcript line.
                return
            self._append(runtime, speaker, str(event.get("text") or ""))
            return

        logger.debug("Ignored agent event | session_id=%s role=%s type=%s", runtime.session_id, role.value, event_type)

    def _append(self, runtime: SessionRuntime, speaker: Speaker, text: str) -> TranscriptEntry | None:
        if runtime.session.status == SessionStatus.COMPLETED:
            return None
        try:
            return runtime.transcript.append(speaker, text)
        except ValueError:
            logger.info("Skipped blank utterance | session_id=%s speaker=%s", runtime.session_id, speaker.value)
            return None

    def _on_transcript_entry(self, runtime: SessionRuntime, entry: TranscriptEntry) -> None:
        increment_metric("transcript_entries")
        runtime.channel.publish(to_payload(TranscriptionMessage.from_entry(entry)))
        if entry.speaker != Speaker.INTERVIEWER:
            return
        request = runtime.pending_request
        if request is not None and request.text == entry.text:
            runtime.pending_request = None
            request.outcome = self._maybe_trigger(runtime, entry.text, request.extra_context)
        elif classify(entry.text):
            self._maybe_trigger(runtime, entry.text)

    # ---------------- suggestions ----------------

    async def analyze_question(self, session_id: str, question: str, extra_context: str = "") -> str:
        """Explicitly request a suggestion for an interviewer question.

        The question is recorded as an interviewer line and goes through
        the same dedup and cooldown gate as detected questions, skipping
        the question classifier. Returns "trigger", "duplicate",
        "cooldown", "inactive" or "empty".
        """
        runtime = self._runtime(session_id)
        text = str(question or "").strip()
        if not text:
            return "empty"

        request = QuestionRequest(text=text, extra_context=extra_context)
        runtime.pending_request = request
        try:
            entry = self._append(runtime, Speaker.INTERVIEWER, text)
        finally:
            runtime.pending_request = None
        if entry is None:
            return "inactive"
        return request.outcome

    def _maybe_trigger(self, runtime: SessionRuntime, question: str, extra_context: str = "") -> str:
        if runtime.session.status != SessionStatus.ACTIVE:
            return "inactive"

        outcome = runtime.policy.check(question)
        if outcome == "duplicate":
            increment_metric("suggestions_deduplicated")
            return outcome
        if outcome == "cooldown":
            increment_metric("suggestions_cooldown_skipped")
            return outcome

        assistant = runtime.connectors.get(AgentRole.ASSISTANT)
        if assistant is not None:
            assistant.machine.apply_event("question_detected")

        context = SuggestionContext(
            session=runtime.session.context,
            history=runtime.transcript.recent(HISTORY_WINDOW),
            extra=extra_context,
        )
        runtime.controller.create_task(self._generate_and_deliver(runtime, question, context, runtime.epoch))
        increment_metric("suggestions_triggered")
        log_event("session_manager", "suggestion_triggered", runtime.session_id, question=question)
        return outcome

    async def _generate_and_deliver(
        self,
        runtime: SessionRuntime,
        question: str,
        context: SuggestionContext,
        epoch: int,
    ) -> Suggestion | None:
        started = time.perf_counter()
        suggestion = await self.suggestion_engine.generate(question, context)
        observe_generation_latency_ms((time.perf_counter() - started) * 1000.0)

        if runtime.epoch != epoch or runtime.session.status != SessionStatus.ACTIVE:
            increment_metric("suggestions_discarded")
            log_event(
                "session_manager",
                "suggestion_discarded",
                runtime.session_id,
                status=runtime.session.status.value,
            )
            return None

        if suggestion.fallback:
            increment_metric("suggestions_fallback")
        runtime.recent_suggestions.append(suggestion)
        runtime.channel.publish(to_payload(SuggestionMessage.from_suggestion(suggestion)))
        increment_metric("suggestions_delivered")

        assistant = runtime.connectors.get(AgentRole.ASSISTANT)
        if assistant is not None:
            assistant.machine.apply_event("suggestion")
        return suggestion

    # ---------------- reads ----------------

    def subscribe(self, session_id: str) -> EventSubscription:
        runtime = self._runtime(session_id)
        subscription = runtime.channel.subscribe()
        self._refresh_activity(runtime)
        return subscription

    def unsubscribe(self, session_id: str, subscription: EventSubscription) -> None:
        subscription.close()
        runtime = self.registry.runtime(session_id)
        if runtime is not None:
            self._refresh_activity(runtime)

    def recent_transcript(self, session_id: str, n: int = HISTORY_WINDOW) -> list[TranscriptEntry]:
        return self._runtime(session_id).transcript.recent(n)

    def recent_suggestions(self, session_id: str) -> list[Suggestion]:
        return list(self._runtime(session_id).recent_suggestions)

    # ---------------- housekeeping ----------------

    async def discard(self, session_id: str) -> None:
        """End the session if it is still running and forget it."""
        runtime = self.registry.runtime(session_id)
        if runtime is None:
            return
        if runtime.session.status in (SessionStatus.ACTIVE, SessionStatus.PAUSED):
            await self.end(session_id)
        runtime.channel.close()
        self.registry.remove(session_id)
        await self.store.remove(session_id)
        log_event("session_manager", "session_discarded", session_id)

    async def cleanup_inactive(self, ttl_sec: float) -> list[str]:
        expired = self.registry.expired_ids(ttl_sec)
        for session_id in expired:
            await self.discard(session_id)
        if expired:
            logger.info("Cleaned inactive sessions | count=%s", len(expired))
        return expired

    async def shutdown(self) -> None:
        for session_id in self.registry.session_ids():
            try:
                await self.end(session_id)
            except InvalidTransition as exc:
                logger.warning("Session shutdown skipped | session_id=%s err=%s", session_id, exc)
            runtime = self.registry.runtime(session_id)
            if runtime is not None:
                runtime.channel.close()
