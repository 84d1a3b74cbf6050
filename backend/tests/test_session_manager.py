import asyncio
import json
import time

import pytest

from conftest import FakeClock, drain
from live_interview.answer_engine.suggestion_engine import FALLBACK_TEXT, SuggestionEngine
from live_interview.core.errors import (
    AgentConnectionError,
    ConfigError,
    InvalidTransition,
    SessionNotFound,
)
from live_interview.core.state import AgentRole, SessionStatus, Speaker
from live_interview.session.manager import SessionManager
from live_interview.system_metrics import get_metric

ACME = {"companyName": "Acme", "roleTitle": "Engineer"}


class FakeBackend:
    def __init__(self, raw: str = '{"text": "Open with your current role.", "confidence": 0.9, "keyPoints": ["Role", "Impact"]}'):
        self.raw = raw
        self.calls: list[str] = []
        self.gate: asyncio.Event | None = None
        self.error: Exception | None = None

    async def __call__(self, prompt: str) -> str:
        self.calls.append(prompt)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.raw


def _manager(hub, scheduler, backend=None, policy_clock=None, cooldown_sec=5.0):
    return SessionManager(
        suggestion_engine=SuggestionEngine(backend=backend or FakeBackend(), timeout_sec=5.0),
        transport_factory=hub.factory,
        scheduler=scheduler,
        policy_clock=policy_clock or FakeClock(),
        cooldown_sec=cooldown_sec,
    )


def _drain_events(subscription) -> list[dict]:
    events = []
    while not subscription.queue.empty():
        item = subscription.queue.get_nowait()
        if item is not None:
            events.append(item)
    return events


@pytest.mark.asyncio
async def test_start_requires_role_or_job_description(hub, scheduler):
    manager = _manager(hub, scheduler)

    with pytest.raises(ConfigError) as exc_info:
        await manager.start({"companyName": "Acme", "roleTitle": "  "})

    assert exc_info.value.status_code == 400
    assert hub.created == []
    assert len(manager.registry) == 0


@pytest.mark.asyncio
async def test_start_returns_active_session(hub, scheduler):
    manager = _manager(hub, scheduler)
    before = time.time()

    session = await manager.start({"jobDescription": "Build APIs"})

    assert session.status == SessionStatus.ACTIVE
    assert session.id
    assert session.start_time >= before
    assert session.end_time is None
    stored = await manager.get(session.id)
    assert stored.status == SessionStatus.ACTIVE


@pytest.mark.asyncio
async def test_pause_resume_and_invalid_transitions(hub, scheduler):
    manager = _manager(hub, scheduler)
    session = await manager.start(ACME)

    assert (await manager.pause(session.id)).status == SessionStatus.PAUSED
    with pytest.raises(InvalidTransition):
        await manager.pause(session.id)
    assert (await manager.get(session.id)).status == SessionStatus.PAUSED

    assert (await manager.resume(session.id)).status == SessionStatus.ACTIVE
    with pytest.raises(InvalidTransition):
        await manager.resume(session.id)


@pytest.mark.asyncio
async def test_end_is_idempotent(hub, scheduler):
    manager = _manager(hub, scheduler)
    session = await manager.start(ACME)
    await manager.connect_agent(session.id, AgentRole.INTERVIEWER)
    await manager.connect_agent(session.id, AgentRole.ASSISTANT)

    first = await manager.end(session.id)
    second = await manager.end(session.id)

    assert first.status == SessionStatus.COMPLETED
    assert first.end_time is not None
    assert second.end_time == first.end_time
    assert hub[AgentRole.INTERVIEWER].closed is True
    assert hub[AgentRole.ASSISTANT].closed is True
    assert manager.connection_status(session.id) == {}

    with pytest.raises(InvalidTransition):
        await manager.resume(session.id)
    with pytest.raises(InvalidTransition):
        await manager.connect_agent(session.id, AgentRole.ASSISTANT)


@pytest.mark.asyncio
async def test_unknown_session_raises_not_found(hub, scheduler):
    manager = _manager(hub, scheduler)
    with pytest.raises(SessionNotFound):
        await manager.get("missing")
    with pytest.raises(SessionNotFound):
        await manager.end("missing")


@pytest.mark.asyncio
async def test_interviewer_question_scenario(hub, scheduler):
    manager = _manager(hub, scheduler)
    session = await manager.start(ACME)
    subscription = manager.subscribe(session.id)
    await manager.connect_agent(session.id, AgentRole.INTERVIEWER)
    await drain()

    hub[AgentRole.INTERVIEWER].push({"type": "agent_question", "question": "Tell me about yourself?"})
    await drain()

    statuses = [e["status"] for e in _drain_events(subscription) if e["type"] == "status_update"]
    assert statuses == ["thinking", "speaking"]

    scheduler.advance(2.0)
    events = _drain_events(subscription)
    assert {"type": "status_update", "status": "listening", "role": "interviewer"} in events

    entries = manager.recent_transcript(session.id, 10)
    assert entries[0].sequence == 1
    assert entries[0].speaker == Speaker.INTERVIEWER
    assert entries[0].text == "Tell me about yourself?"

    await manager.end(session.id)


@pytest.mark.asyncio
async def test_question_produces_suggestion_with_verbatim_context(hub, scheduler):
    backend = FakeBackend()
    manager = _manager(hub, scheduler, backend=backend)
    session = await manager.start(ACME)
    subscription = manager.subscribe(session.id)
    await manager.connect_agent(session.id, AgentRole.INTERVIEWER)
    await manager.connect_agent(session.id, AgentRole.ASSISTANT)
    await drain()

    hub[AgentRole.INTERVIEWER].push({"type": "agent_question", "question": "Tell me about a challenging project?"})
    await drain(20)

    events = _drain_events(subscription)
    types = [e["type"] for e in events]
    assert "agent_question" in types
    assert "transcription" in types
    suggestion = next(e for e in events if e["type"] == "suggestion")
    assert suggestion["context"] == "Tell me about a challenging project?"
    assert suggestion["suggestion"] == "Open with your current role."
    assert suggestion["keyPoints"] == ["Role", "Impact"]
    assert suggestion["urgency"] == "normal"
    assert suggestion["suggestionType"] == "interview-answer"

    assistant_statuses = [e["status"] for e in events if e["type"] == "status_update" and e["role"] == "assistant"]
    assert assistant_statuses == ["listening", "analyzing", "suggesting"]
    scheduler.advance(1.5)
    assert _drain_events(subscription)[-1] == {"type": "status_update", "status": "listening", "role": "assistant"}

    assert len(manager.recent_suggestions(session.id)) == 1
    await manager.end(session.id)


@pytest.mark.asyncio
async def test_identical_question_within_cooldown_generates_once(hub, scheduler):
    backend = FakeBackend()
    policy_clock = FakeClock()
    manager = _manager(hub, scheduler, backend=backend, policy_clock=policy_clock)
    session = await manager.start(ACME)
    await manager.connect_agent(session.id, AgentRole.ASSISTANT)
    await drain()

    transport = hub[AgentRole.ASSISTANT]
    transport.push({"type": "transcription", "speaker": "interviewer", "text": "How do you handle conflict?"})
    await drain()
    policy_clock.advance(2.0)
    transport.push({"type": "transcription", "speaker": "interviewer", "text": "How do you handle conflict?"})
    await drain(20)

    assert len(backend.calls) == 1
    assert len(manager.recent_transcript(session.id, 10)) == 2
    await manager.end(session.id)


@pytest.mark.asyncio
async def test_backend_failure_delivers_fallback(hub, scheduler):
    backend = FakeBackend()
    backend.error = RuntimeError("model unavailable")
    manager = _manager(hub, scheduler, backend=backend)
    session = await manager.start(ACME)
    subscription = manager.subscribe(session.id)

    outcome = await manager.analyze_question(session.id, "Why do you want this role?")
    await drain(20)

    assert outcome == "trigger"
    suggestion = next(e for e in _drain_events(subscription) if e["type"] == "suggestion")
    assert suggestion["suggestion"] == FALLBACK_TEXT
    assert suggestion["confidence"] == 0.6
    assert suggestion["context"] == "Why do you want this role?"
    await manager.end(session.id)


@pytest.mark.asyncio
async def test_end_before_backend_responds_discards_suggestion(hub, scheduler):
    backend = FakeBackend()
    backend.gate = asyncio.Event()
    manager = _manager(hub, scheduler, backend=backend)
    session = await manager.start(ACME)
    subscription = manager.subscribe(session.id)

    await manager.analyze_question(session.id, "Describe your ideal team please")
    await drain()
    assert len(backend.calls) == 1

    await manager.end(session.id)
    backend.gate.set()
    await drain(20)

    assert all(e["type"] != "suggestion" for e in _drain_events(subscription))
    assert manager.recent_suggestions(session.id) == []


@pytest.mark.asyncio
async def test_late_result_after_pause_is_discarded(hub, scheduler):
    backend = FakeBackend()
    backend.gate = asyncio.Event()
    manager = _manager(hub, scheduler, backend=backend)
    session = await manager.start(ACME)
    subscription = manager.subscribe(session.id)

    discarded_before = get_metric("suggestions_discarded")
    await manager.analyze_question(session.id, "What is your biggest achievement?")
    await drain()
    await manager.pause(session.id)
    backend.gate.set()
    await drain(20)

    assert all(e["type"] != "suggestion" for e in _drain_events(subscription))
    assert get_metric("suggestions_discarded") == discarded_before + 1
    await manager.end(session.id)


@pytest.mark.asyncio
async def test_paused_session_records_but_does_not_trigger(hub, scheduler):
    backend = FakeBackend()
    manager = _manager(hub, scheduler, backend=backend)
    session = await manager.start(ACME)
    await manager.connect_agent(session.id, AgentRole.ASSISTANT)
    await drain()
    await manager.pause(session.id)

    hub[AgentRole.ASSISTANT].push({"type": "transcription", "speaker": "interviewer", "text": "What are your strengths?"})
    await drain(20)

    assert len(manager.recent_transcript(session.id, 5)) == 1
    assert backend.calls == []
    assert await manager.analyze_question(session.id, "What are your strengths?") == "inactive"
    await manager.end(session.id)


@pytest.mark.asyncio
async def test_assistant_interviewer_lines_skipped_when_interviewer_agent_connected(hub, scheduler):
    manager = _manager(hub, scheduler)
    session = await manager.start(ACME)
    await manager.connect_agent(session.id, AgentRole.INTERVIEWER)
    await manager.connect_agent(session.id, AgentRole.ASSISTANT)
    await drain()

    hub[AgentRole.INTERVIEWER].push({"type": "agent_question", "question": "What is your favorite language?"})
    hub[AgentRole.ASSISTANT].push({"type": "transcription", "speaker": "interviewer", "text": "What is your favorite language?"})
    hub[AgentRole.INTERVIEWER].push({"type": "transcription", "speaker": "candidate", "text": "Probably Python."})
    await drain(20)

    entries = manager.recent_transcript(session.id, 10)
    assert [(e.speaker, e.text) for e in entries] == [
        (Speaker.INTERVIEWER, "What is your favorite language?"),
        (Speaker.CANDIDATE, "Probably Python."),
    ]
    await manager.end(session.id)


@pytest.mark.asyncio
async def test_both_connections_share_one_ordered_transcript(hub, scheduler):
    manager = _manager(hub, scheduler)
    session = await manager.start({"roleTitle": "Engineer"})
    await manager.connect_agent(session.id, AgentRole.INTERVIEWER)
    await manager.connect_agent(session.id, AgentRole.ASSISTANT)
    await drain()

    for i in range(10):
        hub[AgentRole.ASSISTANT].push({"type": "transcription", "speaker": "candidate", "text": f"candidate line {i}"})
        hub[AgentRole.INTERVIEWER].push({"type": "agent_response", "response": f"interviewer line {i}"})
    await drain(60)

    entries = manager.recent_transcript(session.id, 100)
    assert [e.sequence for e in entries] == list(range(1, 21))
    assert {e.speaker for e in entries} == {Speaker.INTERVIEWER, Speaker.CANDIDATE}
    assert all(a.timestamp <= b.timestamp for a, b in zip(entries, entries[1:]))
    await manager.end(session.id)


@pytest.mark.asyncio
async def test_connect_failure_leaves_session_usable(hub, scheduler):
    hub.fail_roles.add(AgentRole.INTERVIEWER)
    manager = _manager(hub, scheduler)
    session = await manager.start(ACME)

    with pytest.raises(AgentConnectionError):
        await manager.connect_agent(session.id, AgentRole.INTERVIEWER)

    assert manager.connection_status(session.id) == {}
    assert (await manager.get(session.id)).status == SessionStatus.ACTIVE
    await manager.end(session.id)


@pytest.mark.asyncio
async def test_send_audio_routes_to_role_connection(hub, scheduler):
    manager = _manager(hub, scheduler)
    session = await manager.start(ACME)

    assert await manager.send_audio(session.id, AgentRole.ASSISTANT, b"\x01\x02") is False

    await manager.connect_agent(session.id, AgentRole.ASSISTANT)
    await drain()
    assert await manager.send_audio(session.id, AgentRole.ASSISTANT, b"\x01\x02") is True
    assert hub[AgentRole.ASSISTANT].sent_audio == [b"\x01\x02"]
    await manager.end(session.id)


@pytest.mark.asyncio
async def test_transport_drop_reports_error_to_subscribers(hub, scheduler):
    from live_interview.core.errors import TransportError

    manager = _manager(hub, scheduler)
    session = await manager.start(ACME)
    subscription = manager.subscribe(session.id)
    await manager.connect_agent(session.id, AgentRole.ASSISTANT)
    await drain()

    hub[AgentRole.ASSISTANT].fail(TransportError("stream reset"))
    await drain(20)

    events = _drain_events(subscription)
    assert events[-1]["type"] == "error"
    assert {"type": "status_update", "status": "idle", "role": "assistant"} in events
    assert manager.connection_status(session.id)["assistant"]["state"] == "disconnected"
    await manager.end(session.id)


@pytest.mark.asyncio
async def test_recent_suggestions_keeps_last_five(hub, scheduler):
    manager = _manager(hub, scheduler, cooldown_sec=0.0)
    session = await manager.start(ACME)

    for i in range(7):
        await manager.analyze_question(session.id, f"Question number {i}?")
        await drain(10)

    recent = manager.recent_suggestions(session.id)
    assert [s.context for s in recent] == [f"Question number {i}?" for i in range(2, 7)]
    await manager.end(session.id)


@pytest.mark.asyncio
async def test_analyze_question_records_line_and_shares_dedup_with_detection(hub, scheduler):
    backend = FakeBackend()
    manager = _manager(hub, scheduler, backend=backend, cooldown_sec=0.0)
    session = await manager.start(ACME)
    await manager.connect_agent(session.id, AgentRole.ASSISTANT)
    await drain()

    assert await manager.analyze_question(session.id, "  How would you scale a queue?  ") == "trigger"
    hub[AgentRole.ASSISTANT].push({"type": "transcription", "speaker": "interviewer", "text": "How would you scale a queue?"})
    await drain(10)
    assert await manager.analyze_question(session.id, "   ") == "empty"

    transcript = manager.recent_transcript(session.id, 5)
    assert [(e.speaker, e.text) for e in transcript] == [(Speaker.INTERVIEWER, "How would you scale a queue?")] * 2
    assert len(backend.calls) == 1
    assert "Acme" in backend.calls[0]
    suggestion = manager.recent_suggestions(session.id)[0]
    assert suggestion.context == transcript[0].text
    await manager.end(session.id)


@pytest.mark.asyncio
async def test_analyze_question_triggers_without_question_wording(hub, scheduler):
    backend = FakeBackend()
    manager = _manager(hub, scheduler, backend=backend)
    session = await manager.start(ACME)

    assert await manager.analyze_question(session.id, "Walk me through the outage", "postmortem") == "trigger"
    await drain(10)

    assert [e.text for e in manager.recent_transcript(session.id, 5)] == ["Walk me through the outage"]
    assert len(backend.calls) == 1
    await manager.end(session.id)
    assert await manager.analyze_question(session.id, "Walk me through the outage") == "inactive"


@pytest.mark.asyncio
async def test_overlapping_connects_share_one_connection(hub, scheduler):
    hub.open_delay = 0.01
    manager = _manager(hub, scheduler)
    session = await manager.start(ACME)

    first, second = await asyncio.gather(
        manager.connect_agent(session.id, AgentRole.INTERVIEWER),
        manager.connect_agent(session.id, AgentRole.INTERVIEWER),
    )

    assert first == second
    assert len(hub.created) == 1
    await manager.end(session.id)
    assert [t.closed for t in hub.created] == [True]


@pytest.mark.asyncio
async def test_reconnect_after_transport_drop_replaces_connection(hub, scheduler):
    from live_interview.core.errors import TransportError

    manager = _manager(hub, scheduler)
    session = await manager.start(ACME)
    await manager.connect_agent(session.id, AgentRole.ASSISTANT)
    dropped = hub[AgentRole.ASSISTANT]
    dropped.fail(TransportError("socket closed"))
    await drain(10)

    await manager.connect_agent(session.id, AgentRole.ASSISTANT)
    assert len(hub.created) == 2
    assert dropped.closed
    await manager.end(session.id)
    assert all(t.closed for t in hub.created)


@pytest.mark.asyncio
async def test_sessions_without_clients_are_reclaimed_after_ttl(hub, scheduler):
    hub.fail_roles.add(AgentRole.INTERVIEWER)
    manager = _manager(hub, scheduler)

    orphan = await manager.start(ACME)
    with pytest.raises(AgentConnectionError):
        await manager.connect_agent(orphan.id, AgentRole.INTERVIEWER)

    attached = await manager.start(ACME)
    await manager.connect_agent(attached.id, AgentRole.ASSISTANT)
    subscription = manager.subscribe(attached.id)
    await drain()

    for session_id in (orphan.id, attached.id):
        manager.registry._sessions[session_id]["updated_at"] = time.time() - 7200  # test-only direct mutation
    assert await manager.cleanup_inactive(ttl_sec=3600) == [orphan.id]
    with pytest.raises(SessionNotFound):
        await manager.get(orphan.id)

    await manager.disconnect_agent(attached.id, AgentRole.ASSISTANT)
    assert manager.registry.get(attached.id)["active"] is True
    manager.unsubscribe(attached.id, subscription)
    assert manager.registry.get(attached.id)["active"] is False

    manager.registry._sessions[attached.id]["updated_at"] = time.time() - 7200  # test-only direct mutation
    assert await manager.cleanup_inactive(ttl_sec=3600) == [attached.id]
    assert hub[AgentRole.ASSISTANT].closed
    assert len(manager.registry) == 0


@pytest.mark.asyncio
async def test_cleanup_removes_completed_sessions(hub, scheduler):
    manager = _manager(hub, scheduler)
    session = await manager.start(ACME)
    await manager.end(session.id)

    assert await manager.cleanup_inactive(ttl_sec=3600) == []

    manager.registry._sessions[session.id]["updated_at"] = time.time() - 7200  # test-only direct mutation
    assert await manager.cleanup_inactive(ttl_sec=3600) == [session.id]
    with pytest.raises(SessionNotFound):
        await manager.get(session.id)


@pytest.mark.asyncio
async def test_session_snapshot_is_json_friendly(hub, scheduler):
    manager = _manager(hub, scheduler)
    session = await manager.start(ACME)
    payload = json.dumps(session.to_dict())
    assert '"status": "active"' in payload
    await manager.end(session.id)
