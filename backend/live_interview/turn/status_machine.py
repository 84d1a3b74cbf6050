from __future__ import annotations

import logging
from typing import Callable

from live_interview.core.state import AgentRole, AgentStatus
from live_interview.turn.timer import CancellableTimer, LoopTimerScheduler, TimerScheduler

logger = logging.getLogger("live_interview.turn.status")

INTERVIEWER_SPEAKING_SEC = 2.0
ASSISTANT_SUGGESTING_SEC = 1.5

StatusListener = Callable[[AgentStatus, AgentStatus], None]

S = AgentStatus


class StatusStateMachine:
    """Turn-taking status for one agent connection.

    Subclasses declare the legal transitions. Illegal transitions are logged
    and ignored. Timed transitions are owned here and cancelled by reset().
    """

    role: AgentRole
    allowed: dict[AgentStatus, set[AgentStatus]] = {}

    def __init__(
        self,
        scheduler: TimerScheduler | None = None,
        on_change: StatusListener | None = None,
    ):
        self.status = AgentStatus.IDLE
        self._timer = CancellableTimer(scheduler or LoopTimerScheduler())
        self._listeners: list[StatusListener] = []
        if on_change is not None:
            self._listeners.append(on_change)

    @property
    def statuses(self) -> set[AgentStatus]:
        known = set(self.allowed.keys())
        for targets in self.allowed.values():
            known.update(targets)
        return known

    @property
    def timer_pending(self) -> bool:
        return self._timer.pending

    def add_listener(self, listener: StatusListener) -> None:
        self._listeners.append(listener)

    def can_transition(self, target: AgentStatus) -> bool:
        return target in self.allowed.get(self.status, set())

    def transition(self, target: AgentStatus) -> bool:
        target = AgentStatus(target)
        if not self.can_transition(target):
            logger.info(
                "Ignored status transition | role=%s from=%s to=%s",
                self.role.value,
                self.status.value,
                target.value,
            )
            return False
        self._timer.cancel()
        self._set(target)
        return True

    def force(self, target: AgentStatus | str) -> bool:
        """Apply a backend-reported status; any status known to the role is accepted."""
        try:
            target = AgentStatus(target)
        except ValueError:
            target = None
        if target is None or target not in self.statuses:
            logger.info("Ignored unknown status | role=%s status=%s", self.role.value, target)
            return False
        self._timer.cancel()
        if target != self.status:
            self._set(target)
        return True

    def transition_for(self, target: AgentStatus, seconds: float, then: AgentStatus) -> bool:
        if not self.transition(target):
            return False
        self._timer.start(seconds, lambda: self.transition(then))
        return True

    def cancel_timers(self) -> None:
        self._timer.cancel()

    def reset(self) -> None:
        self._timer.cancel()
        if self.status != AgentStatus.IDLE:
            self._set(AgentStatus.IDLE)

    def _set(self, target: AgentStatus) -> None:
        previous = self.status
        self.status = target
        for listener in list(self._listeners):
            try:
                listener(previous, target)
            except Exception as exc:
                logger.warning("Status listener failed | role=%s err=%s", self.role.value, exc)

    # Event hooks; subclasses map connector events onto transitions.
    def on_connected(self) -> None:
        ...

    def apply_event(self, event_type: str, payload: dict | None = None) -> None:
        ...


class InterviewerStatusMachine(StatusStateMachine):
    role = AgentRole.INTERVIEWER
    allowed = {
        S.IDLE: {S.THINKING},
        S.THINKING: {S.SPEAKING, S.LISTENING, S.IDLE},
        S.SPEAKING: {S.SPEAKING, S.LISTENING, S.IDLE},
        S.LISTENING: {S.THINKING, S.SPEAKING, S.IDLE},
    }

    def __init__(self, scheduler: TimerScheduler | None = None, on_change: StatusListener | None = None,
                 speaking_sec: float = INTERVIEWER_SPEAKING_SEC):
        super().__init__(scheduler=scheduler, on_change=on_change)
        self.speaking_sec = float(speaking_sec)

    def on_connected(self) -> None:
        self.transition(S.THINKING)

    def apply_event(self, event_type: str, payload: dict | None = None) -> None:
        payload = payload or {}
        if event_type == "agent_question":
            self.transition_for(S.SPEAKING, self.speaking_sec, S.LISTENING)
        elif event_type == "agent_response":
            self.transition(S.LISTENING)
        elif event_type == "transcription":
            if str(payload.get("speaker") or "") == "candidate":
                self.transition(S.THINKING)
        elif event_type == "status_update":
            status = payload.get("status")
            if status:
                self.force(status)


class AssistantStatusMachine(StatusStateMachine):
    role = AgentRole.ASSISTANT
    allowed = {
        S.IDLE: {S.LISTENING},
        S.LISTENING: {S.ANALYZING, S.IDLE},
        S.ANALYZING: {S.SUGGESTING, S.LISTENING, S.IDLE},
        S.SUGGESTING: {S.LISTENING, S.ANALYZING, S.IDLE},
    }

    def __init__(self, scheduler: TimerScheduler | None = None, on_change: StatusListener | None = None,
                 suggesting_sec: float = ASSISTANT_SUGGESTING_SEC):
        super().__init__(scheduler=scheduler, on_change=on_change)
        self.suggesting_sec = float(suggesting_sec)

    def on_connected(self) -> None:
        self.transition(S.LISTENING)

    def apply_event(self, event_type: str, payload: dict | None = None) -> None:
        payload = payload or {}
        if event_type == "question_detected":
            self.transition(S.ANALYZING)
        elif event_type == "suggestion":
            self.transition_for(S.SUGGESTING, self.suggesting_sec, S.LISTENING)
        elif event_type == "status_update":
            status = payload.get("status")
            if status:
                self.force(status)


def build_status_machine(
    role: AgentRole,
    scheduler: TimerScheduler | None = None,
    on_change: StatusListener | None = None,
) -> StatusStateMachine:
    if AgentRole(role) == AgentRole.INTERVIEWER:
        return InterviewerStatusMachine(scheduler=scheduler, on_change=on_change)
    return AssistantStatusMachine(scheduler=scheduler, on_change=on_change)
