from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, replace

from live_interview.core.errors import InvalidTransition
from live_interview.core.state import SessionStatus


@dataclass(frozen=True)
class SessionContext:
    company_name: str = ""
    role_title: str = ""
    interview_type: str = ""
    job_description: str = ""
    candidate_experience: str = ""

    @classmethod
    def from_dict(cls, data: dict | None) -> "SessionContext":
        data = dict(data or {})

        def _pick(*keys: str) -> str:
            for key in keys:
                value = data.get(key)
                if value is not None:
                    return str(value).strip()
            return ""

        return cls(
            company_name=_pick("company_name", "companyName"),
            role_title=_pick("role_title", "roleTitle"),
            interview_type=_pick("interview_type", "interviewType"),
            job_description=_pick("job_description", "jobDescription"),
            candidate_experience=_pick("candidate_experience", "candidateExperience"),
        )

    def to_dict(self) -> dict:
        return {
            "companyName": self.company_name,
            "roleTitle": self.role_title,
            "interviewType": self.interview_type,
            "jobDescription": self.job_description,
            "candidateExperience": self.candidate_experience,
        }


_ALLOWED_TRANSITIONS: dict[SessionStatus, set[SessionStatus]] = {
    SessionStatus.SETUP: {SessionStatus.ACTIVE},
    SessionStatus.ACTIVE: {SessionStatus.PAUSED, SessionStatus.COMPLETED},
    SessionStatus.PAUSED: {SessionStatus.ACTIVE, SessionStatus.COMPLETED},
    SessionStatus.COMPLETED: set(),
}


@dataclass
class Session:
    context: SessionContext = field(default_factory=SessionContext)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: SessionStatus = SessionStatus.SETUP
    start_time: float | None = None
    end_time: float | None = None

    def can_transition(self, target: SessionStatus) -> bool:
        return target in _ALLOWED_TRANSITIONS.get(self.status, set())

    def transition(self, target: SessionStatus, now: float | None = None) -> None:
        if not self.can_transition(target):
            raise InvalidTransition(self.status.value, SessionStatus(target).value)
        ts = time.time() if now is None else float(now)
        if target == SessionStatus.ACTIVE and self.start_time is None:
            self.start_time = ts
        if target == SessionStatus.COMPLETED:
            self.end_time = ts
        self.status = target

    def copy(self) -> "Session":
        return replace(self)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status.value,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "context": self.context.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Session":
        start_time = data.get("startTime")
        end_time = data.get("endTime")
        return cls(
            id=str(data.get("id") or ""),
            status=SessionStatus(str(data.get("status") or SessionStatus.SETUP.value)),
            start_time=float(start_time) if start_time not in (None, "") else None,
            end_time=float(end_time) if end_time not in (None, "") else None,
            context=SessionContext.from_dict(data.get("context")),
        )
