from __future__ import annotations


class InterviewCoreError(Exception):
    """Base class for errors raised by the session orchestrator."""

    status_code: int = 500

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    @property
    def payload(self) -> dict | None:
        return None


class ConfigError(InterviewCoreError):
    status_code = 400

    def __init__(self, message: str, fields: list[str] | None = None):
        super().__init__(message)
        self.fields = list(fields or [])

    @property
    def payload(self) -> dict | None:
        return {"fields": self.fields} if self.fields else None


class AgentConnectionError(InterviewCoreError, ConnectionError):
    """Realtime backend handshake failed. Never retried."""

    status_code = 502

    def __init__(self, message: str, role: str = ""):
        super().__init__(message)
        self.role = role


class TransportError(InterviewCoreError):
    """Established realtime stream failed mid-session."""

    status_code = 502


class GenerationError(InterviewCoreError):
    status_code = 502


class InvalidTransition(InterviewCoreError):
    status_code = 409

    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot transition session from {current} to {target}")
        self.current = current
        self.target = target


class SessionNotFound(InterviewCoreError):
    status_code = 404

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id
