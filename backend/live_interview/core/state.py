# backend/live_interview/core/state.py

from enum import Enum


class SessionStatus(str, Enum):
    SETUP = "setup"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class AgentRole(str, Enum):
    INTERVIEWER = "interviewer"
    ASSISTANT = "assistant"


class Speaker(str, Enum):
    INTERVIEWER = "interviewer"
    CANDIDATE = "candidate"


class AgentStatus(str, Enum):
    IDLE = "idle"
    THINKING = "thinking"
    SPEAKING = "speaking"
    LISTENING = "listening"
    ANALYZING = "analyzing"
    SUGGESTING = "suggesting"


class Urgency(str, Enum):
    NORMAL = "normal"
    MEDIUM = "medium"
    HIGH = "high"
