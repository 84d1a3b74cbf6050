from __future__ import annotations

import base64
import binascii
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from live_interview.answer_engine.suggestion_engine import Suggestion
from live_interview.core.state import AgentRole, AgentStatus, Speaker
from live_interview.session.models import SessionContext
from live_interview.transcript.models import TranscriptEntry


class ContextPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    company_name: str | None = Field(default=None, alias="companyName")
    role_title: str | None = Field(default=None, alias="roleTitle")
    interview_type: str | None = Field(default=None, alias="interviewType")
    job_description: str | None = Field(default=None, alias="jobDescription")
    candidate_experience: str | None = Field(default=None, alias="candidateExperience")

    def to_context(self) -> SessionContext:
        return SessionContext.from_dict(self.model_dump())


# ---- client -> core ----

class StartInterviewMessage(BaseModel):
    type: Literal["start_interview"]
    context: ContextPayload = Field(default_factory=ContextPayload)


class AudioChunkMessage(BaseModel):
    type: Literal["audio_chunk"]
    data: str

    def audio_bytes(self) -> bytes:
        try:
            return base64.b64decode(self.data, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("audio_chunk data must be base64") from exc


class AnalyzeQuestionMessage(BaseModel):
    type: Literal["analyze_question"]
    question: str = Field(min_length=1)
    context: str | dict | None = None

    def context_text(self) -> str:
        if self.context is None:
            return ""
        if isinstance(self.context, dict):
            return "\n".join(f"{k}: {v}" for k, v in self.context.items())
        return str(self.context)


ClientMessage = Annotated[
    Union[StartInterviewMessage, AudioChunkMessage, AnalyzeQuestionMessage],
    Field(discriminator="type"),
]

_client_adapter = TypeAdapter(ClientMessage)


def parse_client_message(raw: str | bytes) -> ClientMessage:
    """Raises pydantic.ValidationError (a ValueError) on unknown or malformed input."""
    return _client_adapter.validate_json(raw)


# ---- core -> client ----

class TranscriptionMessage(BaseModel):
    type: Literal["transcription"] = "transcription"
    text: str
    speaker: Speaker
    timestamp: float
    sequence: int

    @classmethod
    def from_entry(cls, entry: TranscriptEntry) -> "TranscriptionMessage":
        return cls(text=entry.text, speaker=entry.speaker, timestamp=entry.timestamp, sequence=entry.sequence)


class AgentQuestionMessage(BaseModel):
    type: Literal["agent_question"] = "agent_question"
    question: str


class AgentResponseMessage(BaseModel):
    type: Literal["agent_response"] = "agent_response"
    response: str


class SuggestionMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["suggestion"] = "suggestion"
    id: str
    suggestion: str
    confidence: float
    key_points: list[str] = Field(default_factory=list, alias="keyPoints")
    context: str
    urgency: str = "normal"
    suggestion_type: str = Field(default="interview-answer", alias="suggestionType")
    timestamp: float

    @classmethod
    def from_suggestion(cls, suggestion: Suggestion) -> "SuggestionMessage":
        return cls(
            id=suggestion.id,
            suggestion=suggestion.text,
            confidence=suggestion.confidence,
            key_points=list(suggestion.key_points),
            context=suggestion.context,
            urgency=suggestion.urgency.value,
            suggestion_type=suggestion.type,
            timestamp=suggestion.timestamp,
        )


class StatusUpdateMessage(BaseModel):
    type: Literal["status_update"] = "status_update"
    status: AgentStatus
    role: AgentRole


class ErrorMessage(BaseModel):
    type: Literal["error"] = "error"
    message: str


ServerMessage = Annotated[
    Union[
        TranscriptionMessage,
        AgentQuestionMessage,
        AgentResponseMessage,
        SuggestionMessage,
        StatusUpdateMessage,
        ErrorMessage,
    ],
    Field(discriminator="type"),
]


def to_payload(message: BaseModel) -> dict:
    return message.model_dump(mode="json", by_alias=True)


_server_adapter = TypeAdapter(ServerMessage)


def parse_server_message(payload: dict) -> BaseModel:
    return _server_adapter.validate_python(payload)
