from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from live_interview.answer_engine.intent_detector import detect_intent
from live_interview.core.config import SUGGESTION_TIMEOUT_SEC
from live_interview.core.state import Urgency
from live_interview.session.models import SessionContext
from live_interview.transcript.models import TranscriptEntry

logger = logging.getLogger("live_interview.answer_engine.suggestion")

FALLBACK_TEXT = "Consider using the STAR method: Situation, Task, Action, Result."
FALLBACK_CONFIDENCE = 0.6
DEFAULT_CONFIDENCE = 0.7
DEFAULT_KEY_POINTS = ("Be specific", "Use examples", "Show impact")
MAX_KEY_POINTS = 3
SUGGESTION_TYPE = "interview-answer"

SuggestionBackend = Callable[[str], Awaitable[str]]


@dataclass(frozen=True)
class Suggestion:
    text: str
    context: str
    confidence: float
    key_points: tuple[str, ...] = DEFAULT_KEY_POINTS
    urgency: Urgency = Urgency.NORMAL
    type: str = SUGGESTION_TYPE
    fallback: bool = False
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "suggestion": self.text,
            "context": self.context,
            "confidence": self.confidence,
            "keyPoints": list(self.key_points),
            "urgency": self.urgency.value,
            "type": self.type,
            "fallback": self.fallback,
        }


@dataclass
class SuggestionContext:
    session: SessionContext = field(default_factory=SessionContext)
    history: list[TranscriptEntry] = field(default_factory=list)
    extra: str = ""


def fallback_suggestion(question: str) -> Suggestion:
    return Suggestion(
        text=FALLBACK_TEXT,
        context=question,
        confidence=FALLBACK_CONFIDENCE,
        key_points=DEFAULT_KEY_POINTS,
        fallback=True,
    )


def _style_guidance(style: str) -> str:
    if style == "STAR":
        return "Structure the answer with STAR: Situation, Task, Action, Result. Include metrics where possible."
    if style == "step_by_step":
        return "Walk through the approach, edge cases, and time/space complexity before the final answer."
    if style == "structured":
        return "Cover requirements, high-level components, data flow, and trade-offs."
    if style == "concise":
        return "Keep it short, genuine, and tied to the role."
    return "Be specific, use a concrete example, and show impact."


def build_suggestion_prompt(question: str, context: SuggestionContext) -> str:
    session = context.session
    intent = detect_intent(question)
    history_lines = "\n".join(
        f"{entry.speaker.value}: {entry.text}" for entry in list(context.history or [])
    ) or "(no prior conversation)"

    prompt = f"""
You are coaching a candidate in a live {session.interview_type or "technical"} interview
for the {session.role_title or "Software Engineer"} role at {session.company_name or "a tech company"}.

Job description:
{session.job_description or "(not provided)"}

Candidate experience:
{session.candidate_experience or "(not provided)"}

Recent conversation:
{history_lines}

Interview question:
{question}

Question type: {intent["intent"].value}
{_style_guidance(intent["answer_style"])}
"""
    if context.extra:
        prompt += f"\nAdditional context:\n{context.extra}\n"

    prompt += """
Return JSON: {"text": "<suggested answer the candidate can say>", "confidence": <0..1>, "keyPoints": ["<up to 3 short points>"]}
"""
    return prompt


def parse_suggestion(raw: str, question: str) -> Suggestion:
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Suggestion payload is not JSON; using fallback")
        return fallback_suggestion(question)

    if not isinstance(data, dict):
        logger.warning("Suggestion payload is not an object; using fallback")
        return fallback_suggestion(question)

    text = data.get("text")
    if not isinstance(text, str) or not text.strip():
        logger.warning("Suggestion payload missing text; using fallback")
        return fallback_suggestion(question)

    confidence = data.get("confidence", DEFAULT_CONFIDENCE)
    try:
        confidence = float(confidence)
    except (TypeError, ValueError):
        confidence = DEFAULT_CONFIDENCE
    confidence = min(1.0, max(0.0, confidence))

    raw_points = data.get("keyPoints")
    if isinstance(raw_points, list):
        key_points = tuple(str(p).strip() for p in raw_points if str(p or "").strip())[:MAX_KEY_POINTS]
    else:
        key_points = DEFAULT_KEY_POINTS

    return Suggestion(
        text=text.strip(),
        context=question,
        confidence=confidence,
        key_points=key_points,
    )


class SuggestionEngine:
    def __init__(
        self,
        backend: SuggestionBackend | None = None,
        timeout_sec: float = SUGGESTION_TIMEOUT_SEC,
    ):
        if backend is None:
            from live_interview.ai_reasoning.llm import call_llm

            backend = call_llm
        self._backend = backend
        self.timeout_sec = max(0.01, float(timeout_sec))

    async def generate(self, question: str, context: SuggestionContext | None = None) -> Suggestion:
        """Produce a suggestion for `question`. Never raises on backend failure."""
        prompt = build_suggestion_prompt(question, context or SuggestionContext())
        try:
            raw = await asyncio.wait_for(self._backend(prompt), timeout=self.timeout_sec)
        except asyncio.TimeoutError:
            logger.warning("Suggestion generation timed out | timeout_sec=%s", self.timeout_sec)
            return fallback_suggestion(question)
        except Exception as exc:
            logger.warning("Suggestion generation failed | err=%s", exc)
            return fallback_suggestion(question)

        return parse_suggestion(raw, question)
