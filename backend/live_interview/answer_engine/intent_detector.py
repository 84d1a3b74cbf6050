# backend/live_interview/answer_engine/intent_detector.py

from enum import Enum
from typing import Dict


class QuestionIntent(str, Enum):
    BEHAVIORAL = "behavioral"
    SYSTEM_DESIGN = "system_design"
    CODING = "coding"
    HR = "hr"
    UNKNOWN = "unknown"


_INTENT_KEYWORDS = (
    (QuestionIntent.BEHAVIORAL, "STAR", (
        "tell me about a time",
        "describe a situation",
        "give me an example",
        "conflict",
        "challenge",
        "failure",
        "leadership",
    )),
    (QuestionIntent.CODING, "step_by_step", (
        "write a function",
        "algorithm",
        "time complexity",
        "optimize",
        "data structure",
        "debug",
    )),
    (QuestionIntent.SYSTEM_DESIGN, "structured", (
        "design",
        "architecture",
        "scale",
        "high availability",
        "distributed",
        "throughput",
    )),
    (QuestionIntent.HR, "concise", (
        "why do you want",
        "tell me about yourself",
        "strength",
        "weakness",
        "career goals",
        "salary",
    )),
)


def detect_intent(question: str) -> Dict:
    q = str(question or "").lower()

    for intent, style, keywords in _INTENT_KEYWORDS:
        if any(k in q for k in keywords):
            return {
                "intent": intent,
                "answer_style": style,
            }

    return {
        "intent": QuestionIntent.UNKNOWN,
        "answer_style": "generic",
    }
