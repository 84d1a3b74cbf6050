# backend/live_interview/answer_engine/question_detector.py

QUESTION_PREFIXES = (
    "tell me",
    "describe",
    "explain",
    "what",
    "how",
    "why",
    "can you",
    "could you",
)

MIN_QUESTION_LENGTH = 10


def classify(text: str) -> bool:
    """Return True when an utterance should be treated as an interview question.

    Utterances of ten characters or fewer (after trimming) are never questions.
    Otherwise a question mark anywhere, or one of the known interrogative
    openers at the start, is enough.
    """
    clean = str(text or "").strip()
    if len(clean) <= MIN_QUESTION_LENGTH:
        return False
    if "?" in clean:
        return True
    return clean.lower().startswith(QUESTION_PREFIXES)
