from __future__ import annotations

from dataclasses import dataclass

from live_interview.core.state import Speaker


@dataclass(frozen=True)
class TranscriptEntry:
    """
    One utterance in the shared session transcript.
    Immutable once appended; `sequence` is assigned by the store.
    """
    sequence: int
    speaker: Speaker
    text: str
    timestamp: float

    def to_dict(self) -> dict:
        return {
            "sequence": self.sequence,
            "speaker": self.speaker.value,
            "text": self.text,
            "timestamp": self.timestamp,
        }
