from __future__ import annotations

import time
from threading import Lock
from typing import Callable

from live_interview.core.config import SUGGESTION_COOLDOWN_SEC


class SuggestionTriggerPolicy:
    """Per-session dedup + cooldown gate for suggestion generation.

    A question triggers only when its exact text has not triggered before
    and the cooldown since the previous trigger has elapsed. Questions
    turned away by the cooldown are not remembered.
    """

    def __init__(
        self,
        cooldown_sec: float = SUGGESTION_COOLDOWN_SEC,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cooldown_sec = max(0.0, float(cooldown_sec))
        self._clock = clock
        self._lock = Lock()
        self._processed: set[str] = set()
        self._last_trigger_time: float | None = None

    def check(self, question: str) -> str:
        """Return "trigger", "duplicate" or "cooldown" and record a trigger."""
        key = str(question or "").strip()
        with self._lock:
            if key in self._processed:
                return "duplicate"
            now = float(self._clock())
            if self._last_trigger_time is not None and (now - self._last_trigger_time) < self.cooldown_sec:
                return "cooldown"
            self._processed.add(key)
            self._last_trigger_time = now
            return "trigger"

    def should_trigger(self, question: str) -> bool:
        return self.check(question) == "trigger"

    @property
    def processed(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._processed)

    @property
    def last_trigger_time(self) -> float | None:
        return self._last_trigger_time
