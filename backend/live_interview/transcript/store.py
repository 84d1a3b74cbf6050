from __future__ import annotations

import logging
import time
from collections import deque
from threading import RLock
from typing import Callable

from live_interview.core.state import Speaker
from live_interview.transcript.models import TranscriptEntry

logger = logging.getLogger("live_interview.transcript")

TranscriptHandler = Callable[[TranscriptEntry], None]


class TranscriptStore:
    """Ordered, append-only transcript shared by both agent connections.

    Appends are serialized under a lock. Subscribers are notified from a
    single outbox drained by whichever append got there first, so handlers
    always observe entries in sequence order, including entries appended
    re-entrantly from inside a handler.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._lock = RLock()
        self._clock = clock
        self._entries: list[TranscriptEntry] = []
        self._handlers: list[TranscriptHandler] = []
        self._outbox: deque[TranscriptEntry] = deque()
        self._dispatching = False
        self._last_sequence = 0
        self._last_timestamp = 0.0

    def append(self, speaker: Speaker, text: str) -> TranscriptEntry:
        clean = str(text or "").strip()
        if not clean:
            raise ValueError("transcript text must not be empty")

        with self._lock:
            self._last_sequence += 1
            self._last_timestamp = max(float(self._clock()), self._last_timestamp)
            entry = TranscriptEntry(
                sequence=self._last_sequence,
                speaker=Speaker(speaker),
                text=clean,
                timestamp=self._last_timestamp,
            )
            self._entries.append(entry)
            self._outbox.append(entry)
            if not self._dispatching:
                self._drain_outbox()
        return entry

    def _drain_outbox(self) -> None:
        self._dispatching = True
        try:
            while self._outbox:
                entry = self._outbox.popleft()
                for handler in list(self._handlers):
                    try:
                        handler(entry)
                    except Exception as exc:
                        logger.warning(
                            "Transcript subscriber failed | sequence=%s err=%s",
                            entry.sequence,
                            exc,
                        )
        finally:
            self._dispatching = False

    def recent(self, n: int) -> list[TranscriptEntry]:
        count = int(n or 0)
        if count <= 0:
            return []
        with self._lock:
            return list(self._entries[-count:])

    def subscribe(self, handler: TranscriptHandler) -> Callable[[], None]:
        with self._lock:
            self._handlers.append(handler)

        def _unsubscribe() -> None:
            with self._lock:
                if handler in self._handlers:
                    self._handlers.remove(handler)

        return _unsubscribe

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
