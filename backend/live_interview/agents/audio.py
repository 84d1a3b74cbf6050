from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from live_interview.core.config import MAX_AUDIO_CHUNK_BYTES

logger = logging.getLogger("live_interview.agents.audio")


class AudioPipeline:
    """Inbound audio gate for one agent connection.

    Audio is only accepted while a capture is held. Frames are forwarded
    immediately or dropped; nothing is buffered.
    """

    def __init__(self, role: str, max_chunk_bytes: int = MAX_AUDIO_CHUNK_BYTES):
        self.role = role
        self.max_chunk_bytes = max(1, int(max_chunk_bytes))
        self.capturing = False
        self.frames_forwarded = 0
        self.frames_dropped = 0

    @asynccontextmanager
    async def capture(self):
        if self.capturing:
            raise RuntimeError(f"audio capture already active for {self.role}")
        self.capturing = True
        logger.info("Audio capture acquired | role=%s", self.role)
        try:
            yield self
        finally:
            self.capturing = False
            logger.info(
                "Audio capture released | role=%s forwarded=%s dropped=%s",
                self.role,
                self.frames_forwarded,
                self.frames_dropped,
            )

    def accept(self, chunk: bytes) -> bool:
        if not self.capturing or not chunk or len(chunk) > self.max_chunk_bytes:
            self.frames_dropped += 1
            return False
        self.frames_forwarded += 1
        return True

    def drop(self) -> None:
        self.frames_dropped += 1
