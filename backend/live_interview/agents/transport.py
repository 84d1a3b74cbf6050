from __future__ import annotations

import asyncio
import base64
import json
import logging
from typing import AsyncIterator, Protocol

import httpx
import websockets

from live_interview.answer_engine.question_detector import classify
from live_interview.core.config import (
    OPENAI_API_BASE,
    OPENAI_API_KEY,
    OPENAI_REALTIME_WS_URL,
    REALTIME_CONNECT_TIMEOUT_SEC,
    REALTIME_MODEL,
)
from live_interview.core.errors import AgentConnectionError, TransportError
from live_interview.core.state import AgentRole, AgentStatus, Speaker

logger = logging.getLogger("live_interview.agents.transport")


class RealtimeTransport(Protocol):
    """One realtime speech/LLM stream.

    `events()` yields normalized dicts with a `type` of transcription,
    agent_question, agent_response, status_update or error. It returns when
    the stream is closed locally and raises TransportError when the remote
    side drops it.
    """

    async def open(self, instructions: str, voice: str) -> str:
        ...

    async def send_audio(self, chunk: bytes) -> None:
        ...

    def events(self) -> AsyncIterator[dict]:
        ...

    async def close(self) -> None:
        ...


class OpenAIRealtimeTransport:
    def __init__(
        self,
        role: AgentRole,
        api_key: str = OPENAI_API_KEY,
        model: str = REALTIME_MODEL,
        api_base: str = OPENAI_API_BASE,
        ws_url: str = OPENAI_REALTIME_WS_URL,
        connect_timeout_sec: float = REALTIME_CONNECT_TIMEOUT_SEC,
    ):
        self.role = AgentRole(role)
        self.api_key = api_key
        self.model = model
        self.api_base = api_base
        self.ws_url = ws_url
        self.connect_timeout_sec = float(connect_timeout_sec)
        self.backend_session_id = ""
        self._ws = None
        self._closed = False

    @property
    def _listens_to(self) -> Speaker:
        if self.role == AgentRole.INTERVIEWER:
            return Speaker.CANDIDATE
        return Speaker.INTERVIEWER

    def _session_payload(self, instructions: str, voice: str) -> dict:
        payload = {
            "model": self.model,
            "voice": voice,
            "modalities": ["text", "audio"],
            "instructions": instructions,
            "input_audio_format": "pcm16",
            "output_audio_format": "pcm16",
            "input_audio_transcription": {"model": "whisper-1"},
            "turn_detection": {"type": "server_vad"},
        }
        if self.role == AgentRole.ASSISTANT:
            # Assistant only transcribes; suggestions come from the suggestion engine.
            payload["modalities"] = ["text"]
            payload["turn_detection"] = {"type": "server_vad", "create_response": False}
        return payload

    async def _create_backend_session(self, instructions: str, voice: str) -> str:
        if not self.api_key:
            raise AgentConnectionError("OPENAI_API_KEY is not configured", role=self.role.value)

        async with httpx.AsyncClient(timeout=self.connect_timeout_sec) as http:
            response = await http.post(
                f"{self.api_base}/realtime/sessions",
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json=self._session_payload(instructions, voice),
            )
        if response.status_code >= 400:
            raise AgentConnectionError(
                f"Realtime session request failed: {response.status_code}",
                role=self.role.value,
            )

        data = response.json()
        self.backend_session_id = str(data.get("id") or "")
        secret = (data.get("client_secret") or {}).get("value")
        if not secret:
            raise AgentConnectionError("Realtime session response missing client secret", role=self.role.value)
        return str(secret)

    async def open(self, instructions: str, voice: str) -> str:
        try:
            secret = await self._create_backend_session(instructions, voice)
            self._ws = await asyncio.wait_for(
                websockets.connect(
                    f"{self.ws_url}?model={self.model}",
                    additional_headers={
                        "Authorization": f"Bearer {secret}",
                        "OpenAI-Beta": "realtime=v1",
                    },
                ),
                timeout=self.connect_timeout_sec,
            )
            await asyncio.wait_for(self._wait_for_session_created(), timeout=self.connect_timeout_sec)
        except AgentConnectionError:
            await self.close()
            raise
        except (httpx.HTTPError, websockets.WebSocketException, OSError, asyncio.TimeoutError, ValueError) as exc:
            await self.close()
            raise AgentConnectionError(f"Realtime handshake failed: {exc}", role=self.role.value) from exc

        if self.role == AgentRole.INTERVIEWER:
            # Interviewer speaks first with its opening line.
            await self._ws.send(json.dumps({"type": "response.create"}))

        logger.info("Realtime stream open | role=%s backend_session=%s", self.role.value, self.backend_session_id)
        return self.backend_session_id

    async def _wait_for_session_created(self) -> None:
        while True:
            raw = await self._ws.recv()
            msg = json.loads(raw)
            msg_type = msg.get("type")
            if msg_type == "session.created":
                return
            if msg_type == "error":
                raise AgentConnectionError(_error_message(msg), role=self.role.value)

    async def send_audio(self, chunk: bytes) -> None:
        if self._ws is None or self._closed:
            raise TransportError("realtime stream is not open")
        try:
            await self._ws.send(json.dumps({
                "type": "input_audio_buffer.append",
                "audio": base64.b64encode(chunk).decode("ascii"),
            }))
        except websockets.ConnectionClosed as exc:
            raise TransportError(f"realtime stream closed: {exc}") from exc

    async def events(self) -> AsyncIterator[dict]:
        if self._ws is None:
            raise TransportError("realtime stream is not open")
        try:
            async for raw in self._ws:
                try:
                    msg = json.loads(raw)
                except ValueError:
                    logger.warning("Realtime frame is not JSON | role=%s", self.role.value)
                    continue
                event = self._map_event(msg)
                if event is not None:
                    yield event
        except websockets.ConnectionClosed as exc:
            if self._closed:
                return
            raise TransportError(f"realtime stream closed: {exc}") from exc

    def _map_event(self, msg: dict) -> dict | None:
        msg_type = str(msg.get("type") or "")

        if msg_type == "conversation.item.input_audio_transcription.completed":
            text = str(msg.get("transcript") or "").strip()
            if not text:
                return None
            return {"type": "transcription", "speaker": self._listens_to.value, "text": text}

        if msg_type == "input_audio_buffer.speech_started":
            return {"type": "status_update", "status": AgentStatus.LISTENING.value}

        if self.role == AgentRole.INTERVIEWER:
            if msg_type == "response.created":
                return {"type": "status_update", "status": AgentStatus.THINKING.value}
            if msg_type in {"response.audio_transcript.done", "response.text.done"}:
                text = str(msg.get("transcript") or msg.get("text") or "").strip()
                if not text:
                    return None
                if classify(text):
                    return {"type": "agent_question", "question": text}
                return {"type": "agent_response", "response": text}

        if msg_type == "error":
            return {"type": "error", "message": _error_message(msg)}

        return None

    async def close(self) -> None:
        self._closed = True
        ws = self._ws
        self._ws = None
        if ws is None:
            return
        try:
            await ws.close()
        except Exception as exc:
            logger.warning("Realtime stream close failed | role=%s err=%s", self.role.value, exc)


def _error_message(msg: dict) -> str:
    detail = msg.get("error") or {}
    if isinstance(detail, dict):
        return str(detail.get("message") or detail)
    return str(detail)


def openai_transport_factory(role: AgentRole) -> RealtimeTransport:
    return OpenAIRealtimeTransport(role)
