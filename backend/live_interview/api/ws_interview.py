from fastapi import APIRouter, WebSocket
from fastapi.websockets import WebSocketDisconnect
import asyncio
import json
import logging
import uuid

from pydantic import ValidationError
from starlette.websockets import WebSocketState

from live_interview.api.messages import (
    AnalyzeQuestionMessage,
    AudioChunkMessage,
    ErrorMessage,
    StartInterviewMessage,
    parse_client_message,
    to_payload,
)
from live_interview.core.config import WS_MAX_TEXT_BYTES
from live_interview.core.errors import AgentConnectionError, InterviewCoreError, SessionNotFound
from live_interview.core.logger import log_event
from live_interview.core.state import AgentRole
from live_interview.session.manager import SessionManager
from live_interview.system_metrics import decrement_metric, increment_metric

logging.basicConfig(
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    level=logging.INFO,
)

logger = logging.getLogger("ws_interview")

router = APIRouter()


@router.websocket("/ws/interview")
async def interview_socket(websocket: WebSocket):
    manager: SessionManager = websocket.app.state.session_manager
    session_id = str(websocket.query_params.get("sessionId") or "").strip()
    role_raw = str(websocket.query_params.get("role") or "").strip().lower()
    connection_id = str(uuid.uuid4())
    send_lock = asyncio.Lock()
    stop_reason = "other"

    def _log_event(event: str, **fields):
        log_event("ws_interview", event, session_id, connection_id=connection_id, role=role_raw, **fields)

    async def _safe_send(payload: dict):
        if websocket.client_state != WebSocketState.CONNECTED:
            return
        try:
            encoded = json.dumps(payload)
        except (TypeError, ValueError) as exc:
            logger.warning("ws payload encode failed | session_id=%s err=%s", session_id, exc)
            return
        try:
            async with send_lock:
                await websocket.send_text(encoded)
        except Exception as exc:
            logger.warning("ws send failed | session_id=%s err=%s", session_id, exc)

    async def _send_error(message: str):
        await _safe_send(to_payload(ErrorMessage(message=message)))

    await websocket.accept()

    if not session_id or role_raw not in {r.value for r in AgentRole}:
        await _send_error("Missing sessionId or role")
        await websocket.close(code=1008)
        return

    role = AgentRole(role_raw)
    try:
        await manager.get(session_id)
        subscription = manager.subscribe(session_id)
    except SessionNotFound as exc:
        await _send_error(exc.message)
        await websocket.close(code=1008)
        return

    async def _pump_events():
        while True:
            payload = await subscription.get()
            if payload is None:
                return
            await _safe_send(payload)

    async def _handle_text(text_payload: str):
        try:
            message = parse_client_message(text_payload)
        except ValidationError as exc:
            await _send_error(f"Invalid message: {exc.errors()[0].get('msg', 'unrecognized message')}")
            return

        if isinstance(message, StartInterviewMessage):
            context = message.context.to_context()
            try:
                handle = await manager.connect_agent(
                    session_id,
                    role,
                    context if (context.role_title or context.job_description) else None,
                )
                _log_event("agent_connected", backend_session_id=handle.backend_session_id)
            except AgentConnectionError as exc:
                await _send_error(exc.message)
            except InterviewCoreError as exc:
                await _send_error(exc.message)
        elif isinstance(message, AudioChunkMessage):
            try:
                chunk = message.audio_bytes()
            except ValueError as exc:
                await _send_error(str(exc))
                return
            await manager.send_audio(session_id, role, chunk)
        elif isinstance(message, AnalyzeQuestionMessage):
            outcome = await manager.analyze_question(session_id, message.question, message.context_text())
            _log_event("analyze_question", outcome=outcome)
        else:
            raise TypeError(f"Unhandled client message: {type(message).__name__}")

    sender_task = asyncio.create_task(_pump_events())
    increment_metric("ws_connections_active")
    _log_event("connect")

    try:
        while True:
            msg = await websocket.receive()

            if msg["type"] == "websocket.disconnect":
                stop_reason = "client_disconnect"
                break

            text_payload = str(msg.get("text") or "")
            if len(text_payload.encode("utf-8")) > WS_MAX_TEXT_BYTES:
                logger.warning("WS message too large | session_id=%s bytes=%s", session_id, len(text_payload.encode("utf-8")))
                stop_reason = "message_too_large"
                await websocket.close(code=1009)
                break

            try:
                if msg.get("bytes"):
                    await manager.send_audio(session_id, role, msg["bytes"])
                elif text_payload:
                    await _handle_text(text_payload)
            except SessionNotFound:
                stop_reason = "session_removed"
                await _send_error("Session no longer exists")
                break
    except WebSocketDisconnect:
        stop_reason = "client_disconnect"
    finally:
        manager.unsubscribe(session_id, subscription)
        sender_task.cancel()
        await asyncio.gather(sender_task, return_exceptions=True)
        try:
            await manager.disconnect_agent(session_id, role)
        except SessionNotFound:
            pass
        decrement_metric("ws_connections_active")
        _log_event("disconnect", reason=stop_reason)
