from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
import asyncio
import logging

from live_interview.api.messages import ContextPayload
from live_interview.api.ws_interview import router as interview_ws_router
from live_interview.core.config import (
    CORS_ALLOW_ORIGINS,
    SESSION_CLEANUP_INTERVAL_SEC,
    SESSION_CLEANUP_TTL_SEC,
)
from live_interview.core.errors import InterviewCoreError
from live_interview.core.state import AgentRole
from live_interview.session.manager import SessionManager
from live_interview.session.store import LocalSessionStore, SessionStore, build_session_store
from live_interview.system_metrics import get_metrics_snapshot

logging.basicConfig(
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    level=logging.INFO,
)

logger = logging.getLogger("live_interview.main")


def _get_allowed_origins() -> list[str]:
    if not CORS_ALLOW_ORIGINS:
        return [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ]
    return [item.strip() for item in CORS_ALLOW_ORIGINS.split(",") if item.strip()]


def _build_store() -> SessionStore:
    try:
        store = build_session_store()
        logger.info("Session store initialized: %s", store.__class__.__name__)
        return store
    except RuntimeError as exc:
        logger.warning("Session store fallback to LocalSessionStore due to init error: %s", exc)
        return LocalSessionStore()


class CreateSessionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str | None = Field(default=None, alias="sessionId")
    role: AgentRole
    context: ContextPayload = Field(default_factory=ContextPayload)


def create_app(manager: SessionManager | None = None) -> FastAPI:
    app = FastAPI(title="Live Interview Orchestrator")
    app.state.session_manager = manager or SessionManager(store=_build_store())
    app.state.cleanup_task = None

    allowed_origins = _get_allowed_origins()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        allow_credentials=False,
    )
    app.include_router(interview_ws_router)

    @app.exception_handler(InterviewCoreError)
    async def interview_error_handler(request: Request, exc: InterviewCoreError):
        body = {"error": exc.message}
        if exc.payload:
            body.update(exc.payload)
        return JSONResponse(status_code=exc.status_code, content=body)

    @app.on_event("startup")
    async def startup_banner():
        logger.info("[SYSTEM] CORS allow_origins=%s", allowed_origins)
        session_manager: SessionManager = app.state.session_manager

        async def _session_cleanup_loop():
            while True:
                await asyncio.sleep(SESSION_CLEANUP_INTERVAL_SEC)
                removed = await session_manager.cleanup_inactive(SESSION_CLEANUP_TTL_SEC)
                if removed:
                    logger.info("[SYSTEM] cleaned inactive sessions=%s", len(removed))

        app.state.cleanup_task = asyncio.create_task(_session_cleanup_loop())

    @app.on_event("shutdown")
    async def shutdown_handler():
        task = app.state.cleanup_task
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            finally:
                app.state.cleanup_task = None
        await app.state.session_manager.shutdown()
        logger.info("[SYSTEM] shutdown complete")

    @app.get("/healthz")
    async def healthz():
        return {"status": "ok", "service": "live-interview"}

    @app.get("/api/metrics")
    async def metrics():
        session_manager: SessionManager = app.state.session_manager
        return get_metrics_snapshot({"sessions_tracked": len(session_manager.registry)})

    @app.post("/api/interview/session")
    async def create_session(req: CreateSessionRequest):
        session_manager: SessionManager = app.state.session_manager
        context = req.context.to_context()
        started_here = False
        if req.session_id and session_manager.exists(req.session_id):
            session = await session_manager.get(req.session_id)
            agent_context = context if (context.role_title or context.job_description) else None
        else:
            session = await session_manager.start(context, session_id=req.session_id)
            agent_context = None
            started_here = True

        try:
            await session_manager.connect_agent(session.id, req.role, agent_context)
        except InterviewCoreError:
            # a session whose first connect fails is not kept
            if started_here:
                await session_manager.discard(session.id)
            raise
        return {"success": True, "sessionId": session.id, "role": req.role.value}

    @app.get("/api/interview/sessions/{session_id}")
    async def get_session(session_id: str):
        session_manager: SessionManager = app.state.session_manager
        session = await session_manager.get(session_id)
        body = session.to_dict()
        if session_manager.exists(session_id):
            body["connections"] = session_manager.connection_status(session_id)
            body["transcript"] = [e.to_dict() for e in session_manager.recent_transcript(session_id, 50)]
            body["suggestions"] = [s.to_dict() for s in session_manager.recent_suggestions(session_id)]
        return body

    @app.post("/api/interview/sessions/{session_id}/pause")
    async def pause_session(session_id: str):
        session = await app.state.session_manager.pause(session_id)
        return session.to_dict()

    @app.post("/api/interview/sessions/{session_id}/resume")
    async def resume_session(session_id: str):
        session = await app.state.session_manager.resume(session_id)
        return session.to_dict()

    @app.post("/api/interview/sessions/{session_id}/end")
    async def end_session(session_id: str):
        session = await app.state.session_manager.end(session_id)
        return session.to_dict()

    return app


app = create_app()
