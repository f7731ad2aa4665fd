from __future__ import annotations

import logging
from pathlib import Path

from fastapi import FastAPI, HTTPException, Request

from .agent import AgentError
from .config import AppConfig, ensure_config_exists, load_config, resolve_config_path
from .schemas import HealthResponse, MessageRequest, MessageResponse, ResetResponse
from .services import AgentFactory, describe_services, make_agent_factory
from .sessions import SessionManager

LOGGER = logging.getLogger(__name__)

UNAUTHORIZED_MESSAGE = "Sorry, you are not authorized to use this bot."
WELCOME_MESSAGE = "Welcome to MediaMate! Ask me about movies - search, recommend, download."
RESET_MESSAGE = "Conversation reset. Send a message to start over."
SESSION_UNAVAILABLE_MESSAGE = "could not create a session for this user"


def create_app(
    config: AppConfig | None = None,
    *,
    agent_factory: AgentFactory | None = None,
) -> FastAPI:
    """Build the HTTP front end.

    Without an explicit config the app loads one from disk at startup and
    reports ``degraded`` health if that fails.
    """
    app = FastAPI(title="MediaMate", version="0.1.0")

    app.state.config = config
    app.state.sessions = None
    app.state.agent_factory = agent_factory
    app.state.startup_error = None

    @app.on_event("startup")
    async def on_startup() -> None:
        loaded = app.state.config
        if loaded is None:
            config_path = resolve_config_path(Path.cwd())
            if ensure_config_exists(config_path):
                app.state.startup_error = (
                    f"Config created at {config_path}. Fill it and restart the service."
                )
                LOGGER.warning(app.state.startup_error)
                return
            try:
                loaded = load_config(config_path)
            except Exception as exc:  # noqa: BLE001
                app.state.startup_error = f"Failed to initialize service: {exc}"
                LOGGER.exception("Service startup failed")
                return
            app.state.config = loaded

        _configure_logging(loaded.app.logging_level)
        if app.state.agent_factory is None:
            app.state.agent_factory = make_agent_factory(loaded)
        app.state.sessions = SessionManager(loaded.access.allowed_user_ids)
        app.state.startup_error = None
        LOGGER.info("MediaMate ready, services=%s", describe_services(loaded))

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        sessions = app.state.sessions
        if sessions is not None:
            await sessions.aclose()

    @app.get("/health", response_model=HealthResponse)
    async def health(request: Request) -> HealthResponse:
        state = request.app.state
        if state.startup_error:
            return HealthResponse(status="degraded", detail=state.startup_error)
        return HealthResponse(
            status="ok",
            services=describe_services(state.config) if state.config is not None else None,
            sessions=len(state.sessions) if state.sessions is not None else None,
        )

    @app.post("/messages", response_model=MessageResponse)
    async def send_message(request: Request, body: MessageRequest) -> MessageResponse:
        sessions = _get_sessions_or_503(request)
        user_id = body.user_id

        if not sessions.is_allowed(user_id):
            LOGGER.info("rejected message from unauthorized user %s", user_id)
            raise HTTPException(status_code=403, detail=UNAUTHORIZED_MESSAGE)

        text = body.message.strip()
        if not text:
            raise HTTPException(status_code=400, detail="message must not be empty")
        if text == "/start":
            return MessageResponse(user_id=user_id, reply=WELCOME_MESSAGE)
        if text == "/reset":
            await sessions.reset(user_id)
            return MessageResponse(user_id=user_id, reply=RESET_MESSAGE)

        agent = await sessions.get_or_create(user_id, request.app.state.agent_factory)
        if agent is None:
            raise HTTPException(status_code=503, detail=SESSION_UNAVAILABLE_MESSAGE)

        try:
            reply = await agent.handle_message(text)
        except AgentError as exc:
            LOGGER.error("agent error for user %s: %s", user_id, exc)
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return MessageResponse(user_id=user_id, reply=reply)

    @app.post("/sessions/{user_id}/reset", response_model=ResetResponse)
    async def reset_session(request: Request, user_id: str) -> ResetResponse:
        sessions = _get_sessions_or_503(request)
        if not sessions.is_allowed(user_id):
            raise HTTPException(status_code=403, detail=UNAUTHORIZED_MESSAGE)
        removed = await sessions.reset(user_id)
        return ResetResponse(user_id=user_id, reset=removed)

    return app


def _get_sessions_or_503(request: Request) -> SessionManager:
    startup_error = request.app.state.startup_error
    if startup_error:
        raise HTTPException(status_code=503, detail=startup_error)

    sessions = request.app.state.sessions
    if sessions is None:
        raise HTTPException(status_code=503, detail="Service runtime is not available")

    return sessions


def _configure_logging(level: str) -> None:
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    stream_exists = any(
        isinstance(handler, logging.StreamHandler)
        and not isinstance(handler, logging.FileHandler)
        for handler in root_logger.handlers
    )
    if not stream_exists:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
        root_logger.addHandler(stream_handler)
