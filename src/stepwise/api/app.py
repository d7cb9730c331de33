"""
Core API backend for stepwise.

This module exposes the assistant agent and the content pipeline through a RESTful API.
It exposes the following endpoints:
- **GET /health**  - liveness check.
- **POST /sessions** - create a new session, returns a session ID.
- **GET /sessions** - list all active sessions.
- **GET /sessions/{id}/history** - ordered turns of one session.
- **DELETE /sessions/{id}** - forget a session and its memory.
- **POST /agent**   - multi-turn interaction: {"message": "...", "session_id": "..."}
- **POST /pipeline** - research -> write -> review: {"message": "..."}
"""

import logging
import uuid
from typing import (
    Dict,
    List,
    Optional,
)

from fastapi import (
    FastAPI,
    HTTPException,
)
from fastapi.middleware.cors import CORSMiddleware

from stepwise.agent.planner_interface import (
    ModelCollaborator,
    load_planner,
)
from stepwise.agent.presets import (
    DEFAULT_INVENTORY,
    build_assistant,
    build_content_pipeline,
)
from stepwise.api.models import (
    MessageRequest,
    MessageResponse,
    PipelineRequest,
    PipelineResponse,
    SessionResponse,
    TurnView,
)
from stepwise.common import (
    AnsiColors,
    colored_print,
)
from stepwise.config import settings
from stepwise.memory.memory_store import ConversationMemory
from stepwise.tools.notes import NoteStore
from stepwise.tools.orders import OrderStore
from stepwise.tools.todos import TodoStore

logger = logging.getLogger(__name__)


def create_app(
    planner: Optional[ModelCollaborator] = None,
    max_iterations: Optional[int] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Parameters
    ----------
    planner:
        Model collaborator shared by every agent; defaults to ``load_planner()``.
    max_iterations:
        Tool-call limit per run; defaults to ``settings.MAX_ITERATIONS``.
    """
    planner = planner or load_planner()
    memory = ConversationMemory()
    orders = OrderStore(DEFAULT_INVENTORY)
    todos = TodoStore()
    notes = NoteStore()
    assistant = build_assistant(
        planner, memory, orders, todos, max_iterations=max_iterations, notes=notes
    )

    # Session storage (in-memory; turns live in ``memory``)
    sessions: Dict[str, None] = {}

    app = FastAPI(
        title="stepwise API", version="0.1.0", description="Tool-using conversational agents"
    )
    app.state.memory = memory
    app.state.orders = orders
    app.state.todos = todos
    app.state.notes = notes

    # Add CORS middleware so local frontends can talk to the API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[f"http://localhost:{settings.API_PORT}"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -----------------------------------------------------------------------
    # Helper functions
    # -----------------------------------------------------------------------
    def get_or_create_session(session_id: Optional[str] = None) -> str:
        """Get existing session or create a new one."""
        if session_id:
            sessions.setdefault(session_id, None)
            return session_id

        new_session_id = str(uuid.uuid4())
        sessions[new_session_id] = None
        return new_session_id

    def require_session(session_id: str) -> str:
        if session_id not in sessions:
            raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")
        return session_id

    # -----------------------------------------------------------------------
    # Routes
    # -----------------------------------------------------------------------
    @app.get("/health", summary="Health check")
    async def health() -> dict[str, str]:
        """Return a simple liveness payload."""
        return {"status": "ok"}

    @app.post("/sessions", response_model=SessionResponse, summary="Create a new session")
    async def create_session() -> SessionResponse:
        """Create a new conversation session."""
        return SessionResponse(session_id=get_or_create_session())

    @app.get("/sessions", response_model=List[str], summary="List active sessions")
    async def list_sessions() -> List[str]:
        """List all active session IDs."""
        return list(sessions.keys())

    @app.get(
        "/sessions/{session_id}/history",
        response_model=List[TurnView],
        summary="Conversation history of a session",
    )
    async def session_history(session_id: str) -> List[TurnView]:
        """Return the session's turns in chronological order."""
        require_session(session_id)
        return [TurnView.from_turn(turn) for turn in memory.read(session_id)]

    @app.delete("/sessions/{session_id}", summary="Delete a session")
    async def delete_session(session_id: str) -> dict[str, str]:
        """Forget a session and drop its memory."""
        require_session(session_id)
        memory.clear(session_id)
        del sessions[session_id]
        return {"status": "deleted", "session_id": session_id}

    @app.post("/agent", response_model=MessageResponse, summary="Process a message")
    async def agent_endpoint(req: MessageRequest) -> MessageResponse:
        """Run the assistant on a user message with optional session context."""
        session_id = get_or_create_session(req.session_id)
        result = await assistant.run(session_id, req.message)
        if not result.ok:
            logger.warning("Run for session %s failed: %s", session_id, result.error)
        return MessageResponse.from_result(result)

    @app.post("/pipeline", response_model=PipelineResponse, summary="Run the content pipeline")
    async def pipeline_endpoint(req: PipelineRequest) -> PipelineResponse:
        """Research, write and review; each request gets fresh stage memory."""
        pipeline = build_content_pipeline(
            planner, ConversationMemory(), max_iterations=max_iterations
        )
        result = await pipeline.run(req.message)
        return PipelineResponse.from_result(result)

    @app.get("/", summary="API root")
    async def root() -> dict[str, str]:
        """Return a simple welcome message."""
        return {"message": "Welcome to the stepwise API! Use /docs for API documentation."}

    return app


# ---------------------------------------------------------------------------
# Public helper to launch the API (imported by main.py)
# ---------------------------------------------------------------------------
def run_api(
    host: str = "0.0.0.0", port: int = 8000, reload: bool = False, log_level: str | None = None
) -> None:
    """Start a uvicorn server hosting the app built by :func:`create_app`.

    Parameters
    ----------
    host, port:
        Bind address for the HTTP server.
    reload:
        If *True*, enable auto-reload (useful during development).
    log_level:
        Logging level to use (default from settings if not provided).
    """

    # Lazy import - keeps uvicorn out of pkg-import time
    import uvicorn  # pylint: disable=import-outside-toplevel

    if log_level is None:  # Use the default from settings if not provided
        log_level = settings.LOG_LEVEL

    logger.info(
        "Starting stepwise API at %s:%d (reload=%s, log_level=%s)", host, port, reload, log_level
    )
    logger.debug(
        "API settings: %s", settings.model_dump(exclude={"OPENAI_API_KEY", "ANTHROPIC_API_KEY"})
    )

    colored_print(f"stepwise API is running at http://localhost:{port}.", AnsiColors.GREEN)
    colored_print(f"Visit http://localhost:{port}/docs for API documentation.", AnsiColors.BLUE)
    uvicorn.run(
        "stepwise.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )


# ---------------------------------------------------------------------------
# `python -m stepwise.api.app` helper
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    run_api(reload=True)
