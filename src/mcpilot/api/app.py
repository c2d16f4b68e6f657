"""
Chat API backend for mcpilot.

This module is the chat front-end of the agent: it keeps per-session history and session context,
handles the command endpoints and hands each user message to the :class:`AgentLoop`.
It exposes the following endpoints:
- **GET /health**                 - liveness check.
- **POST /sessions**              - create a new session, returns a session ID.
- **GET /sessions**               - list all active sessions.
- **POST /sessions/{id}/clear**   - forget the identifiers learned in a session.
- **GET /tools**                  - names of every tool in the merged catalog.
- **POST /refresh**               - reload the credential and drop the MCP caches.
- **POST /agent**                 - multi-turn interaction: {"message": "...", "session_id": "..."}
"""

import logging
import uuid
from contextlib import asynccontextmanager
from typing import (
    AsyncIterator,
    Dict,
    List,
    Optional,
)

from fastapi import (
    Depends,
    FastAPI,
    HTTPException,
)

from mcpilot.agent.agent_loop import AgentLoop
from mcpilot.agent.planner_interface import (
    BasePlanner,
    load_planner,
)
from mcpilot.api.models import (
    ChatSession,
    MessageRequest,
    MessageResponse,
    SessionResponse,
    StatusResponse,
)
from mcpilot.common import (
    AnsiColors,
    colored_print,
)
from mcpilot.config import settings
from mcpilot.core.errors import (
    AllEndpointsUnreachable,
    McpilotError,
)
from mcpilot.credentials import resolve_credential
from mcpilot.mcp.runtime import McpRuntime

logger = logging.getLogger(__name__)

# Session storage (in-memory for now, could be moved to a database)
sessions: Dict[str, ChatSession] = {}

runtime = McpRuntime()
_planner: Optional[BasePlanner] = None
_credential: Dict[str, Optional[str]] = {}


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------
def get_runtime() -> McpRuntime:
    return runtime


def get_planner() -> BasePlanner:
    global _planner  # pylint: disable=global-statement
    if _planner is None:
        _planner = load_planner()
    return _planner


def get_credential() -> Optional[str]:
    if "value" not in _credential:
        _credential["value"] = resolve_credential()
    return _credential["value"]


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    yield
    await runtime.aclose()


app = FastAPI(
    title="mcpilot API",
    version="0.1.0",
    description="Chat agent that operates Swiggy MCP tool servers",
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# Helper functions
# ---------------------------------------------------------------------------
def get_or_create_session(session_id: Optional[str] = None) -> str:
    """Get existing session or create a new one."""
    if session_id and session_id in sessions:
        return session_id

    new_session_id = str(uuid.uuid4())
    sessions[new_session_id] = ChatSession()
    return new_session_id


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@app.get("/health", summary="Health check")
async def health() -> dict[str, str]:
    """Return a simple liveness payload."""
    return {"status": "ok"}


@app.post("/sessions", response_model=SessionResponse, summary="Create a new session")
async def create_session() -> SessionResponse:
    """Create a new conversation session."""
    session_id = get_or_create_session()
    return SessionResponse(session_id=session_id)


@app.get("/sessions", response_model=List[str], summary="List active sessions")
async def list_sessions() -> List[str]:
    """List all active session IDs."""
    return list(sessions.keys())


@app.post(
    "/sessions/{session_id}/clear", response_model=StatusResponse, summary="Reset session context"
)
async def clear_session(session_id: str) -> StatusResponse:
    """Forget addresses, restaurants and cart learned in this session."""
    session = sessions.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Unknown session '{session_id}'")
    session.context = ChatSession().context
    return StatusResponse(status="cleared", detail="Session cleared. Starting fresh.")


@app.get("/tools", response_model=List[str], summary="List available tools")
async def list_tools(
    rt: McpRuntime = Depends(get_runtime),
    credential: Optional[str] = Depends(get_credential),
) -> List[str]:
    """Return the namespaced names of every reachable tool."""
    try:
        tools = await rt.catalog.list_all_tools(credential)
    except AllEndpointsUnreachable as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return [tool.name for tool in tools]


@app.post("/refresh", response_model=StatusResponse, summary="Reload credential and caches")
async def refresh(rt: McpRuntime = Depends(get_runtime)) -> StatusResponse:
    """Re-read the credential and drop cached sessions and tools."""
    _credential["value"] = resolve_credential(fresh=True)
    rt.clear_caches()
    detail = "Caches cleared. New token loaded." if _credential["value"] else "Caches cleared."
    return StatusResponse(status="refreshed", detail=detail)


@app.post("/agent", response_model=MessageResponse, summary="Process a message")
async def agent_endpoint(
    req: MessageRequest,
    rt: McpRuntime = Depends(get_runtime),
    planner: BasePlanner = Depends(get_planner),
    credential: Optional[str] = Depends(get_credential),
) -> MessageResponse:
    """Process a user message with optional session context."""
    session_id = get_or_create_session(req.session_id)
    session = sessions[session_id]

    logger.info("New request [%s]: %s", session_id, req.message[:60])
    loop = AgentLoop(rt, planner)
    try:
        result = await loop.run(
            req.message,
            history=session.history,
            context=session.context,
            credential=credential,
        )
    except McpilotError as exc:
        logger.error("Request failed [%s]: %s", session_id, exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    logger.info(
        "Response sent (%d chars, %d tokens, %d rounds)",
        len(result.text),
        result.usage.total,
        result.rounds,
    )
    session.remember(req.message, result.text, settings.HISTORY_TURNS)

    return MessageResponse(
        reply=result.text,
        session_id=session_id,
        stop_reason=result.stop_reason,
        usage=result.usage,
        outcome=result.outcome,
    )


# ---------------------------------------------------------------------------
# Public helper to launch the API (imported by main.py)
# ---------------------------------------------------------------------------
def run_api(
    host: str = "0.0.0.0", port: int = 8000, reload: bool = False, log_level: str | None = None
) -> None:
    """Start a uvicorn server hosting *app*.

    Parameters
    ----------
    host, port:
        Bind address for the HTTP server.
    reload:
        If *True*, enable auto-reload (useful in development).
    log_level:
        Logging level to use (default from settings if not provided).
    """

    # Lazy import - keeps uvicorn an optional dependency at pkg-import time
    import uvicorn  # pylint: disable=import-outside-toplevel

    if log_level is None:  # Use the default from settings if not provided
        log_level = settings.LOG_LEVEL

    logger.info(
        "Starting mcpilot API at %s:%d (reload=%s, log_level=%s)", host, port, reload, log_level
    )
    if not get_credential():
        logger.warning("No Swiggy credential configured; authenticated tools will be unavailable")

    colored_print(f"mcpilot API is running at http://localhost:{port}.", AnsiColors.GREEN)
    colored_print(f"Visit http://localhost:{port}/docs for API documentation.", AnsiColors.BLUE)
    uvicorn.run(
        "mcpilot.api.app:app",
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )


# ---------------------------------------------------------------------------
# `python -m mcpilot.api.app` helper
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    run_api(reload=True)
