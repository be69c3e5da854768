"""API routes for terminal sessions and the auto-run loop."""

import logging
from pathlib import Path
from typing import Any

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field

from termai.agent import (
    PendingCommandMismatchError,
    SessionManager,
    SessionNotFoundError,
    TerminalSession,
)

logger = logging.getLogger(__name__)

router = APIRouter()

# Shared instances
_manager: SessionManager | None = None


def get_session_manager() -> SessionManager:
    """Get or create the session manager instance."""
    global _manager
    if _manager is None:
        _manager = SessionManager()
    return _manager


def _get_session(session_id: str) -> TerminalSession:
    try:
        return get_session_manager().get(session_id)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")


# Request/Response models


class CreateSessionRequest(BaseModel):
    """Request model for session creation."""

    cwd: str | None = Field(default=None, description="Working directory for the session")


class SessionStateResponse(BaseModel):
    """Auto-run state of a session."""

    session_id: str
    enabled: bool
    phase: str
    step_count: int
    max_steps: int
    running_command_id: str | None
    stuck: bool
    stuck_reason: str | None
    pending_safety: dict[str, Any] | None
    history: list[dict[str, Any]]
    watchdog_status: str


class AutoRunRequest(BaseModel):
    """Request model for toggling auto-run."""

    enabled: bool | None = Field(default=None, description="Target state; omit to toggle")


class MessageRequest(BaseModel):
    """Request model for a user message."""

    text: str = Field(..., description="The user's message")


class CommandRequest(BaseModel):
    """Request model for a manual command."""

    command: str = Field(..., description="Shell command to run")


class CommandResponse(BaseModel):
    command_id: str


class SafetyDecisionRequest(BaseModel):
    """Request model for a safety decision."""

    approved: bool = Field(..., description="Whether the pending command may run")


class ContextMessage(BaseModel):
    role: str
    content: str


def _state_response(session: TerminalSession) -> SessionStateResponse:
    return SessionStateResponse(
        **session.controller.snapshot(),
        watchdog_status=session.watchdog.status.value,
    )


# Endpoints


@router.post("/sessions", response_model=SessionStateResponse, status_code=201)
async def create_session(request: CreateSessionRequest) -> SessionStateResponse:
    """Create a terminal session with its own auto-run loop."""
    cwd = Path(request.cwd) if request.cwd else None
    if cwd is not None and not cwd.expanduser().is_dir():
        raise HTTPException(status_code=400, detail=f"Not a directory: {request.cwd}")

    try:
        session = get_session_manager().create(cwd=cwd)
        return _state_response(session)

    except Exception as e:
        logger.error(f"Session creation failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/sessions")
async def list_sessions():
    """List open session ids."""
    return {"sessions": get_session_manager().list_ids()}


@router.get("/sessions/{session_id}", response_model=SessionStateResponse)
async def get_session(session_id: str) -> SessionStateResponse:
    """Get the auto-run state of a session."""
    return _state_response(_get_session(session_id))


@router.delete("/sessions/{session_id}")
async def delete_session(session_id: str):
    """Close a session, cancelling any running command."""
    try:
        await get_session_manager().close(session_id)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")
    return {"status": "closed"}


@router.post("/sessions/{session_id}/auto-run", response_model=SessionStateResponse)
async def set_auto_run(session_id: str, request: AutoRunRequest) -> SessionStateResponse:
    """Turn auto-run mode on or off, or toggle it."""
    session = _get_session(session_id)
    if request.enabled is None:
        await session.controller.toggle_auto_run()
    else:
        await session.controller.set_auto_run(request.enabled)
    return _state_response(session)


@router.post("/sessions/{session_id}/messages", response_model=SessionStateResponse)
async def send_message(session_id: str, request: MessageRequest) -> SessionStateResponse:
    """
    Send a user message.

    The controller will:
    1. Reset the stuck state and step counter
    2. Consult the LLM
    3. Execute tools and dispatch the proposed command
    """
    session = _get_session(session_id)
    try:
        await session.controller.send_user_message(request.text)
        return _state_response(session)

    except Exception as e:
        logger.error(f"Message handling failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/sessions/{session_id}/messages", response_model=list[ContextMessage])
async def get_messages(session_id: str) -> list[ContextMessage]:
    """Get the conversation context of a session."""
    session = _get_session(session_id)
    return [
        ContextMessage(role=message.type, content=str(message.content))
        for message in session.controller.context
    ]


@router.post("/sessions/{session_id}/commands", response_model=CommandResponse)
async def run_command(session_id: str, request: CommandRequest) -> CommandResponse:
    """Run a command typed by the user."""
    session = _get_session(session_id)
    command_id = await session.controller.run_manual_command(request.command)
    return CommandResponse(command_id=command_id)


@router.post("/sessions/{session_id}/cancel")
async def cancel_command(session_id: str):
    """Cancel the running command."""
    session = _get_session(session_id)
    return {"cancelled": session.controller.cancel_running_command()}


@router.post("/sessions/{session_id}/safety/{pending_id}", response_model=SessionStateResponse)
async def resolve_safety(
    session_id: str,
    pending_id: str,
    request: SafetyDecisionRequest,
) -> SessionStateResponse:
    """Approve or reject the command awaiting confirmation."""
    session = _get_session(session_id)
    try:
        await session.controller.resolve_safety(pending_id, request.approved)
    except PendingCommandMismatchError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _state_response(session)


@router.post("/sessions/{session_id}/intervene")
async def intervene(session_id: str):
    """Force-cancel the running command and reset the LLM-thinking flag."""
    session = _get_session(session_id)
    return {"intervened": session.watchdog.intervene(reason="manual")}


@router.websocket("/sessions/{session_id}/events")
async def stream_events(websocket: WebSocket, session_id: str) -> None:
    """Stream session events over WebSocket."""
    await websocket.accept()

    try:
        session = get_session_manager().get(session_id)
    except SessionNotFoundError:
        await websocket.send_json({"type": "error", "payload": {"message": "Session not found"}})
        await websocket.close(code=4004)
        return

    stream = session.channel.stream()
    try:
        async for event in stream:
            await websocket.send_json(event.to_dict())
    except WebSocketDisconnect:
        logger.debug(f"Event stream client disconnected: {session_id}")
    finally:
        stream.close()
