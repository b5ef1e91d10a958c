"""API routers for observed sessions and the activity event feed."""
from __future__ import annotations

from typing import AsyncIterator

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import StreamingResponse

from agentwatch.models import ActivityEvent, FocusTerminalRequest, LaunchSessionRequest, SessionSnapshot

sessions_router = APIRouter(prefix="/api/sessions", tags=["sessions"])
terminals_router = APIRouter(prefix="/api/terminals", tags=["terminals"])
events_router = APIRouter(prefix="/api/events", tags=["events"])


def _get_session_manager(request: Request):
    manager = getattr(request.app.state, "session_manager", None)
    if not manager:
        raise HTTPException(status_code=503, detail="Session manager not initialized")
    return manager


def _get_event_bus(request: Request):
    bus = getattr(request.app.state, "event_bus", None)
    if not bus:
        raise HTTPException(status_code=503, detail="Event bus not initialized")
    return bus


def _get_session(manager, session_id: int):
    session = manager.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    return session


@sessions_router.get("", response_model=list[SessionSnapshot])
async def list_sessions(request: Request):
    return _get_session_manager(request).snapshot()


@sessions_router.post("", response_model=SessionSnapshot)
async def launch_session(request: Request, body: LaunchSessionRequest):
    """Launch an agent CLI session and start tracking its transcript."""
    manager = _get_session_manager(request)
    try:
        session = manager.launch_session(
            body.vendor,
            body.workspacePath,
            terminal_id=body.terminalId,
            use_tmux=body.useTmux,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return session.snapshot()


@sessions_router.post("/focus/clear")
async def clear_session_focus(request: Request):
    manager = _get_session_manager(request)
    manager.focus_session(None)
    return {"status": "ok", "focusedSessionId": None}


@sessions_router.get("/{session_id}", response_model=SessionSnapshot)
async def get_session(request: Request, session_id: int):
    manager = _get_session_manager(request)
    return _get_session(manager, session_id).snapshot()


@sessions_router.delete("/{session_id}")
async def close_session(request: Request, session_id: int):
    manager = _get_session_manager(request)
    if not manager.close_session(session_id):
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    return {"status": "closed", "sessionId": session_id}


@sessions_router.post("/{session_id}/focus")
async def focus_session(request: Request, session_id: int):
    manager = _get_session_manager(request)
    if not manager.focus_session(session_id):
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    return {"status": "ok", "focusedSessionId": session_id}


@sessions_router.post("/{session_id}/tmux")
async def attach_tmux(request: Request, session_id: int):
    """Look up the tmux session hosting this agent's CLI process."""
    manager = _get_session_manager(request)
    _get_session(manager, session_id)
    name = manager.attach_tmux(session_id)
    return {"sessionId": session_id, "tmuxSessionName": name}


@terminals_router.post("/focus")
async def focus_terminal(request: Request, body: FocusTerminalRequest):
    manager = _get_session_manager(request)
    owner = manager.focus_terminal(body.terminalId)
    return {
        "status": "ok",
        "terminalId": body.terminalId,
        "focusedSessionId": owner.id if owner is not None else None,
    }


@events_router.get("/recent", response_model=list[ActivityEvent])
async def recent_events(request: Request, limit: int = Query(50, ge=1, le=1000)):
    return _get_event_bus(request).recent(limit)


def format_sse(event: ActivityEvent) -> str:
    return f"event: {event.type}\ndata: {event.model_dump_json()}\n\n"


@events_router.get("/stream")
async def stream_events(request: Request):
    """Server-sent events feed of canonical activity events."""
    bus = _get_event_bus(request)

    async def _events() -> AsyncIterator[str]:
        stream = bus.stream()
        try:
            async for event in stream:
                if await request.is_disconnected():
                    break
                yield format_sse(event)
        finally:
            await stream.aclose()

    return StreamingResponse(
        _events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
