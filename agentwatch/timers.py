"""Waiting and permission-stall timers owned by each session."""
from __future__ import annotations

import logging
from typing import Optional

from agentwatch.models import (
    PERMISSION_WAIT,
    STATUS_ACTIVE,
    STATUS_WAITING,
    TOOLS_CLEAR,
)
from agentwatch.session import Session

logger = logging.getLogger("agentwatch.timers")

# Tools that never block on human approval.
PERMISSION_EXEMPT_TOOLS = frozenset({
    "Task",
    "AskUserQuestion",
    "EnterPlanMode",
    "update_plan",
    "request_user_input",
})


def is_permission_exempt(tool_name: str) -> bool:
    return (tool_name or "") in PERMISSION_EXEMPT_TOOLS


def stuck_subagent_parents(session: Session) -> list[str]:
    """Parent tool ids whose sub-agent still runs a non-exempt tool."""
    parents: list[str] = []
    for parent_id, sub_tools in session.active_subagent_tools.items():
        if any(not is_permission_exempt(tool.name) for tool in sub_tools.values()):
            parents.append(parent_id)
    return parents


def has_non_exempt_active_tools(session: Session) -> bool:
    if any(not is_permission_exempt(tool.name) for tool in session.active_tools.values()):
        return True
    return bool(stuck_subagent_parents(session))


def cancel_waiting_timer(session: Session) -> None:
    if session.waiting_timer is not None:
        session.waiting_timer.cancel()
        session.waiting_timer = None


def start_waiting_timer(session: Session, delay: Optional[float] = None) -> None:
    cancel_waiting_timer(session)
    if session.closed:
        return
    wait_for = session.context.timings.waitingDelay if delay is None else delay

    def _expire() -> None:
        session.waiting_timer = None
        if session.closed:
            return
        session.is_waiting = True
        session.emit(STATUS_WAITING)

    session.waiting_timer = session.context.call_later(wait_for, _expire)


def cancel_permission_timer(session: Session) -> None:
    if session.permission_timer is not None:
        session.permission_timer.cancel()
        session.permission_timer = None


def start_permission_timer(session: Session, delay: Optional[float] = None) -> None:
    cancel_permission_timer(session)
    if session.closed:
        return
    wait_for = session.context.timings.permissionDelay if delay is None else delay

    def _expire() -> None:
        session.permission_timer = None
        if session.closed:
            return
        # Tools may have completed while the timer was pending.
        stuck_parents = stuck_subagent_parents(session)
        parent_stuck = any(not is_permission_exempt(tool.name) for tool in session.active_tools.values())
        if not parent_stuck and not stuck_parents:
            return
        session.permission_sent = True
        logger.info("Session %s: possible permission wait detected", session.id)
        session.emit(PERMISSION_WAIT)
        for parent_id in stuck_parents:
            session.emit(PERMISSION_WAIT, parent_tool_id=parent_id)

    session.permission_timer = session.context.call_later(wait_for, _expire)


def clear_activity(session: Session) -> None:
    """Turn-boundary reset: drop every tracked tool and report the agent active."""
    session.active_tools.clear()
    session.active_subagent_tools.clear()
    session.is_waiting = False
    session.permission_sent = False
    cancel_permission_timer(session)
    session.emit(TOOLS_CLEAR)
    session.emit(STATUS_ACTIVE)
