"""State transitions shared by every vendor parser.

Vendor parsers only recognize records and pull ids, names and arguments out
of their envelopes; every mutation of session tool/turn state and every
timer decision goes through the helpers below.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from agentwatch.models import (
    PERMISSION_WAIT,
    STATUS_ACTIVE,
    SUBAGENT_CLEAR,
    SUBAGENT_TOOL_DONE,
    SUBAGENT_TOOL_START,
    TOOL_DONE,
    TOOL_START,
    TOOLS_CLEAR,
)
from agentwatch.session import ActiveTool, Session
from agentwatch.timers import (
    cancel_permission_timer,
    cancel_waiting_timer,
    clear_activity,
    has_non_exempt_active_tools,
    is_permission_exempt,
    start_permission_timer,
    start_waiting_timer,
    stuck_subagent_parents,
)

logger = logging.getLogger("agentwatch.parser")

SUBTASK_TOOL = "Task"


@dataclass
class ToolCall:
    tool_id: str
    name: str
    status: str
    shell_like: bool = False


def _permission_delay(session: Session, shell_like: bool) -> float | None:
    return session.context.timings.permissionShellDelay if shell_like else None


def begin_tools(session: Session, calls: Iterable[ToolCall]) -> None:
    calls = [call for call in calls if call.tool_id]
    if not calls:
        return

    cancel_waiting_timer(session)
    session.is_waiting = False
    session.had_tools_in_turn = True
    session.emit(STATUS_ACTIVE)

    non_exempt = False
    shell_like = False
    for call in calls:
        logger.debug("Session %s tool start: %s %s", session.id, call.tool_id, call.status)
        session.active_tools[call.tool_id] = ActiveTool(name=call.name, status=call.status)
        session.emit(TOOL_START, tool_id=call.tool_id, status=call.status)
        if not is_permission_exempt(call.name):
            non_exempt = True
            shell_like = shell_like or call.shell_like

    if non_exempt:
        start_permission_timer(session, _permission_delay(session, shell_like))


def _schedule_tool_done(session: Session, tool_id: str) -> None:
    session.schedule(
        session.context.timings.toolDoneDelay,
        lambda: session.emit(TOOL_DONE, tool_id=tool_id),
    )


def finish_tools(session: Session, tool_ids: Iterable[str]) -> None:
    for tool_id in tool_ids:
        if not tool_id:
            continue
        tool = session.active_tools.pop(tool_id, None)
        if tool is None:
            continue
        logger.debug("Session %s tool done: %s", session.id, tool_id)
        if tool.name == SUBTASK_TOOL:
            session.active_subagent_tools.pop(tool_id, None)
            session.emit(SUBAGENT_CLEAR, parent_tool_id=tool_id)
        _schedule_tool_done(session, tool_id)

    if not session.active_tools:
        session.had_tools_in_turn = False


def finish_all_tools(session: Session) -> None:
    finish_tools(session, list(session.active_tools))


def start_user_turn(session: Session) -> None:
    """A new human (or simulated) prompt: forget the previous turn entirely."""
    cancel_waiting_timer(session)
    clear_activity(session)
    session.had_tools_in_turn = False


def clear_tracked_tool_state(session: Session) -> None:
    had_tracked_state = bool(session.active_tools or session.active_subagent_tools)
    session.active_tools.clear()
    session.active_subagent_tools.clear()
    if had_tracked_state:
        session.emit(TOOLS_CLEAR)


def end_turn(session: Session) -> None:
    """Turn finished; the waiting state is reported once the grace period passes."""
    cancel_permission_timer(session)
    clear_tracked_tool_state(session)
    session.permission_sent = False
    session.had_tools_in_turn = False
    start_waiting_timer(session)


def note_assistant_text(session: Session) -> None:
    if not session.had_tools_in_turn:
        start_waiting_timer(session)


def mark_active(session: Session) -> None:
    cancel_waiting_timer(session)
    session.is_waiting = False
    session.emit(STATUS_ACTIVE)


def signal_permission_wait(session: Session) -> bool:
    if session.permission_sent:
        return False
    cancel_permission_timer(session)
    session.permission_sent = True
    session.emit(PERMISSION_WAIT)
    return True


def signal_permission_from_text(session: Session, text: str) -> bool:
    if not text or not session.context.approval_predicate(text):
        return False
    if not has_non_exempt_active_tools(session):
        return False
    return signal_permission_wait(session)


def rearm_permission_timer(session: Session, parent_tool_id: str, *, shell_like: bool = False) -> None:
    if parent_tool_id in session.active_tools:
        start_permission_timer(session, _permission_delay(session, shell_like))


def begin_subagent_tools(session: Session, parent_tool_id: str, calls: Iterable[ToolCall]) -> None:
    non_exempt = False
    for call in calls:
        if not call.tool_id:
            continue
        logger.debug(
            "Session %s subagent tool start: %s %s (parent: %s)",
            session.id, call.tool_id, call.status, parent_tool_id,
        )
        sub_tools = session.active_subagent_tools.setdefault(parent_tool_id, {})
        sub_tools[call.tool_id] = ActiveTool(name=call.name, status=call.status)
        if not is_permission_exempt(call.name):
            non_exempt = True
        session.emit(
            SUBAGENT_TOOL_START,
            parent_tool_id=parent_tool_id,
            tool_id=call.tool_id,
            status=call.status,
        )
    if non_exempt:
        start_permission_timer(session)


def finish_subagent_tools(session: Session, parent_tool_id: str, tool_ids: Iterable[str]) -> None:
    sub_tools = session.active_subagent_tools.get(parent_tool_id, {})
    for tool_id in tool_ids:
        if not tool_id or sub_tools.pop(tool_id, None) is None:
            continue
        logger.debug("Session %s subagent tool done: %s (parent: %s)", session.id, tool_id, parent_tool_id)
        session.schedule(
            session.context.timings.toolDoneDelay,
            lambda tool_id=tool_id: session.emit(
                SUBAGENT_TOOL_DONE, parent_tool_id=parent_tool_id, tool_id=tool_id
            ),
        )
    if stuck_subagent_parents(session):
        start_permission_timer(session)
