"""OpenClaw structured log entries.

Three shapes are accepted, in priority order:

* the `pa` envelope, either flat or with the entry nested under `pa`;
* the native `log` envelope (`subsystem`, `message`, `sessionKey`), whose
  free-form message is mapped to a tool or lifecycle entry by keyword;
* a compact flat entry such as `{"tool": "read", "status": "start"}`.

OpenClaw reports one tool at a time and does not carry call ids, so every
tool start gets a synthetic id and closes whatever tool was open before.
"""
from __future__ import annotations

import re
from typing import Any, Optional

from agentwatch.parsers import activity
from agentwatch.parsers.activity import ToolCall
from agentwatch.parsers.platforms.base import TranscriptParser, as_dict, as_str
from agentwatch.parsers.tool_status import format_openclaw_tool_status
from agentwatch.session import Session

_TOOL_MESSAGE_PATTERNS = (
    re.compile(r"\b(?:tool[^:]*:\s*|invoking\s+tool\s+)(\w+)", re.IGNORECASE),
    re.compile(r"^(read|write|edit|exec|web_fetch)\b", re.IGNORECASE),
)
_LIFECYCLE_SUBSYSTEMS = {"agent", "session"}
_END_STATUSES = {"end", "done", "complete", "completed"}
_SHELL_TOOLS = {"exec"}


def next_tool_id(session: Session) -> str:
    session.synthetic_tool_seq += 1
    return f"oc-tool-{session.synthetic_tool_seq}"


def _contains_any(text: str, words: tuple[str, ...]) -> bool:
    return any(word in text for word in words)


def entry_from_native_log(raw: dict[str, Any]) -> Optional[dict[str, Any]]:
    """Map a native `log` envelope onto a flat entry, or None when it carries nothing useful."""
    session_key = as_str(raw.get("sessionKey"))
    agent_id = as_str(raw.get("agentId")) or session_key.split(":")[-1]
    if not agent_id:
        return None

    message = as_str(raw.get("message")).lower()
    subsystem = as_str(raw.get("subsystem")).lower()

    for pattern in _TOOL_MESSAGE_PATTERNS:
        match = pattern.search(message)
        if match:
            finished = _contains_any(message, ("complet", "done", "finish"))
            return {
                "agentId": agent_id,
                "tool": match.group(1).lower(),
                "status": "end" if finished else "start",
            }

    if subsystem in _LIFECYCLE_SUBSYSTEMS:
        if _contains_any(message, ("start", "register", "init")):
            return {"agentId": agent_id, "event": "run_registered"}
        if _contains_any(message, ("end", "done", "complete", "clear")):
            return {"agentId": agent_id, "event": "run_cleared"}
        if _contains_any(message, ("error", "fail", "timeout")):
            return {"agentId": agent_id, "event": "error"}
    return None


def normalize_entry(raw: dict[str, Any]) -> Optional[dict[str, Any]]:
    if raw.get("type") == "pa":
        nested = as_dict(raw.get("pa"))
        return dict(nested) if nested else raw
    if raw.get("type") == "log" and isinstance(raw.get("sessionKey"), str):
        return entry_from_native_log(raw)
    return raw


class OpenClawParser(TranscriptParser):
    vendor = "openclaw"

    def __init__(self, agent_id_filter: Optional[str] = None):
        self.agent_id_filter = agent_id_filter

    def handle_record(self, session: Session, record: dict[str, Any]) -> None:
        entry = normalize_entry(record)
        if not entry:
            return

        agent_id = as_str(entry.get("agentId")) or as_str(entry.get("run_id"))
        if self.agent_id_filter and agent_id and agent_id != self.agent_id_filter:
            return

        event = as_str(entry.get("event")).lower()
        status = as_str(entry.get("status")).lower()
        tool = as_str(entry.get("tool")).lower()

        if event == "run_registered" or status == "registered":
            activity.start_user_turn(session)
        elif event == "run_cleared" or status == "cleared":
            activity.end_turn(session)
        elif event in ("error", "timeout") or status in ("error", "timeout"):
            activity.signal_permission_wait(session)
        elif tool:
            self._handle_tool(session, tool, status, entry)

    def _handle_tool(self, session: Session, tool: str, status: str, entry: dict[str, Any]) -> None:
        tool_status = format_openclaw_tool_status(tool, entry)
        if tool_status is None:
            return

        activity.finish_all_tools(session)
        if status in _END_STATUSES:
            return
        activity.begin_tools(
            session,
            [ToolCall(tool_id=next_tool_id(session), name=tool, status=tool_status, shell_like=tool in _SHELL_TOOLS)],
        )
