"""Opencode session transcripts.

Opencode has shipped several JSONL layouts, so this parser accepts all of
them: Claude-compatible `type` records are delegated, role-based messages and
standalone `tool_call` / `tool_result` records are translated here, and
`status` / `event` records mark turn boundaries.
"""
from __future__ import annotations

import json
from typing import Any

from agentwatch.parsers import activity
from agentwatch.parsers.activity import ToolCall
from agentwatch.parsers.platforms.base import TranscriptParser, as_dict, as_str
from agentwatch.parsers.platforms.claude_code.parser import ClaudeCodeParser
from agentwatch.parsers.tool_status import format_opencode_tool_status, is_opencode_shell_like
from agentwatch.session import Session

_CLAUDE_RECORD_TYPES = {"assistant", "user", "system", "progress"}
_TOOL_CALL_BLOCKS = {"tool_use", "tool_call", "function_call"}
_TOOL_RESULT_BLOCKS = {"tool_result", "function_result"}
_IDLE_STATUSES = {"idle", "done", "waiting"}
_BUSY_STATUSES = {"thinking", "running", "active"}
_TURN_END_EVENTS = {"turn_end", "turn_complete"}


def _arguments(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except ValueError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def _tool_call(tool_id: str, name: str, args: dict[str, Any]) -> ToolCall:
    return ToolCall(
        tool_id=tool_id,
        name=name,
        status=format_opencode_tool_status(name, args),
        shell_like=is_opencode_shell_like(name),
    )


def _block_tool_call(block: dict[str, Any]) -> ToolCall | None:
    tool_id = as_str(block.get("id")) or as_str(block.get("call_id"))
    if not tool_id:
        return None
    function = as_dict(block.get("function"))
    name = as_str(block.get("name")) or as_str(function.get("name"))
    args = block.get("input") or block.get("arguments") or function.get("arguments")
    return _tool_call(tool_id, name, _arguments(args))


class OpencodeParser(TranscriptParser):
    vendor = "opencode"

    def __init__(self, claude_parser: ClaudeCodeParser | None = None):
        self._claude = claude_parser or ClaudeCodeParser()

    def handle_record(self, session: Session, record: dict[str, Any]) -> None:
        rec_type = record.get("type")

        if rec_type in _CLAUDE_RECORD_TYPES:
            self._claude.handle_record(session, record)
            return

        role = record.get("role")
        if role == "assistant":
            self._handle_assistant(session, record.get("content"))
            return
        if role == "user":
            self._handle_user(session, record.get("content"))
            return

        if rec_type == "tool_call":
            self._handle_tool_call(session, record)
        elif rec_type == "tool_result":
            tool_id = (
                as_str(record.get("id"))
                or as_str(record.get("tool_use_id"))
                or as_str(record.get("call_id"))
            )
            activity.finish_tools(session, [tool_id])
        elif rec_type == "status":
            status = as_str(record.get("status")).lower()
            if status in _IDLE_STATUSES:
                activity.end_turn(session)
            elif status in _BUSY_STATUSES:
                activity.mark_active(session)
        elif rec_type == "event" and record.get("event") in _TURN_END_EVENTS:
            activity.end_turn(session)

    def _handle_assistant(self, session: Session, content: Any) -> None:
        if isinstance(content, str):
            activity.note_assistant_text(session)
            return
        if not isinstance(content, list):
            return

        blocks = [block for block in content if isinstance(block, dict)]
        calls = [
            call
            for call in (_block_tool_call(b) for b in blocks if b.get("type") in _TOOL_CALL_BLOCKS)
            if call is not None
        ]
        if calls:
            activity.begin_tools(session, calls)
        elif any(block.get("type") == "text" for block in blocks):
            activity.note_assistant_text(session)

    def _handle_user(self, session: Session, content: Any) -> None:
        if isinstance(content, str):
            if content.strip():
                activity.start_user_turn(session)
            return
        if not isinstance(content, list):
            return

        blocks = [block for block in content if isinstance(block, dict)]
        results = [block for block in blocks if block.get("type") in _TOOL_RESULT_BLOCKS]
        if not results:
            activity.start_user_turn(session)
            return
        activity.finish_tools(
            session,
            [
                as_str(block.get("tool_use_id")) or as_str(block.get("call_id")) or as_str(block.get("id"))
                for block in results
            ],
        )

    def _handle_tool_call(self, session: Session, record: dict[str, Any]) -> None:
        tool_id = as_str(record.get("id")) or as_str(record.get("call_id"))
        if not tool_id:
            return
        function = record.get("function")
        name = as_str(record.get("name")) or as_str(function) or as_str(as_dict(function).get("name"))
        args = record.get("arguments") or record.get("input")
        activity.begin_tools(session, [_tool_call(tool_id, name, _arguments(args))])
