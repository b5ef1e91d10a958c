"""Claude Code JSONL transcript records → activity state."""
from __future__ import annotations

from typing import Any

from agentwatch.parsers import activity
from agentwatch.parsers.activity import SUBTASK_TOOL, ToolCall
from agentwatch.parsers.platforms.base import TranscriptParser, as_dict, as_str
from agentwatch.parsers.tool_status import CLAUDE_SHELL_LIKE_TOOLS, format_tool_status
from agentwatch.session import Session

_PROGRESS_TOOL_TYPES = {"bash_progress", "mcp_progress"}


def _blocks(content: Any) -> list[dict[str, Any]]:
    if not isinstance(content, list):
        return []
    return [block for block in content if isinstance(block, dict)]


def _tool_calls(blocks: list[dict[str, Any]]) -> list[ToolCall]:
    calls: list[ToolCall] = []
    for block in blocks:
        if block.get("type") != "tool_use":
            continue
        tool_id = as_str(block.get("id"))
        if not tool_id:
            continue
        name = as_str(block.get("name"))
        calls.append(
            ToolCall(
                tool_id=tool_id,
                name=name,
                status=format_tool_status(name, as_dict(block.get("input"))),
                shell_like=name in CLAUDE_SHELL_LIKE_TOOLS,
            )
        )
    return calls


def _tool_result_ids(blocks: list[dict[str, Any]]) -> list[str]:
    return [
        as_str(block.get("tool_use_id"))
        for block in blocks
        if block.get("type") == "tool_result" and as_str(block.get("tool_use_id"))
    ]


class ClaudeCodeParser(TranscriptParser):
    vendor = "claude"

    def handle_record(self, session: Session, record: dict[str, Any]) -> None:
        rec_type = record.get("type")
        content = as_dict(record.get("message")).get("content")

        if rec_type == "assistant":
            self._handle_assistant(session, content)
        elif rec_type == "user":
            self._handle_user(session, content)
        elif rec_type == "progress":
            self._handle_progress(session, record)
        elif rec_type == "system" and record.get("subtype") == "turn_duration":
            activity.end_turn(session)

    def _handle_assistant(self, session: Session, content: Any) -> None:
        blocks = _blocks(content)
        if any(block.get("type") == "tool_use" for block in blocks):
            activity.begin_tools(session, _tool_calls(blocks))
        elif any(block.get("type") == "text" for block in blocks):
            activity.note_assistant_text(session)

    def _handle_user(self, session: Session, content: Any) -> None:
        if isinstance(content, list):
            blocks = _blocks(content)
            if any(block.get("type") == "tool_result" for block in blocks):
                activity.finish_tools(session, _tool_result_ids(blocks))
            else:
                activity.start_user_turn(session)
        elif isinstance(content, str) and content.strip():
            activity.start_user_turn(session)

    def _handle_progress(self, session: Session, record: dict[str, Any]) -> None:
        parent_tool_id = as_str(record.get("parentToolUseID"))
        data = as_dict(record.get("data"))
        if not parent_tool_id or not data:
            return

        if data.get("type") in _PROGRESS_TOOL_TYPES:
            parent = session.active_tools.get(parent_tool_id)
            activity.rearm_permission_timer(
                session,
                parent_tool_id,
                shell_like=parent is not None and parent.name in CLAUDE_SHELL_LIKE_TOOLS,
            )
            return

        parent = session.active_tools.get(parent_tool_id)
        if parent is None or parent.name != SUBTASK_TOOL:
            return

        message = as_dict(data.get("message"))
        blocks = _blocks(as_dict(message.get("message")).get("content"))
        if not blocks:
            return

        if message.get("type") == "assistant":
            activity.begin_subagent_tools(session, parent_tool_id, _tool_calls(blocks))
        elif message.get("type") == "user":
            activity.finish_subagent_tools(session, parent_tool_id, _tool_result_ids(blocks))
