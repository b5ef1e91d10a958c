"""Codex CLI rollout records (`response_item` / `event_msg` envelopes)."""
from __future__ import annotations

import json
from typing import Any

from agentwatch.parsers import activity
from agentwatch.parsers.activity import ToolCall
from agentwatch.parsers.platforms.base import TranscriptParser, as_dict, as_str
from agentwatch.parsers.tool_status import CODEX_SHELL_LIKE_TOOLS, format_codex_tool_status
from agentwatch.session import Session

_TOOL_CALL_TYPES = {"function_call", "custom_tool_call"}
_TOOL_OUTPUT_TYPES = {"function_call_output", "custom_tool_call_output"}
_TEXT_PART_TYPES = {"output_text", "input_text", "text"}


def parse_tool_input(payload: dict[str, Any]) -> dict[str, Any]:
    """Arguments arrive as a JSON string for function calls and raw input for custom tools."""
    args = payload.get("arguments")
    if isinstance(args, str):
        try:
            parsed = json.loads(args)
        except ValueError:
            parsed = None
        if isinstance(parsed, dict):
            return parsed
    elif isinstance(args, dict):
        return args

    raw_input = payload.get("input")
    if isinstance(raw_input, dict):
        return raw_input
    if isinstance(raw_input, str):
        return {"input": raw_input}
    return {}


def extract_message_text(content: Any) -> str:
    if not isinstance(content, list):
        return ""
    chunks = [
        part["text"]
        for part in content
        if isinstance(part, dict)
        and part.get("type") in _TEXT_PART_TYPES
        and isinstance(part.get("text"), str)
    ]
    return " ".join(chunks).strip()


class CodexParser(TranscriptParser):
    vendor = "codex"

    def handle_record(self, session: Session, record: dict[str, Any]) -> None:
        payload = as_dict(record.get("payload"))
        if not payload:
            return
        if record.get("type") == "response_item":
            self._handle_response_item(session, payload)
        elif record.get("type") == "event_msg":
            self._handle_event(session, payload)

    def _handle_response_item(self, session: Session, payload: dict[str, Any]) -> None:
        payload_type = payload.get("type")

        if payload_type in _TOOL_CALL_TYPES:
            tool_id = as_str(payload.get("call_id"))
            if not tool_id:
                return
            name = as_str(payload.get("name"))
            activity.begin_tools(
                session,
                [
                    ToolCall(
                        tool_id=tool_id,
                        name=name,
                        status=format_codex_tool_status(name, parse_tool_input(payload)),
                        shell_like=name in CODEX_SHELL_LIKE_TOOLS,
                    )
                ],
            )
            return

        if payload_type in _TOOL_OUTPUT_TYPES:
            activity.finish_tools(session, [as_str(payload.get("call_id"))])
            return

        if payload_type == "message" and payload.get("role") == "assistant":
            if payload.get("phase") == "final_answer":
                activity.end_turn(session)
                return
            text = extract_message_text(payload.get("content"))
            if text and not activity.signal_permission_from_text(session, text):
                activity.note_assistant_text(session)

    def _handle_event(self, session: Session, payload: dict[str, Any]) -> None:
        event_type = payload.get("type")

        if event_type == "task_started":
            activity.mark_active(session)
        elif event_type in ("user_message", "turn_aborted"):
            activity.start_user_turn(session)
        elif event_type == "task_complete":
            activity.end_turn(session)
        elif event_type == "agent_message":
            message = as_str(payload.get("message"))
            if message:
                activity.signal_permission_from_text(session, message)
