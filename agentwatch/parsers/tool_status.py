"""Human-readable status strings for tool invocations."""
from __future__ import annotations

import os
from typing import Any

from agentwatch import config

ELLIPSIS = "…"

CODEX_SHELL_LIKE_TOOLS = frozenset({"exec_command", "shell", "shell_command"})
CLAUDE_SHELL_LIKE_TOOLS = frozenset({"Bash"})


def truncate_status_text(text: str, max_length: int) -> str:
    return f"{text[:max_length]}{ELLIPSIS}" if len(text) > max_length else text


def _basename(value: Any) -> str:
    return os.path.basename(value) if isinstance(value, str) else ""


def _first_path(args: dict[str, Any]) -> Any:
    for key in ("path", "file_path", "file", "filePath"):
        value = args.get(key)
        if isinstance(value, str) and value:
            return value
    return ""


def extract_shell_command(args: dict[str, Any]) -> str:
    cmd = args.get("cmd")
    if isinstance(cmd, str) and cmd.strip():
        return cmd

    command = args.get("command")
    if isinstance(command, str) and command.strip():
        return command
    if isinstance(command, list):
        return " ".join(part for part in command if isinstance(part, str)).strip()
    return ""


def _running(command: str, fallback: str = "Running command") -> str:
    if not command:
        return fallback
    return f"Running: {truncate_status_text(command, config.BASH_COMMAND_DISPLAY_MAX_LENGTH)}"


def _subtask(args: dict[str, Any]) -> str:
    desc = args.get("description")
    if isinstance(desc, str) and desc:
        return f"Subtask: {truncate_status_text(desc, config.TASK_DESCRIPTION_DISPLAY_MAX_LENGTH)}"
    return "Running subtask"


def format_tool_status(tool_name: str, args: dict[str, Any]) -> str:
    """Status for Claude Code tool names."""
    if tool_name == "Read":
        return f"Reading {_basename(args.get('file_path'))}"
    if tool_name == "Edit" or tool_name == "MultiEdit":
        return f"Editing {_basename(args.get('file_path'))}"
    if tool_name == "Write":
        return f"Writing {_basename(args.get('file_path'))}"
    if tool_name == "Bash":
        command = args.get("command")
        return f"Running: {truncate_status_text(command if isinstance(command, str) else '', config.BASH_COMMAND_DISPLAY_MAX_LENGTH)}"
    if tool_name == "Glob":
        return "Searching files"
    if tool_name == "Grep":
        return "Searching code"
    if tool_name == "WebFetch":
        return "Fetching web content"
    if tool_name == "WebSearch":
        return "Searching the web"
    if tool_name == "Task":
        return _subtask(args)
    if tool_name == "AskUserQuestion":
        return "Waiting for your answer"
    if tool_name == "EnterPlanMode":
        return "Planning"
    if tool_name == "NotebookEdit":
        return "Editing notebook"
    return f"Using {tool_name}"


def format_codex_tool_status(tool_name: str, args: dict[str, Any]) -> str:
    if tool_name in CODEX_SHELL_LIKE_TOOLS:
        return _running(extract_shell_command(args))
    if tool_name == "apply_patch":
        return "Editing files"
    if tool_name == "parallel":
        return "Running parallel tools"
    if tool_name.startswith("mcp__"):
        return f"Using {tool_name[len('mcp__'):].replace('__', ':')}"
    if "plan" in tool_name.lower():
        return "Planning"
    return f"Using {tool_name}"


def is_opencode_shell_like(tool_name: str) -> bool:
    normalized = tool_name.lower()
    return any(token in normalized for token in ("bash", "shell", "exec", "command"))


def format_opencode_tool_status(tool_name: str, args: dict[str, Any]) -> str:
    normalized = tool_name.lower()
    if "read" in normalized:
        return f"Reading {_basename(_first_path(args))}"
    if "write" in normalized:
        return f"Writing {_basename(_first_path(args))}"
    if "edit" in normalized or "patch" in normalized:
        return f"Editing {_basename(_first_path(args))}"
    if is_opencode_shell_like(tool_name):
        return f"Running: {truncate_status_text(extract_shell_command(args), config.BASH_COMMAND_DISPLAY_MAX_LENGTH)}"
    if "search" in normalized or "grep" in normalized or "find" in normalized:
        return "Searching code"
    if "glob" in normalized or "list" in normalized or normalized == "ls":
        return "Searching files"
    if "web" in normalized or "fetch" in normalized or "http" in normalized:
        return "Fetching web content"
    if "task" in normalized or "agent" in normalized:
        return _subtask(args)
    return f"Using {tool_name}"


def format_openclaw_tool_status(tool: str, entry: dict[str, Any]) -> str | None:
    """Status for OpenClaw log entries, or None for tools we do not track."""
    if tool in ("read", "web_fetch"):
        name = _basename(entry.get("file"))
        return f"Reading {name}" if name else f"Reading{ELLIPSIS}"
    if tool in ("write", "edit"):
        name = _basename(entry.get("file"))
        return f"Editing {name}" if name else f"Editing{ELLIPSIS}"
    if tool == "exec":
        command = entry.get("command")
        return _running(command if isinstance(command, str) else "", f"Running command{ELLIPSIS}")
    return None
