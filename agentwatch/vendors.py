"""Where each supported CLI keeps its transcripts and how to launch it."""
from __future__ import annotations

import datetime as dt
import os
import re
from dataclasses import dataclass
from typing import Callable, Optional

from agentwatch import config
from agentwatch.session_files import list_jsonl_files, list_jsonl_files_recursive

_UNSAFE_PATH_CHARS = re.compile(r"[^a-zA-Z0-9-]")


def hash_workspace_path(workspace_path: str) -> str:
    """Directory name Claude Code (and Opencode) derive from a workspace path."""
    return _UNSAFE_PATH_CHARS.sub("-", workspace_path)


def claude_project_dir(workspace_path: str) -> str:
    return str(config.CLAUDE_HOME / "projects" / hash_workspace_path(workspace_path))


def opencode_project_dir(workspace_path: str) -> str:
    return str(config.OPENCODE_HOME / "sessions" / hash_workspace_path(workspace_path))


def codex_sessions_root(_workspace_path: str = "") -> str:
    return str(config.CODEX_HOME / "sessions")


def openclaw_sessions_dir(_workspace_path: str = "") -> str:
    return str(config.OPENCLAW_HOME / "agents" / "main" / "sessions")


def codex_day_dirs(root: str, now: Optional[dt.datetime] = None, adjacent_days: Optional[int] = None) -> list[str]:
    """Date buckets (`YYYY/MM/DD`) around today, so sessions crossing midnight are seen."""
    today = (now or dt.datetime.now()).date()
    span = config.CODEX_SCAN_ADJACENT_DAYS if adjacent_days is None else adjacent_days
    days = [today + dt.timedelta(days=offset) for offset in range(-span, span + 1)]
    return [os.path.join(root, f"{d.year:04d}", f"{d.month:02d}", f"{d.day:02d}") for d in days]


def list_codex_transcripts(root: str) -> list[str]:
    files: list[str] = []
    for day_dir in codex_day_dirs(root):
        files.extend(list_jsonl_files_recursive(day_dir))
    return files


def predict_session_file(project_dir: str, session_uuid: str) -> str:
    return os.path.join(project_dir, f"{session_uuid}.jsonl")


def _pending(_project_dir: str, _session_uuid: str) -> str:
    return ""


@dataclass(frozen=True)
class VendorConfig:
    name: str
    label: str
    binary: str
    project_dir: Callable[[str], str]
    list_transcripts: Callable[[str], list[str]]
    predict_transcript: Callable[[str, str], str]
    launch_command: Callable[[str], str]
    # Transcripts share one root; ownership comes from the session_meta cwd.
    content_matched: bool = False
    # Sessions are discovered by watching the newest files, never launched.
    observer_mode: bool = False

    def tmux_project_dir(self, project_dir: str, workspace_path: str) -> str:
        """Path whose basename is the hashed workspace, for process cwd matching."""
        if self.content_matched or self.observer_mode:
            return hash_workspace_path(workspace_path)
        return project_dir


VENDORS: dict[str, VendorConfig] = {
    "claude": VendorConfig(
        name="claude",
        label="Claude Code",
        binary="claude",
        project_dir=claude_project_dir,
        list_transcripts=list_jsonl_files,
        predict_transcript=predict_session_file,
        launch_command=lambda session_uuid: f"claude --session-id {session_uuid}",
    ),
    "codex": VendorConfig(
        name="codex",
        label="Codex CLI",
        binary="codex",
        project_dir=codex_sessions_root,
        list_transcripts=list_codex_transcripts,
        predict_transcript=_pending,
        launch_command=lambda _session_uuid: "codex",
        content_matched=True,
    ),
    "opencode": VendorConfig(
        name="opencode",
        label="Opencode",
        binary="opencode",
        project_dir=opencode_project_dir,
        list_transcripts=list_jsonl_files,
        predict_transcript=predict_session_file,
        launch_command=lambda _session_uuid: "opencode",
    ),
    "openclaw": VendorConfig(
        name="openclaw",
        label="OpenClaw",
        binary="openclaw",
        project_dir=openclaw_sessions_dir,
        list_transcripts=list_jsonl_files,
        predict_transcript=_pending,
        launch_command=lambda _session_uuid: "",
        observer_mode=True,
    ),
}


def get_vendor(name: str) -> Optional[VendorConfig]:
    return VENDORS.get(name)
