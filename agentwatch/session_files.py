"""Filesystem helpers for locating and matching transcript files."""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Optional

from agentwatch import config

logger = logging.getLogger("agentwatch.scanner")

TRANSCRIPT_SUFFIX = ".jsonl"


def list_jsonl_files(directory: str | Path) -> list[str]:
    """Transcripts directly inside `directory`; a missing directory yields nothing."""
    try:
        entries = list(os.scandir(directory))
    except OSError:
        return []
    return sorted(
        entry.path
        for entry in entries
        if entry.name.endswith(TRANSCRIPT_SUFFIX) and entry.is_file()
    )


def list_jsonl_files_recursive(root: str | Path) -> list[str]:
    files: list[str] = []
    stack = [str(root)]
    while stack:
        directory = stack.pop()
        try:
            entries = list(os.scandir(directory))
        except OSError:
            continue
        for entry in entries:
            if entry.is_dir(follow_symlinks=False):
                stack.append(entry.path)
            elif entry.is_file() and entry.name.endswith(TRANSCRIPT_SUFFIX):
                files.append(entry.path)
    return sorted(files)


def file_mtime(path: str | Path) -> Optional[float]:
    try:
        return os.stat(path).st_mtime
    except OSError:
        return None


def read_first_line(path: str | Path) -> str:
    """Read up to the first newline in bounded chunks."""
    chunk_size = config.CODEX_SESSION_META_READ_CHUNK_BYTES
    limit = config.CODEX_SESSION_META_READ_MAX_BYTES
    data = b""
    with open(path, "rb") as handle:
        while len(data) < limit and b"\n" not in data:
            chunk = handle.read(chunk_size)
            if not chunk:
                break
            data += chunk
    return data.split(b"\n", 1)[0].decode("utf-8", errors="replace")


def read_codex_session_cwd(path: str | Path) -> Optional[str]:
    """Return `payload.cwd` of a Codex `session_meta` first line, if present."""
    try:
        line = read_first_line(path)
    except OSError:
        logger.debug("Could not read session metadata from %s", path, exc_info=True)
        return None
    if not line.strip():
        return None
    try:
        record = json.loads(line)
    except ValueError:
        return None
    if not isinstance(record, dict) or record.get("type") != "session_meta":
        return None
    payload = record.get("payload")
    cwd = payload.get("cwd") if isinstance(payload, dict) else None
    return cwd if isinstance(cwd, str) and cwd else None


def same_path(left: str, right: str) -> bool:
    return os.path.realpath(os.path.abspath(left)) == os.path.realpath(os.path.abspath(right))


def matches_workspace(
    path: str | Path,
    workspace_path: Optional[str],
    launch_timestamp: Optional[float] = None,
    skew_seconds: Optional[float] = None,
) -> bool:
    """Whether a content-matchable transcript belongs to `workspace_path`.

    The declared cwd must resolve to the workspace. When a launch timestamp is
    known the file must also not predate the launch by more than the skew.
    """
    if not workspace_path:
        return True
    cwd = read_codex_session_cwd(path)
    if not cwd or not same_path(cwd, workspace_path):
        return False
    if launch_timestamp is None:
        return True
    mtime = file_mtime(path)
    if mtime is None:
        return False
    skew = config.WORKSPACE_MATCH_SKEW_SECONDS if skew_seconds is None else skew_seconds
    return mtime >= launch_timestamp - skew
