"""Find the tmux session hosting an agent CLI process.

The lookup is advisory: every OS call is bounded by a timeout and any failure
(missing binary, exited process, no tmux server) degrades to `None`.
"""
from __future__ import annotations

import logging
import os
import subprocess
from typing import Callable, Optional

from agentwatch import config
from agentwatch.vendors import hash_workspace_path

logger = logging.getLogger("agentwatch.tmux")


def parse_pids(output: str) -> list[int]:
    pids: list[int] = []
    for token in output.split():
        try:
            pids.append(int(token))
        except ValueError:
            continue
    return pids


def parse_lsof_cwd(output: str) -> Optional[str]:
    """`lsof -Fn` prints `fcwd` followed by an `n<path>` line for the cwd."""
    lines = output.splitlines()
    for index, line in enumerate(lines):
        if line == "fcwd" and index + 1 < len(lines) and lines[index + 1].startswith("n"):
            return lines[index + 1][1:]
    return None


def parse_pane_map(output: str) -> dict[int, str]:
    panes: dict[int, str] = {}
    for line in output.splitlines():
        pid_text, _, session_name = line.strip().partition(" ")
        if not session_name:
            continue
        try:
            panes[int(pid_text)] = session_name
        except ValueError:
            continue
    return panes


class TmuxResolver:
    def __init__(
        self,
        *,
        timeout: Optional[float] = None,
        max_depth: Optional[int] = None,
        proc_root: str = "/proc",
    ):
        self.timeout = config.SUBPROCESS_TIMEOUT_SECONDS if timeout is None else timeout
        self.max_depth = config.TMUX_MAX_TREE_WALK_DEPTH if max_depth is None else max_depth
        self.proc_root = proc_root
        self._reported_missing: set[str] = set()

    def _run(self, args: list[str]) -> Optional[str]:
        try:
            result = subprocess.run(
                args,
                capture_output=True,
                text=True,
                check=False,
                timeout=self.timeout,
            )
        except FileNotFoundError:
            if args[0] not in self._reported_missing:
                self._reported_missing.add(args[0])
                logger.warning("%s is not installed; tmux session resolution is degraded", args[0])
            return None
        except (OSError, subprocess.TimeoutExpired):
            logger.debug("Command failed: %s", " ".join(args), exc_info=True)
            return None
        if result.returncode != 0:
            return None
        return result.stdout

    def find_pids(self, binary: str) -> list[int]:
        output = self._run(["pgrep", "-x", binary])
        return parse_pids(output) if output else []

    def process_cwd(self, pid: int) -> Optional[str]:
        output = self._run(["lsof", "-a", "-p", str(pid), "-d", "cwd", "-Fn"])
        cwd = parse_lsof_cwd(output) if output else None
        if cwd:
            return cwd
        try:
            return os.readlink(os.path.join(self.proc_root, str(pid), "cwd"))
        except OSError:
            return None

    def find_pids_for_project(
        self,
        project_dir: str,
        binary: str = "claude",
        hash_dir: Callable[[str], str] = hash_workspace_path,
    ) -> list[int]:
        expected = os.path.basename(os.path.normpath(project_dir))
        matches: list[int] = []
        for pid in self.find_pids(binary):
            cwd = self.process_cwd(pid)
            if cwd and hash_dir(cwd) == expected:
                matches.append(pid)
        return matches

    def parent_pid(self, pid: int) -> Optional[int]:
        output = self._run(["ps", "-o", "ppid=", "-p", str(pid)])
        if not output:
            return None
        try:
            ppid = int(output.strip())
        except ValueError:
            return None
        return ppid if ppid > 1 else None

    def pane_map(self) -> dict[int, str]:
        output = self._run(["tmux", "list-panes", "-a", "-F", "#{pane_pid} #{session_name}"])
        return parse_pane_map(output) if output else {}

    def session_for_pid(self, pid: int, panes: dict[int, str]) -> Optional[str]:
        current: Optional[int] = pid
        for _ in range(self.max_depth):
            if current is None:
                break
            session_name = panes.get(current)
            if session_name:
                return session_name
            current = self.parent_pid(current)
        return None

    def resolve_tmux_session(
        self,
        project_dir: str,
        binary: str = "claude",
        hash_dir: Callable[[str], str] = hash_workspace_path,
    ) -> Optional[str]:
        """Name of the tmux session whose pane ancestors host `binary` running in `project_dir`."""
        pids = self.find_pids_for_project(project_dir, binary, hash_dir)
        if not pids:
            return None
        panes = self.pane_map()
        if not panes:
            return None
        for pid in pids:
            session_name = self.session_for_pid(pid, panes)
            if session_name:
                logger.info("Resolved %s pid %s to tmux session %s", binary, pid, session_name)
                return session_name
        return None
