"""tmux sessions and windows created for launched agents."""
from __future__ import annotations

import logging
import subprocess
from typing import Optional

from agentwatch import config

logger = logging.getLogger("agentwatch.tmux")


def build_session_name(session_id: int, session_uuid: str, prefix: Optional[str] = None) -> str:
    return f"{prefix or config.TMUX_SESSION_PREFIX}{session_id}-{session_uuid}"


class TmuxSessions:
    def __init__(self, *, timeout: Optional[float] = None):
        self.timeout = config.SUBPROCESS_TIMEOUT_SECONDS if timeout is None else timeout
        self._available: Optional[bool] = None

    def _tmux(self, *args: str) -> Optional[subprocess.CompletedProcess]:
        try:
            return subprocess.run(
                ["tmux", *args],
                capture_output=True,
                text=True,
                check=False,
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired):
            logger.debug("tmux %s failed", " ".join(args), exc_info=True)
            return None

    def available(self) -> bool:
        if self._available is None:
            result = self._tmux("-V")
            self._available = result is not None and result.returncode == 0
            if not self._available:
                logger.warning("tmux is not available; launched agents will not get tmux windows")
        return self._available

    def session_exists(self, session_name: str) -> bool:
        result = self._tmux("has-session", "-t", session_name)
        return result is not None and result.returncode == 0

    def create_session(self, session_name: str, window_name: str, cwd: str) -> bool:
        result = self._tmux("new-session", "-d", "-s", session_name, "-n", window_name, "-c", cwd)
        return result is not None and result.returncode == 0

    def create_window(self, session_name: str, window_name: str, cwd: str) -> bool:
        result = self._tmux("new-window", "-t", session_name, "-n", window_name, "-c", cwd)
        return result is not None and result.returncode == 0

    def ensure_window(self, session_name: str, window_name: str, cwd: str) -> bool:
        if self.session_exists(session_name):
            return self.create_window(session_name, window_name, cwd)
        return self.create_session(session_name, window_name, cwd)

    def send_keys(self, session_name: str, window_name: str, keys: str) -> bool:
        result = self._tmux("send-keys", "-t", f"{session_name}:{window_name}", keys, "Enter")
        return result is not None and result.returncode == 0

    def kill_session(self, session_name: str) -> None:
        self._tmux("kill-session", "-t", session_name)
