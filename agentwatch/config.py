"""agentwatch configuration."""
import os
from pathlib import Path


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    value = os.getenv(name)
    if not value or not value.strip():
        return default
    return Path(value).expanduser()


HOME = Path.home()

# Vendor transcript roots
CLAUDE_HOME = _env_path("AGENTWATCH_CLAUDE_HOME", HOME / ".claude")
CODEX_HOME = _env_path("AGENTWATCH_CODEX_HOME", HOME / ".codex")
OPENCODE_HOME = _env_path(
    "AGENTWATCH_OPENCODE_HOME",
    _env_path("OPENCODE_HOME", HOME / ".local" / "share" / "opencode"),
)
OPENCLAW_HOME = _env_path("AGENTWATCH_OPENCLAW_HOME", HOME / ".openclaw")

# Activity timing (seconds)
TOOL_DONE_DELAY_SECONDS = _env_float("AGENTWATCH_TOOL_DONE_DELAY_SECONDS", 0.3)
WAITING_DELAY_SECONDS = _env_float("AGENTWATCH_WAITING_DELAY_SECONDS", 5.0)
PERMISSION_DELAY_SECONDS = _env_float("AGENTWATCH_PERMISSION_DELAY_SECONDS", 7.0)
PERMISSION_SHELL_DELAY_SECONDS = _env_float("AGENTWATCH_PERMISSION_SHELL_DELAY_SECONDS", 15.0)

# File tailing / scanning cadence (seconds)
FILE_STAT_POLL_INTERVAL_SECONDS = _env_float("AGENTWATCH_FILE_STAT_POLL_INTERVAL_SECONDS", 2.0)
FILE_BACKSTOP_POLL_INTERVAL_SECONDS = _env_float("AGENTWATCH_FILE_BACKSTOP_POLL_INTERVAL_SECONDS", 2.0)
FILE_NATIVE_WATCH_ENABLED = _env_bool("AGENTWATCH_FILE_NATIVE_WATCH_ENABLED", True)
TRANSCRIPT_POLL_INTERVAL_SECONDS = _env_float("AGENTWATCH_TRANSCRIPT_POLL_INTERVAL_SECONDS", 1.0)
PROJECT_SCAN_INTERVAL_SECONDS = _env_float("AGENTWATCH_PROJECT_SCAN_INTERVAL_SECONDS", 1.0)
WORKSPACE_MATCH_SKEW_SECONDS = _env_float("AGENTWATCH_WORKSPACE_MATCH_SKEW_SECONDS", 3.0)

# External (independently started) sessions
EXTERNAL_SCAN_ENABLED = _env_bool("AGENTWATCH_EXTERNAL_SCAN_ENABLED", False)
EXTERNAL_SCAN_WORKSPACES = [
    part.strip()
    for part in os.getenv("AGENTWATCH_EXTERNAL_SCAN_WORKSPACES", "").split(os.pathsep)
    if part.strip()
]
EXTERNAL_SCAN_VENDOR = os.getenv("AGENTWATCH_EXTERNAL_SCAN_VENDOR", "claude")
EXTERNAL_SCAN_INTERVAL_SECONDS = _env_float("AGENTWATCH_EXTERNAL_SCAN_INTERVAL_SECONDS", 3.0)
EXTERNAL_ACTIVE_THRESHOLD_SECONDS = _env_float("AGENTWATCH_EXTERNAL_ACTIVE_THRESHOLD_SECONDS", 60.0)
EXTERNAL_STALE_TIMEOUT_SECONDS = _env_float("AGENTWATCH_EXTERNAL_STALE_TIMEOUT_SECONDS", 300.0)
EXTERNAL_STALE_CHECK_INTERVAL_SECONDS = _env_float("AGENTWATCH_EXTERNAL_STALE_CHECK_INTERVAL_SECONDS", 30.0)

# Observer-mode vendors (sessions are adopted, never launched)
OBSERVER_ENABLED = _env_bool("AGENTWATCH_OBSERVER_ENABLED", False)
OBSERVER_VENDOR = os.getenv("AGENTWATCH_OBSERVER_VENDOR", "openclaw")
OBSERVER_MAX_SESSIONS = _env_int("AGENTWATCH_OBSERVER_MAX_SESSIONS", 1)
OBSERVER_MAX_SESSION_AGE_MINUTES = _env_int("AGENTWATCH_OBSERVER_MAX_SESSION_AGE_MINUTES", 30)

# Display truncation
BASH_COMMAND_DISPLAY_MAX_LENGTH = _env_int("AGENTWATCH_BASH_COMMAND_DISPLAY_MAX_LENGTH", 30)
TASK_DESCRIPTION_DISPLAY_MAX_LENGTH = _env_int("AGENTWATCH_TASK_DESCRIPTION_DISPLAY_MAX_LENGTH", 40)

# Codex session metadata
CODEX_SCAN_ADJACENT_DAYS = _env_int("AGENTWATCH_CODEX_SCAN_ADJACENT_DAYS", 1)
CODEX_SESSION_META_READ_CHUNK_BYTES = 16384
CODEX_SESSION_META_READ_MAX_BYTES = 1048576

# Process / tmux introspection
SUBPROCESS_TIMEOUT_SECONDS = _env_float("AGENTWATCH_SUBPROCESS_TIMEOUT_SECONDS", 3.0)
TMUX_MAX_TREE_WALK_DEPTH = _env_int("AGENTWATCH_TMUX_MAX_TREE_WALK_DEPTH", 10)
TMUX_SESSION_PREFIX = os.getenv("AGENTWATCH_TMUX_SESSION_PREFIX", "agentwatch-")

# Event bus
EVENT_HISTORY_LIMIT = _env_int("AGENTWATCH_EVENT_HISTORY_LIMIT", 200)
EVENT_STREAM_QUEUE_SIZE = _env_int("AGENTWATCH_EVENT_STREAM_QUEUE_SIZE", 1000)

# Observability
OTEL_ENABLED = _env_bool("AGENTWATCH_OTEL_ENABLED", False)
OTEL_ENDPOINT = os.getenv("AGENTWATCH_OTEL_ENDPOINT", "http://localhost:4318")
OTEL_SERVICE_NAME = os.getenv("AGENTWATCH_OTEL_SERVICE_NAME", "agentwatch")
PROM_PORT = _env_int("AGENTWATCH_PROM_PORT", 9464)

# Server settings
HOST = os.getenv("AGENTWATCH_HOST", "127.0.0.1")
PORT = int(os.getenv("AGENTWATCH_PORT", "8765"))

# CORS
FRONTEND_ORIGIN = os.getenv("AGENTWATCH_FRONTEND_ORIGIN", "http://localhost:5173")
