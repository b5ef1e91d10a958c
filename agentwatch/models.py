"""Pydantic models matching the visualization layer's message types."""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from agentwatch import config

# ── Canonical activity event types ─────────────────────────────────

TOOL_START = "tool-start"
TOOL_DONE = "tool-done"
TOOLS_CLEAR = "tools-clear"
STATUS_ACTIVE = "status-active"
STATUS_WAITING = "status-waiting"
PERMISSION_WAIT = "permission-wait"
PERMISSION_CLEAR = "permission-clear"
SUBAGENT_TOOL_START = "subagent-tool-start"
SUBAGENT_TOOL_DONE = "subagent-tool-done"
SUBAGENT_CLEAR = "subagent-clear"
SESSION_CREATED = "session-created"
SESSION_CLOSED = "session-closed"


class ActivityEvent(BaseModel):
    type: str
    sessionId: int
    toolId: Optional[str] = None
    parentToolId: Optional[str] = None
    status: Optional[str] = None
    timestamp: float = 0.0


# ── Timing ──────────────────────────────────────────────────────────

class ActivityTimings(BaseModel):
    toolDoneDelay: float = Field(default_factory=lambda: config.TOOL_DONE_DELAY_SECONDS)
    waitingDelay: float = Field(default_factory=lambda: config.WAITING_DELAY_SECONDS)
    permissionDelay: float = Field(default_factory=lambda: config.PERMISSION_DELAY_SECONDS)
    permissionShellDelay: float = Field(default_factory=lambda: config.PERMISSION_SHELL_DELAY_SECONDS)


# ── Session snapshots ──────────────────────────────────────────────

class ActiveToolSnapshot(BaseModel):
    toolId: str
    name: str = ""
    status: str = ""
    parentToolId: Optional[str] = None


class SessionSnapshot(BaseModel):
    id: int
    vendor: str
    projectDir: str = ""
    transcriptPath: str = ""
    workspacePath: str = ""
    byteOffset: int = 0
    isWaiting: bool = False
    permissionSent: bool = False
    hadToolsInTurn: bool = False
    isExternal: bool = False
    terminalId: Optional[str] = None
    tmuxSessionName: Optional[str] = None
    launchTimestamp: Optional[float] = None
    lastDataAt: float = 0.0
    activeTools: list[ActiveToolSnapshot] = Field(default_factory=list)
    activeSubagentTools: list[ActiveToolSnapshot] = Field(default_factory=list)


# ── Requests ───────────────────────────────────────────────────────

class LaunchSessionRequest(BaseModel):
    vendor: str = "claude"
    workspacePath: str
    terminalId: Optional[str] = None
    useTmux: bool = False


class FocusTerminalRequest(BaseModel):
    terminalId: Optional[str] = None
