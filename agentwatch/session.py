"""Per-agent session state and the shared activity context."""
from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from agentwatch.events import ActivityEventBus
from agentwatch.models import ActiveToolSnapshot, ActivityTimings, SessionSnapshot

ApprovalPredicate = Callable[[str], bool]

APPROVAL_SIGNAL_PATTERNS = (
    re.compile(r"\bapprove\b", re.IGNORECASE),
    re.compile(r"\bapproval\b", re.IGNORECASE),
    re.compile(r"\ballow me to\b", re.IGNORECASE),
    re.compile(r"\bmay i\b", re.IGNORECASE),
    re.compile(r"\bpermission\b", re.IGNORECASE),
    re.compile(r"do you want me to", re.IGNORECASE),
    re.compile(r"would you like me to", re.IGNORECASE),
    re.compile(r"should i proceed", re.IGNORECASE),
    re.compile(r"can i proceed", re.IGNORECASE),
    re.compile(r"\bconfirm\b[^.!\n]*\?", re.IGNORECASE),
)


def looks_like_approval_prompt(text: str) -> bool:
    normalized = (text or "").strip()
    if not normalized:
        return False
    return any(pattern.search(normalized) for pattern in APPROVAL_SIGNAL_PATTERNS)


class ActivityContext:
    """Collaborators every session needs: the event bus, timings and heuristics."""

    def __init__(
        self,
        bus: ActivityEventBus,
        timings: Optional[ActivityTimings] = None,
        approval_predicate: Optional[ApprovalPredicate] = None,
    ):
        self.bus = bus
        self.timings = timings or ActivityTimings()
        self.approval_predicate: ApprovalPredicate = approval_predicate or looks_like_approval_prompt

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        loop = asyncio.get_running_loop()
        return loop.call_later(max(0.0, float(delay)), callback)


@dataclass
class ActiveTool:
    name: str
    status: str


@dataclass
class Session:
    id: int
    vendor: str
    context: ActivityContext = field(repr=False, compare=False)
    project_dir: str = ""
    transcript_path: str = ""
    workspace_path: str = ""
    launch_timestamp: Optional[float] = None
    byte_offset: int = 0
    line_buffer: bytes = b""
    active_tools: dict[str, ActiveTool] = field(default_factory=dict)
    active_subagent_tools: dict[str, dict[str, ActiveTool]] = field(default_factory=dict)
    is_waiting: bool = False
    permission_sent: bool = False
    had_tools_in_turn: bool = False
    synthetic_tool_seq: int = 0
    terminal_id: Optional[str] = None
    is_external: bool = False
    tmux_session_name: Optional[str] = None
    tmux_window_name: Optional[str] = None
    last_data_at: float = 0.0
    closed: bool = False

    waiting_timer: Optional[asyncio.TimerHandle] = field(default=None, repr=False, compare=False)
    permission_timer: Optional[asyncio.TimerHandle] = field(default=None, repr=False, compare=False)
    pending_callbacks: set = field(default_factory=set, repr=False, compare=False)
    watch: Optional[Any] = field(default=None, repr=False, compare=False)

    def emit(
        self,
        event_type: str,
        *,
        tool_id: Optional[str] = None,
        parent_tool_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> None:
        if self.closed:
            return
        self.context.bus.emit(
            event_type,
            self.id,
            tool_id=tool_id,
            parent_tool_id=parent_tool_id,
            status=status,
        )

    def schedule(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        """Run `callback` after `delay` unless the session is closed first."""
        handle: Optional[asyncio.TimerHandle] = None

        def _run() -> None:
            self.pending_callbacks.discard(handle)
            if not self.closed:
                callback()

        handle = self.context.call_later(delay, _run)
        self.pending_callbacks.add(handle)
        return handle

    def cancel_pending(self) -> None:
        for handle in list(self.pending_callbacks):
            handle.cancel()
        self.pending_callbacks.clear()

    def close(self) -> None:
        if self.waiting_timer is not None:
            self.waiting_timer.cancel()
            self.waiting_timer = None
        if self.permission_timer is not None:
            self.permission_timer.cancel()
            self.permission_timer = None
        self.cancel_pending()
        if self.watch is not None:
            self.watch.close()
            self.watch = None
        self.closed = True

    def snapshot(self) -> SessionSnapshot:
        sub_tools = [
            ActiveToolSnapshot(toolId=tool_id, name=tool.name, status=tool.status, parentToolId=parent_id)
            for parent_id, tools in self.active_subagent_tools.items()
            for tool_id, tool in tools.items()
        ]
        return SessionSnapshot(
            id=self.id,
            vendor=self.vendor,
            projectDir=self.project_dir,
            transcriptPath=self.transcript_path,
            workspacePath=self.workspace_path,
            byteOffset=self.byte_offset,
            isWaiting=self.is_waiting,
            permissionSent=self.permission_sent,
            hadToolsInTurn=self.had_tools_in_turn,
            isExternal=self.is_external,
            terminalId=self.terminal_id,
            tmuxSessionName=self.tmux_session_name,
            launchTimestamp=self.launch_timestamp,
            lastDataAt=self.last_data_at,
            activeTools=[
                ActiveToolSnapshot(toolId=tool_id, name=tool.name, status=tool.status)
                for tool_id, tool in self.active_tools.items()
            ],
            activeSubagentTools=sub_tools,
        )
