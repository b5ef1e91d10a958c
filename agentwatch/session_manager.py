"""Session table, focus tracking and wiring between scanners and the tailer."""
from __future__ import annotations

import asyncio
import itertools
import logging
import os
import time
import uuid
from typing import Callable, Optional

from agentwatch import config
from agentwatch.models import SESSION_CLOSED, SESSION_CREATED, SessionSnapshot
from agentwatch.services.tmux_resolver import TmuxResolver
from agentwatch.services.tmux_sessions import TmuxSessions, build_session_name
from agentwatch.session import ActivityContext, Session
from agentwatch.timers import cancel_permission_timer, cancel_waiting_timer, clear_activity
from agentwatch.vendors import VendorConfig, get_vendor
from agentwatch.watch.external_scanner import ExternalSessionScanner
from agentwatch.watch.file_tailer import FileTailer
from agentwatch.watch.project_scanner import ProjectScanner

logger = logging.getLogger("agentwatch.sessions")


class SessionManager:
    """Owns every observed session and decides which one is in focus.

    All methods run on the event loop thread; methods that start watches or
    scans need a running loop.
    """

    def __init__(
        self,
        context: ActivityContext,
        tailer: Optional[FileTailer] = None,
        resolver: Optional[TmuxResolver] = None,
        tmux: Optional[TmuxSessions] = None,
        *,
        transcript_poll_interval: Optional[float] = None,
        scan_interval: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.context = context
        self.tailer = tailer or FileTailer()
        self.resolver = resolver or TmuxResolver()
        self.tmux = tmux or TmuxSessions()
        self.transcript_poll_interval = (
            config.TRANSCRIPT_POLL_INTERVAL_SECONDS if transcript_poll_interval is None else transcript_poll_interval
        )
        self.scan_interval = scan_interval
        self._clock = clock
        self._ids = itertools.count(1)

        self.sessions: dict[int, Session] = {}
        self.focused_session_id: Optional[int] = None
        self.focused_terminal: Optional[str] = None
        self.scanners: dict[tuple[str, str], ProjectScanner] = {}
        self.external_scanners: list[ExternalSessionScanner] = []
        self._transcript_polls: dict[int, asyncio.Task] = {}

    # ── Lookup ──────────────────────────────────────────────────────

    def resolve_vendor(self, vendor_name: str) -> VendorConfig:
        vendor = get_vendor(vendor_name)
        if vendor is None:
            raise ValueError(f"Unsupported vendor: {vendor_name}")
        return vendor

    def get(self, session_id: int) -> Optional[Session]:
        return self.sessions.get(session_id)

    def sessions_for_vendor(self, vendor_name: str) -> list[Session]:
        return [s for s in self.sessions.values() if s.vendor == vendor_name]

    def is_file_tracked(self, path: str) -> bool:
        return any(s.transcript_path == path for s in self.sessions.values())

    def terminal_owner(self, terminal_id: str) -> Optional[Session]:
        for session in self.sessions.values():
            if session.terminal_id is not None and session.terminal_id == terminal_id:
                return session
        return None

    @property
    def focused_session(self) -> Optional[Session]:
        if self.focused_session_id is None:
            return None
        return self.sessions.get(self.focused_session_id)

    def focused_session_for(self, vendor_name: str, project_dir: str) -> Optional[Session]:
        session = self.focused_session
        if session is None or session.vendor != vendor_name or session.project_dir != project_dir:
            return None
        return session

    def has_pending_transcript(self, vendor_name: str, project_dir: str) -> bool:
        """True while a session of this vendor/project has no transcript path yet."""
        return any(
            not s.transcript_path and s.project_dir == project_dir
            for s in self.sessions_for_vendor(vendor_name)
        )

    def snapshot(self) -> list[SessionSnapshot]:
        return [session.snapshot() for session in self.sessions.values()]

    # ── Focus ───────────────────────────────────────────────────────

    def focus_session(self, session_id: Optional[int]) -> bool:
        if session_id is not None and session_id not in self.sessions:
            return False
        self.focused_session_id = session_id
        return True

    def focus_terminal(self, terminal_id: Optional[str]) -> Optional[Session]:
        """Record the focused terminal; the session owning it (if any) gains focus."""
        self.focused_terminal = terminal_id
        owner = self.terminal_owner(terminal_id) if terminal_id is not None else None
        self.focused_session_id = owner.id if owner is not None else None
        return owner

    # ── Creation ────────────────────────────────────────────────────

    def _register(self, vendor: VendorConfig, project_dir: str, transcript_path: str, **fields) -> Session:
        session = Session(
            id=next(self._ids),
            vendor=vendor.name,
            context=self.context,
            project_dir=project_dir,
            transcript_path=transcript_path,
            **fields,
        )
        self.sessions[session.id] = session
        session.emit(SESSION_CREATED)
        logger.info(
            "Session %s (%s) created for %s",
            session.id, vendor.name, os.path.basename(transcript_path) or "pending transcript",
        )
        return session

    def ensure_scan(self, vendor_name: str, project_dir: str, workspace_path: str = "") -> ProjectScanner:
        vendor = self.resolve_vendor(vendor_name)
        scanner = self.scanners.get((vendor.name, project_dir))
        if scanner is None:
            scanner = ProjectScanner(self, vendor, project_dir, workspace_path, interval=self.scan_interval)
            self.scanners[scanner.key] = scanner
        scanner.start()
        return scanner

    def _begin_tailing(self, session: Session) -> None:
        self.tailer.start_watching(session)
        self.tailer.read_new_lines(session)

    async def _await_transcript(self, session: Session) -> None:
        try:
            while not session.closed:
                if session.transcript_path and os.path.exists(session.transcript_path):
                    logger.info("Session %s: transcript %s appeared", session.id, session.transcript_path)
                    self._begin_tailing(session)
                    return
                await asyncio.sleep(self.transcript_poll_interval)
        except asyncio.CancelledError:
            logger.debug("Session %s: transcript poll cancelled", session.id)
        finally:
            if self._transcript_polls.get(session.id) is asyncio.current_task():
                self._transcript_polls.pop(session.id, None)

    def _cancel_transcript_poll(self, session_id: int) -> None:
        task = self._transcript_polls.pop(session_id, None)
        if task is not None:
            task.cancel()

    def launch_session(
        self,
        vendor_name: str,
        workspace_path: str,
        terminal_id: Optional[str] = None,
        use_tmux: bool = False,
    ) -> Session:
        vendor = self.resolve_vendor(vendor_name)
        if vendor.observer_mode:
            raise ValueError(f"{vendor.label} sessions are observed, not launched")
        if not workspace_path:
            raise ValueError("A workspace path is required")

        session_uuid = str(uuid.uuid4())
        project_dir = vendor.project_dir(workspace_path)
        predicted = vendor.predict_transcript(project_dir, session_uuid)
        session = self._register(
            vendor,
            project_dir,
            predicted,
            workspace_path=workspace_path,
            terminal_id=terminal_id,
            launch_timestamp=self._clock() if vendor.content_matched else None,
        )
        self.focused_session_id = session.id
        if terminal_id is not None:
            self.focused_terminal = terminal_id

        scanner = self.ensure_scan(vendor.name, project_dir, workspace_path)
        scanner.mark_known(predicted)

        if use_tmux:
            self._launch_in_tmux(session, vendor, session_uuid)

        if predicted:
            self._transcript_polls[session.id] = asyncio.create_task(self._await_transcript(session))
        return session

    def _launch_in_tmux(self, session: Session, vendor: VendorConfig, session_uuid: str) -> None:
        if not self.tmux.available():
            return
        tmux_session = build_session_name(session.id, session_uuid)
        window = f"{vendor.name}-{session.id}"
        if not self.tmux.ensure_window(tmux_session, window, session.workspace_path):
            logger.warning("Session %s: could not create tmux window %s", session.id, window)
            return
        session.tmux_session_name = tmux_session
        session.tmux_window_name = window
        command = vendor.launch_command(session_uuid)
        if command:
            self.tmux.send_keys(tmux_session, window, command)

    def adopt_file(
        self,
        vendor_name: str,
        project_dir: str,
        path: str,
        *,
        terminal_id: Optional[str] = None,
        workspace_path: str = "",
        start_at_end: bool = False,
        is_external: bool = False,
    ) -> Session:
        vendor = self.resolve_vendor(vendor_name)
        offset = 0
        if start_at_end:
            try:
                offset = os.stat(path).st_size
            except OSError:
                offset = 0
        session = self._register(
            vendor,
            project_dir,
            path,
            workspace_path=workspace_path,
            terminal_id=terminal_id,
            byte_offset=offset,
            is_external=is_external,
            last_data_at=self._clock(),
        )
        if terminal_id is not None:
            self.focused_session_id = session.id
        scanner = self.scanners.get((vendor.name, project_dir))
        if scanner is not None:
            scanner.mark_known(path)
        self._begin_tailing(session)
        return session

    def create_external_session(
        self,
        vendor_name: str,
        project_dir: str,
        path: str,
        *,
        workspace_path: str = "",
    ) -> Session:
        session = self.adopt_file(
            vendor_name, project_dir, path, workspace_path=workspace_path, is_external=True
        )
        self.attach_tmux(session.id)
        return session

    def reassign(self, session: Session, path: str, *, start_at_end: bool = False) -> None:
        """Move a session onto a new transcript file, dropping inferred activity."""
        self._cancel_transcript_poll(session.id)
        self.tailer.stop_watching(session)
        cancel_waiting_timer(session)
        cancel_permission_timer(session)
        session.cancel_pending()
        clear_activity(session)
        session.had_tools_in_turn = False

        session.transcript_path = path
        session.line_buffer = b""
        session.byte_offset = 0
        if start_at_end:
            try:
                session.byte_offset = os.stat(path).st_size
            except OSError:
                session.byte_offset = 0
        scanner = self.scanners.get((session.vendor, session.project_dir))
        if scanner is not None:
            scanner.mark_known(path)

        logger.info("Session %s reassigned to %s", session.id, os.path.basename(path))
        self._begin_tailing(session)

    def attach_tmux(self, session_id: int) -> Optional[str]:
        session = self.sessions.get(session_id)
        if session is None:
            return None
        vendor = self.resolve_vendor(session.vendor)
        target_dir = vendor.tmux_project_dir(session.project_dir, session.workspace_path)
        name = self.resolver.resolve_tmux_session(target_dir, vendor.binary)
        if name:
            session.tmux_session_name = name
        return name

    # ── Teardown ────────────────────────────────────────────────────

    def close_session(self, session_id: int) -> bool:
        session = self.sessions.pop(session_id, None)
        if session is None:
            return False
        self._cancel_transcript_poll(session_id)
        self.tailer.stop_watching(session)
        if session.tmux_session_name and session.tmux_window_name:
            self.tmux.kill_session(session.tmux_session_name)
        session.emit(SESSION_CLOSED)
        session.close()
        if self.focused_session_id == session_id:
            self.focused_session_id = None
        logger.info("Session %s closed", session_id)
        return True

    def start(self) -> None:
        if config.EXTERNAL_SCAN_ENABLED:
            vendor = self.resolve_vendor(config.EXTERNAL_SCAN_VENDOR)
            for workspace in config.EXTERNAL_SCAN_WORKSPACES:
                scanner = ExternalSessionScanner(self, vendor, workspace)
                self.external_scanners.append(scanner)
                scanner.start()
        if config.OBSERVER_ENABLED:
            vendor = self.resolve_vendor(config.OBSERVER_VENDOR)
            self.ensure_scan(vendor.name, vendor.project_dir(""))

    async def stop(self) -> None:
        for scanner in self.external_scanners:
            await scanner.stop()
        self.external_scanners.clear()
        for scanner in self.scanners.values():
            await scanner.stop()
        self.scanners.clear()
        for session_id in list(self.sessions):
            self.close_session(session_id)
