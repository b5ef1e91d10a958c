"""Periodic discovery of new transcript files in a vendor's project directory.

A new file in a watched directory means one of three things: the focused
session restarted its history (reassign it), a CLI was started in a focused
terminal nobody owns yet (adopt it), or something unrelated (ignore it).
"""
from __future__ import annotations

import asyncio
import logging
import os
import time
from typing import TYPE_CHECKING, Callable, Optional

from agentwatch import config
from agentwatch.observability import start_span
from agentwatch.session_files import file_mtime, matches_workspace
from agentwatch.vendors import VendorConfig

if TYPE_CHECKING:
    from agentwatch.session_manager import SessionManager

logger = logging.getLogger("agentwatch.scanner")


class ProjectScanner:
    def __init__(
        self,
        manager: "SessionManager",
        vendor: VendorConfig,
        project_dir: str,
        workspace_path: str = "",
        *,
        interval: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.manager = manager
        self.vendor = vendor
        self.project_dir = project_dir
        self.workspace_path = workspace_path
        self.interval = config.PROJECT_SCAN_INTERVAL_SECONDS if interval is None else interval
        self.known_files: set[str] = set()
        self._clock = clock
        self._activated = False
        self._observer_primed = False
        self._task: Optional[asyncio.Task] = None

    @property
    def key(self) -> tuple[str, str]:
        return self.vendor.name, self.project_dir

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def mark_known(self, path: str) -> None:
        if path:
            self.known_files.add(path)

    def activate(self) -> None:
        """Seed the known set with files already present, once."""
        if self._activated:
            return
        self._activated = True
        if self.vendor.observer_mode:
            return
        if self.manager.has_pending_transcript(self.vendor.name, self.project_dir):
            logger.info(
                "Not seeding %s scan of %s: a session is waiting for its first transcript",
                self.vendor.name, self.project_dir,
            )
            return
        existing = self.vendor.list_transcripts(self.project_dir)
        self.known_files.update(existing)
        logger.debug("Seeded %s known transcripts in %s", len(existing), self.project_dir)

    def start(self) -> None:
        self.activate()
        if self.is_running:
            return
        self._task = asyncio.create_task(self._scan_loop())
        logger.info("Project scan started for %s (%s)", self.project_dir, self.vendor.name)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Project scan stopped for %s", self.project_dir)

    async def _scan_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                with start_span("agentwatch.project_scan", {"vendor": self.vendor.name, "project_dir": self.project_dir}):
                    self.scan_tick()
            except Exception:
                logger.exception("Project scan of %s failed", self.project_dir)

    def scan_tick(self) -> list[str]:
        """One scan pass. Returns the newly seen files that were handled."""
        files = self.vendor.list_transcripts(self.project_dir)
        if self.vendor.observer_mode:
            return self._observer_tick(files)

        handled: list[str] = []
        for path in files:
            if path in self.known_files:
                continue
            self.known_files.add(path)
            if self.manager.is_file_tracked(path):
                continue
            handled.append(path)
            self._handle_new_file(path)
        return handled

    def _matches(self, path: str, workspace_path: str, launch_timestamp: Optional[float]) -> bool:
        if not self.vendor.content_matched:
            return True
        return matches_workspace(path, workspace_path, launch_timestamp)

    def _handle_new_file(self, path: str) -> None:
        focused = self.manager.focused_session_for(self.vendor.name, self.project_dir)
        if focused is not None:
            if self._matches(path, focused.workspace_path, focused.launch_timestamp):
                logger.info(
                    "New transcript %s detected, reassigning to session %s",
                    os.path.basename(path), focused.id,
                )
                self.manager.reassign(focused, path)
            else:
                logger.debug("Ignoring %s: does not match session %s workspace", path, focused.id)
            return

        terminal_id = self.manager.focused_terminal
        if terminal_id is None or self.manager.terminal_owner(terminal_id) is not None:
            logger.debug("Ignoring unowned transcript %s", path)
            return
        if not self._matches(path, self.workspace_path, None):
            logger.debug("Ignoring %s: does not match workspace %s", path, self.workspace_path)
            return
        self.manager.adopt_file(
            self.vendor.name,
            self.project_dir,
            path,
            terminal_id=terminal_id,
            workspace_path=self.workspace_path,
        )

    def _observer_tick(self, files: list[str]) -> list[str]:
        cutoff = self._clock() - config.OBSERVER_MAX_SESSION_AGE_MINUTES * 60
        candidates: list[tuple[float, str]] = []
        for path in files:
            if path in self.known_files:
                continue
            mtime = file_mtime(path)
            if mtime is None or mtime < cutoff:
                continue
            candidates.append((mtime, path))
        if not candidates:
            return []

        candidates.sort(reverse=True)
        _newest_mtime, newest = candidates[0]
        if not self._observer_primed:
            self._observer_primed = True
            for _mtime, historical in candidates[1:]:
                self.known_files.add(historical)

        self.known_files.add(newest)
        observed = self.manager.sessions_for_vendor(self.vendor.name)
        if len(observed) >= max(1, config.OBSERVER_MAX_SESSIONS):
            oldest = min(observed, key=lambda s: file_mtime(s.transcript_path) or float("-inf"))
            logger.info("Rotating observed session %s to %s", oldest.id, os.path.basename(newest))
            self.manager.reassign(oldest, newest, start_at_end=True)
        else:
            self.manager.adopt_file(
                self.vendor.name,
                self.project_dir,
                newest,
                workspace_path=self.workspace_path,
                start_at_end=True,
            )
        return [newest]
