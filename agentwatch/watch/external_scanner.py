"""Track agent sessions started outside this service, and prune them when stale."""
from __future__ import annotations

import asyncio
import logging
import os
import time
from typing import TYPE_CHECKING, Callable, Optional

from agentwatch import config
from agentwatch.session import Session
from agentwatch.session_files import matches_workspace
from agentwatch.vendors import VendorConfig

if TYPE_CHECKING:
    from agentwatch.session_manager import SessionManager

logger = logging.getLogger("agentwatch.scanner")


class ExternalSessionScanner:
    """Adopts recently written transcripts that no session owns yet.

    External sessions read their transcript from the start, so tool state is
    rebuilt from history. `stale_check` removes them once the file disappears
    or neither the file nor parsed data has changed for the stale timeout.
    """

    def __init__(
        self,
        manager: "SessionManager",
        vendor: VendorConfig,
        workspace_path: str,
        *,
        scan_interval: Optional[float] = None,
        stale_check_interval: Optional[float] = None,
        active_threshold: Optional[float] = None,
        stale_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.manager = manager
        self.vendor = vendor
        self.workspace_path = workspace_path
        self.project_dir = vendor.project_dir(workspace_path)
        self.scan_interval = config.EXTERNAL_SCAN_INTERVAL_SECONDS if scan_interval is None else scan_interval
        self.stale_check_interval = (
            config.EXTERNAL_STALE_CHECK_INTERVAL_SECONDS if stale_check_interval is None else stale_check_interval
        )
        self.active_threshold = (
            config.EXTERNAL_ACTIVE_THRESHOLD_SECONDS if active_threshold is None else active_threshold
        )
        self.stale_timeout = config.EXTERNAL_STALE_TIMEOUT_SECONDS if stale_timeout is None else stale_timeout
        self._clock = clock
        self._tasks: list[asyncio.Task] = []

    def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._every(self.scan_interval, self.scan_tick)),
            asyncio.create_task(self._every(self.stale_check_interval, self.stale_check)),
        ]
        logger.info("External session scan started for %s (%s)", self.project_dir, self.vendor.name)

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _every(self, interval: float, body: Callable[[], object]) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                body()
            except Exception:
                logger.exception("External session %s failed", body.__name__)

    def _is_workspace_file(self, path: str) -> bool:
        if not self.vendor.content_matched:
            return True
        return matches_workspace(path, self.workspace_path)

    def scan_tick(self) -> list[Session]:
        now = self._clock()
        adopted: list[Session] = []
        for path in self.vendor.list_transcripts(self.project_dir):
            if self.manager.is_file_tracked(path):
                continue
            try:
                mtime = os.stat(path).st_mtime
            except OSError:
                continue
            if now - mtime > self.active_threshold:
                continue
            if not self._is_workspace_file(path):
                continue
            adopted.append(
                self.manager.create_external_session(
                    self.vendor.name, self.project_dir, path, workspace_path=self.workspace_path
                )
            )
        return adopted

    def stale_check(self) -> list[int]:
        now = self._clock()
        stale: list[int] = []
        for session in self.manager.sessions_for_vendor(self.vendor.name):
            if not session.is_external or session.project_dir != self.project_dir:
                continue
            try:
                mtime = os.stat(session.transcript_path).st_mtime
            except OSError:
                stale.append(session.id)
                continue
            if now - mtime > self.stale_timeout and now - session.last_data_at > self.stale_timeout:
                stale.append(session.id)

        for session_id in stale:
            logger.info("Removing stale external session %s", session_id)
            self.manager.close_session(session_id)
        return stale
