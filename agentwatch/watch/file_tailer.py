"""Incremental transcript tailing.

Each watched session gets three independent change notifications: a native
`watchfiles` watch on the file, a stat-polling task, and a backstop timer on
the event loop. All of them call `read_new_lines`, which is idempotent, so
redundant wake-ups are harmless.
"""
from __future__ import annotations

import asyncio
import logging
import os
import time
from typing import Callable, Optional

from watchfiles import awatch

from agentwatch import config
from agentwatch.models import PERMISSION_CLEAR, STATUS_ACTIVE
from agentwatch.observability import record_ingestion
from agentwatch.parsers.platforms.registry import process_line
from agentwatch.session import Session
from agentwatch.timers import cancel_permission_timer, cancel_waiting_timer

logger = logging.getLogger("agentwatch.tailer")

LineDispatcher = Callable[[Session, str], None]


class TailWatch:
    """Handles for the notification mechanisms attached to one transcript."""

    def __init__(self, path: str):
        self.path = path
        self.stop_event = asyncio.Event()
        self.tasks: list[asyncio.Task] = []
        self.backstop: Optional[asyncio.TimerHandle] = None
        self.closed = False

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.stop_event.set()
        for task in self.tasks:
            task.cancel()
        self.tasks.clear()
        if self.backstop is not None:
            self.backstop.cancel()
            self.backstop = None


class FileTailer:
    def __init__(
        self,
        dispatch: LineDispatcher = process_line,
        *,
        native_watch: Optional[bool] = None,
        stat_poll_interval: Optional[float] = None,
        backstop_interval: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._dispatch = dispatch
        self._native_watch = config.FILE_NATIVE_WATCH_ENABLED if native_watch is None else native_watch
        self._stat_poll_interval = (
            config.FILE_STAT_POLL_INTERVAL_SECONDS if stat_poll_interval is None else stat_poll_interval
        )
        self._backstop_interval = (
            config.FILE_BACKSTOP_POLL_INTERVAL_SECONDS if backstop_interval is None else backstop_interval
        )
        self._clock = clock

    def start_watching(self, session: Session) -> TailWatch:
        """Attach all notification mechanisms to `session.transcript_path`.

        Must be called from a running event loop. A previous watch on the
        session is stopped first.
        """
        self.stop_watching(session)
        watch = TailWatch(session.transcript_path)
        session.watch = watch

        if self._native_watch:
            watch.tasks.append(asyncio.create_task(self._native_watch_loop(session, watch)))
        if self._stat_poll_interval > 0:
            watch.tasks.append(asyncio.create_task(self._stat_poll_loop(session, watch)))
        if self._backstop_interval > 0:
            self._arm_backstop(session, watch)

        logger.debug("Session %s: watching %s", session.id, watch.path)
        return watch

    def stop_watching(self, session: Session) -> None:
        watch = session.watch
        if watch is None:
            return
        watch.close()
        session.watch = None
        logger.debug("Session %s: stopped watching %s", session.id, watch.path)

    def read_new_lines(self, session: Session) -> int:
        """Read everything appended since the last pass and dispatch complete lines.

        Returns the number of non-blank lines dispatched. Calling it again
        without the file growing is a no-op.
        """
        path = session.transcript_path
        if not path or session.closed:
            return 0

        started = time.perf_counter()
        try:
            size = os.stat(path).st_size
            if size <= session.byte_offset:
                return 0
            with open(path, "rb") as handle:
                handle.seek(session.byte_offset)
                data = handle.read(size - session.byte_offset)
        except OSError:
            logger.debug("Session %s: could not read %s", session.id, path, exc_info=True)
            return 0
        if not data:
            return 0

        session.byte_offset += len(data)
        fragments = (session.line_buffer + data).split(b"\n")
        session.line_buffer = fragments.pop()
        lines = [
            text
            for text in (fragment.decode("utf-8", errors="replace") for fragment in fragments)
            if text.strip()
        ]

        if lines:
            self._note_new_data(session)
            for line in lines:
                self._dispatch(session, line)

        record_ingestion(
            session.vendor,
            "lines" if lines else "partial",
            (time.perf_counter() - started) * 1000,
            lines=len(lines),
        )
        return len(lines)

    def _note_new_data(self, session: Session) -> None:
        cancel_waiting_timer(session)
        cancel_permission_timer(session)
        session.is_waiting = False
        session.last_data_at = self._clock()
        session.emit(STATUS_ACTIVE)
        if session.permission_sent:
            session.permission_sent = False
            session.emit(PERMISSION_CLEAR)

    def _read_if_current(self, session: Session, watch: TailWatch) -> None:
        if watch.closed or session.watch is not watch:
            return
        self.read_new_lines(session)

    async def _native_watch_loop(self, session: Session, watch: TailWatch) -> None:
        try:
            async for _changes in awatch(watch.path, stop_event=watch.stop_event):
                if watch.closed:
                    break
                self._read_if_current(session, watch)
        except asyncio.CancelledError:
            logger.debug("Session %s: native watch cancelled", session.id)
        except Exception:
            logger.warning(
                "Session %s: native watch unavailable for %s, relying on polling",
                session.id, watch.path, exc_info=True,
            )

    async def _stat_poll_loop(self, session: Session, watch: TailWatch) -> None:
        last_seen: Optional[tuple[int, int]] = None
        try:
            while not watch.closed:
                try:
                    stat = os.stat(watch.path)
                except OSError:
                    current = None
                else:
                    current = (stat.st_size, stat.st_mtime_ns)
                if current is not None and current != last_seen:
                    last_seen = current
                    self._read_if_current(session, watch)
                await asyncio.sleep(self._stat_poll_interval)
        except asyncio.CancelledError:
            logger.debug("Session %s: stat poll cancelled", session.id)

    def _arm_backstop(self, session: Session, watch: TailWatch) -> None:
        def _tick() -> None:
            watch.backstop = None
            if watch.closed:
                return
            try:
                self._read_if_current(session, watch)
            except Exception:
                logger.exception("Session %s: backstop read failed", session.id)
            self._arm_backstop(session, watch)

        loop = asyncio.get_running_loop()
        watch.backstop = loop.call_later(self._backstop_interval, _tick)
