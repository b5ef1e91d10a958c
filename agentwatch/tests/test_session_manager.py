import asyncio
import json
import os
import tempfile
import time
import unittest
from pathlib import Path
from unittest.mock import patch

from agentwatch import config
from agentwatch.events import ActivityEventBus
from agentwatch.models import ActivityTimings
from agentwatch.parsers.platforms.registry import process_line
from agentwatch.session import ActivityContext
from agentwatch.session_manager import SessionManager
from agentwatch.vendors import claude_project_dir, get_vendor
from agentwatch.watch.external_scanner import ExternalSessionScanner
from agentwatch.watch.file_tailer import FileTailer


class _FakeTmux:
    def __init__(self, available: bool = True):
        self._available = available
        self.windows: list[tuple[str, str, str]] = []
        self.keys: list[tuple[str, str, str]] = []
        self.killed: list[str] = []

    def available(self) -> bool:
        return self._available

    def ensure_window(self, session_name: str, window_name: str, cwd: str) -> bool:
        self.windows.append((session_name, window_name, cwd))
        return True

    def send_keys(self, session_name: str, window_name: str, keys: str) -> bool:
        self.keys.append((session_name, window_name, keys))
        return True

    def kill_session(self, session_name: str) -> None:
        self.killed.append(session_name)


class _FakeResolver:
    def __init__(self, result: str | None = "work"):
        self.result = result
        self.calls: list[tuple[str, str]] = []

    def resolve_tmux_session(self, project_dir: str, binary: str = "claude") -> str | None:
        self.calls.append((project_dir, binary))
        return self.result


class _ManagerTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.root = Path(tmpdir.name)
        for name in ("CLAUDE_HOME", "CODEX_HOME"):
            patcher = patch.object(config, name, self.root / name.lower())
            patcher.start()
            self.addCleanup(patcher.stop)

        self.now = time.time()
        bus = ActivityEventBus()
        self.events: list = []
        bus.subscribe(self.events.append)
        timings = ActivityTimings(toolDoneDelay=0.01, waitingDelay=5, permissionDelay=5, permissionShellDelay=5)
        self.tmux = _FakeTmux()
        self.resolver = _FakeResolver()
        self.manager = SessionManager(
            ActivityContext(bus, timings),
            FileTailer(native_watch=False, stat_poll_interval=0, backstop_interval=0),
            self.resolver,
            self.tmux,
            transcript_poll_interval=0.01,
            scan_interval=3600,
            clock=lambda: self.now,
        )
        self.addAsyncCleanup(self.manager.stop)

    def _types(self) -> list[str]:
        return [event.type for event in self.events]


class SessionManagerTests(_ManagerTestCase):
    async def test_launch_waits_for_predicted_transcript(self) -> None:
        session = self.manager.launch_session("claude", "/w/app", terminal_id="term-1")

        self.assertEqual(os.path.dirname(session.transcript_path), claude_project_dir("/w/app"))
        self.assertTrue(session.transcript_path.endswith(".jsonl"))
        self.assertEqual(self.manager.focused_session_id, session.id)
        self.assertEqual(self.manager.focused_terminal, "term-1")
        self.assertIsNone(session.watch)
        self.assertEqual(self._types(), ["session-created"])

        record = {
            "type": "assistant",
            "message": {"content": [{"type": "tool_use", "id": "t1", "name": "Read", "input": {"file_path": "a.py"}}]},
        }
        path = Path(session.transcript_path)
        path.parent.mkdir(parents=True)
        path.write_text(json.dumps(record) + "\n", encoding="utf-8")
        await asyncio.sleep(0.1)

        self.assertIsNotNone(session.watch)
        self.assertEqual(session.active_tools["t1"].status, "Reading a.py")
        self.assertEqual(self.manager._transcript_polls, {})

    async def test_launch_in_tmux_sends_launch_command(self) -> None:
        session = self.manager.launch_session("claude", "/w/app", use_tmux=True)

        self.assertEqual(len(self.tmux.windows), 1)
        tmux_session, window, cwd = self.tmux.windows[0]
        self.assertTrue(tmux_session.startswith(f"{config.TMUX_SESSION_PREFIX}{session.id}-"))
        self.assertEqual(window, f"claude-{session.id}")
        self.assertEqual(cwd, "/w/app")
        self.assertTrue(self.tmux.keys[0][2].startswith("claude --session-id "))
        self.assertEqual(session.tmux_session_name, tmux_session)

        self.assertTrue(self.manager.close_session(session.id))
        self.assertEqual(self.tmux.killed, [tmux_session])

    async def test_launch_without_tmux_binary_still_registers(self) -> None:
        self.manager.tmux = _FakeTmux(available=False)
        session = self.manager.launch_session("claude", "/w/app", use_tmux=True)
        self.assertIsNone(session.tmux_session_name)
        self.assertIn(session.id, self.manager.sessions)

    async def test_codex_launch_records_timestamp_and_has_no_path(self) -> None:
        session = self.manager.launch_session("codex", "/w/app")
        self.assertEqual(session.transcript_path, "")
        self.assertEqual(session.launch_timestamp, self.now)
        self.assertTrue(self.manager.has_pending_transcript("codex", session.project_dir))
        self.assertNotIn(session.id, self.manager._transcript_polls)

    async def test_launch_rejects_bad_requests(self) -> None:
        with self.assertRaises(ValueError):
            self.manager.launch_session("cursor", "/w/app")
        with self.assertRaises(ValueError):
            self.manager.launch_session("openclaw", "/w/app")
        with self.assertRaises(ValueError):
            self.manager.launch_session("claude", "")
        self.assertEqual(self.manager.sessions, {})

    async def test_close_session_clears_focus_and_emits(self) -> None:
        session = self.manager.launch_session("claude", "/w/app")
        self.assertTrue(self.manager.close_session(session.id))

        self.assertIsNone(self.manager.focused_session_id)
        self.assertTrue(session.closed)
        self.assertEqual(self._types()[-1], "session-closed")
        self.assertFalse(self.manager.close_session(session.id))

    async def test_focus_terminal_follows_owner(self) -> None:
        path = self.root / "t.jsonl"
        path.write_text("", encoding="utf-8")
        session = self.manager.adopt_file("claude", str(self.root), str(path), terminal_id="term-1")

        self.assertIsNone(self.manager.focus_terminal("term-2"))
        self.assertIsNone(self.manager.focused_session_id)
        self.assertEqual(self.manager.focused_terminal, "term-2")

        self.assertIs(self.manager.focus_terminal("term-1"), session)
        self.assertEqual(self.manager.focused_session_id, session.id)

        self.assertIsNone(self.manager.focus_terminal(None))
        self.assertIsNone(self.manager.focused_session_id)

    async def test_focus_session_validates_id(self) -> None:
        session = self.manager.launch_session("claude", "/w/app")
        self.assertFalse(self.manager.focus_session(999))
        self.assertEqual(self.manager.focused_session_id, session.id)
        self.assertTrue(self.manager.focus_session(None))
        self.assertIsNone(self.manager.focused_session)

    async def test_adopt_file_at_end_skips_history(self) -> None:
        path = self.root / "history.jsonl"
        path.write_text('{"type": "user", "message": {"content": "old"}}\n', encoding="utf-8")

        session = self.manager.adopt_file("claude", str(self.root), str(path), start_at_end=True)

        self.assertEqual(session.byte_offset, path.stat().st_size)
        self.assertEqual(self._types(), ["session-created"])
        self.assertTrue(self.manager.is_file_tracked(str(path)))

    async def test_reassign_drops_pending_tool_done(self) -> None:
        old_path = self.root / "old.jsonl"
        old_path.write_text("", encoding="utf-8")
        new_path = self.root / "new.jsonl"
        new_path.write_text("", encoding="utf-8")
        session = self.manager.adopt_file("claude", str(self.root), str(old_path))

        process_line(session, json.dumps({
            "type": "assistant",
            "message": {"content": [{"type": "tool_use", "id": "t1", "name": "Read", "input": {"file_path": "a.py"}}]},
        }))
        process_line(session, json.dumps({
            "type": "user",
            "message": {"content": [{"type": "tool_result", "tool_use_id": "t1"}]},
        }))
        self.assertEqual(len(session.pending_callbacks), 1)

        self.events.clear()
        self.manager.reassign(session, str(new_path))
        await asyncio.sleep(0.05)

        self.assertEqual(session.pending_callbacks, set())
        self.assertNotIn("tool-done", self._types())
        self.assertEqual(session.transcript_path, str(new_path))

    async def test_attach_tmux_uses_hashed_workspace_for_codex(self) -> None:
        session = self.manager.launch_session("codex", "/w/app")
        self.assertEqual(self.manager.attach_tmux(session.id), "work")
        self.assertEqual(self.resolver.calls, [("-w-app", "codex")])
        self.assertEqual(session.tmux_session_name, "work")
        self.assertIsNone(self.manager.attach_tmux(999))

    async def test_snapshot_lists_sessions(self) -> None:
        session = self.manager.launch_session("claude", "/w/app")
        snapshots = self.manager.snapshot()
        self.assertEqual([snapshot.id for snapshot in snapshots], [session.id])
        self.assertEqual(snapshots[0].vendor, "claude")


class ExternalSessionScannerTests(_ManagerTestCase):
    async def asyncSetUp(self) -> None:
        await super().asyncSetUp()
        self.workspace = "/w/ext"
        self.project_dir = Path(claude_project_dir(self.workspace))
        self.project_dir.mkdir(parents=True)
        self.scanner = ExternalSessionScanner(
            self.manager,
            get_vendor("claude"),
            self.workspace,
            active_threshold=60,
            stale_timeout=300,
            clock=lambda: self.now,
        )

    def _transcript(self, name: str, age: float) -> Path:
        path = self.project_dir / name
        path.write_text('{"type": "user", "message": {"content": "hi"}}\n', encoding="utf-8")
        os.utime(path, (self.now - age, self.now - age))
        return path

    async def test_recent_untracked_files_become_external_sessions(self) -> None:
        fresh = self._transcript("fresh.jsonl", 5)
        self._transcript("old.jsonl", 600)

        adopted = self.scanner.scan_tick()

        self.assertEqual([session.transcript_path for session in adopted], [str(fresh)])
        self.assertTrue(adopted[0].is_external)
        self.assertEqual(adopted[0].tmux_session_name, "work")
        self.assertEqual(self.resolver.calls, [(str(self.project_dir), "claude")])
        self.assertEqual(self.scanner.scan_tick(), [])

    async def test_stale_check_removes_idle_and_missing_sessions(self) -> None:
        self._transcript("a.jsonl", 5)
        missing = self._transcript("b.jsonl", 5)
        adopted = self.scanner.scan_tick()
        self.assertEqual(len(adopted), 2)

        self.assertEqual(self.scanner.stale_check(), [])

        missing.unlink()
        self.assertEqual(self.scanner.stale_check(), [adopted[1].id])

        self.now += 1000
        self.assertEqual(self.scanner.stale_check(), [adopted[0].id])
        self.assertEqual(self.manager.sessions, {})

    async def test_launched_sessions_are_never_pruned(self) -> None:
        self.manager.launch_session("claude", self.workspace)
        self.now += 1000
        self.assertEqual(self.scanner.stale_check(), [])
        self.assertEqual(len(self.manager.sessions), 1)


if __name__ == "__main__":
    unittest.main()
