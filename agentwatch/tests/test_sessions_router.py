import asyncio
import json
import types
import unittest

from fastapi import HTTPException

from agentwatch.events import ActivityEventBus
from agentwatch.models import FocusTerminalRequest, LaunchSessionRequest, SessionSnapshot
from agentwatch.routers import sessions as sessions_router


class _FakeSession:
    def __init__(self, session_id: int, vendor: str = "claude"):
        self.id = session_id
        self.vendor = vendor

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(id=self.id, vendor=self.vendor)


class _FakeSessionManager:
    def __init__(self) -> None:
        self.sessions = {1: _FakeSession(1)}
        self.launch_calls: list[dict] = []
        self.focused: list = []
        self.terminals: list = []

    def snapshot(self):
        return [session.snapshot() for session in self.sessions.values()]

    def get(self, session_id):
        return self.sessions.get(session_id)

    def launch_session(self, vendor, workspace_path, terminal_id=None, use_tmux=False):
        if vendor == "openclaw":
            raise ValueError("OpenClaw sessions are observed, not launched")
        self.launch_calls.append({
            "vendor": vendor,
            "workspace_path": workspace_path,
            "terminal_id": terminal_id,
            "use_tmux": use_tmux,
        })
        session = _FakeSession(len(self.sessions) + 1, vendor)
        self.sessions[session.id] = session
        return session

    def close_session(self, session_id):
        return self.sessions.pop(session_id, None) is not None

    def focus_session(self, session_id):
        if session_id is not None and session_id not in self.sessions:
            return False
        self.focused.append(session_id)
        return True

    def focus_terminal(self, terminal_id):
        self.terminals.append(terminal_id)
        return self.sessions.get(1) if terminal_id == "term-1" else None

    def attach_tmux(self, session_id):
        return "work"


class SessionsRouterTests(unittest.IsolatedAsyncioTestCase):
    def _request(self, manager=None, bus=None, disconnected: bool = False):
        async def _is_disconnected() -> bool:
            return disconnected

        state = types.SimpleNamespace()
        if manager is not None:
            state.session_manager = manager
        if bus is not None:
            state.event_bus = bus
        return types.SimpleNamespace(
            app=types.SimpleNamespace(state=state),
            is_disconnected=_is_disconnected,
        )

    async def test_list_and_get_sessions(self) -> None:
        request = self._request(_FakeSessionManager())

        listed = await sessions_router.list_sessions(request)
        self.assertEqual([item.id for item in listed], [1])

        detail = await sessions_router.get_session(request, 1)
        self.assertEqual(detail.vendor, "claude")

        with self.assertRaises(HTTPException) as ctx:
            await sessions_router.get_session(request, 42)
        self.assertEqual(ctx.exception.status_code, 404)

    async def test_missing_manager_returns_503(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            await sessions_router.list_sessions(self._request())
        self.assertEqual(ctx.exception.status_code, 503)

    async def test_launch_session_passes_request_fields(self) -> None:
        manager = _FakeSessionManager()
        body = LaunchSessionRequest(vendor="codex", workspacePath="/w/app", terminalId="term-9", useTmux=True)

        created = await sessions_router.launch_session(self._request(manager), body)

        self.assertEqual(created.vendor, "codex")
        self.assertEqual(
            manager.launch_calls,
            [{"vendor": "codex", "workspace_path": "/w/app", "terminal_id": "term-9", "use_tmux": True}],
        )

    async def test_launch_session_rejects_invalid_vendor(self) -> None:
        body = LaunchSessionRequest(vendor="openclaw", workspacePath="/w/app")
        with self.assertRaises(HTTPException) as ctx:
            await sessions_router.launch_session(self._request(_FakeSessionManager()), body)
        self.assertEqual(ctx.exception.status_code, 400)
        self.assertIn("observed", ctx.exception.detail)

    async def test_close_and_focus(self) -> None:
        manager = _FakeSessionManager()
        request = self._request(manager)

        payload = await sessions_router.focus_session(request, 1)
        self.assertEqual(payload["focusedSessionId"], 1)

        cleared = await sessions_router.clear_session_focus(request)
        self.assertIsNone(cleared["focusedSessionId"])
        self.assertEqual(manager.focused, [1, None])

        closed = await sessions_router.close_session(request, 1)
        self.assertEqual(closed, {"status": "closed", "sessionId": 1})

        for handler in (sessions_router.close_session, sessions_router.focus_session):
            with self.assertRaises(HTTPException) as ctx:
                await handler(request, 1)
            self.assertEqual(ctx.exception.status_code, 404)

    async def test_attach_tmux(self) -> None:
        request = self._request(_FakeSessionManager())
        payload = await sessions_router.attach_tmux(request, 1)
        self.assertEqual(payload, {"sessionId": 1, "tmuxSessionName": "work"})

        with self.assertRaises(HTTPException):
            await sessions_router.attach_tmux(request, 5)

    async def test_focus_terminal_reports_owner(self) -> None:
        manager = _FakeSessionManager()
        request = self._request(manager)

        owned = await sessions_router.focus_terminal(request, FocusTerminalRequest(terminalId="term-1"))
        self.assertEqual(owned["focusedSessionId"], 1)

        unowned = await sessions_router.focus_terminal(request, FocusTerminalRequest(terminalId="term-2"))
        self.assertIsNone(unowned["focusedSessionId"])
        self.assertEqual(manager.terminals, ["term-1", "term-2"])

    async def test_recent_events(self) -> None:
        bus = ActivityEventBus(history_limit=10)
        for tool_id in ("a", "b", "c"):
            bus.emit("tool-start", 1, tool_id=tool_id, status="Searching code")

        events = await sessions_router.recent_events(self._request(bus=bus), limit=2)
        self.assertEqual([event.toolId for event in events], ["b", "c"])

        with self.assertRaises(HTTPException) as ctx:
            await sessions_router.recent_events(self._request(), limit=2)
        self.assertEqual(ctx.exception.status_code, 503)

    async def test_stream_events_formats_server_sent_events(self) -> None:
        bus = ActivityEventBus()
        response = await sessions_router.stream_events(self._request(bus=bus))
        self.assertEqual(response.media_type, "text/event-stream")

        pending = asyncio.ensure_future(response.body_iterator.__anext__())
        await asyncio.sleep(0.01)
        self.assertEqual(bus.stream_count, 1)
        bus.emit("permission-wait", 3, parent_tool_id="task1")

        chunk = await asyncio.wait_for(pending, timeout=1)
        header, data, _blank = chunk.split("\n", 2)
        self.assertEqual(header, "event: permission-wait")
        payload = json.loads(data[len("data: "):])
        self.assertEqual(payload["sessionId"], 3)
        self.assertEqual(payload["parentToolId"], "task1")
        self.assertTrue(chunk.endswith("\n\n"))

        await response.body_iterator.aclose()
        self.assertEqual(bus.stream_count, 0)


if __name__ == "__main__":
    unittest.main()
