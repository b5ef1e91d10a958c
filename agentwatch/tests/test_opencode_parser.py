import asyncio
import json
import unittest

from agentwatch.events import ActivityEventBus
from agentwatch.models import ActivityTimings
from agentwatch.parsers.platforms.opencode.parser import OpencodeParser
from agentwatch.parsers.tool_status import format_opencode_tool_status
from agentwatch.session import ActivityContext, Session


def _types(events) -> list[str]:
    return [event.type for event in events]


class OpencodeParserTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        bus = ActivityEventBus()
        self.events: list = []
        bus.subscribe(self.events.append)
        timings = ActivityTimings(toolDoneDelay=0.01, waitingDelay=0.05, permissionDelay=0.5, permissionShellDelay=0.5)
        self.session = Session(id=3, vendor="opencode", context=ActivityContext(bus, timings))
        self.addCleanup(self.session.close)
        self.parser = OpencodeParser()

    async def test_claude_shaped_records_are_delegated(self) -> None:
        self.parser.process(
            self.session,
            json.dumps({
                "type": "assistant",
                "message": {"content": [{"type": "tool_use", "id": "t1", "name": "Read", "input": {"file_path": "/x/a.md"}}]},
            }),
        )
        self.assertEqual(self.session.active_tools["t1"].status, "Reading a.md")

    async def test_role_based_tool_call_and_result(self) -> None:
        self.parser.process(
            self.session,
            json.dumps({
                "role": "assistant",
                "content": [
                    {
                        "type": "function_call",
                        "call_id": "c1",
                        "function": {"name": "bash", "arguments": json.dumps({"command": "go test ./..."})},
                    }
                ],
            }),
        )
        self.assertEqual(_types(self.events), ["status-active", "tool-start"])
        self.assertEqual(self.events[1].status, "Running: go test ./...")

        self.parser.process(
            self.session,
            json.dumps({"role": "user", "content": [{"type": "function_result", "call_id": "c1", "output": "ok"}]}),
        )
        self.assertEqual(self.session.active_tools, {})
        await asyncio.sleep(0.03)
        self.assertIn("tool-done", _types(self.events))

    async def test_role_based_user_text_starts_turn(self) -> None:
        self.parser.process(self.session, json.dumps({"role": "user", "content": "fix the build"}))
        self.assertEqual(_types(self.events), ["tools-clear", "status-active"])

    async def test_standalone_tool_records(self) -> None:
        self.parser.process(
            self.session,
            json.dumps({"type": "tool_call", "id": "x1", "name": "file_write", "arguments": {"path": "/tmp/out.txt"}}),
        )
        self.assertEqual(self.session.active_tools["x1"].status, "Writing out.txt")

        self.parser.process(self.session, json.dumps({"type": "tool_result", "tool_use_id": "x1", "output": "ok"}))
        self.assertEqual(self.session.active_tools, {})

    async def test_idle_status_ends_turn_after_delay(self) -> None:
        self.parser.process(self.session, json.dumps({"type": "tool_call", "id": "x1", "name": "grep"}))
        self.parser.process(self.session, json.dumps({"type": "status", "status": "idle"}))

        self.assertIn("tools-clear", _types(self.events))
        self.assertFalse(self.session.is_waiting)
        await asyncio.sleep(0.1)
        self.assertTrue(self.session.is_waiting)
        self.assertEqual(_types(self.events)[-1], "status-waiting")

    async def test_thinking_status_marks_active(self) -> None:
        self.parser.process(self.session, json.dumps({"type": "status", "status": "thinking"}))
        self.assertEqual(_types(self.events), ["status-active"])

    async def test_turn_end_event(self) -> None:
        self.parser.process(self.session, json.dumps({"type": "event", "event": "turn_complete"}))
        self.assertIsNotNone(self.session.waiting_timer)

    async def test_unknown_records_are_ignored(self) -> None:
        self.parser.process(self.session, json.dumps({"type": "snapshot", "files": []}))
        self.parser.process(self.session, json.dumps({"type": "event", "event": "compaction"}))
        self.assertEqual(self.events, [])


class OpencodeToolStatusTests(unittest.TestCase):
    def test_substring_mapping(self) -> None:
        self.assertEqual(format_opencode_tool_status("file_read", {"file": "/a/b.txt"}), "Reading b.txt")
        self.assertEqual(format_opencode_tool_status("str_replace_edit", {"path": "c.py"}), "Editing c.py")
        self.assertEqual(format_opencode_tool_status("ripgrep_search", {}), "Searching code")
        self.assertEqual(format_opencode_tool_status("webfetch", {}), "Fetching web content")
        self.assertEqual(format_opencode_tool_status("subagent", {"description": "triage"}), "Subtask: triage")
        self.assertEqual(format_opencode_tool_status("todo", {}), "Using todo")


if __name__ == "__main__":
    unittest.main()
