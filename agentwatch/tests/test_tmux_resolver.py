import subprocess
import unittest
from types import SimpleNamespace
from unittest.mock import patch

from agentwatch.services.tmux_resolver import TmuxResolver, parse_lsof_cwd, parse_pane_map, parse_pids
from agentwatch.services.tmux_sessions import TmuxSessions, build_session_name


def _completed(stdout: str = "", returncode: int = 0) -> SimpleNamespace:
    return SimpleNamespace(stdout=stdout, returncode=returncode)


class _FakeCommands:
    """Answers subprocess.run calls from a table keyed by the command prefix."""

    def __init__(self, table: dict[tuple[str, ...], object]):
        self.table = table
        self.calls: list[list[str]] = []

    def __call__(self, args, **_kwargs):
        self.calls.append(list(args))
        for prefix, answer in self.table.items():
            if tuple(args[: len(prefix)]) == prefix:
                if isinstance(answer, BaseException):
                    raise answer
                return answer
        return _completed(returncode=1)


class ParseHelperTests(unittest.TestCase):
    def test_parse_pids(self) -> None:
        self.assertEqual(parse_pids("101\n202\nbogus\n"), [101, 202])

    def test_parse_lsof_cwd(self) -> None:
        self.assertEqual(parse_lsof_cwd("p101\nfcwd\nn/home/me/app\n"), "/home/me/app")
        self.assertIsNone(parse_lsof_cwd("p101\nftxt\nn/usr/bin/claude\n"))

    def test_parse_pane_map(self) -> None:
        self.assertEqual(parse_pane_map("300 work\n301 play\nbad line\n"), {300: "work", 301: "play"})


class TmuxResolverTests(unittest.TestCase):
    def test_resolves_session_by_walking_process_tree(self) -> None:
        fake = _FakeCommands({
            ("pgrep", "-x", "claude"): _completed("101\n102\n"),
            ("lsof", "-a", "-p", "101"): _completed("p101\nfcwd\nn/home/me/app\n"),
            ("lsof", "-a", "-p", "102"): _completed("p102\nfcwd\nn/home/me/other\n"),
            ("tmux", "list-panes"): _completed("300 work\n"),
            ("ps", "-o", "ppid=", "-p", "101"): _completed("200\n"),
            ("ps", "-o", "ppid=", "-p", "200"): _completed("300\n"),
        })
        resolver = TmuxResolver(timeout=1, max_depth=10)

        with patch("agentwatch.services.tmux_resolver.subprocess.run", side_effect=fake):
            self.assertEqual(resolver.find_pids_for_project("/p/projects/-home-me-app"), [101])
            self.assertEqual(resolver.resolve_tmux_session("/p/projects/-home-me-app"), "work")

    def test_walk_stops_at_max_depth(self) -> None:
        fake = _FakeCommands({
            ("pgrep",): _completed("101\n"),
            ("lsof",): _completed("fcwd\nn/w\n"),
            ("tmux",): _completed("999 far\n"),
            ("ps", "-o", "ppid=", "-p", "101"): _completed("102\n"),
            ("ps", "-o", "ppid=", "-p", "102"): _completed("999\n"),
        })
        resolver = TmuxResolver(timeout=1, max_depth=2)

        with patch("agentwatch.services.tmux_resolver.subprocess.run", side_effect=fake):
            self.assertIsNone(resolver.resolve_tmux_session("-w"))

    def test_no_matching_process(self) -> None:
        fake = _FakeCommands({("pgrep",): _completed(returncode=1)})
        resolver = TmuxResolver(timeout=1)

        with patch("agentwatch.services.tmux_resolver.subprocess.run", side_effect=fake):
            self.assertIsNone(resolver.resolve_tmux_session("-w"))
        self.assertEqual(len(fake.calls), 1)

    def test_missing_binary_is_reported_once(self) -> None:
        fake = _FakeCommands({("pgrep",): FileNotFoundError("pgrep")})
        resolver = TmuxResolver(timeout=1)

        with patch("agentwatch.services.tmux_resolver.subprocess.run", side_effect=fake):
            with self.assertLogs("agentwatch.tmux", level="WARNING") as captured:
                self.assertEqual(resolver.find_pids("claude"), [])
                self.assertEqual(resolver.find_pids("claude"), [])
        self.assertEqual(len(captured.records), 1)

    def test_timeouts_degrade_to_none(self) -> None:
        fake = _FakeCommands({("ps",): subprocess.TimeoutExpired(["ps"], 1)})
        resolver = TmuxResolver(timeout=1)

        with patch("agentwatch.services.tmux_resolver.subprocess.run", side_effect=fake):
            self.assertIsNone(resolver.parent_pid(101))

    def test_parent_pid_ignores_init(self) -> None:
        fake = _FakeCommands({("ps",): _completed("1\n")})
        resolver = TmuxResolver(timeout=1)

        with patch("agentwatch.services.tmux_resolver.subprocess.run", side_effect=fake):
            self.assertIsNone(resolver.parent_pid(101))


class TmuxSessionsTests(unittest.TestCase):
    def test_session_name_embeds_id_and_uuid(self) -> None:
        name = build_session_name(7, "1b4e28ba-2fa1-11d2-883f-0016d3cca427", prefix="aw-")
        self.assertEqual(name, "aw-7-1b4e28ba-2fa1-11d2-883f-0016d3cca427")

    def test_ensure_window_creates_session_when_missing(self) -> None:
        fake = _FakeCommands({
            ("tmux", "has-session"): _completed(returncode=1),
            ("tmux", "new-session"): _completed(),
        })
        sessions = TmuxSessions(timeout=1)

        with patch("agentwatch.services.tmux_sessions.subprocess.run", side_effect=fake):
            self.assertTrue(sessions.ensure_window("aw-1-a", "claude-1", "/w"))
            self.assertFalse(sessions.send_keys("aw-1-a", "claude-1", "claude --session-id a"))

        self.assertEqual(fake.calls[1][:4], ["tmux", "new-session", "-d", "-s"])
        self.assertEqual(fake.calls[2], ["tmux", "send-keys", "-t", "aw-1-a:claude-1", "claude --session-id a", "Enter"])

    def test_unavailable_tmux_is_cached(self) -> None:
        fake = _FakeCommands({("tmux",): FileNotFoundError("tmux")})
        sessions = TmuxSessions(timeout=1)

        with patch("agentwatch.services.tmux_sessions.subprocess.run", side_effect=fake):
            self.assertFalse(sessions.available())
            self.assertFalse(sessions.available())
        self.assertEqual(len(fake.calls), 1)


if __name__ == "__main__":
    unittest.main()
