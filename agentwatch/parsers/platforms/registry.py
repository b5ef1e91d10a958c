"""Transcript parser registry for vendor-specific implementations."""
from __future__ import annotations

from agentwatch.parsers.platforms.base import TranscriptParser
from agentwatch.parsers.platforms.claude_code.parser import ClaudeCodeParser
from agentwatch.parsers.platforms.codex.parser import CodexParser
from agentwatch.parsers.platforms.openclaw.parser import OpenClawParser
from agentwatch.parsers.platforms.opencode.parser import OpencodeParser
from agentwatch.session import Session

_claude_parser = ClaudeCodeParser()

_PARSERS: dict[str, TranscriptParser] = {
    parser.vendor: parser
    for parser in (
        _claude_parser,
        CodexParser(),
        OpencodeParser(_claude_parser),
        OpenClawParser(),
    )
}


def supported_vendors() -> list[str]:
    return list(_PARSERS)


def get_parser(vendor: str) -> TranscriptParser | None:
    return _PARSERS.get(vendor)


def process_line(session: Session, line: str) -> None:
    """Route one transcript line to the parser registered for the session's vendor.

    Sessions of an unknown vendor are ignored, matching the fail-soft contract
    of the individual parsers.
    """
    parser = get_parser(session.vendor)
    if parser is not None:
        parser.process(session, line)
