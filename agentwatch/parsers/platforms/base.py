"""Shared interface for vendor transcript parsers."""
from __future__ import annotations

import json
import logging
from typing import Any

from agentwatch.observability import record_parser_failure
from agentwatch.session import Session

logger = logging.getLogger("agentwatch.parser")


class TranscriptParser:
    """Turns one transcript line into state changes on a session.

    `process` never raises: lines that are not JSON objects are skipped, and
    a record that trips a vendor handler is logged and counted instead.
    """

    vendor: str = ""

    def process(self, session: Session, line: str) -> None:
        try:
            record = json.loads(line)
        except (TypeError, ValueError):
            return
        if not isinstance(record, dict):
            return
        try:
            self.handle_record(session, record)
        except Exception:
            logger.debug("Session %s: %s record not handled", session.id, self.vendor, exc_info=True)
            record_parser_failure(self.vendor)

    def handle_record(self, session: Session, record: dict[str, Any]) -> None:
        raise NotImplementedError


def as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def as_str(value: Any) -> str:
    return value if isinstance(value, str) else ""
