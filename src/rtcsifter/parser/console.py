"""Parse console-log sidecar files (<sessionId>.txt) next to the dumps."""

from __future__ import annotations

import json
import logging
import re
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from rtcsifter.config import CONSOLE_LOG_SUFFIX
from rtcsifter.storage.models import ConsoleLogEntry

logger = logging.getLogger(__name__)

ISO_TS = r"(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z)"

# 2025-09-16T23:47:43.632Z [DEBUG] [videosipgw:VideoSIPGW] message
LEVEL_COMPONENT_PATTERN = re.compile(rf"^{ISO_TS}\s*\[([^\]]+)\]\s*\[([^\]]+)\]\s*(.*)$")
# 2025-09-16T23:47:43.632Z [xmpp:ChatRoom] message
COMPONENT_PATTERN = re.compile(rf"^{ISO_TS}\s*\[([^\]]+)\]\s*(.*)$")
# 2025-09-16T23:47:43.632Z message
BARE_PATTERN = re.compile(rf"^{ISO_TS}\s+(.*)$")
LEADING_TS_PATTERN = re.compile(rf"^{ISO_TS}")

LEVEL_MARKER_PATTERN = re.compile(r"\[(TRACE|DEBUG|INFO|WARN|WARNING|ERROR|FATAL)\]", re.IGNORECASE)

# Keyword heuristics, checked in order on the lowercased text.
LEVEL_KEYWORDS = [
    ("ERROR", ("error", "failed", "exception", "fatal")),
    ("WARN", ("warn", "warning", "deprecated")),
    ("DEBUG", ("debug", "verbose")),
    ("TRACE", ("trace", "entering", "exiting")),
]
DEFAULT_LEVEL = "INFO"
UNKNOWN_COMPONENT = "Unknown"


def iso_to_ms(value: str) -> int:
    """Convert '2025-09-16T23:47:43.632Z' to epoch milliseconds."""
    dt = datetime.strptime(value, "%Y-%m-%dT%H:%M:%S.%fZ").replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def leading_timestamp(line: str) -> Optional[int]:
    """Epoch ms of the ISO timestamp a line starts with, if any.

    A prefix that only looks like a date (month 13, hour 99) counts as none.
    """
    match = LEADING_TS_PATTERN.match(line)
    if not match:
        return None
    try:
        return iso_to_ms(match.group(1))
    except ValueError:
        logger.debug("Invalid timestamp prefix: %s", match.group(1))
        return None


def infer_log_level(text: str) -> str:
    """Pick a log level: explicit [LEVEL] marker first, then keywords."""
    if not text:
        return DEFAULT_LEVEL

    marker = LEVEL_MARKER_PATTERN.search(text)
    if marker:
        level = marker.group(1).upper()
        return "WARN" if level == "WARNING" else level

    lower = text.lower()
    for level, keywords in LEVEL_KEYWORDS:
        if any(k in lower for k in keywords):
            return level
    return DEFAULT_LEVEL


def _component(path: str) -> str:
    return path.split(":")[0].strip() if ":" in path else path.strip()


def parse_console_line(line: str, line_number: int, session_id: str) -> Optional[ConsoleLogEntry]:
    """Parse one of the timestamped text formats, or return None."""
    timestamp = leading_timestamp(line)
    if timestamp is None:
        return None

    match = LEVEL_COMPONENT_PATTERN.match(line)
    if match:
        _, level, path, message = match.groups()
        return ConsoleLogEntry(
            timestamp=timestamp,
            level=level.strip(),
            message=message.strip(),
            component=_component(path),
            raw_line=line,
            line_number=line_number,
            session_id=session_id,
        )

    match = COMPONENT_PATTERN.match(line)
    if match:
        _, path, message = match.groups()
        return ConsoleLogEntry(
            timestamp=timestamp,
            level=infer_log_level(message),
            message=message.strip(),
            component=_component(path),
            raw_line=line,
            line_number=line_number,
            session_id=session_id,
        )

    match = BARE_PATTERN.match(line)
    if match:
        _, message = match.groups()
        return ConsoleLogEntry(
            timestamp=timestamp,
            level=infer_log_level(message),
            message=message.strip(),
            component=UNKNOWN_COMPONENT,
            raw_line=line,
            line_number=line_number,
            session_id=session_id,
        )

    return None


def _json_timestamp(value, fallback: int) -> int:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(value)
    if isinstance(value, str):
        try:
            return iso_to_ms(value)
        except ValueError:
            pass
    return fallback


def _parse_json_line(line: str, line_number: int, session_id: str, fallback_ts: int) -> Optional[ConsoleLogEntry]:
    try:
        record = json.loads(line)
    except json.JSONDecodeError:
        return None
    if not isinstance(record, dict):
        return None

    message = str(record.get("message") or record.get("text") or "")
    return ConsoleLogEntry(
        timestamp=_json_timestamp(record.get("timestamp"), fallback_ts),
        level=str(record.get("level") or infer_log_level(message or line)),
        message=message,
        component=str(record.get("component") or UNKNOWN_COMPONENT),
        raw_line=line,
        line_number=line_number,
        session_id=session_id,
        fields=record,
    )


def parse_console_text(text: str, session_id: str, now_ms: Optional[int] = None) -> list[ConsoleLogEntry]:
    """Parse a whole sidecar file. Every non-blank line yields an entry.

    Unrecognised lines are kept with a keyword-inferred level and a
    synthetic timestamp of now + line index.
    """
    now_ms = int(time.time() * 1000) if now_ms is None else now_ms
    lines = [line for line in text.split("\n") if line.strip()]
    entries = []

    for index, line in enumerate(lines):
        line_number = index + 1
        entry = _parse_json_line(line, line_number, session_id, now_ms + index)
        if entry is None:
            entry = parse_console_line(line, line_number, session_id)
        if entry is None:
            entry = ConsoleLogEntry(
                timestamp=now_ms + index,
                level=infer_log_level(line),
                message=line,
                component=UNKNOWN_COMPONENT,
                raw_line=line,
                line_number=line_number,
                session_id=session_id,
            )
        entries.append(entry)

    return entries


class ConsoleLogStore:
    """Reads and caches the console sidecars of one dumps directory."""

    def __init__(self, dumps_dir: Path):
        self.dumps_dir = Path(dumps_dir)
        self._raw: dict[str, Optional[list[str]]] = {}

    def path_for(self, session_id: str) -> Path:
        return self.dumps_dir / f"{session_id}{CONSOLE_LOG_SUFFIX}"

    def raw_lines(self, session_id: str) -> Optional[list[str]]:
        """Non-blank lines of the sidecar, or None when there is no file."""
        if session_id not in self._raw:
            path = self.path_for(session_id)
            if not path.exists():
                logger.debug("Console log not found: %s", path)
                self._raw[session_id] = None
            else:
                text = path.read_text(encoding="utf-8", errors="replace")
                self._raw[session_id] = [line for line in text.split("\n") if line.strip()]
        return self._raw[session_id]

    def entries(self, session_id: str) -> list[ConsoleLogEntry]:
        lines = self.raw_lines(session_id)
        if lines is None:
            return []
        return parse_console_text("\n".join(lines), session_id)
