"""Parse NDJSON dump lines into DumpEntry records.

Two record shapes are accepted and normalised here so nothing downstream
has to care which one a producer wrote:

  ["<eventType>", "<connectionId>|null", <payload>, <timestampMs>, <sequence>?]
  {"type": "<eventType>", "data": <payload>, "timestamp": <timestampMs>}
"""

import json
import math
import logging
from pathlib import Path
from typing import Iterator, Optional

from rtcsifter.errors import EntryParseError
from rtcsifter.storage.models import DumpEntry, DumpFile

logger = logging.getLogger(__name__)


def coerce_timestamp(value) -> Optional[int]:
    """Return an epoch-ms int for finite numeric values, None for anything else."""
    if isinstance(value, bool):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        # json.loads accepts the NaN and Infinity tokens
        return None
    if isinstance(value, (int, float)):
        return int(value)
    return None


def _from_array(record: list, default_sequence: int) -> DumpEntry:
    if not 4 <= len(record) <= 5:
        raise EntryParseError(f"Positional record has {len(record)} elements, expected 4 or 5")

    event_type, connection_id, payload, timestamp = record[:4]
    if not isinstance(event_type, str):
        raise EntryParseError("Positional record has a non-string event type")

    sequence = record[4] if len(record) == 5 else None
    if isinstance(sequence, bool) or not isinstance(sequence, int):
        sequence = default_sequence

    return DumpEntry(
        event_type=event_type,
        connection_id=connection_id if isinstance(connection_id, str) else None,
        payload=payload,
        timestamp=coerce_timestamp(timestamp),
        sequence=sequence,
    )


def _from_object(record: dict, default_sequence: int) -> DumpEntry:
    event_type = record.get("type")
    if not isinstance(event_type, str):
        raise EntryParseError("Tagged record has no string 'type' field")

    connection_id = record.get("connectionId")
    return DumpEntry(
        event_type=event_type,
        connection_id=connection_id if isinstance(connection_id, str) else None,
        payload=record.get("data"),
        timestamp=coerce_timestamp(record.get("timestamp")),
        sequence=default_sequence,
    )


def parse_entry(line: str, default_sequence: int = 0) -> DumpEntry:
    """Parse one dump line.

    Raises EntryParseError for invalid JSON or an unrecognised shape.
    """
    try:
        record = json.loads(line)
    except json.JSONDecodeError as e:
        raise EntryParseError(f"Invalid JSON: {e}") from e

    if isinstance(record, list):
        return _from_array(record, default_sequence)
    if isinstance(record, dict):
        return _from_object(record, default_sequence)
    raise EntryParseError(f"Unsupported record type: {type(record).__name__}")


def iter_entries(lines) -> Iterator[tuple[int, Optional[DumpEntry]]]:
    """Yield (line_number, entry) pairs, entry is None for a discarded line."""
    for index, line in enumerate(lines):
        line = line.strip()
        if not line:
            continue
        try:
            yield index + 1, parse_entry(line, default_sequence=index)
        except EntryParseError as e:
            logger.debug("Skipping line %d: %s", index + 1, e)
            yield index + 1, None


def read_dump_file(filepath: Path) -> DumpFile:
    """Read a whole dump file. Malformed lines are dropped and counted."""
    dump = DumpFile(session_id=filepath.stem, path=str(filepath))
    text = filepath.read_text(encoding="utf-8", errors="replace")

    for _, entry in iter_entries(text.split("\n")):
        if entry is None:
            dump.skipped_lines += 1
        else:
            dump.entries.append(entry)

    if dump.skipped_lines:
        logger.debug("%s: skipped %d malformed lines", filepath.name, dump.skipped_lines)
    return dump


def sort_entries(entries: list[DumpEntry]) -> list[DumpEntry]:
    """Order entries by timestamp, sequence breaking ties.

    Entries without a timestamp sort after timestamped ones.
    """
    return sorted(
        entries,
        key=lambda e: (e.timestamp is None, e.timestamp or 0, e.sequence),
    )


def timestamp_bounds(entries: list[DumpEntry]) -> tuple[Optional[int], Optional[int]]:
    """Return (earliest, latest) timestamps, or (None, None) if there are none."""
    stamps = [e.timestamp for e in entries if e.timestamp is not None]
    if not stamps:
        return None, None
    return min(stamps), max(stamps)
