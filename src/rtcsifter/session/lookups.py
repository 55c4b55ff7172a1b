"""Per-participant and per-component views over the dumps behind an
assembled session.

Every lookup walks the session map or component records the assembler
already holds; nothing here scans the dumps directory.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Callable, Mapping, Optional

from rtcsifter.parser.console import ConsoleLogStore
from rtcsifter.parser.entries import sort_entries
from rtcsifter.storage.models import ComponentRecord, DumpEntry, DumpEventType, DumpFile, ParticipantDetails

logger = logging.getLogger(__name__)

CONNECTION_EVENT_TAGS = {
    "iceConnectionState",
    "connectionState",
    "signalingState",
    "iceCandidate",
    "datachannel",
}
MEDIA_TRACK_TAGS = {"track", "mute", "unmute"}


@dataclass
class SessionLogSummary:
    session_id: str
    endpoint_id: str
    log_count: int
    file_exists: bool


@dataclass
class ParticipantConsoleLogs:
    participant_id: str
    display_name: Optional[str] = None
    logs: list[dict] = field(default_factory=list)
    total_lines: int = 0
    session_ids: list[str] = field(default_factory=list)
    session_results: list[SessionLogSummary] = field(default_factory=list)

    @property
    def file_exists(self) -> bool:
        return any(r.file_exists for r in self.session_results)


def console_logs(participant: ParticipantDetails, store: ConsoleLogStore) -> ParticipantConsoleLogs:
    """Console lines of every session of a participant, oldest first."""
    result = ParticipantConsoleLogs(
        participant_id=participant.participant_id,
        display_name=participant.display_name,
        session_ids=list(participant.session_map),
    )

    for session_id, endpoint_id in participant.session_map.items():
        lines = store.raw_lines(session_id)
        entries = store.entries(session_id)
        result.session_results.append(
            SessionLogSummary(
                session_id=session_id,
                endpoint_id=endpoint_id,
                log_count=len(entries),
                file_exists=lines is not None,
            )
        )
        result.total_lines += len(lines or [])
        for entry in entries:
            result.logs.append({
                **asdict(entry),
                "source_session_id": session_id,
                "source_endpoint_id": endpoint_id,
                "participant_id": participant.participant_id,
            })

    result.logs.sort(key=lambda log: log["timestamp"])
    logger.debug(
        "Merged %d console lines from %d sessions for %s",
        len(result.logs), len(result.session_ids), participant.display_name,
    )
    return result


def _collect(
    participant: ParticipantDetails,
    dumps: Mapping[str, DumpFile],
    keep: Callable[[DumpEntry], bool],
    shape: Callable[[DumpEntry, str, str], dict],
) -> list[dict]:
    rows = []
    for session_id, endpoint_id in participant.session_map.items():
        dump = dumps.get(session_id)
        if dump is None:
            logger.warning("Dump for session %s is not loaded", session_id)
            continue
        rows.extend(shape(entry, session_id, endpoint_id) for entry in sort_entries(dump.entries) if keep(entry))
    rows.sort(key=lambda row: row["timestamp"] or 0)
    return rows


def raw_stats(participant: ParticipantDetails, dumps: Mapping[str, DumpFile]) -> list[dict]:
    """getstats records tagged with their session and endpoint."""
    return _collect(
        participant,
        dumps,
        lambda e: e.event_type == DumpEventType.GETSTATS.value,
        lambda e, sid, eid: {
            "event_type": e.event_type,
            "connection_id": e.connection_id,
            "data": e.payload,
            "timestamp": e.timestamp,
            "sequence": e.sequence,
            "session_id": sid,
            "endpoint_id": eid,
        },
    )


def connection_events(participant: ParticipantDetails, dumps: Mapping[str, DumpFile]) -> list[dict]:
    return _collect(
        participant,
        dumps,
        lambda e: e.event_type in CONNECTION_EVENT_TAGS,
        lambda e, sid, eid: {
            "event_type": e.event_type,
            "connection_id": e.connection_id,
            "data": e.payload,
            "timestamp": e.timestamp,
            "sequence": e.sequence,
            "endpoint_id": eid,
            "session_id": sid,
        },
    )


def media_type_of(payload) -> str:
    if not isinstance(payload, str) or not payload:
        return "unknown"
    return "audio" if "audio" in payload else "video"


def media_events(participant: ParticipantDetails, dumps: Mapping[str, DumpFile]) -> list[dict]:
    """track/mute/unmute records with the media kind read off the payload."""
    return _collect(
        participant,
        dumps,
        lambda e: e.event_type in MEDIA_TRACK_TAGS,
        lambda e, sid, eid: {
            "event_type": e.event_type,
            "track_id": e.connection_id,
            "track_info": e.payload,
            "timestamp": e.timestamp,
            "endpoint_id": eid,
            "session_id": sid,
            "media_type": media_type_of(e.payload),
        },
    )


def find_component(records: list[ComponentRecord], ref: str) -> Optional[ComponentRecord]:
    """Match on the identity display name first, then on the dump session id."""
    for record in records:
        if record.identity.display_name == ref:
            return record
    for record in records:
        if record.session_id == ref:
            return record
    return None


def component_data(record: ComponentRecord, dump: Optional[DumpFile]) -> dict:
    """Identity and ordered dump entries of one bridge or focus component."""
    entries = sort_entries(dump.entries) if dump else []
    return {
        "id": record.identity.display_name or record.session_id,
        "display_name": record.identity.display_name,
        "instance_id": record.session_id,
        "component_type": record.component_type.value,
        "application_name": record.identity.application_name,
        "entries": [asdict(e) for e in entries],
    }
