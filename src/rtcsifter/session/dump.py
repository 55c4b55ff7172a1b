"""Turn one dump file into one provisional component record."""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import Optional

from rtcsifter.analysis.classifier import classify_component
from rtcsifter.analysis.media_events import MediaExtraction, extract_media_events
from rtcsifter.analysis.quality import calculate_quality
from rtcsifter.errors import MissingConnectionInfoError, MissingIdentityError
from rtcsifter.parser.entries import sort_entries, timestamp_bounds
from rtcsifter.parser.payloads import decode_payload, merge_identity
from rtcsifter.parser.useragent import detect_network_type, is_react_native, resolve_client
from rtcsifter.session.registry import ParticipantIdRegistry
from rtcsifter.storage.models import (
    ClientInfo,
    ComponentIdentity,
    ComponentRecord,
    ComponentType,
    ConnectionDetails,
    ConnectionInfo,
    DumpEntry,
    DumpEventType,
    DumpFile,
    JitsiClient,
    ParticipantDetails,
)

logger = logging.getLogger(__name__)

JITSI_VERSION_MARKER = "lib-jitsi-meet version:"
JITSI_VERSION_PATTERN = re.compile(r"version: (\w+)")
FALLBACK_NAME_LENGTH = 8


@dataclass
class _Scan:
    identity: Optional[ComponentIdentity] = None
    connection: Optional[ConnectionInfo] = None
    connection_timestamp: Optional[int] = None


def _scan_records(entries: list[DumpEntry]) -> _Scan:
    scan = _Scan()
    for entry in entries:
        if entry.event_type == DumpEventType.IDENTITY.value:
            decoded = decode_payload(entry)
            if isinstance(decoded, ComponentIdentity):
                scan.identity = merge_identity(scan.identity, decoded)
        elif entry.event_type == DumpEventType.CONNECTION_INFO.value and scan.connection is None:
            decoded = decode_payload(entry)
            if isinstance(decoded, ConnectionInfo):
                scan.connection = decoded
                scan.connection_timestamp = entry.timestamp
    return scan


def extract_jitsi_version(entries: list[DumpEntry]) -> Optional[str]:
    """First lib-jitsi-meet version announced in a `logs` record, if any."""
    for entry in entries:
        if entry.event_type != DumpEventType.LOGS.value or not isinstance(entry.payload, list):
            continue
        for record in entry.payload:
            text = record.get("text") if isinstance(record, dict) else None
            if not isinstance(text, str) or JITSI_VERSION_MARKER not in text:
                continue
            match = JITSI_VERSION_PATTERN.search(text)
            if match:
                return match.group(1)
    return None


def conference_start_marker(dump: DumpFile) -> Optional[int]:
    """Value of the file's conferenceStartTimestamp record, if it has one.

    Producers write the epoch as a string; plain numbers are accepted too.
    """
    for entry in dump.entries:
        if entry.event_type != DumpEventType.CONFERENCE_START_TIMESTAMP.value:
            continue
        value = entry.payload
        if isinstance(value, str) and value.strip().isdigit():
            return int(value.strip())
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return int(value)
    return None


def infer_join_time(
    session_id: str,
    connection_timestamp: Optional[int],
    earliest: Optional[int],
    now_ms: Optional[int] = None,
) -> int:
    if connection_timestamp is not None:
        return connection_timestamp
    if earliest is not None:
        logger.warning("%s: no connectionInfo timestamp, using earliest entry %s", session_id, earliest)
        return earliest
    fallback = now_ms if now_ms is not None else int(time.time() * 1000)
    logger.error("%s: no timestamps at all, join time set to wall clock %s", session_id, fallback)
    return fallback


def infer_leave_time(extraction: MediaExtraction, latest: Optional[int]) -> Optional[int]:
    """Leave time from peer-connection closes, else the latest timestamp.

    Only when every observed peer connection closed is the close time
    trusted. Otherwise the participant is treated as still active and the
    latest event seen in the file stands in as a provisional leave time.
    """
    pcs = extraction.peer_connections
    closes = extraction.close_timestamps
    if pcs and pcs.issubset(closes):
        stamped = [ts for ts in closes.values() if ts is not None]
        if stamped:
            return max(stamped)
    return latest


def _display_name(identity: ComponentIdentity, session_id: str) -> str:
    return identity.display_name or identity.statistics_id or session_id[:FALLBACK_NAME_LENGTH]


def process_component_dump(
    dump: DumpFile,
    registry: ParticipantIdRegistry,
    now_ms: Optional[int] = None,
) -> Optional[ComponentRecord]:
    """Build the provisional record for one dump file.

    Returns None (with a warning) when the file cannot be attributed to a
    component: no identity record, or a participant without connectionInfo.
    """
    session_id = dump.session_id
    entries = sort_entries(dump.entries)
    scan = _scan_records(entries)

    try:
        component_type = classify_component(scan.identity)
        if component_type == ComponentType.PARTICIPANT and scan.connection is None:
            raise MissingConnectionInfoError("participant dump without a connectionInfo record")
    except (MissingIdentityError, MissingConnectionInfoError) as e:
        logger.warning("Skipping dump %s: %s", session_id, e)
        return None

    identity = scan.identity
    is_participant = component_type == ComponentType.PARTICIPANT
    display_name = _display_name(identity, session_id)

    endpoint_id = identity.endpoint_id
    if not endpoint_id:
        endpoint_id = session_id
        if is_participant:
            logger.warning("%s: identity has no endpointId, using the session id", session_id)

    participant_id = registry.get(display_name) if is_participant else endpoint_id

    earliest, latest = timestamp_bounds(entries)
    extraction = extract_media_events(entries, identity, participant_id)
    join_time = infer_join_time(session_id, scan.connection_timestamp, earliest, now_ms)
    leave_time = infer_leave_time(extraction, latest)

    user_agent = scan.connection.user_agent if scan.connection else ""
    if is_participant:
        client_info = resolve_client(user_agent)
    else:
        client_info = ClientInfo(platform=component_type.value)

    deployment = identity.deployment_info
    details = ParticipantDetails(
        participant_id=participant_id,
        display_name=display_name,
        endpoint_id=endpoint_id,
        join_time=join_time,
        leave_time=leave_time,
        endpoint_ids=[endpoint_id],
        session_map={session_id: endpoint_id},
        media_events=extraction.events,
        quality_metrics=calculate_quality(entries),
        client_info=client_info,
        jitsi_client=JitsiClient(
            version=extract_jitsi_version(entries) or "unknown",
            platform="react-native" if is_react_native(user_agent) else "web",
        ),
        connection=ConnectionDetails(
            user_agent=user_agent,
            region=(deployment.user_region if deployment else None) or "unknown",
            network_type=detect_network_type(user_agent),
        ),
        statistics_display_name=identity.statistics_display_name,
        metadata={"original_session_id": session_id},
    )

    logger.debug(
        "%s: %s %s joined %s left %s (%d media events)",
        session_id, component_type.value, display_name, join_time, leave_time, len(extraction.events),
    )
    return ComponentRecord(
        component_type=component_type,
        session_id=session_id,
        identity=identity,
        details=details,
    )
