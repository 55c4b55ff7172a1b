"""Turn per-file signal transitions into typed media events."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from rtcsifter.config import PEER_CONNECTION_PREFIX
from rtcsifter.parser.entries import sort_entries
from rtcsifter.storage.models import (
    ComponentIdentity,
    DumpEntry,
    DumpEventType,
    MediaEvent,
    MediaEventType,
)

logger = logging.getLogger(__name__)

# Anomaly tags -> (media event type, subcategory). The category tag of
# these events is the media event type itself.
ANOMALY_EVENTS = {
    DumpEventType.REMOTE_SOURCE_SUSPENDED.value: (MediaEventType.MEDIA_INTERRUPTION, "remote_source_events"),
    DumpEventType.REMOTE_SOURCE_INTERRUPTED.value: (MediaEventType.MEDIA_INTERRUPTION, "remote_source_events"),
    DumpEventType.JVB_ICE_RESTARTED.value: (MediaEventType.NETWORK_ISSUE, "bwe_issues"),
    DumpEventType.STROPHE_DISCONNECTED.value: (MediaEventType.CONNECTION_ISSUE, "strophe_errors"),
    DumpEventType.STROPHE_RECONNECTED.value: (MediaEventType.CONNECTION_RECOVERY, "strophe_errors"),
}


@dataclass
class MediaExtraction:
    events: list[MediaEvent] = field(default_factory=list)
    # Every PC_ connection id seen anywhere in the file
    peer_connections: set[str] = field(default_factory=set)
    # PC_ connection id -> timestamp of its close record (None if unstamped)
    close_timestamps: dict[str, Optional[int]] = field(default_factory=dict)


def is_peer_connection(connection_id: Optional[str]) -> bool:
    return isinstance(connection_id, str) and connection_id.startswith(PEER_CONNECTION_PREFIX)


def _toggle(entry: DumpEntry, on_true: MediaEventType, on_false: MediaEventType, key: str) -> Optional[MediaEvent]:
    if not isinstance(entry.payload, bool):
        return None
    return MediaEvent(
        timestamp=entry.timestamp,
        type=on_true if entry.payload else on_false,
        metadata={key: entry.payload},
    )


def _audio_muted(entry: DumpEntry) -> Optional[MediaEvent]:
    return _toggle(entry, MediaEventType.AUDIO_MUTE, MediaEventType.AUDIO_UNMUTE, "muted")


def _video_muted(entry: DumpEntry) -> Optional[MediaEvent]:
    return _toggle(entry, MediaEventType.VIDEO_DISABLE, MediaEventType.VIDEO_ENABLE, "muted")


def _screenshare(entry: DumpEntry) -> Optional[MediaEvent]:
    # Inverted payload: False means sharing started, True means it stopped.
    event = MediaEvent(
        timestamp=entry.timestamp,
        type=MediaEventType.SCREENSHARE_START if entry.payload is False else MediaEventType.SCREENSHARE_STOP,
    )
    event.metadata["screenshare_active"] = event.type == MediaEventType.SCREENSHARE_START
    return event


def _dominant_speaker(entry: DumpEntry) -> MediaEvent:
    # Only starts are recorded here; stops are synthesised across
    # participants once the whole conference is known.
    return MediaEvent(
        timestamp=entry.timestamp,
        type=MediaEventType.DOMINANT_SPEAKER_START,
        metadata={"dominant_speaker_active": True},
    )


def _anomaly(entry: DumpEntry) -> MediaEvent:
    event_type, subcategory = ANOMALY_EVENTS[entry.event_type]
    return MediaEvent(
        timestamp=entry.timestamp,
        type=event_type,
        category=event_type.value,
        subcategory=subcategory,
        metadata={"issue_type": entry.event_type},
    )


EVENT_BUILDERS: dict[str, Callable[[DumpEntry], Optional[MediaEvent]]] = {
    DumpEventType.AUDIO_MUTED_CHANGED.value: _audio_muted,
    DumpEventType.VIDEO_MUTED_CHANGED.value: _video_muted,
    DumpEventType.SCREENSHARE_TOGGLED.value: _screenshare,
    DumpEventType.DOMINANT_SPEAKER_CHANGED.value: _dominant_speaker,
    **{tag: _anomaly for tag in ANOMALY_EVENTS},
}


def extract_media_events(
    entries: list[DumpEntry],
    identity: Optional[ComponentIdentity] = None,
    participant_id: str = "",
) -> MediaExtraction:
    """Extract media events and peer-connection lifecycle from one file.

    Entries are re-sorted by timestamp first; producer order is not trusted.
    """
    result = MediaExtraction()

    for entry in sort_entries(entries):
        if is_peer_connection(entry.connection_id):
            result.peer_connections.add(entry.connection_id)
            if entry.event_type == DumpEventType.CLOSE.value:
                result.close_timestamps[entry.connection_id] = entry.timestamp
                logger.debug("Peer connection %s closed at %s", entry.connection_id, entry.timestamp)

        builder = EVENT_BUILDERS.get(entry.event_type)
        if builder is None:
            continue
        if entry.timestamp is None:
            logger.debug("Dropping %s without a timestamp", entry.event_type)
            continue

        event = builder(entry)
        if event is not None:
            event.participant_id = participant_id
            result.events.append(event)

    if identity is not None and result.events:
        logger.debug(
            "Extracted %d media events for %s", len(result.events),
            identity.display_name or identity.endpoint_id,
        )
    return result
