"""Mine media-interruption signals out of console-log sidecars."""

from __future__ import annotations

import logging
from typing import Optional

from rtcsifter.parser.console import ConsoleLogStore, leading_timestamp
from rtcsifter.storage.models import MediaEvent, MediaEventType

logger = logging.getLogger(__name__)

ICE_FAILURE_MARKERS = (
    "triggering ice restart after",
    "ICE failed, force reloading the conference after failed attempts to re-establish ICE",
)
TRACK_STATUS_MARKER = "TrackStreamingStatus"
TRACK_INACTIVE_MARKER = "active => inactive"


def classify_console_line(line: str) -> Optional[tuple[MediaEventType, str]]:
    """Return (event type, subcategory) for an interruption line, else None."""
    if any(marker in line for marker in ICE_FAILURE_MARKERS):
        return MediaEventType.ICE_FAILURE, "ice_failures"
    if TRACK_STATUS_MARKER in line and TRACK_INACTIVE_MARKER in line:
        return MediaEventType.BWE_ISSUE, "bwe_issues"
    return None


def mine_interruptions(
    store: ConsoleLogStore,
    session_map: dict[str, str],
    display_name: str,
    participant_id: str = "",
) -> list[MediaEvent]:
    """Scan the sidecar of every session in `session_map`.

    Only lines that start with an ISO timestamp are considered.
    """
    events = []

    for session_id, endpoint_id in session_map.items():
        lines = store.raw_lines(session_id)
        if not lines:
            continue

        for line in lines:
            timestamp = leading_timestamp(line)
            if timestamp is None:
                continue
            match = classify_console_line(line)
            if match is None:
                continue

            event_type, subcategory = match
            events.append(
                MediaEvent(
                    timestamp=timestamp,
                    type=event_type,
                    participant_id=participant_id,
                    category=MediaEventType.MEDIA_INTERRUPTION.value,
                    subcategory=subcategory,
                    metadata={
                        "display_name": display_name,
                        "session_id": session_id,
                        "endpoint_id": endpoint_id,
                        "line": line.strip(),
                    },
                )
            )

    if events:
        logger.debug(
            "Found %d console interruption events across %d sessions for %s",
            len(events), len(session_map), display_name,
        )
    return events
