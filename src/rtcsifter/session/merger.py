"""Fold provisional participant records into one record per display name."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Optional

from rtcsifter.analysis.console_events import mine_interruptions
from rtcsifter.analysis.quality import average_quality
from rtcsifter.parser.console import ConsoleLogStore
from rtcsifter.storage.models import MediaEvent, ParticipantDetails

logger = logging.getLogger(__name__)


def group_by_display_name(records: list[ParticipantDetails]) -> dict[str, list[ParticipantDetails]]:
    """Group records by display name, keeping first-seen order."""
    groups: dict[str, list[ParticipantDetails]] = {}
    for record in records:
        groups.setdefault(record.display_name, []).append(record)
    return groups


def merged_leave_time(members: list[ParticipantDetails]) -> Optional[int]:
    """None if any member is still active, else the latest leave."""
    if any(m.leave_time is None for m in members):
        return None
    return max(m.leave_time for m in members)


def _console_events(
    store: Optional[ConsoleLogStore],
    session_map: dict[str, str],
    display_name: str,
    participant_id: str,
) -> list[MediaEvent]:
    if store is None:
        return []
    return mine_interruptions(store, session_map, display_name, participant_id)


def merge_group(
    members: list[ParticipantDetails],
    console_store: Optional[ConsoleLogStore] = None,
) -> ParticipantDetails:
    """Merge every record of one display name.

    The member that joined last provides the primary endpoint and the
    descriptive fields; lifecycle and quality are folded across all members.
    """
    if len(members) == 1:
        only = members[0]
        session_map = dict(only.session_map)
        return replace(
            only,
            endpoint_ids=list(only.endpoint_ids),
            session_map=session_map,
            media_events=list(only.media_events)
            + _console_events(console_store, session_map, only.display_name, only.participant_id),
        )

    primary = max(members, key=lambda m: m.join_time)
    session_map: dict[str, str] = {}
    endpoint_ids: list[str] = []
    media_events: list[MediaEvent] = []
    for member in members:
        session_map.update(member.session_map)
        endpoint_ids.extend(member.endpoint_ids)
        media_events.extend(member.media_events)

    media_events.extend(
        _console_events(console_store, session_map, primary.display_name, primary.participant_id)
    )

    logger.debug(
        "Merged %d sessions for %s (%s)",
        len(members), primary.display_name, ", ".join(session_map),
    )
    return replace(
        primary,
        join_time=min(m.join_time for m in members),
        leave_time=merged_leave_time(members),
        endpoint_ids=endpoint_ids,
        session_map=session_map,
        media_events=media_events,
        quality_metrics=average_quality([m.quality_metrics for m in members]),
        metadata={**primary.metadata, "merged_sessions": len(members)},
    )


def merge_participants(
    records: list[ParticipantDetails],
    console_store: Optional[ConsoleLogStore] = None,
) -> list[ParticipantDetails]:
    """One ParticipantDetails per display name, in first-seen order."""
    groups = group_by_display_name(records)
    merged = [merge_group(members, console_store) for members in groups.values()]
    logger.debug("Merged %d participant records into %d participants", len(records), len(merged))
    return merged
