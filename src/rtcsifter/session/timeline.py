"""Build the session timeline and its aggregate metrics from participants."""

from __future__ import annotations

import logging
from typing import Optional

from rtcsifter.storage.models import (
    AggregatedMetrics,
    CallEventType,
    EnhancedCallEvent,
    MediaEvent,
    MediaEventType,
    NetworkConditions,
    NetworkIssue,
    ParticipantDetails,
    ParticipantSnapshot,
    TechnicalContext,
)

logger = logging.getLogger(__name__)

# Media events that surface on the timeline as interruptions.
INTERRUPTION_CLASSES = {
    MediaEventType.CONNECTION_ISSUE: CallEventType.CONNECTION_ISSUE,
    MediaEventType.CONNECTION_RECOVERY: CallEventType.CONNECTION_ISSUE,
    MediaEventType.NETWORK_ISSUE: CallEventType.NETWORK_ISSUE,
    MediaEventType.ICE_FAILURE: CallEventType.NETWORK_ISSUE,
    MediaEventType.MEDIA_INTERRUPTION: CallEventType.MEDIA_INTERRUPTION,
    MediaEventType.BWE_ISSUE: CallEventType.MEDIA_INTERRUPTION,
}
SCREENSHARE_TYPES = (MediaEventType.SCREENSHARE_START, MediaEventType.SCREENSHARE_STOP)

GOOD_AUDIO_THRESHOLD = 3.5
NETWORK_ISSUE_SEVERITY = "medium"


def correlation_id(sub_type: str, participant_id: str, timestamp: int) -> str:
    return f"{sub_type}_{participant_id}_{timestamp}"


def classify_media_event(event_type: MediaEventType) -> Optional[CallEventType]:
    """Timeline class of a media event, None if it stays off the timeline."""
    return INTERRUPTION_CLASSES.get(event_type)


def participant_snapshot(participant: ParticipantDetails) -> ParticipantSnapshot:
    client = participant.client_info
    return ParticipantSnapshot(
        endpoint_id=participant.endpoint_id,
        display_name=participant.display_name,
        client_version=participant.jitsi_client.version,
        os_type=client.os if client else "unknown",
        browser_type=client.browser if client else None,
    )


def technical_context(participant: ParticipantDetails) -> TechnicalContext:
    metrics = participant.quality_metrics
    return TechnicalContext(
        user_agent=participant.connection.user_agent,
        webrtc_stats={},
        network_conditions=NetworkConditions(
            rtt=metrics.round_trip_time,
            packet_loss=metrics.packet_loss,
            jitter=metrics.jitter,
            quality="good" if metrics.audio_quality > GOOD_AUDIO_THRESHOLD else "poor",
            connection_type=participant.connection.network_type or "Unknown",
        ),
    )


def _event(
    participant: ParticipantDetails,
    session_id: str,
    timestamp: int,
    event_type: CallEventType,
    sub_type: str,
    source: str = "client",
    metadata: Optional[dict] = None,
    with_context: bool = False,
) -> EnhancedCallEvent:
    return EnhancedCallEvent(
        timestamp=timestamp,
        session_id=session_id,
        participant_id=participant.participant_id,
        event_type=event_type,
        source=source,
        correlation_id=correlation_id(sub_type, participant.participant_id, timestamp),
        participant=participant_snapshot(participant),
        metadata={"subType": sub_type, **(metadata or {})},
        technical_context=technical_context(participant) if with_context else None,
    )


def lifecycle_events(participant: ParticipantDetails, session_id: str) -> list[EnhancedCallEvent]:
    """Join, leave (when known) and screenshare toggles for one participant."""
    events = [
        _event(participant, session_id, participant.join_time, CallEventType.JOIN, "join", with_context=True)
    ]
    if participant.leave_time is not None:
        events.append(
            _event(participant, session_id, participant.leave_time, CallEventType.LEAVE, "leave", with_context=True)
        )

    for media in participant.media_events:
        if media.type in SCREENSHARE_TYPES:
            events.append(
                _event(
                    participant, session_id, media.timestamp, CallEventType.SCREENSHARE,
                    media.type.value, metadata={"type": media.type.value},
                )
            )
    return events


def interruption_events(participant: ParticipantDetails, session_id: str) -> list[EnhancedCallEvent]:
    events = []
    for media in participant.media_events:
        event_type = classify_media_event(media.type)
        if event_type is None:
            continue
        events.append(
            _event(
                participant, session_id, media.timestamp, event_type, media.type.value,
                source="analytics",
                metadata={
                    "type": media.type.value,
                    "category": media.category or "unknown",
                    "subcategory": media.subcategory or "unknown",
                    "issueType": media.metadata.get("issue_type", media.type.value),
                    "displayName": participant.display_name,
                },
            )
        )
    return events


def dedup_key(event: EnhancedCallEvent) -> tuple:
    return (event.timestamp, event.participant_id, event.event_type, event.metadata.get("subType"))


def deduplicate_events(events: list[EnhancedCallEvent]) -> list[EnhancedCallEvent]:
    """Drop repeats of (timestamp, participant, event type, subType), keeping the first."""
    seen = set()
    unique = []
    for event in events:
        key = dedup_key(event)
        if key in seen:
            continue
        seen.add(key)
        unique.append(event)
    return unique


def build_timeline(participants: list[ParticipantDetails], session_id: str) -> list[EnhancedCallEvent]:
    """All timeline events, deduplicated and ordered by timestamp."""
    events = []
    for participant in participants:
        events.extend(lifecycle_events(participant, session_id))
    for participant in participants:
        events.extend(interruption_events(participant, session_id))

    unique = deduplicate_events(events)
    if len(unique) != len(events):
        logger.debug("Dropped %d duplicate timeline events", len(events) - len(unique))
    # sorted() is stable, so equal timestamps keep build order
    return sorted(unique, key=lambda e: e.timestamp)


def screenshare_duration(media_events: list[MediaEvent]) -> int:
    """Sum of closed start -> stop screenshare intervals."""
    total = 0
    started: Optional[int] = None
    for event in sorted(media_events, key=lambda e: e.timestamp):
        if event.type == MediaEventType.SCREENSHARE_START and started is None:
            started = event.timestamp
        elif event.type == MediaEventType.SCREENSHARE_STOP and started is not None:
            total += event.timestamp - started
            started = None
    return total


def network_issues(events: list[EnhancedCallEvent]) -> list[NetworkIssue]:
    return [
        NetworkIssue(
            timestamp=event.timestamp,
            participant_id=event.participant_id,
            type=event.metadata.get("subType", event.event_type.value),
            severity=NETWORK_ISSUE_SEVERITY,
            details=dict(event.metadata),
        )
        for event in events
        if event.event_type == CallEventType.NETWORK_ISSUE
    ]


def compute_metrics(
    participants: list[ParticipantDetails],
    events: list[EnhancedCallEvent],
    start_time: int,
    end_time: int,
) -> AggregatedMetrics:
    count = len(participants)
    return AggregatedMetrics(
        duration=end_time - start_time,
        total_participants=count,
        avg_audio_quality=sum(p.quality_metrics.audio_quality for p in participants) / count if count else 0.0,
        avg_video_quality=sum(p.quality_metrics.video_quality for p in participants) / count if count else 0.0,
        network_issues=network_issues(events),
        screenshare_duration=sum(screenshare_duration(p.media_events) for p in participants),
        dominant_speaker_changes=sum(
            1 for p in participants for e in p.media_events if e.type == MediaEventType.DOMINANT_SPEAKER_START
        ),
    )
