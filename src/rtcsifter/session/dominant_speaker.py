"""Synthesize dominant-speaker stops from start-only notifications."""

from __future__ import annotations

import logging

from rtcsifter.storage.models import MediaEvent, MediaEventType, ParticipantDetails

logger = logging.getLogger(__name__)


def _starts(participant: ParticipantDetails) -> list[MediaEvent]:
    return [e for e in participant.media_events if e.type == MediaEventType.DOMINANT_SPEAKER_START]


def reconstruct_dominant_speaker(participants: list[ParticipantDetails]) -> int:
    """Add a stop 1 ms before the next start by somebody else.

    Works in place over all participants and returns the number of stops
    added. A start with no later start by another participant gets no stop:
    the last speaker stays flagged to the end of the session. Every
    participant's media events are re-sorted by timestamp afterwards.
    """
    timeline = sorted(
        ((event.timestamp, p.participant_id) for p in participants for event in _starts(p)),
        key=lambda item: item[0],
    )

    added = 0
    for participant in participants:
        stops = []
        for start in _starts(participant):
            following = next(
                (
                    ts for ts, owner in timeline
                    if ts > start.timestamp and owner != participant.participant_id
                ),
                None,
            )
            if following is None:
                continue
            stops.append(
                MediaEvent(
                    timestamp=following - 1,
                    type=MediaEventType.DOMINANT_SPEAKER_STOP,
                    participant_id=participant.participant_id,
                    metadata={"dominant_speaker_active": False, "synthesized": True},
                )
            )

        participant.media_events.extend(stops)
        participant.media_events.sort(key=lambda e: e.timestamp)
        added += len(stops)

    logger.debug("Synthesized %d dominant speaker stops from %d starts", added, len(timeline))
    return added
