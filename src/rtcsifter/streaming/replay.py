"""Feed an assembled session's timeline back through the streaming engine."""

from __future__ import annotations

import logging

from rtcsifter.storage.models import CallEvent, CallSession, EnhancedCallEvent, ParticipantDetails
from rtcsifter.streaming.correlation import EventCorrelationEngine

logger = logging.getLogger(__name__)


def to_call_event(event: EnhancedCallEvent, participant: ParticipantDetails | None) -> CallEvent:
    """Strip an EnhancedCallEvent back to the raw shape a producer would send."""
    metadata = dict(event.metadata)
    metadata.setdefault("displayName", event.participant.display_name)
    metadata.setdefault("clientVersion", event.participant.client_version)
    if participant is not None:
        metrics = participant.quality_metrics
        metadata.setdefault("userAgent", participant.connection.user_agent)
        metadata.setdefault("region", participant.connection.region)
        metadata.setdefault("networkType", participant.connection.network_type)
        metadata.setdefault("rtt", metrics.round_trip_time)
        metadata.setdefault("packetLoss", metrics.packet_loss)
        metadata.setdefault("jitter", metrics.jitter)

    return CallEvent(
        timestamp=event.timestamp,
        session_id=event.session_id,
        participant_id=event.participant_id,
        event_type=event.event_type,
        source=event.source,
        metadata=metadata,
        correlation_id=event.correlation_id,
    )


def replay_session(engine: EventCorrelationEngine, session: CallSession, finalize: bool = True) -> int:
    """Push every timeline event of `session` into `engine` in order.

    With `finalize`, a session still open after the last event is forced
    closed so its summary is emitted. Returns the number of events pushed.
    """
    by_id = {p.participant_id: p for p in session.participants}
    pushed = 0
    for event in sorted(session.events, key=lambda e: e.timestamp):
        engine.process_event(to_call_event(event, by_id.get(event.participant_id)))
        pushed += 1

    if finalize and engine.get_session(session.session_id) is not None:
        engine.finalize_session(session.session_id)

    logger.info("Replayed %d events of session %s", pushed, session.session_id)
    return pushed
