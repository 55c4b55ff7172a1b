"""Incremental session reconstruction from a live stream of call events.

Each session moves ACTIVE -> FINALIZING -> FINALIZED. A session finalizes
once every known participant has left, or once it has been idle for longer
than the configured timeout. A background sweeper enforces the timeout even
when no new events arrive.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from rtcsifter.config import EngineConfig
from rtcsifter.parser.useragent import resolve_client
from rtcsifter.session.timeline import correlation_id, network_issues, screenshare_duration
from rtcsifter.storage.models import (
    AggregatedMetrics,
    CallEvent,
    CallEventType,
    CallSession,
    ClientInfo,
    ConnectionDetails,
    EnhancedCallEvent,
    JitsiClient,
    MediaEvent,
    MediaEventType,
    NetworkConditions,
    ParticipantDetails,
    ParticipantSnapshot,
    TechnicalContext,
)
from rtcsifter.streaming.notify import EVENT_CORRELATED, SESSION_FINALIZED, NotificationDispatcher

logger = logging.getLogger(__name__)

QUALITY_EVENTS = {
    CallEventType.NETWORK_ISSUE,
    CallEventType.CONNECTION_ISSUE,
    CallEventType.MEDIA_INTERRUPTION,
}
SCREENSHARE_MEDIA_TYPES = {
    MediaEventType.SCREENSHARE_START.value: MediaEventType.SCREENSHARE_START,
    MediaEventType.SCREENSHARE_STOP.value: MediaEventType.SCREENSHARE_STOP,
}


class SessionStatus(str, Enum):
    ACTIVE = "active"
    FINALIZING = "finalizing"
    FINALIZED = "finalized"


@dataclass
class SessionState:
    session_id: str
    start_time: int
    last_activity: int
    end_time: Optional[int] = None
    participants: dict[str, ParticipantDetails] = field(default_factory=dict)
    events: list[EnhancedCallEvent] = field(default_factory=list)
    status: SessionStatus = SessionStatus.ACTIVE

    def all_participants_left(self) -> bool:
        return bool(self.participants) and all(
            p.leave_time is not None for p in self.participants.values()
        )


@dataclass
class SessionSnapshot:
    session_id: str
    participant_count: int
    event_count: int
    duration: int
    last_activity: int


@dataclass
class CorrelationNotice:
    session_id: str
    event: EnhancedCallEvent
    snapshot: SessionSnapshot


def _first(metadata: dict, *keys):
    for key in keys:
        value = metadata.get(key)
        if value:
            return value
    return None


def _valid_timestamp(value) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def enrich_event(raw: CallEvent) -> EnhancedCallEvent:
    """Attach participant and technical context derived from the metadata.

    Raises ValueError for an event type the engine does not know, or for a
    timestamp that is not a finite number.
    """
    event_type = CallEventType(raw.event_type)
    if not _valid_timestamp(raw.timestamp):
        raise ValueError(f"Invalid timestamp: {raw.timestamp!r}")
    metadata = raw.metadata or {}
    user_agent = metadata.get("userAgent") or ""
    client = resolve_client(user_agent) if user_agent else None

    return EnhancedCallEvent(
        timestamp=raw.timestamp,
        session_id=raw.session_id,
        participant_id=raw.participant_id,
        event_type=event_type,
        source=raw.source,
        correlation_id=raw.correlation_id or correlation_id(event_type.value, raw.participant_id, raw.timestamp),
        participant=ParticipantSnapshot(
            endpoint_id=raw.participant_id,
            display_name=_first(metadata, "displayName", "name") or f"Participant {raw.participant_id}",
            client_version=_first(metadata, "clientVersion", "version") or "unknown",
            os_type=client.os if client else "unknown",
            browser_type=client.browser if client else "unknown",
        ),
        metadata=dict(metadata),
        technical_context=TechnicalContext(
            user_agent=user_agent,
            webrtc_stats=metadata.get("stats"),
            network_conditions=NetworkConditions(
                rtt=_first(metadata, "rtt", "roundTripTime"),
                packet_loss=_first(metadata, "packetLoss", "loss"),
                jitter=metadata.get("jitter"),
                quality=metadata.get("networkQuality") or "unknown",
                connection_type=metadata.get("networkType"),
            ),
        ),
    )


def _jitsi_platform(user_agent: str) -> str:
    if "Electron" in user_agent:
        return "electron"
    if "ReactNative" in user_agent or "react-native" in user_agent.lower():
        return "react-native"
    return "web"


def new_participant(event: EnhancedCallEvent) -> ParticipantDetails:
    user_agent = event.technical_context.user_agent if event.technical_context else ""
    client = resolve_client(user_agent) if user_agent else ClientInfo(platform="web")
    return ParticipantDetails(
        participant_id=event.participant_id,
        display_name=event.participant.display_name,
        endpoint_id=event.participant.endpoint_id,
        join_time=event.timestamp,
        endpoint_ids=[event.participant.endpoint_id],
        client_info=client,
        jitsi_client=JitsiClient(
            version=event.participant.client_version,
            build_number=event.metadata.get("buildNumber") or "unknown",
            platform=_jitsi_platform(user_agent),
        ),
        connection=ConnectionDetails(
            user_agent=user_agent,
            region=event.metadata.get("region") or "unknown",
            network_type=event.metadata.get("networkType") or "WiFi",
        ),
        role=event.metadata.get("role") or "viewer",
    )


def _screenshare_type(participant: ParticipantDetails, event: EnhancedCallEvent) -> MediaEventType:
    explicit = SCREENSHARE_MEDIA_TYPES.get(event.metadata.get("type"))
    if explicit is not None:
        return explicit
    # Bare toggles alternate start/stop per participant.
    last = next(
        (e.type for e in reversed(participant.media_events) if e.type in SCREENSHARE_MEDIA_TYPES.values()),
        None,
    )
    if last == MediaEventType.SCREENSHARE_START:
        return MediaEventType.SCREENSHARE_STOP
    return MediaEventType.SCREENSHARE_START


def apply_event(participant: ParticipantDetails, event: EnhancedCallEvent):
    """Fold one event into a participant record."""
    if event.event_type == CallEventType.JOIN:
        participant.join_time = min(participant.join_time, event.timestamp)
    elif event.event_type == CallEventType.LEAVE:
        participant.leave_time = event.timestamp
    elif event.event_type == CallEventType.SCREENSHARE:
        participant.media_events.append(
            MediaEvent(
                timestamp=event.timestamp,
                type=_screenshare_type(participant, event),
                participant_id=participant.participant_id,
            )
        )
    elif event.event_type in QUALITY_EVENTS:
        conditions = event.technical_context.network_conditions if event.technical_context else None
        if conditions is not None:
            metrics = participant.quality_metrics
            metrics.round_trip_time = conditions.rtt or metrics.round_trip_time
            metrics.packet_loss = conditions.packet_loss or metrics.packet_loss
            metrics.jitter = conditions.jitter or metrics.jitter


def _positive_mean(values: list[float]) -> float:
    positive = [v for v in values if v > 0]
    return sum(positive) / len(positive) if positive else 0.0


def aggregate_metrics(state: SessionState) -> AggregatedMetrics:
    participants = list(state.participants.values())
    end_time = state.end_time if state.end_time is not None else state.start_time
    return AggregatedMetrics(
        duration=end_time - state.start_time,
        total_participants=len(participants),
        avg_audio_quality=_positive_mean([p.quality_metrics.audio_quality for p in participants]),
        avg_video_quality=_positive_mean([p.quality_metrics.video_quality for p in participants]),
        network_issues=network_issues(state.events),
        screenshare_duration=sum(screenshare_duration(p.media_events) for p in participants),
        dominant_speaker_changes=sum(
            1 for p in participants for e in p.media_events if e.type == MediaEventType.DOMINANT_SPEAKER_START
        ),
    )


class EventCorrelationEngine:
    """Per-session state machine fed one CallEvent at a time.

    All session state sits behind one re-entrant lock shared by
    process_event() and the sweeper. Notifications go through a bounded
    NotificationDispatcher and are never awaited.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        clock: Callable[[], int] | None = None,
        on_session_finalized: Callable[[CallSession], None] | None = None,
        on_event_correlated: Callable[[CorrelationNotice], None] | None = None,
        start_sweeper: bool = True,
    ):
        self.config = config or EngineConfig()
        self._clock = clock or (lambda: int(time.time() * 1000))
        self._lock = threading.RLock()
        self._sessions: dict[str, SessionState] = {}

        self.notifications = NotificationDispatcher(self.config.notification_queue_size)
        if on_session_finalized is not None:
            self.notifications.subscribe(SESSION_FINALIZED, on_session_finalized)
        if on_event_correlated is not None:
            self.notifications.subscribe(EVENT_CORRELATED, on_event_correlated)

        self._stop = threading.Event()
        self._sweeper: Optional[threading.Thread] = None
        if start_sweeper:
            self._sweeper = threading.Thread(target=self._sweep_loop, name="rtcsifter-sweeper", daemon=True)
            self._sweeper.start()

    # Public API

    def process_event(self, raw: CallEvent) -> Optional[EnhancedCallEvent]:
        """Correlate one event. Failures are logged and never propagate."""
        try:
            event = enrich_event(raw)
        except Exception:
            logger.exception("Error enriching event for session %s", raw.session_id)
            return None

        with self._lock:
            state = self._get_or_create(event)
            state.events.append(event)
            state.last_activity = self._clock()
            state.start_time = min(state.start_time, event.timestamp)
            state.end_time = event.timestamp if state.end_time is None else max(state.end_time, event.timestamp)

            if event.participant_id:
                participant = state.participants.get(event.participant_id)
                if participant is None:
                    participant = new_participant(event)
                    state.participants[event.participant_id] = participant
                    logger.debug("Added participant %s to session %s", event.participant_id, state.session_id)
                apply_event(participant, event)

            self.notifications.publish(
                EVENT_CORRELATED,
                CorrelationNotice(session_id=state.session_id, event=event, snapshot=self._snapshot(state)),
            )

            if self._should_finalize(state):
                self._finalize(state)
        return event

    def sweep_inactive_sessions(self) -> int:
        """Finalize every session idle past the timeout. Returns how many."""
        with self._lock:
            idle = [s for s in self._sessions.values() if self._is_idle(s)]
            for state in idle:
                logger.debug("Session %s idle, finalizing", state.session_id)
                self._finalize(state)
        return len(idle)

    def finalize_session(self, session_id: str) -> Optional[CallSession]:
        """Force one active session to finalize now."""
        with self._lock:
            state = self._sessions.get(session_id)
            if state is None:
                return None
            return self._finalize(state)

    def active_session_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def get_session(self, session_id: str) -> Optional[SessionState]:
        with self._lock:
            return self._sessions.get(session_id)

    def subscribe(self, topic: str, callback):
        self.notifications.subscribe(topic, callback)

    def close(self):
        """Stop the sweeper, deliver pending notifications, drop live state."""
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=5)
        self.notifications.stop()
        with self._lock:
            self._sessions.clear()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # Internal helpers

    def _sweep_loop(self):
        while not self._stop.wait(self.config.sweep_interval_seconds):
            try:
                self.sweep_inactive_sessions()
            except Exception:
                logger.exception("Session sweep failed")

    def _get_or_create(self, event: EnhancedCallEvent) -> SessionState:
        state = self._sessions.get(event.session_id)
        if state is None:
            state = SessionState(
                session_id=event.session_id,
                start_time=event.timestamp,
                last_activity=self._clock(),
            )
            self._sessions[event.session_id] = state
            logger.debug("Created session %s", event.session_id)
        return state

    def _is_idle(self, state: SessionState) -> bool:
        return self._clock() - state.last_activity > self.config.session_timeout_ms

    def _should_finalize(self, state: SessionState) -> bool:
        return state.all_participants_left() or self._is_idle(state)

    def _snapshot(self, state: SessionState) -> SessionSnapshot:
        return SessionSnapshot(
            session_id=state.session_id,
            participant_count=len(state.participants),
            event_count=len(state.events),
            duration=(state.end_time or state.start_time) - state.start_time,
            last_activity=state.last_activity,
        )

    def _finalize(self, state: SessionState) -> CallSession:
        state.status = SessionStatus.FINALIZING
        logger.info("Finalizing session %s", state.session_id)

        session = CallSession(
            session_id=state.session_id,
            start_time=state.start_time,
            end_time=state.end_time,
            participants=list(state.participants.values()),
            events=sorted(state.events, key=lambda e: e.timestamp),
            metrics=aggregate_metrics(state),
        )
        state.status = SessionStatus.FINALIZED
        self._sessions.pop(state.session_id, None)

        self.notifications.publish(SESSION_FINALIZED, session)
        return session
