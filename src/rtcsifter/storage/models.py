"""Data models for RTCSifter."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class DumpEventType(str, Enum):
    """Event tags recognised in dump files. Anything else is ignored."""

    AUDIO_MUTED_CHANGED = "audioMutedChanged"
    CLOSE = "close"
    CONFERENCE_START_TIMESTAMP = "conferenceStartTimestamp"
    CONNECTION_INFO = "connectionInfo"
    DOMINANT_SPEAKER_CHANGED = "dominantSpeakerChanged"
    GETSTATS = "getstats"
    IDENTITY = "identity"
    JVB_ICE_RESTARTED = "jvbIceRestarted"
    LOGS = "logs"
    REMOTE_SOURCE_INTERRUPTED = "remoteSourceInterrupted"
    REMOTE_SOURCE_SUSPENDED = "remoteSourceSuspended"
    SCREENSHARE_TOGGLED = "screenshareToggled"
    STATS = "stats"
    STROPHE_DISCONNECTED = "stropheDisconnected"
    STROPHE_RECONNECTED = "stropheReconnected"
    VIDEO_MUTED_CHANGED = "videoMutedChanged"


class MediaEventType(str, Enum):
    AUDIO_MUTE = "audio_mute"
    AUDIO_UNMUTE = "audio_unmute"
    BWE_ISSUE = "bwe_issue"
    CONNECTION_ISSUE = "connection_issue"
    CONNECTION_RECOVERY = "connection_recovery"
    DOMINANT_SPEAKER_START = "dominant_speaker_start"
    DOMINANT_SPEAKER_STOP = "dominant_speaker_stop"
    ICE_FAILURE = "ice_failure"
    MEDIA_INTERRUPTION = "media_interruption"
    NETWORK_ISSUE = "network_issue"
    SCREENSHARE_START = "screenshare_start"
    SCREENSHARE_STOP = "screenshare_stop"
    VIDEO_DISABLE = "video_disable"
    VIDEO_ENABLE = "video_enable"


class CallEventType(str, Enum):
    JOIN = "join"
    LEAVE = "leave"
    SCREENSHARE = "screenshare"
    NETWORK_ISSUE = "networkIssue"
    CONNECTION_ISSUE = "connectionIssue"
    MEDIA_INTERRUPTION = "mediaInterruption"


class ComponentType(str, Enum):
    PARTICIPANT = "participant"
    BRIDGE = "bridge"
    FOCUS = "focus"


@dataclass
class DumpEntry:
    event_type: str
    connection_id: Optional[str]
    payload: Any
    timestamp: Optional[int]
    sequence: int


@dataclass
class DumpFile:
    session_id: str
    path: str
    entries: list[DumpEntry] = field(default_factory=list)
    skipped_lines: int = 0


@dataclass
class DeploymentInfo:
    environment: Optional[str] = None
    region: Optional[str] = None
    shard: Optional[str] = None
    user_region: Optional[str] = None


@dataclass
class ComponentIdentity:
    endpoint_id: Optional[str] = None
    display_name: Optional[str] = None
    application_name: Optional[str] = None  # "JVB", "Jicofo" or None for endpoints
    conf_name: Optional[str] = None
    conf_id: Optional[str] = None
    site_id: Optional[str] = None
    statistics_id: Optional[str] = None
    statistics_display_name: Optional[str] = None
    deployment_info: Optional[DeploymentInfo] = None


@dataclass
class ConnectionInfo:
    user_agent: str = ""
    client_type: Optional[str] = None
    path: Optional[str] = None
    stats_session_id: Optional[str] = None


@dataclass
class OpaquePayload:
    """Payload of an unrecognised tag, kept verbatim."""

    raw: Any


@dataclass
class ClientInfo:
    platform: str  # "web", "mobile", or the component type for servers
    browser: str = "unknown"
    browser_version: str = "unknown"
    os: str = "unknown"
    os_version: str = "unknown"
    device_type: str = "unknown"


@dataclass
class JitsiClient:
    version: str = "unknown"
    build_number: str = ""
    release_channel: str = "stable"
    platform: str = "web"  # "web", "electron" or "react-native"


@dataclass
class ConnectionDetails:
    user_agent: str = ""
    region: str = "unknown"
    network_type: Optional[str] = None


@dataclass
class QualityMetrics:
    audio_quality: float = 0.0  # 1-5 scale
    video_quality: float = 0.0  # 1-5 scale
    packet_loss: float = 0.0  # percentage
    jitter: float = 0.0  # ms
    round_trip_time: float = 0.0  # ms
    bandwidth_upload: float = 0.0  # Mbps
    bandwidth_download: float = 0.0  # Mbps


@dataclass
class MediaEvent:
    timestamp: int
    type: MediaEventType
    participant_id: str = ""
    category: Optional[str] = None
    subcategory: Optional[str] = None
    metadata: dict = field(default_factory=dict)


@dataclass
class ParticipantDetails:
    participant_id: str
    display_name: str
    endpoint_id: str
    join_time: int
    leave_time: Optional[int] = None
    endpoint_ids: list[str] = field(default_factory=list)
    # dump-file session id -> endpoint id, one entry per merged dump
    session_map: dict[str, str] = field(default_factory=dict)
    media_events: list[MediaEvent] = field(default_factory=list)
    quality_metrics: QualityMetrics = field(default_factory=QualityMetrics)
    client_info: Optional[ClientInfo] = None
    jitsi_client: JitsiClient = field(default_factory=JitsiClient)
    connection: ConnectionDetails = field(default_factory=ConnectionDetails)
    statistics_display_name: Optional[str] = None
    role: str = "viewer"
    metadata: dict = field(default_factory=dict)


@dataclass
class ComponentRecord:
    """Provisional result of processing a single dump file."""

    component_type: ComponentType
    session_id: str
    identity: ComponentIdentity
    details: ParticipantDetails


@dataclass
class ParticipantSnapshot:
    endpoint_id: str
    display_name: str
    client_version: str = "unknown"
    os_type: str = "unknown"
    browser_type: Optional[str] = None


@dataclass
class NetworkConditions:
    rtt: Optional[float] = None
    packet_loss: Optional[float] = None
    jitter: Optional[float] = None
    quality: str = "unknown"
    connection_type: Optional[str] = None


@dataclass
class TechnicalContext:
    user_agent: str = ""
    webrtc_stats: Any = None
    network_conditions: Optional[NetworkConditions] = None
    error_logs: list[str] = field(default_factory=list)


@dataclass
class CallEvent:
    """A raw event as pushed into the streaming engine."""

    timestamp: int
    session_id: str
    participant_id: str
    event_type: CallEventType
    source: str = "client"  # "client", "bridge", "analytics" or "jicofo"
    metadata: dict = field(default_factory=dict)
    correlation_id: str = ""


@dataclass(frozen=True)
class EnhancedCallEvent:
    timestamp: int
    session_id: str
    participant_id: str
    event_type: CallEventType
    source: str
    correlation_id: str
    participant: ParticipantSnapshot
    metadata: dict = field(default_factory=dict)
    technical_context: Optional[TechnicalContext] = None


@dataclass
class NetworkIssue:
    timestamp: int
    participant_id: str
    type: str
    severity: str
    details: dict = field(default_factory=dict)


@dataclass
class AggregatedMetrics:
    duration: int = 0
    total_participants: int = 0
    avg_audio_quality: float = 0.0
    avg_video_quality: float = 0.0
    network_issues: list[NetworkIssue] = field(default_factory=list)
    screenshare_duration: int = 0
    dominant_speaker_changes: int = 0


@dataclass
class CallSession:
    session_id: str
    start_time: int
    end_time: Optional[int] = None
    participants: list[ParticipantDetails] = field(default_factory=list)
    events: list[EnhancedCallEvent] = field(default_factory=list)
    metrics: AggregatedMetrics = field(default_factory=AggregatedMetrics)
    room_name: Optional[str] = None
    conference_id: Optional[str] = None
    metadata: dict = field(default_factory=dict)

    def find_participant(self, ref: str) -> Optional[ParticipantDetails]:
        """Look a participant up by participant id or display name."""
        for participant in self.participants:
            if participant.participant_id == ref or participant.display_name == ref:
                return participant
        return None


@dataclass
class ConsoleLogEntry:
    timestamp: int
    level: str
    message: str
    component: str
    raw_line: str
    line_number: int
    session_id: str
    fields: dict = field(default_factory=dict)


@dataclass
class HintedComponent:
    dump_id: str
    component_id: str
    start_time: Optional[int] = None
    end_time: Optional[int] = None
    display_name: Optional[str] = None


@dataclass
class ComponentMetadataHint:
    """Out-of-band component inventory. Corroborating context only."""

    participants: list[HintedComponent] = field(default_factory=list)
    bridges: list[HintedComponent] = field(default_factory=list)
    focus: list[HintedComponent] = field(default_factory=list)

    @classmethod
    def from_dict(cls, d: dict) -> "ComponentMetadataHint":
        def _items(key: str, id_key: str) -> list[HintedComponent]:
            return [
                HintedComponent(
                    dump_id=item["dumpId"],
                    component_id=item.get(id_key, item["dumpId"]),
                    start_time=item.get("startTime"),
                    end_time=item.get("endTime"),
                    display_name=item.get("displayName"),
                )
                for item in d.get(key, [])
            ]

        return cls(
            participants=_items("participants", "userId"),
            bridges=_items("jvbs", "jvbId"),
            focus=_items("jicofo", "jicofoId"),
        )
