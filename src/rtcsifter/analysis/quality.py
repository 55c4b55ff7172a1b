"""Fold raw WebRTC stats records into coarse quality scores.

This is a monotonic penalty model, not a MOS estimator: both scores start
at 4.0 and lose fixed amounts when loss or RTT cross a threshold.
"""

import math

from rtcsifter.storage.models import DumpEntry, DumpEventType, QualityMetrics

DEFAULT_RTT_MS = 45
DEFAULT_PACKET_LOSS_PCT = 0.5
DEFAULT_JITTER_MS = 8

BASE_AUDIO_QUALITY = 4.0
BASE_VIDEO_QUALITY = 4.0
MIN_QUALITY = 1.0
MAX_QUALITY = 5.0

AUDIO_LOSS_THRESHOLD_PCT = 2
AUDIO_LOSS_PENALTY = 0.5
VIDEO_LOSS_THRESHOLD_PCT = 5
VIDEO_LOSS_PENALTY = 1.0
RTT_THRESHOLD_MS = 150
RTT_PENALTY = 0.3

# Not derivable from the stats we fold; reported as fixed estimates.
ESTIMATED_UPLOAD_MBPS = 1.5
ESTIMATED_DOWNLOAD_MBPS = 8.0


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def _clamp(score: float) -> float:
    return max(MIN_QUALITY, min(MAX_QUALITY, score))


def calculate_quality(entries: list[DumpEntry]) -> QualityMetrics:
    """Compute QualityMetrics from every `stats` entry of one dump file."""
    total_rtt = 0.0
    rtt_samples = 0
    total_jitter = 0.0
    packets_lost = 0
    packets_received = 0

    for entry in entries:
        if entry.event_type != DumpEventType.STATS.value or not isinstance(entry.payload, dict):
            continue

        for stat in entry.payload.values():
            if not isinstance(stat, dict):
                continue

            if stat.get("type") == "candidate-pair" and stat.get("nominated"):
                rtt = stat.get("currentRoundTripTime")
                if _is_number(rtt):
                    total_rtt += rtt * 1000
                    rtt_samples += 1

            if stat.get("type") == "inbound-rtp":
                lost = stat.get("packetsLost")
                received = stat.get("packetsReceived")
                if _is_number(lost) and _is_number(received):
                    packets_lost += lost
                    packets_received += received
                jitter = stat.get("jitter")
                if _is_number(jitter):
                    total_jitter += jitter * 1000

    avg_rtt = total_rtt / rtt_samples if rtt_samples else DEFAULT_RTT_MS
    observed = packets_lost + packets_received
    avg_loss = packets_lost / observed * 100 if observed > 0 else DEFAULT_PACKET_LOSS_PCT
    # Jitter is averaged over the nominated-pair sample count, as the
    # historical reports were.
    avg_jitter = total_jitter / rtt_samples if rtt_samples else DEFAULT_JITTER_MS

    audio = BASE_AUDIO_QUALITY
    video = BASE_VIDEO_QUALITY
    if avg_loss > AUDIO_LOSS_THRESHOLD_PCT:
        audio -= AUDIO_LOSS_PENALTY
    if avg_loss > VIDEO_LOSS_THRESHOLD_PCT:
        video -= VIDEO_LOSS_PENALTY
    if avg_rtt > RTT_THRESHOLD_MS:
        audio -= RTT_PENALTY
        video -= RTT_PENALTY

    return QualityMetrics(
        audio_quality=_clamp(audio),
        video_quality=_clamp(video),
        packet_loss=avg_loss,
        jitter=_round_half_up(avg_jitter),
        round_trip_time=_round_half_up(avg_rtt),
        bandwidth_upload=ESTIMATED_UPLOAD_MBPS,
        bandwidth_download=ESTIMATED_DOWNLOAD_MBPS,
    )


def average_quality(metrics: list[QualityMetrics]) -> QualityMetrics:
    """Field-wise arithmetic mean of several QualityMetrics."""
    if not metrics:
        return QualityMetrics()
    n = len(metrics)
    return QualityMetrics(
        audio_quality=sum(m.audio_quality for m in metrics) / n,
        video_quality=sum(m.video_quality for m in metrics) / n,
        packet_loss=sum(m.packet_loss for m in metrics) / n,
        jitter=sum(m.jitter for m in metrics) / n,
        round_trip_time=sum(m.round_trip_time for m in metrics) / n,
        bandwidth_upload=sum(m.bandwidth_upload for m in metrics) / n,
        bandwidth_download=sum(m.bandwidth_download for m in metrics) / n,
    )
