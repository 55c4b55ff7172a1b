"""Tests for participant ids, merging, dominant speaker reconstruction and the timeline."""

from __future__ import annotations

import random

import pytest

from rtcsifter.parser.console import ConsoleLogStore
from rtcsifter.session.dominant_speaker import reconstruct_dominant_speaker
from rtcsifter.session.merger import merge_participants, merged_leave_time
from rtcsifter.session.registry import ParticipantIdRegistry
from rtcsifter.session.timeline import (
    build_timeline,
    classify_media_event,
    compute_metrics,
    deduplicate_events,
    screenshare_duration,
)
from rtcsifter.storage.models import (
    CallEventType,
    MediaEvent,
    MediaEventType,
    ParticipantDetails,
    QualityMetrics,
)

from conftest import write_console


def participant(name, session_id, join, leave=None, pid=None, events=None, audio=4.0):
    endpoint = f"ep-{session_id}"
    return ParticipantDetails(
        participant_id=pid or f"{name}-id",
        display_name=name,
        endpoint_id=endpoint,
        join_time=join,
        leave_time=leave,
        endpoint_ids=[endpoint],
        session_map={session_id: endpoint},
        media_events=list(events or []),
        quality_metrics=QualityMetrics(audio_quality=audio, video_quality=audio, round_trip_time=join),
    )


def start(ts, pid):
    return MediaEvent(timestamp=ts, type=MediaEventType.DOMINANT_SPEAKER_START, participant_id=pid)


class TestParticipantIdRegistry:
    def test_same_name_same_id(self):
        registry = ParticipantIdRegistry()
        assert registry.get("Alice Smith") == registry.get("Alice Smith")

    def test_id_shape(self):
        pid = ParticipantIdRegistry(random.Random(1)).get("Alice O'Neil (host)")
        prefix, suffix = pid.rsplit("-", 1)
        assert prefix == "AliceONeilhost"
        assert len(suffix) == 6
        assert suffix.isalnum() and suffix == suffix.lower()

    def test_registries_are_independent(self):
        a = ParticipantIdRegistry(random.Random(1))
        b = ParticipantIdRegistry(random.Random(2))
        assert a.get("Alice") != b.get("Alice")
        assert "Alice" in a and len(a) == 1


class TestMergeParticipants:
    def test_single_member_kept(self):
        merged = merge_participants([participant("Alice", "s1", 100, 200)])
        assert len(merged) == 1
        assert merged[0].session_map == {"s1": "ep-s1"}
        assert merged[0].endpoint_ids == ["ep-s1"]

    def test_group_merge(self):
        a1 = participant("Alice", "s1", 100, 500, audio=4.0, events=[start(150, "Alice-id")])
        a2 = participant("Alice", "s2", 300, 900, audio=3.0)
        merged = merge_participants([a1, participant("Bob", "s3", 50), a2])

        assert [p.display_name for p in merged] == ["Alice", "Bob"]
        alice = merged[0]
        assert alice.join_time == 100
        assert alice.leave_time == 900
        assert alice.endpoint_id == "ep-s2"
        assert alice.endpoint_ids == ["ep-s1", "ep-s2"]
        assert alice.session_map == {"s1": "ep-s1", "s2": "ep-s2"}
        assert alice.quality_metrics.audio_quality == pytest.approx(3.5)
        assert alice.quality_metrics.round_trip_time == pytest.approx(200)
        assert len(alice.media_events) == 1

    def test_endpoint_ids_match_session_map(self):
        members = [participant("Alice", f"s{i}", i * 10, i * 10 + 5) for i in range(4)]
        alice = merge_participants(members)[0]
        assert len(alice.endpoint_ids) == len(alice.session_map) == 4

    def test_any_active_member_keeps_leave_open(self):
        members = [participant("Alice", "s1", 100, 500), participant("Alice", "s2", 300, None)]
        assert merged_leave_time(members) is None
        assert merge_participants(members)[0].leave_time is None

    def test_does_not_mutate_inputs(self):
        a1 = participant("Alice", "s1", 100, 500)
        merge_participants([a1, participant("Alice", "s2", 300, 900)])
        assert a1.session_map == {"s1": "ep-s1"}

    def test_console_events_appended(self, tmp_path):
        write_console(tmp_path, "s2", ["1970-01-01T00:00:01.000Z triggering ice restart after 1 failure"])
        members = [participant("Alice", "s1", 100, 500), participant("Alice", "s2", 300, 900)]
        alice = merge_participants(members, ConsoleLogStore(tmp_path))[0]
        assert [(e.timestamp, e.type) for e in alice.media_events] == [(1000, MediaEventType.ICE_FAILURE)]
        assert alice.media_events[0].metadata["endpoint_id"] == "ep-s2"


class TestDominantSpeaker:
    def test_reconstruction(self):
        p1 = participant("P1", "s1", 0, pid="P1", events=[start(100, "P1"), start(500, "P1")])
        p2 = participant("P2", "s2", 0, pid="P2", events=[start(300, "P2")])
        added = reconstruct_dominant_speaker([p1, p2])

        assert added == 2
        stops_p1 = [e.timestamp for e in p1.media_events if e.type == MediaEventType.DOMINANT_SPEAKER_STOP]
        stops_p2 = [e.timestamp for e in p2.media_events if e.type == MediaEventType.DOMINANT_SPEAKER_STOP]
        assert stops_p1 == [299]
        assert stops_p2 == [499]

    def test_events_resorted(self):
        p1 = participant("P1", "s1", 0, pid="P1", events=[
            start(100, "P1"),
            MediaEvent(timestamp=1000, type=MediaEventType.AUDIO_MUTE, participant_id="P1"),
        ])
        p2 = participant("P2", "s2", 0, pid="P2", events=[start(300, "P2")])
        reconstruct_dominant_speaker([p1, p2])
        assert [e.timestamp for e in p1.media_events] == [100, 299, 1000]

    def test_same_participant_restart_is_not_a_handover(self):
        p1 = participant("P1", "s1", 0, pid="P1", events=[start(100, "P1"), start(200, "P1")])
        assert reconstruct_dominant_speaker([p1]) == 0

    def test_no_starts(self):
        assert reconstruct_dominant_speaker([participant("P1", "s1", 0)]) == 0


class TestTimeline:
    def test_classification(self):
        assert classify_media_event(MediaEventType.CONNECTION_RECOVERY) == CallEventType.CONNECTION_ISSUE
        assert classify_media_event(MediaEventType.ICE_FAILURE) == CallEventType.NETWORK_ISSUE
        assert classify_media_event(MediaEventType.BWE_ISSUE) == CallEventType.MEDIA_INTERRUPTION
        assert classify_media_event(MediaEventType.AUDIO_MUTE) is None

    def test_build_timeline(self):
        alice = participant("Alice", "s1", 100, 900, pid="A", events=[
            MediaEvent(timestamp=200, type=MediaEventType.SCREENSHARE_START, participant_id="A"),
            MediaEvent(timestamp=50, type=MediaEventType.CONNECTION_ISSUE, participant_id="A",
                       category="connection_issue", subcategory="strophe_errors"),
            MediaEvent(timestamp=300, type=MediaEventType.AUDIO_MUTE, participant_id="A"),
        ])
        events = build_timeline([alice], "room1")

        assert [(e.timestamp, e.event_type) for e in events] == [
            (50, CallEventType.CONNECTION_ISSUE),
            (100, CallEventType.JOIN),
            (200, CallEventType.SCREENSHARE),
            (900, CallEventType.LEAVE),
        ]
        assert events[1].correlation_id == "join_A_100"
        assert events[1].technical_context.network_conditions.quality == "good"
        assert events[0].source == "analytics"
        assert events[0].metadata["subcategory"] == "strophe_errors"
        assert all(e.session_id == "room1" for e in events)

    def test_timeline_non_decreasing(self):
        people = [
            participant("A", "s1", 300, 100, pid="A"),
            participant("B", "s2", 50, 700, pid="B"),
        ]
        stamps = [e.timestamp for e in build_timeline(people, "r")]
        assert stamps == sorted(stamps)

    def test_deduplication(self):
        dup = MediaEvent(timestamp=10, type=MediaEventType.NETWORK_ISSUE, participant_id="A")
        alice = participant("Alice", "s1", 0, pid="A", events=[dup, MediaEvent(**vars(dup))])
        events = build_timeline([alice], "r")
        assert len([e for e in events if e.event_type == CallEventType.NETWORK_ISSUE]) == 1

    def test_different_subtype_not_deduplicated(self):
        alice = participant("Alice", "s1", 0, pid="A", events=[
            MediaEvent(timestamp=10, type=MediaEventType.NETWORK_ISSUE, participant_id="A"),
            MediaEvent(timestamp=10, type=MediaEventType.ICE_FAILURE, participant_id="A"),
        ])
        events = deduplicate_events(build_timeline([alice], "r"))
        assert len([e for e in events if e.event_type == CallEventType.NETWORK_ISSUE]) == 2

    def test_screenshare_duration(self):
        events = [
            MediaEvent(timestamp=100, type=MediaEventType.SCREENSHARE_START),
            MediaEvent(timestamp=400, type=MediaEventType.SCREENSHARE_STOP),
            MediaEvent(timestamp=500, type=MediaEventType.SCREENSHARE_START),
        ]
        assert screenshare_duration(events) == 300

    def test_metrics(self):
        alice = participant("Alice", "s1", 100, 900, pid="A", audio=4.0, events=[
            start(150, "A"),
            MediaEvent(timestamp=160, type=MediaEventType.ICE_FAILURE, participant_id="A"),
        ])
        bob = participant("Bob", "s2", 200, 700, pid="B", audio=3.0)
        events = build_timeline([alice, bob], "r")
        metrics = compute_metrics([alice, bob], events, 100, 900)

        assert metrics.duration == 800
        assert metrics.total_participants == 2
        assert metrics.avg_audio_quality == pytest.approx(3.5)
        assert metrics.dominant_speaker_changes == 1
        assert len(metrics.network_issues) == 1
        assert metrics.network_issues[0].type == "ice_failure"
        assert metrics.network_issues[0].severity == "medium"

    def test_metrics_without_participants(self):
        metrics = compute_metrics([], [], 0, 10)
        assert metrics.avg_audio_quality == 0.0
        assert metrics.total_participants == 0
