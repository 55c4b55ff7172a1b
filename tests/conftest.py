"""Shared test fixtures for RTCSifter."""

from __future__ import annotations

import json
import random
from pathlib import Path

import pytest

from rtcsifter.config import EngineConfig
from rtcsifter.session.registry import ParticipantIdRegistry
from rtcsifter.storage.models import DumpEntry

CHROME_MAC_UA = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
FIREFOX_LINUX_UA = "Mozilla/5.0 (X11; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0"
IPHONE_SAFARI_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_1 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.1 Mobile/15E148 Safari/604.1"
)


def entry(event_type, payload=None, timestamp=None, connection_id=None, sequence=0) -> DumpEntry:
    """Build a DumpEntry directly."""
    return DumpEntry(
        event_type=event_type,
        connection_id=connection_id,
        payload=payload,
        timestamp=timestamp,
        sequence=sequence,
    )


def identity(display_name=None, endpoint_id=None, conf_name=None, application_name=None, **extra) -> dict:
    data = {
        "displayName": display_name,
        "endpointId": endpoint_id,
        "confName": conf_name,
        "applicationName": application_name,
    }
    data.update(extra)
    return {k: v for k, v in data.items() if v is not None}


def stats_payload(rtt=None, packets_lost=None, packets_received=None, jitter=None) -> dict:
    """A getStats-style report with one candidate pair and one inbound stream."""
    report = {}
    if rtt is not None:
        report["CP1"] = {"type": "candidate-pair", "nominated": True, "currentRoundTripTime": rtt}
    if packets_lost is not None or jitter is not None:
        report["IT1"] = {
            "type": "inbound-rtp",
            "packetsLost": packets_lost or 0,
            "packetsReceived": packets_received or 0,
            "jitter": jitter or 0,
        }
    return report


def write_dump(directory: Path, session_id: str, records: list) -> Path:
    """Write records (lists or dicts, or raw strings) as an NDJSON dump."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{session_id}.json"
    lines = [r if isinstance(r, str) else json.dumps(r) for r in records]
    path.write_text("\n".join(lines) + "\n")
    return path


def write_console(directory: Path, session_id: str, lines: list[str]) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{session_id}.txt"
    path.write_text("\n".join(lines) + "\n")
    return path


@pytest.fixture
def registry():
    """Participant id registry with a seeded rng."""
    return ParticipantIdRegistry(random.Random(7))


@pytest.fixture
def engine_config(tmp_path):
    return EngineConfig(
        dumps_dir=tmp_path / "dumps",
        exports_dir=tmp_path / "exports",
        max_read_workers=2,
    )


@pytest.fixture
def conference_dir(tmp_path):
    """A small conference: Alice reconnects once, Bob stays, plus bridge and focus.

    Alice  alice-1  joins 1000, closes her only PC at 9000, last entry 9500
           alice-2  joins 10000, PC never closed, last entry 15000
    Bob    bob-1    joins 1500, closes PC_2 at 14000, PC_3 still open at 16000
    """
    dumps = tmp_path / "dumps"

    write_dump(dumps, "alice-1", [
        ["identity", None, identity("Alice", "ep-a1"), 950, 0],
        ["conferenceStartTimestamp", None, "900", 960, 1],
        ["connectionInfo", None, {"userAgent": CHROME_MAC_UA, "clientType": "web"}, 1000, 2],
        ["logs", None, [{"text": "lib-jitsi-meet version: 4f2a9c1"}], 1100, 3],
        "this is not json",
        ["stats", "PC_0", stats_payload(rtt=0.05, packets_lost=1, packets_received=99, jitter=0.01), 1500, 4],
        ["audioMutedChanged", None, True, 2000, 5],
        ["screenshareToggled", None, False, 3000, 6],
        ["dominantSpeakerChanged", None, {"id": "ep-a1"}, 4000, 7],
        ["screenshareToggled", None, True, 5000, 8],
        ["close", "PC_0", None, 9000, 9],
        ["audioMutedChanged", None, False, 9500, 10],
    ])
    write_dump(dumps, "alice-2", [
        {"type": "identity", "data": identity("Alice", "ep-a2"), "timestamp": 9900},
        {"type": "connectionInfo", "data": {"userAgent": CHROME_MAC_UA}, "timestamp": 10000},
        ["iceConnectionState", "PC_1", "connected", 12000, 2],
        ["track", "track-1", "audio track added", 12500, 3],
        ["getstats", "PC_1", {"bytes": 1}, 14000, 4],
        ["stats", "PC_1", stats_payload(rtt=0.2, packets_lost=10, packets_received=90), 15000, 5],
    ])
    write_dump(dumps, "bob-1", [
        ["identity", None, identity(
            "Bob", "ep-b1", conf_name="room1@conference.meet.example.com",
            confID="conf-77", deploymentInfo={"shard": "shard-3", "region": "eu-west", "userRegion": "eu"},
        ), 1400, 0],
        ["connectionInfo", None, {"userAgent": FIREFOX_LINUX_UA}, 1500, 1],
        ["dominantSpeakerChanged", None, {"id": "ep-b1"}, 6000, 2],
        ["stropheDisconnected", None, None, 7000, 3],
        ["stropheReconnected", None, None, 7500, 4],
        ["remoteSourceSuspended", None, {"source": "ep-a1-v0"}, 8000, 5],
        ["close", "PC_2", None, 14000, 6],
        ["stats", "PC_3", {}, 16000, 7],
    ])
    write_dump(dumps, "jvb-1", [
        ["identity", None, identity("jvb-eu-1", "jvb-ep", application_name="JVB"), 500, 0],
        ["stats", None, {}, 20000, 1],
    ])
    write_dump(dumps, "jicofo-1", [
        ["identity", None, identity("jicofo-eu", application_name="Jicofo"), 500, 0],
    ])
    write_dump(dumps, "orphan", [
        ["stats", "PC_9", {}, 3000, 0],
    ])
    write_console(dumps, "bob-1", [
        "1970-01-01T00:00:08.500Z [INFO] [modules/RTC:TPCUtils] triggering ice restart after 3 failures",
        "1970-01-01T00:00:11.250Z [WARN] [modules/connectivity:TrackStreamingStatus] status active => inactive",
        "1970-01-01T00:00:12.000Z [INFO] [xmpp:ChatRoom] joined room",
        "a line without a timestamp that says ICE failed",
    ])
    (dumps / "notes.md").write_text("not a dump\n")
    return dumps
