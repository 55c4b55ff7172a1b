"""Assemble a whole conference session from a directory of dump files."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from rtcsifter.config import DUMP_FILE_SUFFIX, UNKNOWN_ROOM, EngineConfig
from rtcsifter.errors import DumpsDirectoryNotFoundError
from rtcsifter.parser.console import ConsoleLogStore
from rtcsifter.parser.entries import read_dump_file, timestamp_bounds
from rtcsifter.session import lookups
from rtcsifter.session.dominant_speaker import reconstruct_dominant_speaker
from rtcsifter.session.dump import conference_start_marker, process_component_dump
from rtcsifter.session.merger import merge_participants
from rtcsifter.session.registry import ParticipantIdRegistry
from rtcsifter.session.timeline import build_timeline, compute_metrics
from rtcsifter.storage.models import (
    CallSession,
    ComponentIdentity,
    ComponentMetadataHint,
    ComponentRecord,
    ComponentType,
    DumpFile,
    ParticipantDetails,
)

logger = logging.getLogger(__name__)


@dataclass
class ComponentBuckets:
    participants: list[ComponentRecord] = field(default_factory=list)
    bridges: list[ComponentRecord] = field(default_factory=list)
    focus: list[ComponentRecord] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    def add(self, record: ComponentRecord):
        if record.component_type == ComponentType.BRIDGE:
            self.bridges.append(record)
        elif record.component_type == ComponentType.FOCUS:
            self.focus.append(record)
        else:
            self.participants.append(record)

    def records(self) -> list[ComponentRecord]:
        return self.participants + self.bridges + self.focus


def list_dump_files(dumps_dir: Path) -> list[Path]:
    """Dump files of a directory, sorted by name."""
    dumps_dir = Path(dumps_dir)
    if not dumps_dir.is_dir():
        raise DumpsDirectoryNotFoundError(f"Dumps directory not found: {dumps_dir}")
    return sorted(p for p in dumps_dir.iterdir() if p.is_file() and p.suffix == DUMP_FILE_SUFFIX)


def room_name(conf_name: Optional[str]) -> str:
    """Conference name without its @domain suffix."""
    if not conf_name:
        return UNKNOWN_ROOM
    return conf_name.split("@")[0] or UNKNOWN_ROOM


def conference_identity(records: list[ComponentRecord]) -> Optional[ComponentIdentity]:
    """First identity seen, or the first one that names the conference."""
    chosen = None
    for record in records:
        if chosen is None:
            chosen = record.identity
        if chosen.conf_name:
            break
        if record.identity.conf_name:
            chosen = record.identity
            break
    return chosen


def _instance_name(record: ComponentRecord) -> str:
    return record.identity.display_name or record.session_id


class SessionAssembler:
    """Runs the batch reconstruction over one dumps directory.

    One assembler owns one participant-id registry, so assembling the same
    directory twice with the same instance yields the same participant ids.
    The last assembled session is cached for the participant, bridge and
    focus lookups.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        registry: ParticipantIdRegistry | None = None,
        clock: Callable[[], int] | None = None,
    ):
        self.config = config or EngineConfig()
        self.registry = registry or ParticipantIdRegistry()
        self._clock = clock or (lambda: int(time.time() * 1000))
        self.dumps_dir: Optional[Path] = None
        self.session: Optional[CallSession] = None
        self.console_store: Optional[ConsoleLogStore] = None
        self._dumps: dict[str, DumpFile] = {}
        self.bridges: list[ComponentRecord] = []
        self.focus: list[ComponentRecord] = []

    def read_dumps(self, paths: list[Path]) -> list[DumpFile]:
        """Parse dump files in parallel; results keep the order of `paths`."""
        if not paths:
            return []
        workers = max(1, min(self.config.max_read_workers, len(paths)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            return list(pool.map(read_dump_file, paths))

    def assemble(
        self,
        dumps_dir: Path | None = None,
        hint: ComponentMetadataHint | None = None,
    ) -> CallSession:
        """Reconstruct the CallSession for every dump in `dumps_dir`.

        Raises DumpsDirectoryNotFoundError when the directory does not exist.
        Everything that only affects one file is logged and skipped.
        """
        dumps_dir = Path(dumps_dir or self.config.dumps_dir)
        paths = list_dump_files(dumps_dir)
        logger.info("Assembling session from %d dump files in %s", len(paths), dumps_dir)

        now_ms = self._clock()
        dumps = self.read_dumps(paths)

        buckets = ComponentBuckets()
        for dump in dumps:
            record = process_component_dump(dump, self.registry, now_ms)
            if record is None:
                buckets.skipped.append(dump.session_id)
            else:
                buckets.add(record)

        console_store = ConsoleLogStore(dumps_dir)
        participants = merge_participants([r.details for r in buckets.participants], console_store)
        reconstruct_dominant_speaker(participants)

        conference = conference_identity(buckets.records())
        room = room_name(conference.conf_name if conference else None)

        events = build_timeline(participants, room)
        start_time = self._start_time(dumps, participants, now_ms)
        end_time = self._end_time(dumps, participants, start_time)

        session = CallSession(
            session_id=room,
            start_time=start_time,
            end_time=end_time,
            participants=participants,
            events=events,
            metrics=compute_metrics(participants, events, start_time, end_time),
            room_name=room,
            conference_id=conference.conf_id if conference else None,
            metadata=self._metadata(conference, buckets, dumps, hint),
        )

        self.dumps_dir = dumps_dir
        self.console_store = console_store
        self._dumps = {dump.session_id: dump for dump in dumps}
        self.bridges = buckets.bridges
        self.focus = buckets.focus
        self.session = session

        logger.info(
            "Session %s: %d participants, %d bridges, %d focus, %d events (%d files skipped)",
            room, len(participants), len(buckets.bridges), len(buckets.focus),
            len(events), len(buckets.skipped),
        )
        return session

    def _start_time(self, dumps: list[DumpFile], participants: list[ParticipantDetails], now_ms: int) -> int:
        candidates = [p.join_time for p in participants]
        marker = next((m for m in map(conference_start_marker, dumps) if m is not None), None)
        if marker is not None:
            candidates.append(marker)
        if not candidates:
            logger.error("No join times or conference start marker, session start set to %s", now_ms)
            return now_ms
        return min(candidates)

    def _end_time(self, dumps: list[DumpFile], participants: list[ParticipantDetails], start_time: int) -> int:
        leave_times = [p.leave_time for p in participants if p.leave_time is not None]
        if leave_times:
            return max(leave_times)

        latest = [timestamp_bounds(d.entries)[1] for d in dumps]
        latest = [ts for ts in latest if ts is not None]
        if latest:
            logger.warning("No participant leave times, using the latest dump timestamp")
            return max(latest)

        estimate = start_time + self.config.fallback_session_duration_ms
        logger.error("Could not determine session end time, using estimated duration")
        return estimate

    def _metadata(
        self,
        conference: Optional[ComponentIdentity],
        buckets: ComponentBuckets,
        dumps: list[DumpFile],
        hint: Optional[ComponentMetadataHint],
    ) -> dict:
        deployment = conference.deployment_info if conference else None
        metadata = {
            "environment": deployment.environment if deployment else None,
            "region": deployment.region if deployment else None,
            "shard": deployment.shard if deployment else None,
            "bridge_instances": [_instance_name(r) for r in buckets.bridges],
            "focus_instances": [_instance_name(r) for r in buckets.focus],
            "dump_files": len(dumps),
            "skipped_files": len(buckets.skipped),
            "skipped_lines": sum(d.skipped_lines for d in dumps),
        }
        if hint is not None:
            metadata["hint"] = self._compare_hint(hint, buckets)
        return metadata

    def _compare_hint(self, hint: ComponentMetadataHint, buckets: ComponentBuckets) -> dict:
        observed_ids = {r.session_id for r in buckets.records()}
        comparison = {}
        for kind, hinted, observed in (
            ("participants", hint.participants, buckets.participants),
            ("bridges", hint.bridges, buckets.bridges),
            ("focus", hint.focus, buckets.focus),
        ):
            comparison[kind] = {"hinted": len(hinted), "observed": len(observed)}
            logger.info("Hint lists %d %s, dumps contain %d", len(hinted), kind, len(observed))
            for item in hinted:
                if item.dump_id not in observed_ids:
                    logger.debug("Hinted %s dump %s has no usable dump file", kind, item.dump_id)
        return comparison

    # Participant lookups

    def _require_session(self) -> CallSession:
        if self.session is None:
            self.assemble()
        return self.session

    def find_participant(self, ref: str) -> Optional[ParticipantDetails]:
        participant = self._require_session().find_participant(ref)
        if participant is None or not participant.session_map:
            logger.warning("No session mappings found for participant: %s", ref)
            return None
        return participant

    def participant_console_logs(self, ref: str) -> lookups.ParticipantConsoleLogs:
        participant = self.find_participant(ref)
        if participant is None:
            return lookups.ParticipantConsoleLogs(participant_id=ref)
        return lookups.console_logs(participant, self.console_store)

    def participant_raw_stats(self, ref: str) -> list[dict]:
        participant = self.find_participant(ref)
        return lookups.raw_stats(participant, self._dumps) if participant else []

    def participant_connection_events(self, ref: str) -> list[dict]:
        participant = self.find_participant(ref)
        return lookups.connection_events(participant, self._dumps) if participant else []

    def participant_media_events(self, ref: str) -> list[dict]:
        participant = self.find_participant(ref)
        return lookups.media_events(participant, self._dumps) if participant else []

    # Bridge and focus lookups

    def _component_data(self, kind: str, records: list[ComponentRecord], ref: Optional[str]) -> Optional[dict]:
        if not ref:
            logger.warning("No %s id given", kind)
            return None
        record = lookups.find_component(records, ref)
        if record is None:
            logger.warning("No %s found with id: %s", kind, ref)
            return None
        return lookups.component_data(record, self._dumps.get(record.session_id))

    def bridge_data(self, bridge_id: Optional[str]) -> Optional[dict]:
        """Identity and dump entries of the JVB whose name or dump id is `bridge_id`."""
        self._require_session()
        return self._component_data("bridge", self.bridges, bridge_id)

    def focus_data(self, focus_id: Optional[str]) -> Optional[dict]:
        """Identity and dump entries of the Jicofo whose name or dump id is `focus_id`."""
        self._require_session()
        return self._component_data("focus", self.focus, focus_id)
