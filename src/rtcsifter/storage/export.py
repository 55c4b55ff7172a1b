"""JSON export for assembled sessions."""

from __future__ import annotations

import json
from dataclasses import asdict
from pathlib import Path

from rtcsifter.storage.models import CallSession, ParticipantDetails


def session_to_dict(session: CallSession, include_events: bool = True) -> dict:
    """Plain-dict view of a session, JSON-serialisable as is."""
    data = asdict(session)
    if not include_events:
        data.pop("events")
        data["event_count"] = len(session.events)
    return data


def participant_to_dict(participant: ParticipantDetails) -> dict:
    return asdict(participant)


def export_session(session: CallSession, output_dir: Path) -> dict:
    """Write a session as organized JSON files.

    output_dir/session.json        session summary, metrics and metadata
    output_dir/events.json         the full timeline
    output_dir/participants/*.json one file per participant
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    summary = session_to_dict(session, include_events=False)
    summary["participants"] = [
        {
            "participant_id": p.participant_id,
            "display_name": p.display_name,
            "join_time": p.join_time,
            "leave_time": p.leave_time,
            "sessions": len(p.session_map),
        }
        for p in session.participants
    ]
    _write_json(output_dir / "session.json", summary)
    _write_json(output_dir / "events.json", [asdict(e) for e in session.events])

    participants_dir = output_dir / "participants"
    participants_dir.mkdir(exist_ok=True)
    for participant in session.participants:
        _write_json(participants_dir / f"{participant.participant_id}.json", participant_to_dict(participant))

    return {
        "session_id": session.session_id,
        "participants": len(session.participants),
        "events": len(session.events),
        "output_dir": str(output_dir),
    }


def _write_json(path: Path, data):
    """Write data as formatted JSON."""
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
