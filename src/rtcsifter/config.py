"""Configuration and constants for RTCSifter."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path

# Paths
PROJECT_ROOT = Path(__file__).parent.parent.parent
DEFAULT_DUMPS_DIR = PROJECT_ROOT / "dumps"
DEFAULT_EXPORTS_DIR = PROJECT_ROOT / "data" / "exports"
CONFIG_JSON_PATH = PROJECT_ROOT / "rtcsifter.json"

# Streaming correlation
SESSION_TIMEOUT_MS = 5 * 60 * 1000
SWEEP_INTERVAL_SECONDS = 60
NOTIFICATION_QUEUE_SIZE = 1000

# Batch assembly
FALLBACK_SESSION_DURATION_MS = 30 * 60 * 1000
MAX_READ_WORKERS = 4
DUMP_FILE_SUFFIX = ".json"
CONSOLE_LOG_SUFFIX = ".txt"
UNKNOWN_ROOM = "unknown-room"

# Identifies a WebRTC peer connection in the connectionId column
PEER_CONNECTION_PREFIX = "PC_"

_PATH_FIELDS = ("dumps_dir", "exports_dir")


@dataclass
class EngineConfig:
    """Tunables shared by the batch assembler and the streaming engine."""

    dumps_dir: Path = field(default_factory=lambda: DEFAULT_DUMPS_DIR)
    exports_dir: Path = field(default_factory=lambda: DEFAULT_EXPORTS_DIR)
    session_timeout_ms: int = SESSION_TIMEOUT_MS
    sweep_interval_seconds: float = SWEEP_INTERVAL_SECONDS
    notification_queue_size: int = NOTIFICATION_QUEUE_SIZE
    fallback_session_duration_ms: int = FALLBACK_SESSION_DURATION_MS
    max_read_workers: int = MAX_READ_WORKERS

    def to_dict(self) -> dict:
        data = asdict(self)
        for name in _PATH_FIELDS:
            data[name] = str(data[name])
        return data


def _resolve_path(value) -> Path:
    path = Path(value)
    return path if path.is_absolute() else PROJECT_ROOT / path


def load_config(path: Path | None = None) -> EngineConfig:
    """Load engine settings from a JSON file, falling back to defaults.

    Relative paths in the file are resolved against the project root.
    """
    config_path = path or CONFIG_JSON_PATH
    if not config_path.exists():
        return EngineConfig()

    raw = json.loads(config_path.read_text())
    known = {f.name for f in fields(EngineConfig)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ValueError(f"Unknown config keys in {config_path}: {', '.join(unknown)}")

    for name in _PATH_FIELDS:
        if name in raw:
            raw[name] = _resolve_path(raw[name])
    return EngineConfig(**raw)


def save_config(config: EngineConfig, path: Path | None = None) -> Path:
    """Write the config as JSON and return the path written."""
    config_path = path or CONFIG_JSON_PATH
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(config.to_dict(), indent=2) + "\n")
    return config_path
