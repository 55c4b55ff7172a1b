"""Decode raw dump payloads into typed values keyed by event tag."""

from __future__ import annotations

from typing import Any, Optional

from rtcsifter.storage.models import (
    ComponentIdentity,
    ConnectionInfo,
    DeploymentInfo,
    DumpEntry,
    DumpEventType,
    OpaquePayload,
)

# Tags whose payload is a bare boolean toggle
BOOLEAN_TAGS = {
    DumpEventType.AUDIO_MUTED_CHANGED.value,
    DumpEventType.VIDEO_MUTED_CHANGED.value,
    DumpEventType.SCREENSHARE_TOGGLED.value,
}


def _str_or_none(value) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def decode_identity(data: Any) -> Optional[ComponentIdentity]:
    if not isinstance(data, dict):
        return None

    deployment = data.get("deploymentInfo")
    deployment_info = None
    if isinstance(deployment, dict):
        deployment_info = DeploymentInfo(
            environment=_str_or_none(deployment.get("environment")),
            region=_str_or_none(deployment.get("region")),
            shard=_str_or_none(deployment.get("shard")),
            user_region=_str_or_none(deployment.get("userRegion")),
        )

    return ComponentIdentity(
        endpoint_id=_str_or_none(data.get("endpointId")),
        display_name=_str_or_none(data.get("displayName")),
        application_name=_str_or_none(data.get("applicationName")),
        conf_name=_str_or_none(data.get("confName")),
        conf_id=_str_or_none(data.get("confID")),
        site_id=_str_or_none(data.get("siteID")),
        statistics_id=_str_or_none(data.get("statisticsId")),
        statistics_display_name=_str_or_none(data.get("statisticsDisplayName")),
        deployment_info=deployment_info,
    )


def decode_connection_info(data: Any) -> Optional[ConnectionInfo]:
    if not isinstance(data, dict):
        return None
    return ConnectionInfo(
        user_agent=str(data.get("userAgent") or ""),
        client_type=_str_or_none(data.get("clientType")),
        path=_str_or_none(data.get("path")),
        stats_session_id=_str_or_none(data.get("statsSessionId")),
    )


def decode_payload(entry: DumpEntry):
    """Return the typed payload for an entry.

    Identity and connection records become dataclasses, toggles stay bool,
    stats stay dicts and logs stay lists. Anything unrecognised (or a
    recognised tag with a payload of the wrong shape) is wrapped in
    OpaquePayload.
    """
    tag = entry.event_type
    data = entry.payload

    if tag == DumpEventType.IDENTITY.value:
        return decode_identity(data) or OpaquePayload(data)
    if tag == DumpEventType.CONNECTION_INFO.value:
        return decode_connection_info(data) or OpaquePayload(data)
    if tag in BOOLEAN_TAGS:
        return data if isinstance(data, bool) else OpaquePayload(data)
    if tag in (DumpEventType.STATS.value, DumpEventType.GETSTATS.value):
        return data if isinstance(data, dict) else OpaquePayload(data)
    if tag == DumpEventType.LOGS.value:
        return data if isinstance(data, list) else OpaquePayload(data)
    return OpaquePayload(data)


def merge_identity(current: Optional[ComponentIdentity], update: ComponentIdentity) -> ComponentIdentity:
    """Fill fields of `current` that are still absent from `update`.

    The first non-empty value of every field wins.
    """
    if current is None:
        return update

    for name in current.__dataclass_fields__:
        if getattr(current, name) is None and getattr(update, name) is not None:
            setattr(current, name, getattr(update, name))
    return current
