"""Decide which conference component wrote a dump file."""

from typing import Optional

from rtcsifter.errors import MissingIdentityError
from rtcsifter.storage.models import ComponentIdentity, ComponentType

# applicationName -> component type. Endpoints leave applicationName unset.
APPLICATION_COMPONENTS = {
    "JVB": ComponentType.BRIDGE,
    "Jicofo": ComponentType.FOCUS,
}


def classify_component(identity: Optional[ComponentIdentity]) -> ComponentType:
    """Classify from identity metadata.

    Raises MissingIdentityError when the file had no identity at all.
    """
    if identity is None:
        raise MissingIdentityError("No identity record to classify")
    return APPLICATION_COMPONENTS.get(identity.application_name, ComponentType.PARTICIPANT)
