"""Per-run memo of generated participant identifiers."""

from __future__ import annotations

import random
import re
import string

SUFFIX_ALPHABET = string.ascii_lowercase + string.digits
SUFFIX_LENGTH = 6
_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")


class ParticipantIdRegistry:
    """Hands out one participant id per display name.

    The same display name always gets the same id from one registry. Two
    registries (two runs) will generally disagree, since the suffix is random.
    """

    def __init__(self, rng: random.Random | None = None):
        self._rng = rng or random.Random()
        self._ids: dict[str, str] = {}

    def get(self, display_name: str) -> str:
        if display_name not in self._ids:
            self._ids[display_name] = self._mint(display_name)
        return self._ids[display_name]

    def _mint(self, display_name: str) -> str:
        suffix = "".join(self._rng.choice(SUFFIX_ALPHABET) for _ in range(SUFFIX_LENGTH))
        return f"{_NON_ALNUM.sub('', display_name)}-{suffix}"

    def __contains__(self, display_name: str) -> bool:
        return display_name in self._ids

    def __len__(self) -> int:
        return len(self._ids)
