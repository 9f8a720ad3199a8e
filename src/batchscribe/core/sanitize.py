from __future__ import annotations

import re

# Markers the engine renders for non-text vocabulary entries.
_CONTROL_MARKER_PATTERN = re.compile(
    r"\[_extra_token_\d+\]"
    r"|\[_TT_\d+\]"
    r"|\[_(?:SOT|EOT|PREV|NOT|BEG)_\]"
)


def sanitize(raw: str | None) -> str | None:
    """Strip engine control markers and surrounding whitespace.

    Removal repeats until no marker is left, since deleting one marker can
    join its neighbours into another (``[_SO[_EOT_]T_]``).
    """
    if not raw:
        return raw
    text = raw
    removed = 1
    while removed:
        text, removed = _CONTROL_MARKER_PATTERN.subn("", text)
    return text.strip()
