"""
URL classification helpers used when picking a playable URL out of
tokenization responses.
"""

import re
from typing import Any, Optional

_URL_RE = re.compile(r'^https?://', re.IGNORECASE)

# Keys checked first, in order, before falling back to every other value.
# Upstreams tend to return several URL-shaped strings (thumbnails, beacons)
# alongside the one we actually want.
PRIORITY_KEYS = (
    "url",
    "tokenizedUrl",
    "tokenized_url",
    "playbackUrl",
    "playback_url",
    "result",
)


def is_url(value: Any) -> bool:
    """True if value is a string starting with http:// or https://"""
    return isinstance(value, str) and bool(_URL_RE.match(value))


def find_first_url(value: Any) -> Optional[str]:
    """
    Recursively search a decoded JSON value for the first URL.

    Mappings are searched through PRIORITY_KEYS first, then through all of
    their values in insertion order. Sequences are searched element by
    element. Numbers, booleans and None never match.
    """
    if isinstance(value, str):
        return value if is_url(value) else None

    if isinstance(value, dict):
        for key in PRIORITY_KEYS:
            if key in value:
                candidate = find_first_url(value[key])
                if candidate:
                    return candidate
        for item in value.values():
            candidate = find_first_url(item)
            if candidate:
                return candidate
        return None

    if isinstance(value, (list, tuple)):
        for item in value:
            candidate = find_first_url(item)
            if candidate:
                return candidate

    return None
