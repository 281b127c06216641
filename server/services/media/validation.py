"""Source id validation.

Every entry point that accepts an untrusted id goes through ``SourceId.parse``
so malformed input is rejected before any filesystem or network call.
"""

from dataclasses import dataclass
from typing import Any, Dict, List

from constants import VIDEO_ID_PATTERN, YOUTUBE_WATCH_URL
from services.media.exceptions import InvalidIdError


@dataclass(frozen=True)
class SourceId:
    """A validated 11-character video id."""

    value: str

    def __post_init__(self):
        if not isinstance(self.value, str) or not VIDEO_ID_PATTERN.fullmatch(self.value):
            raise InvalidIdError()

    @classmethod
    def parse(cls, raw: Any) -> "SourceId":
        if isinstance(raw, SourceId):
            return raw
        return cls(raw)

    @classmethod
    def is_valid(cls, raw: Any) -> bool:
        return isinstance(raw, str) and VIDEO_ID_PATTERN.fullmatch(raw) is not None

    @property
    def watch_url(self) -> str:
        return YOUTUBE_WATCH_URL.format(source_id=self.value)

    def __str__(self) -> str:
        return self.value


# =============================================================================
# UPSTREAM PAYLOADS
# =============================================================================

def json_object(value: Any) -> Dict[str, Any]:
    """``value`` if it is a JSON object, otherwise an empty one."""
    return value if isinstance(value, dict) else {}


def json_records(value: Any) -> List[Dict[str, Any]]:
    """The JSON objects in ``value``; anything that is not a list of objects
    contributes nothing."""
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def require_object(payload: Any) -> Dict[str, Any]:
    """Top-level upstream document.

    Raises:
        ValueError: the document is not a JSON object
    """
    if not isinstance(payload, dict):
        raise ValueError(f"Unexpected payload type: {type(payload).__name__}")
    return payload
