"""
Content types submitted for moderation.

This module defines the unit of work passed to the remote moderation backend:
- `ContentKind`: what a single item is (text, image, sampled video frame).
- `ContentItem`: one item with its payload and submission position.
- `KNOWN_CATEGORIES`: the built-in harm taxonomy scored by the backend.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Union

from modgate.util.format_utils import hash_content


KNOWN_CATEGORIES: FrozenSet[str] = frozenset(
    {
        "hate_speech",
        "harassment",
        "violence",
        "self_harm",
        "sexual",
        "spam",
        "profanity",
        "scam",
        "illegal",
    }
)


class ContentKind(Enum):
    """Enumeration of moderatable content kinds."""

    TEXT = "text"
    IMAGE = "image"
    VIDEO_FRAME = "video_frame"

    def __str__(self) -> str:
        return self.value

    @property
    def request_type(self) -> str:
        """Content type name understood by the backend's check endpoint."""
        if self is ContentKind.VIDEO_FRAME:
            return "video"
        return self.value


Payload = Union[str, bytes]


@dataclass(slots=True, frozen=True)
class ContentItem:
    """A single unit submitted for moderation.

    Attributes:
        kind: What the payload represents.
        payload: Text, an image URL / data URI, or encoded image bytes.
        ordinal: Position in the submission (the sample index for video frames).
        mime_type: MIME type of byte payloads, used to build the data URI.
    """

    kind: ContentKind
    payload: Payload
    ordinal: int = 0
    mime_type: str | None = None

    @classmethod
    def text(cls, value: str, ordinal: int = 0) -> "ContentItem":
        return cls(kind=ContentKind.TEXT, payload=value, ordinal=ordinal)

    @classmethod
    def image(cls, value: Payload, ordinal: int = 0, mime_type: str | None = None) -> "ContentItem":
        return cls(kind=ContentKind.IMAGE, payload=value, ordinal=ordinal, mime_type=mime_type)

    @classmethod
    def video_frame(cls, frame: bytes, ordinal: int, mime_type: str = "image/jpeg") -> "ContentItem":
        return cls(kind=ContentKind.VIDEO_FRAME, payload=frame, ordinal=ordinal, mime_type=mime_type)

    def is_blank(self) -> bool:
        """Return True when there is nothing to moderate."""
        if isinstance(self.payload, bytes):
            return len(self.payload) == 0
        return not self.payload.strip()

    def to_request_content(self) -> str:
        """Render the payload as the string sent to the backend.

        Byte payloads become base64 ``data:`` URIs; strings are passed through.
        """
        if isinstance(self.payload, bytes):
            encoded = base64.b64encode(self.payload).decode("ascii")
            return f"data:{self.mime_type or 'image/jpeg'};base64,{encoded}"
        return self.payload

    def describe(self) -> str:
        """Short label used in log lines; text is identified by digest, never quoted."""
        if isinstance(self.payload, bytes):
            return f"{self.kind}#{self.ordinal} ({len(self.payload)} bytes)"
        return f"{self.kind}#{self.ordinal} sha256:{hash_content(self.payload)[:12]}"
