"""PyAV-backed video source producing JPEG frames with Pillow."""

from __future__ import annotations

from io import BytesIO
from pathlib import Path

import av
from PIL import Image

from modgate.moderation.moderation_errors import VideoValidationError
from modgate.util.logger import get_logger

logger = get_logger("av_source")

JPEG_QUALITY = 80
MAX_FRAME_SIDE = 1280


def encode_frame(image: Image.Image, quality: int = JPEG_QUALITY) -> bytes:
    """Encode a frame as JPEG, shrinking it so the longest side is at most 1280px."""
    image = image.convert("RGB")
    w, h = image.size
    longest = max(w, h)
    if longest > MAX_FRAME_SIDE:
        scale = MAX_FRAME_SIDE / longest
        image = image.resize((max(1, int(w * scale)), max(1, int(h * scale))))

    buffer = BytesIO()
    image.save(buffer, format="JPEG", quality=quality)
    return buffer.getvalue()


class AVVideoSource:
    """
    Seekable frame source over a local video file.

    Not thread-safe: callers must issue one `capture` at a time.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._container = av.open(str(path))
        if not self._container.streams.video:
            self._container.close()
            raise VideoValidationError(f"{path.name} has no video stream")
        self._stream = self._container.streams.video[0]
        self._closed = False

    @classmethod
    def open(cls, path: Path) -> "AVVideoSource":
        """Open ``path``, reporting unreadable files as validation errors."""
        try:
            return cls(path)
        except av.error.FFmpegError as exc:
            raise VideoValidationError(f"Failed to read video: {exc}") from exc

    @property
    def duration(self) -> float:
        stream = self._stream
        if stream.duration is not None and stream.time_base is not None:
            return float(stream.duration * stream.time_base)
        if self._container.duration is not None:
            return self._container.duration / av.time_base
        return 0.0

    def capture(self, seconds: float) -> bytes:
        """Seek to ``seconds`` and return the first frame at or after it as JPEG."""
        if self._closed:
            raise RuntimeError("video source is closed")

        time_base = self._stream.time_base
        offset = int(seconds / time_base) if time_base else 0
        self._container.seek(offset, stream=self._stream, backward=True, any_frame=False)

        last = None
        for frame in self._container.decode(self._stream):
            last = frame
            if frame.time is None or frame.time >= seconds:
                break

        if last is None:
            raise ValueError(f"no frame decoded at {seconds:.2f}s in {self._path}")
        return encode_frame(last.to_image())

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._container.close()
            logger.debug("[AV SOURCE] Released %s", self._path)
