"""
Video frame sampling for moderation.

Turns one video into a bounded, evenly spaced list of frame `ContentItem`s plus
a thumbnail. Videos that are too long, too large or of an unaccepted format are
rejected before any frame is decoded.

Seeks on one source are strictly sequential: every capture runs in a worker
thread and finishes before the next seek is issued. Cancelling the sampling
task stops further seeks and releases the source.
"""

from __future__ import annotations

import asyncio
import mimetypes
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Protocol, Sequence, Tuple

from modgate.datatypes.content_datatypes import ContentItem
from modgate.moderation.moderation_errors import VideoValidationError
from modgate.util.logger import get_logger

logger = get_logger("frame_sampler")

DEFAULT_ACCEPTED_FORMATS: Tuple[str, ...] = ("video/mp4", "video/webm", "video/quicktime")

ProgressCallback = Callable[[float], object]


class VideoSource(Protocol):
    """A seekable video. `capture` blocks until the frame at ``seconds`` is encoded."""

    @property
    def duration(self) -> float: ...

    def capture(self, seconds: float) -> bytes: ...

    def close(self) -> None: ...


@dataclass(slots=True)
class SampledVideo:
    """Frames extracted from one video."""

    duration: float
    frames: List[ContentItem] = field(default_factory=list)
    thumbnail: bytes | None = None
    timestamps: List[float] = field(default_factory=list)


class VideoFrameSampler:
    """
    Samples ``frame_count`` frames at ``i * duration / frame_count``.

    More frames give a more thorough check at the price of more backend calls
    and latency.

    Args:
        frame_count: Frames to sample per video.
        max_duration_seconds: Longest accepted video.
        max_size_mb: Largest accepted file.
        accepted_formats: Accepted MIME types.
    """

    def __init__(
        self,
        frame_count: int = 5,
        max_duration_seconds: float = 300.0,
        max_size_mb: float = 100.0,
        accepted_formats: Sequence[str] = DEFAULT_ACCEPTED_FORMATS,
    ) -> None:
        if frame_count <= 0:
            raise ValueError("frame_count must be positive")
        self.frame_count = frame_count
        self.max_duration_seconds = max_duration_seconds
        self.max_size_mb = max_size_mb
        self.accepted_formats = tuple(accepted_formats)

    # ------------------------------------------------------------------
    # Validation (runs before any frame work)
    # ------------------------------------------------------------------

    def validate_file(self, path: Path, mime_type: str | None = None) -> None:
        """Reject unsupported formats and oversized files.

        Raises:
            VideoValidationError: If the file is missing, of an unaccepted type
                or larger than ``max_size_mb``.
        """
        if not path.is_file():
            raise VideoValidationError(f"Video file {path} does not exist")

        mime_type = mime_type or mimetypes.guess_type(path.name)[0]
        if mime_type not in self.accepted_formats:
            accepted = ", ".join(fmt.split("/")[-1].upper() for fmt in self.accepted_formats)
            raise VideoValidationError(f"Invalid file type. Accepted formats: {accepted}")

        size_mb = path.stat().st_size / (1024 * 1024)
        if size_mb > self.max_size_mb:
            raise VideoValidationError(f"File size exceeds {self.max_size_mb:g}MB limit")

    def validate_duration(self, duration: float) -> None:
        if duration <= 0:
            raise VideoValidationError("Video has no playable duration")
        if duration > self.max_duration_seconds:
            raise VideoValidationError(
                f"Video duration ({round(duration)}s) exceeds {self.max_duration_seconds:g}s limit"
            )

    # ------------------------------------------------------------------
    # Sampling
    # ------------------------------------------------------------------

    def sample_times(self, duration: float) -> List[float]:
        interval = duration / self.frame_count
        return [i * interval for i in range(self.frame_count)]

    @staticmethod
    def thumbnail_time(duration: float) -> float:
        return duration * 0.1

    async def sample(self, source: VideoSource, on_progress: ProgressCallback | None = None) -> SampledVideo:
        """
        Extract the thumbnail and the sampled frames from ``source``.

        The source is closed when sampling finishes, fails or is cancelled.

        Raises:
            VideoValidationError: If the duration is out of bounds; no frame is
                extracted in that case.
        """
        try:
            duration = source.duration
            self.validate_duration(duration)

            result = SampledVideo(duration=duration)
            result.thumbnail = await self._capture(source, self.thumbnail_time(duration))

            times = self.sample_times(duration)
            for index, seconds in enumerate(times):
                frame = await self._capture(source, seconds)
                result.frames.append(ContentItem.video_frame(frame, ordinal=index))
                result.timestamps.append(seconds)
                if on_progress is not None:
                    self._report(on_progress, (index + 1) / len(times))

            logger.debug("[SAMPLER] Extracted %d frames from %.1fs video", len(result.frames), duration)
            return result
        finally:
            source.close()

    @staticmethod
    async def _capture(source: VideoSource, seconds: float) -> bytes:
        capture = asyncio.ensure_future(asyncio.to_thread(source.capture, seconds))
        try:
            return await asyncio.shield(capture)
        except asyncio.CancelledError:
            # The seek already running must finish before the source is closed
            await asyncio.wait([capture])
            logger.debug("[SAMPLER] Extraction cancelled at %.2fs", seconds)
            raise

    @staticmethod
    def _report(on_progress: ProgressCallback, fraction: float) -> None:
        try:
            on_progress(fraction)
        except Exception:
            logger.exception("[SAMPLER] Progress callback raised")
