from typing import Any, Dict, Tuple

from modgate.video.frame_sampler import DEFAULT_ACCEPTED_FORMATS


class ModerationSettings:
    """Helper exposing typed accessors for the ``moderation`` config section.

    Values are coerced on read so that a hand-edited YAML file with strings
    where numbers are expected still yields usable settings.
    """

    def __init__(self, data: Dict[str, Any] | None = None) -> None:
        self.data: Dict[str, Any] = data or {}

    def get(self, key: str, default: Any = None) -> Any:
        """Return the value for `key` or `default` if missing."""
        return self.data.get(key, default)

    def as_dict(self) -> Dict[str, Any]:
        return self.data

    def _section(self, name: str) -> Dict[str, Any]:
        section = self.data.get(name, {})
        return section if isinstance(section, dict) else {}

    # Backend
    @property
    def enabled(self) -> bool:
        return bool(self.data.get("enabled", True))

    @property
    def api_url(self) -> str:
        return str(self.data.get("api_url") or "http://localhost:3000")

    @property
    def timeout_seconds(self) -> float:
        return float(self.data.get("timeout_seconds", 5.0))

    # Scheduling
    @property
    def debounce_ms(self) -> int:
        return int(self.data.get("debounce_ms", 500))

    @property
    def aggregate_fail_open(self) -> bool:
        return bool(self.data.get("aggregate_fail_open", False))

    @property
    def rate_limit_mode(self) -> str:
        mode = str(self.data.get("rate_limit_mode", "skip")).lower()
        return mode if mode in ("skip", "block") else "skip"

    # Rate limiting
    @property
    def rate_limit_max_requests(self) -> int:
        return int(self._section("rate_limit").get("max_requests", 100))

    @property
    def rate_limit_window_seconds(self) -> float:
        return float(self._section("rate_limit").get("window_seconds", 60.0))

    @property
    def rate_limit_sweep_interval_seconds(self) -> float:
        return float(self._section("rate_limit").get("sweep_interval_seconds", 60.0))

    # Tenant config cache
    @property
    def config_cache_ttl_seconds(self) -> float:
        return float(self._section("config_cache").get("ttl_seconds", 300.0))

    # Video sampling
    @property
    def video_frame_count(self) -> int:
        return int(self._section("video").get("frame_count", 5))

    @property
    def video_max_duration_seconds(self) -> float:
        return float(self._section("video").get("max_duration_seconds", 300.0))

    @property
    def video_max_size_mb(self) -> float:
        return float(self._section("video").get("max_size_mb", 100.0))

    @property
    def video_accepted_formats(self) -> Tuple[str, ...]:
        formats = self._section("video").get("accepted_formats")
        if isinstance(formats, list) and formats:
            return tuple(str(fmt) for fmt in formats)
        return DEFAULT_ACCEPTED_FORMATS
