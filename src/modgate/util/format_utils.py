import hashlib
import uuid


def format_cost(usd: float) -> str:
    """Format a backend cost in USD with six decimals, e.g. ``$0.000123``."""
    return f"${usd:.6f}"


def format_latency(ms: float) -> str:
    """Format a latency as ``850ms`` below one second and ``1.25s`` above."""
    if ms < 1000:
        return f"{round(ms)}ms"
    return f"{ms / 1000:.2f}s"


def hash_content(text: str) -> str:
    """Stable SHA-256 hex digest of ``text``, used to correlate checks in logs."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def generate_request_id() -> str:
    return f"req_{uuid.uuid4().hex}"
