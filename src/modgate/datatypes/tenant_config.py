"""
Per-tenant moderation configuration.

Tenants are the owners of a moderation context (a chat server, a site). Their
records live in an external store and are read through `TenantConfigCache`.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict


# Maps a tenant's policy preset to the policy ID it moderates with
POLICY_PRESETS: Dict[str, str] = {
    "strict": "discord-strict",
    "balanced": "discord-balanced",
    "permissive": "discord-permissive",
}

DEFAULT_PRESET = "balanced"


def get_policy_id(preset: str) -> str:
    """Resolve a preset name, falling back to the balanced policy."""
    return POLICY_PRESETS.get(preset, POLICY_PRESETS[DEFAULT_PRESET])


@dataclass(slots=True)
class TenantConfig:
    """Persistent per-tenant configuration values."""

    tenant_id: str
    policy_preset: str = DEFAULT_PRESET
    enabled: bool = True
    log_channel: str | None = None
    tenant_name: str = ""
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def policy_id(self) -> str:
        return get_policy_id(self.policy_preset)
