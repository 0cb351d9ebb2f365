"""
Repository for the tenant_configs table.

Handles raw SQL only; callers own the connection and the transaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict

import aiosqlite

from modgate.datatypes.tenant_config import DEFAULT_PRESET, TenantConfig
from modgate.util.logger import get_logger

logger = get_logger("tenant_config_repo")

_COLUMNS = "tenant_id, tenant_name, policy_preset, enabled, log_channel"


@dataclass
class TenantConfigRow:
    """Raw DB row for a tenant's configuration."""
    tenant_id: str
    tenant_name: str
    policy_preset: str
    enabled: bool
    log_channel: str | None

    @classmethod
    def from_config(cls, config: TenantConfig) -> "TenantConfigRow":
        return cls(
            tenant_id=config.tenant_id,
            tenant_name=config.tenant_name,
            policy_preset=config.policy_preset,
            enabled=config.enabled,
            log_channel=config.log_channel,
        )

    def to_config(self) -> TenantConfig:
        return TenantConfig(
            tenant_id=self.tenant_id,
            tenant_name=self.tenant_name,
            policy_preset=self.policy_preset,
            enabled=self.enabled,
            log_channel=self.log_channel,
        )


def _row(raw) -> TenantConfigRow:
    return TenantConfigRow(
        tenant_id=str(raw[0]),
        tenant_name=raw[1] or "",
        policy_preset=raw[2] or DEFAULT_PRESET,
        enabled=bool(raw[3]),
        log_channel=raw[4],
    )


class TenantConfigRepository:
    """CRUD for the tenant_configs table."""

    async def get(self, conn: aiosqlite.Connection, tenant_id: str) -> TenantConfigRow | None:
        async with conn.execute(
            f"SELECT {_COLUMNS} FROM tenant_configs WHERE tenant_id = ?",
            (tenant_id,),
        ) as cursor:
            raw = await cursor.fetchone()

        return None if raw is None else _row(raw)

    async def get_all(self, conn: aiosqlite.Connection) -> Dict[str, TenantConfigRow]:
        """Fetch every tenant keyed by tenant_id."""
        async with conn.execute(f"SELECT {_COLUMNS} FROM tenant_configs") as cursor:
            rows = await cursor.fetchall()

        return {row.tenant_id: row for row in map(_row, rows)}

    async def upsert(self, conn: aiosqlite.Connection, row: TenantConfigRow) -> None:
        await conn.execute(
            f"""
            INSERT INTO tenant_configs ({_COLUMNS})
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(tenant_id) DO UPDATE SET
                tenant_name   = excluded.tenant_name,
                policy_preset = excluded.policy_preset,
                enabled       = excluded.enabled,
                log_channel   = excluded.log_channel
            """,
            (
                row.tenant_id,
                row.tenant_name,
                row.policy_preset,
                1 if row.enabled else 0,
                row.log_channel,
            ),
        )

    async def delete(self, conn: aiosqlite.Connection, tenant_id: str) -> bool:
        """Delete a tenant row; returns True if a row was removed."""
        cursor = await conn.execute("DELETE FROM tenant_configs WHERE tenant_id = ?", (tenant_id,))
        return cursor.rowcount > 0
