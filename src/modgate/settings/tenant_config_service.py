"""
TenantConfigService: write path and cached read path for tenant configs.

Writes go through the repository in one transaction and then invalidate the
tenant's cache entry, so the next read observes the new value. Reads go
through `TenantConfigCache`, which is built around `fetch`.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import Any, Dict

from modgate.database.db_connection import ConnectionManager
from modgate.datatypes.tenant_config import POLICY_PRESETS, TenantConfig
from modgate.moderation.moderation_errors import ValidationError
from modgate.settings.repositories import TenantConfigRepository, TenantConfigRow
from modgate.util.config_cache import TenantConfigCache
from modgate.util.logger import get_logger

logger = get_logger("tenant_config_service")

_UPDATABLE_FIELDS = frozenset({"tenant_name", "policy_preset", "enabled", "log_channel"})


class TenantConfigService:
    """
    Orchestrates tenant config persistence and caching.

    - No SQL here, only repository calls inside transactions.
    - Per-tenant locks serialise read-modify-write updates of one tenant.
    """

    def __init__(self, db: ConnectionManager, ttl_seconds: float = 300.0) -> None:
        self._db = db
        self._repo = TenantConfigRepository()
        self._per_tenant_locks: Dict[str, asyncio.Lock] = {}
        self.cache = TenantConfigCache(self.fetch, ttl_seconds=ttl_seconds)

    def _lock_for(self, tenant_id: str) -> asyncio.Lock:
        if tenant_id not in self._per_tenant_locks:
            self._per_tenant_locks[tenant_id] = asyncio.Lock()
        return self._per_tenant_locks[tenant_id]

    @staticmethod
    def _validate(config: TenantConfig) -> None:
        if not config.tenant_id:
            raise ValidationError("tenant_id is required")
        if config.policy_preset not in POLICY_PRESETS:
            raise ValidationError(
                f"Unknown policy preset {config.policy_preset!r}; expected one of {sorted(POLICY_PRESETS)}"
            )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def fetch(self, tenant_id: str) -> TenantConfig | None:
        """Read a tenant straight from the database, bypassing the cache."""
        async with self._db.read() as conn:
            row = await self._repo.get(conn, tenant_id)
        return None if row is None else row.to_config()

    async def get(self, tenant_id: str) -> TenantConfig | None:
        """Read a tenant through the TTL cache."""
        return await self.cache.get(tenant_id)

    async def list_all(self) -> Dict[str, TenantConfig]:
        async with self._db.read() as conn:
            rows = await self._repo.get_all(conn)
        return {tenant_id: row.to_config() for tenant_id, row in rows.items()}

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(self, config: TenantConfig) -> TenantConfig:
        """Persist a new (or replacement) tenant config.

        Raises:
            ValidationError: If the tenant ID is empty or the preset unknown.
        """
        self._validate(config)
        async with self._lock_for(config.tenant_id):
            async with self._db.transaction() as conn:
                await self._repo.upsert(conn, TenantConfigRow.from_config(config))
            self.cache.invalidate(config.tenant_id)

        logger.info("[TENANT CONFIG SERVICE] Saved tenant %s (preset=%s)", config.tenant_id, config.policy_preset)
        return config

    async def update(self, tenant_id: str, **changes: Any) -> TenantConfig | None:
        """Apply ``changes`` to an existing tenant; returns None if it does not exist."""
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        async with self._lock_for(tenant_id):
            current = await self.fetch(tenant_id)
            if current is None:
                return None

            updated = replace(current, **changes)
            self._validate(updated)
            async with self._db.transaction() as conn:
                await self._repo.upsert(conn, TenantConfigRow.from_config(updated))
            self.cache.invalidate(tenant_id)

        logger.info("[TENANT CONFIG SERVICE] Updated tenant %s: %s", tenant_id, ", ".join(sorted(changes)))
        return updated

    async def delete(self, tenant_id: str) -> bool:
        async with self._lock_for(tenant_id):
            async with self._db.transaction() as conn:
                removed = await self._repo.delete(conn, tenant_id)
            self.cache.invalidate(tenant_id)
            self._per_tenant_locks.pop(tenant_id, None)

        if removed:
            logger.info("[TENANT CONFIG SERVICE] Deleted tenant %s", tenant_id)
        return removed
