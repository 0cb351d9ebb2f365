"""Raw SQL repositories for persisted settings."""

from modgate.settings.repositories.tenant_config_repo import TenantConfigRepository, TenantConfigRow

__all__ = ["TenantConfigRepository", "TenantConfigRow"]
