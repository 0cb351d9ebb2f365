"""
Tenant settings persistence.

- **repositories/**: Raw SQL for the tenant_configs table
- **tenant_config_service.py**: Cached reads and invalidating writes
"""
