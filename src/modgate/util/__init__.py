"""
Shared utilities for modgate.

- **logger.py**: Coloured console and rotating file logging
- **rate_limiter.py**: Per-tenant sliding-window rate limiter with a sweep task
- **config_cache.py**: TTL read-through cache for tenant configs
- **format_utils.py**: Cost, latency and timestamp formatting plus request IDs
"""
