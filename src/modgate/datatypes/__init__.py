"""
Core data types for modgate.

- **content_datatypes.py**: Content items submitted for moderation
- **policy_datatypes.py**: Actions, severities, policy rules and fallbacks
- **decision_datatypes.py**: Provider results, decisions and check outcomes
- **tenant_config.py**: Per-tenant configuration and policy presets
"""
