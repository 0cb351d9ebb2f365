"""
Configuration management for modgate.

- **app_configuration.py**: YAML configuration loader guarded by file locks
- **moderation_settings.py**: Typed accessors for the ``moderation`` section
"""
