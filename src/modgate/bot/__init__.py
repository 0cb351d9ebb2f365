"""
Discord integration for modgate.

- **message_listener.py**: Cog moderating created and edited guild messages
- **mod_log.py**: Moderation log embeds for a guild's log channel
"""
