"""Moderation log embeds and delivery to a tenant's log channel."""

import datetime

import discord

from modgate.datatypes.decision_datatypes import AggregateDecision, AnyDecision
from modgate.datatypes.policy_datatypes import Action
from modgate.util.format_utils import format_cost, format_latency
from modgate.util.logger import get_logger

logger = get_logger("mod_log")

ACTION_DETAILS = {
    Action.BLOCK: {"color": discord.Color.red(), "emoji": "⛔", "label": "Blocked"},
    Action.FLAG: {"color": discord.Color.orange(), "emoji": "🚩", "label": "Flagged"},
    Action.WARN: {"color": discord.Color.yellow(), "emoji": "⚠️", "label": "Warned"},
    Action.ALLOW: {"color": discord.Color.green(), "emoji": "✅", "label": "Allowed"},
}

MAX_PREVIEW_CHARS = 1000


def _decision_figures(decision: AnyDecision) -> tuple[float, float]:
    if isinstance(decision, AggregateDecision):
        return decision.total_latency_ms, decision.total_cost
    return decision.latency_ms, decision.cost


def _categories(decision: AnyDecision) -> list[str]:
    if isinstance(decision, AggregateDecision):
        return decision.triggered_categories()
    return [entry.category for entry in decision.triggered_categories]


def build_mod_log_embed(
    message: discord.Message,
    decision: AnyDecision,
    deleted: bool = False,
) -> discord.Embed:
    """
    Build the embed posted to a tenant's log channel for a moderated message.

    Args:
        message: The moderated Discord message.
        decision: Single-item or aggregate decision for the message.
        deleted: Whether the message was removed.

    Returns:
        discord.Embed: The constructed embed.
    """
    details = ACTION_DETAILS[decision.action]
    latency, cost = _decision_figures(decision)

    embed = discord.Embed(
        title=f"{details['emoji']} Message {details['label']}",
        color=details["color"],
        timestamp=datetime.datetime.now(datetime.timezone.utc),
    )
    embed.add_field(name="Author", value=f"{message.author.mention} (`{message.author.id}`)", inline=True)
    embed.add_field(name="Channel", value=message.channel.mention, inline=True)
    embed.add_field(name="Action", value=str(decision.action), inline=True)

    categories = _categories(decision)
    embed.add_field(name="Categories", value=", ".join(categories) if categories else "none", inline=False)

    content = message.content or "[no text]"
    if len(content) > MAX_PREVIEW_CHARS:
        content = content[:MAX_PREVIEW_CHARS] + "…"
    embed.add_field(name="Content", value=content, inline=False)

    embed.add_field(name="Latency", value=format_latency(latency), inline=True)
    embed.add_field(name="Cost", value=format_cost(cost), inline=True)
    if deleted:
        embed.add_field(name="Deleted", value="yes", inline=True)

    embed.set_footer(text=f"Message ID: {message.id}")
    return embed


async def send_mod_log(
    guild: discord.Guild,
    log_channel_id: str | None,
    embed: discord.Embed,
) -> bool:
    """Post ``embed`` to the configured log channel; returns True on success."""
    if not log_channel_id:
        return False

    channel = guild.get_channel(int(log_channel_id))
    if not isinstance(channel, discord.TextChannel):
        logger.warning("[MOD LOG] Log channel %s not found in guild %s", log_channel_id, guild.id)
        return False

    try:
        await channel.send(embed=embed)
        return True
    except discord.Forbidden:
        logger.warning("[MOD LOG] Missing permission to post in channel %s", log_channel_id)
    except discord.HTTPException as exc:
        logger.error("[MOD LOG] Failed to post to channel %s: %s", log_channel_id, exc)
    return False
