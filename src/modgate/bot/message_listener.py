"""Message listener Cog for modgate.

Moderates guild messages (text plus image attachments) with the guild's
configured policy, removes blocked messages and reports blocked or flagged
ones to the guild's log channel. Each message gets its own `CheckScheduler`
so an edit arriving while the original is still being checked supersedes it.
"""

from typing import Dict, List

import discord
from discord.ext import commands

from modgate.bot.mod_log import build_mod_log_embed, send_mod_log
from modgate.datatypes.content_datatypes import ContentItem
from modgate.datatypes.decision_datatypes import CheckOutcome, CheckStatus
from modgate.datatypes.policy_datatypes import Action
from modgate.datatypes.tenant_config import TenantConfig
from modgate.moderation.check_scheduler import CheckScheduler
from modgate.moderation.moderation_service import ModerationService
from modgate.settings.tenant_config_service import TenantConfigService
from modgate.util.logger import get_logger

logger = get_logger("message_listener_cog")

IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".gif", ".webp", ".bmp")


class MessageListenerCog(commands.Cog):
    """Cog moderating created and edited guild messages."""

    def __init__(
        self,
        discord_bot_instance,
        service: ModerationService,
        tenant_configs: TenantConfigService,
        debounce_ms: int = 500,
    ):
        self.bot = discord_bot_instance
        self.service = service
        self.tenant_configs = tenant_configs
        self.debounce_ms = debounce_ms
        self._schedulers: Dict[int, CheckScheduler] = {}
        logger.info("[MESSAGE LISTENER] Cog loaded")

    # ------------------------------------------------------------------
    # Message -> content items
    # ------------------------------------------------------------------

    @staticmethod
    def _is_image_attachment(attachment: discord.Attachment) -> bool:
        content_type = (attachment.content_type or "").lower()
        if content_type.startswith("image/"):
            return True
        filename = (attachment.filename or "").lower()
        return filename.endswith(IMAGE_EXTENSIONS)

    def _build_items(self, message: discord.Message) -> List[ContentItem]:
        items: List[ContentItem] = []
        text = (message.content or "").strip()
        if text:
            items.append(ContentItem.text(text))

        for attachment in message.attachments:
            if self._is_image_attachment(attachment):
                items.append(
                    ContentItem.image(attachment.url, ordinal=len(items), mime_type=attachment.content_type)
                )
        return items

    @staticmethod
    def _should_process(message: discord.Message) -> bool:
        if message.guild is None:
            return False
        if message.author.bot:
            return False
        return True

    # ------------------------------------------------------------------
    # Moderation flow
    # ------------------------------------------------------------------

    async def _load_config(self, guild: discord.Guild) -> TenantConfig | None:
        try:
            config = await self.tenant_configs.get(str(guild.id))
        except Exception as exc:
            logger.error("[MESSAGE LISTENER] Could not load config for guild %s: %s", guild.id, exc)
            return None

        if config is None or not config.enabled:
            return None
        return config

    async def _check_items(self, items: List[ContentItem], policy_id: str, tenant_id: str) -> CheckOutcome:
        return await self.service.check_many(items, policy_id, tenant_id=tenant_id)

    async def moderate_message(self, message: discord.Message) -> CheckOutcome | None:
        """
        Check a message, superseding any check still pending for it.

        Returns:
            The delivered outcome, or None when the message was skipped or
            superseded by a newer edit.
        """
        if not self._should_process(message):
            return None

        items = self._build_items(message)
        if not items:
            return None

        config = await self._load_config(message.guild)
        if config is None:
            return None

        scheduler = self._schedulers.get(message.id)
        if scheduler is None:
            scheduler = CheckScheduler(self._check_items, debounce_ms=self.debounce_ms)
            self._schedulers[message.id] = scheduler

        outcome = await scheduler.schedule(items, config.policy_id, tenant_id=config.tenant_id)
        if outcome.status is CheckStatus.SUPERSEDED:
            return None

        self._schedulers.pop(message.id, None)
        await self._handle_outcome(message, config, outcome)
        return outcome

    async def _handle_outcome(self, message: discord.Message, config: TenantConfig, outcome: CheckOutcome) -> None:
        if outcome.status is CheckStatus.RATE_LIMITED:
            logger.warning(
                "[MESSAGE LISTENER] Skipped message %s in guild %s: rate limited",
                message.id,
                config.tenant_id,
            )
            return

        if outcome.status is CheckStatus.ERROR:
            logger.error("[MESSAGE LISTENER] Moderation failed for message %s: %s", message.id, outcome.error)
            return

        if outcome.status is not CheckStatus.COMPLETED or outcome.decision is None:
            return

        action = outcome.action
        if action not in (Action.BLOCK, Action.FLAG):
            return

        deleted = False
        if action is Action.BLOCK:
            deleted = await self._delete_message(message)

        embed = build_mod_log_embed(message, outcome.decision, deleted=deleted)
        await send_mod_log(message.guild, config.log_channel, embed)
        logger.info(
            "[MESSAGE LISTENER] %s message %s from %s in guild %s",
            action,
            message.id,
            message.author,
            config.tenant_id,
        )

    @staticmethod
    async def _delete_message(message: discord.Message) -> bool:
        me = message.guild.me
        if me is None or not message.channel.permissions_for(me).manage_messages:
            logger.warning("[MESSAGE LISTENER] Missing Manage Messages in channel %s", message.channel.id)
            return False

        try:
            await message.delete()
            return True
        except discord.NotFound:
            logger.debug("[MESSAGE LISTENER] Message %s already deleted", message.id)
        except discord.Forbidden:
            logger.warning("[MESSAGE LISTENER] Not allowed to delete message %s", message.id)
        except discord.HTTPException as exc:
            logger.error("[MESSAGE LISTENER] Failed to delete message %s: %s", message.id, exc)
        return False

    async def shutdown(self) -> None:
        """Cancel every pending per-message check."""
        schedulers = list(self._schedulers.values())
        self._schedulers.clear()
        for scheduler in schedulers:
            await scheduler.shutdown()

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    @commands.Cog.listener(name="on_message")
    async def on_message(self, message: discord.Message):
        await self.moderate_message(message)

    @commands.Cog.listener(name="on_message_edit")
    async def on_message_edit(self, before: discord.Message, after: discord.Message):
        if (before.content or "").strip() == (after.content or "").strip():
            return
        await self.moderate_message(after)

    @commands.Cog.listener(name="on_ready")
    async def on_ready(self):
        """Register guilds joined while the bot was offline."""
        if not self.bot.user:
            logger.warning("[MESSAGE LISTENER] Bot partially connected, user info not yet available.")
            return

        known = await self.tenant_configs.list_all()
        registered = 0
        for guild in self.bot.guilds:
            if str(guild.id) not in known:
                await self._register_guild(guild)
                registered += 1
        logger.info(
            "[MESSAGE LISTENER] Ready as %s in %d guilds (%d newly registered)",
            self.bot.user,
            len(self.bot.guilds),
            registered,
        )

    async def _register_guild(self, guild: discord.Guild) -> None:
        await self.tenant_configs.create(TenantConfig(tenant_id=str(guild.id), tenant_name=guild.name))

    @commands.Cog.listener(name="on_guild_join")
    async def on_guild_join(self, guild: discord.Guild):
        """Register a guild with the default preset the first time the bot joins it."""
        if await self.tenant_configs.fetch(str(guild.id)) is not None:
            return
        await self._register_guild(guild)

    @commands.Cog.listener(name="on_guild_remove")
    async def on_guild_remove(self, guild: discord.Guild):
        await self.tenant_configs.delete(str(guild.id))


def setup(discord_bot_instance, service: ModerationService, tenant_configs: TenantConfigService, debounce_ms: int = 500):
    """Create the cog and register it with the bot."""
    cog = MessageListenerCog(discord_bot_instance, service, tenant_configs, debounce_ms=debounce_ms)
    discord_bot_instance.add_cog(cog)
    return cog
