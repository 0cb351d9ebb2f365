"""
modgate Discord Bot
===================

Runs the moderation orchestration layer behind a Discord bot: every guild
message is checked against the guild's policy preset through a remote
moderation backend, with per-guild rate limiting and cached guild settings.
"""

import asyncio
import os
import sys
from dataclasses import dataclass
from pathlib import Path

import discord
from dotenv import load_dotenv

from modgate.bot import message_listener
from modgate.bot.message_listener import MessageListenerCog
from modgate.configuration.app_configuration import AppConfig
from modgate.database.db_connection import ConnectionManager
from modgate.moderation.moderation_service import ModerationService
from modgate.moderation.policy_loader import PolicyRegistry
from modgate.provider.moderation_client import ModerationClient
from modgate.settings.tenant_config_service import TenantConfigService
from modgate.util.logger import get_logger, handle_exception
from modgate.util.rate_limiter import RateLimiter
from modgate.video.frame_sampler import VideoFrameSampler

logger = get_logger("main")


def resolve_base_dir() -> Path:
    """Determine the base directory of the project.

    Resolution order:
    1. MODGATE_HOME environment variable, if set.
    2. If running in a frozen/compiled context, use the executable's directory.
    3. Otherwise, assume running from source and use the grandparent of this file's directory.
    """
    if env_home := os.getenv("MODGATE_HOME"):
        return Path(env_home).resolve()

    if getattr(sys, "frozen", False) or getattr(sys, "compiled", False):
        return Path(sys.argv[0]).resolve().parent

    return Path(__file__).resolve().parents[2]


BASE_DIR = resolve_base_dir()


@dataclass
class Runtime:
    """Everything the bot needs, composed once at startup."""

    db: ConnectionManager
    tenant_configs: TenantConfigService
    rate_limiter: RateLimiter
    client: ModerationClient
    service: ModerationService


def load_environment() -> tuple[str, str]:
    """Load ``.env`` and return the Discord token and the backend API key.

    Raises
    ------
    SystemExit
        If ``DISCORD_BOT_TOKEN`` or ``MODGATE_API_KEY`` is missing.
    """
    load_dotenv(dotenv_path=BASE_DIR / ".env")
    token = os.getenv("DISCORD_BOT_TOKEN")
    api_key = os.getenv("MODGATE_API_KEY")
    if not token:
        logger.critical("'DISCORD_BOT_TOKEN' environment variable not set. Bot cannot start.")
        sys.exit(1)
    if not api_key:
        logger.critical("'MODGATE_API_KEY' environment variable not set. Bot cannot start.")
        sys.exit(1)
    return token, api_key


def build_intents() -> discord.Intents:
    intents = discord.Intents.default()
    intents.message_content = True
    intents.guilds = True
    intents.messages = True
    return intents


async def build_runtime(app_config: AppConfig, api_key: str) -> Runtime:
    """Open the database and wire the moderation pipeline from configuration."""
    settings = app_config.moderation

    db = ConnectionManager()
    await db.open(app_config.database_path)
    tenant_configs = TenantConfigService(db, ttl_seconds=settings.config_cache_ttl_seconds)

    registry = PolicyRegistry()
    registry.load_directory(app_config.policies_dir)

    rate_limiter = RateLimiter(
        max_requests=settings.rate_limit_max_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
    client = ModerationClient(
        api_key=api_key,
        api_url=os.getenv("MODGATE_API_URL") or settings.api_url,
        timeout_seconds=settings.timeout_seconds,
    )
    sampler = VideoFrameSampler(
        frame_count=settings.video_frame_count,
        max_duration_seconds=settings.video_max_duration_seconds,
        max_size_mb=settings.video_max_size_mb,
        accepted_formats=settings.video_accepted_formats,
    )
    service = ModerationService(
        client=client,
        registry=registry,
        rate_limiter=rate_limiter,
        config_cache=tenant_configs.cache,
        sampler=sampler,
        fail_open=settings.aggregate_fail_open,
        rate_limit_mode=settings.rate_limit_mode,
        enabled=settings.enabled,
    )
    return Runtime(db, tenant_configs, rate_limiter, client, service)


def create_bot(runtime: Runtime, debounce_ms: int) -> tuple[discord.Bot, MessageListenerCog]:
    """Instantiate the Discord bot and register the listener cog."""
    bot = discord.Bot(intents=build_intents())
    cog = message_listener.setup(bot, runtime.service, runtime.tenant_configs, debounce_ms=debounce_ms)
    return bot, cog


async def shutdown_runtime(runtime: Runtime, bot: discord.Bot | None = None, cog: MessageListenerCog | None = None) -> None:
    """Stop the bot and release the pipeline's resources in reverse order."""
    if cog is not None:
        await cog.shutdown()

    if bot is not None and not bot.is_closed():
        try:
            await bot.close()
        except Exception as exc:
            logger.exception("Error while closing Discord bot: %s", exc)

    cache_stats = runtime.tenant_configs.cache.get_cache_stats()
    logger.info(
        "Releasing pipeline: %d cached tenant configs, %d tenants in rate-limit windows",
        cache_stats["size"],
        runtime.rate_limiter.tracked_tenants(),
    )
    await runtime.rate_limiter.shutdown()
    await runtime.client.aclose()
    await runtime.db.close()
    logger.info("Shutdown complete.")


async def async_main() -> int:
    """Bootstrap the pipeline and the bot, returning an exit code."""
    token, api_key = load_environment()
    app_config = AppConfig(BASE_DIR / "config" / "app_config.yml")

    try:
        runtime = await build_runtime(app_config, api_key)
    except Exception as exc:
        logger.critical("Failed to initialize moderation runtime: %s", exc)
        return 1

    settings = app_config.moderation
    runtime.rate_limiter.start(settings.rate_limit_sweep_interval_seconds)
    bot, cog = create_bot(runtime, settings.debounce_ms)

    exit_code = 0
    logger.info("Attempting to connect to Discord…")
    try:
        await bot.start(token)
    except asyncio.CancelledError:
        logger.info("Discord bot start cancelled; shutting down")
    except discord.LoginFailure as exc:
        logger.critical("Discord login failed: %s", exc)
        exit_code = 1
    except Exception as exc:
        logger.critical("Discord bot runtime error: %s", exc)
        exit_code = 1
    finally:
        await shutdown_runtime(runtime, bot, cog)

    return exit_code


def main() -> int:
    """Entrypoint that runs the async runtime and returns the process exit code."""
    os.chdir(BASE_DIR)
    sys.excepthook = handle_exception
    logger.info("Starting modgate…")
    try:
        return asyncio.run(async_main())
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user.")
        return 0


if __name__ == "__main__":
    sys.exit(main())
