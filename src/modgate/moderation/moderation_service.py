"""
ModerationService: the single entry point callers use to moderate content.

Pipeline per call:
    blank short-circuit -> enabled toggle -> input validation -> rate limiter
    gate (tenant-scoped calls) -> one concurrent backend call per item ->
    policy engine per item -> aggregator (multi-item calls).

Transport failures never escape: they come back as ERROR outcomes (or as
failed items inside an aggregate). Validation errors, such as an unknown
policy or an unacceptable video, are raised before the rate limiter or the
backend is touched.
"""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Any, Callable, Mapping, Sequence

from modgate.datatypes.content_datatypes import ContentItem
from modgate.datatypes.decision_datatypes import CheckOutcome, Decision
from modgate.datatypes.policy_datatypes import Action, FallbackMode, Policy
from modgate.moderation import aggregator, policy_engine
from modgate.moderation.check_scheduler import is_blank
from modgate.moderation.moderation_errors import (
    ContentValidationError,
    ModerationError,
    ProviderError,
    ProviderTimeoutError,
)
from modgate.moderation.policy_loader import PolicyRegistry
from modgate.provider.moderation_client import ModerationClient
from modgate.util.config_cache import TenantConfigCache
from modgate.util.format_utils import generate_request_id
from modgate.util.logger import get_logger
from modgate.util.rate_limiter import RateLimiter
from modgate.video.av_source import AVVideoSource
from modgate.video.frame_sampler import ProgressCallback, VideoFrameSampler, VideoSource

logger = get_logger("moderation_service")

RATE_LIMIT_SKIP = "skip"
RATE_LIMIT_BLOCK = "block"

SourceFactory = Callable[[Path], VideoSource]


def to_items(content: str | ContentItem | Sequence[ContentItem]) -> list[ContentItem]:
    """Normalize text, a single item or a sequence of items into an item list.

    Raises:
        ContentValidationError: If anything other than text or content items is given.
    """
    if isinstance(content, str):
        return [ContentItem.text(content)]
    if isinstance(content, ContentItem):
        return [content]
    if isinstance(content, (bytes, bytearray)) or not isinstance(content, Sequence):
        raise ContentValidationError(f"cannot moderate content of type {type(content).__name__}")

    items = list(content)
    for item in items:
        if not isinstance(item, ContentItem):
            raise ContentValidationError(f"expected ContentItem, got {type(item).__name__}")
    return items


class ModerationService:
    """
    Composes the rate limiter, tenant config cache, remote client, policy
    engine, aggregator and video sampler.

    Args:
        client: Remote scoring client.
        registry: Loaded policies.
        rate_limiter: Per-tenant gate; tenant-less calls are never limited.
        config_cache: Tenant config lookup used by `check_tenant`.
        sampler: Video frame sampler used by `check_video`.
        fail_open: Aggregate failed items out of the verdict instead of failing it.
        rate_limit_mode: ``"skip"`` reports RATE_LIMITED; ``"block"`` reports
            a completed BLOCK decision.
        enabled: Global toggle; a disabled service answers DISABLED.
        source_factory: Opens a video file for sampling.
    """

    def __init__(
        self,
        client: ModerationClient,
        registry: PolicyRegistry,
        rate_limiter: RateLimiter | None = None,
        config_cache: TenantConfigCache | None = None,
        sampler: VideoFrameSampler | None = None,
        fail_open: bool = False,
        rate_limit_mode: str = RATE_LIMIT_SKIP,
        enabled: bool = True,
        source_factory: SourceFactory = AVVideoSource.open,
    ) -> None:
        if rate_limit_mode not in (RATE_LIMIT_SKIP, RATE_LIMIT_BLOCK):
            raise ValueError(f"rate_limit_mode must be 'skip' or 'block', got {rate_limit_mode!r}")
        self.client = client
        self.registry = registry
        self.rate_limiter = rate_limiter
        self.config_cache = config_cache
        self.sampler = sampler or VideoFrameSampler()
        self.fail_open = fail_open
        self.rate_limit_mode = rate_limit_mode
        self.enabled = enabled
        self._source_factory = source_factory

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def check(
        self,
        content: str | ContentItem,
        policy_id: str,
        tenant_id: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> CheckOutcome:
        """Moderate one piece of content and return its single-item decision.

        Raises:
            PolicyValidationError: If ``policy_id`` is not registered.
            ContentValidationError: If ``content`` is neither text nor a content item.
        """
        if is_blank(content):
            return CheckOutcome.completed(Decision.allowed())
        if not self.enabled:
            return CheckOutcome.disabled()

        policy = self.registry.require(policy_id)
        items = to_items(content)

        gate = self._rate_gate(tenant_id)
        if gate is not None:
            return gate

        decisions = await self._score_items(items, policy, tenant_id, metadata)
        return CheckOutcome.completed(decisions[0])

    async def check_many(
        self,
        items: Sequence[ContentItem],
        policy_id: str,
        tenant_id: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> CheckOutcome:
        """Moderate several items together and return their aggregate decision.

        Blank items are allowed in place without a backend call, so
        ``per_item`` lines up with ``items``. If every item is blank the call
        completes as allowed without any backend work.

        Raises:
            PolicyValidationError: If ``policy_id`` is not registered.
            ContentValidationError: If ``items`` holds anything but content items.
        """
        items = to_items(items)
        live = [idx for idx, item in enumerate(items) if not item.is_blank()]
        if not live:
            return CheckOutcome.completed(Decision.allowed())
        if not self.enabled:
            return CheckOutcome.disabled()

        policy = self.registry.require(policy_id)

        gate = self._rate_gate(tenant_id)
        if gate is not None:
            return gate

        decisions = [Decision.allowed() for _ in items]
        scored = await self._score_items([items[idx] for idx in live], policy, tenant_id, metadata)
        for idx, decision in zip(live, scored):
            decisions[idx] = decision

        result = aggregator.aggregate(items, decisions, fail_open=self.fail_open)
        if result.failed_items:
            logger.warning(
                "[MODERATION SERVICE] %d of %d items failed under %s",
                len(result.failed_items),
                len(items),
                policy.policy_id,
            )
        return CheckOutcome.completed(result)

    async def check_video(
        self,
        path: Path,
        policy_id: str,
        tenant_id: str | None = None,
        on_progress: ProgressCallback | None = None,
        mime_type: str | None = None,
    ) -> CheckOutcome:
        """
        Sample frames from a local video and moderate them as one submission.

        The outcome carries the thumbnail extracted at 10% of the duration.

        Raises:
            PolicyValidationError: If ``policy_id`` is not registered.
            VideoValidationError: If the format, size or duration is not
                accepted or the file cannot be decoded. No frame is scored.
        """
        if not self.enabled:
            return CheckOutcome.disabled()

        policy = self.registry.require(policy_id)
        self.sampler.validate_file(path, mime_type)

        # Opening reads container metadata only; frames are decoded by sample()
        source = await asyncio.to_thread(self._source_factory, path)
        try:
            self.sampler.validate_duration(source.duration)
            gate = self._rate_gate(tenant_id)
        except BaseException:
            source.close()
            raise
        if gate is not None:
            source.close()
            return gate

        try:
            sampled = await self.sampler.sample(source, on_progress)
        except (OSError, ValueError) as exc:
            logger.error("[MODERATION SERVICE] Frame extraction failed for %s: %s", path.name, exc)
            return CheckOutcome.failed(f"Failed to process video: {exc}")

        decisions = await self._score_items(sampled.frames, policy, tenant_id, {"duration": sampled.duration})
        result = aggregator.aggregate(sampled.frames, decisions, fail_open=self.fail_open)
        logger.debug(
            "[MODERATION SERVICE] Video %s: %s over %d frames",
            path.name,
            result.action,
            len(sampled.frames),
        )
        return CheckOutcome.completed(result, thumbnail=sampled.thumbnail)

    async def check_tenant(
        self,
        tenant_id: str,
        items: Sequence[ContentItem],
        metadata: Mapping[str, Any] | None = None,
    ) -> CheckOutcome:
        """Moderate items under the policy configured for ``tenant_id``.

        Unknown and disabled tenants answer DISABLED. A config store failure
        with nothing cached answers ERROR.
        """
        if self.config_cache is None:
            raise RuntimeError("check_tenant requires a tenant config cache")

        try:
            config = await self.config_cache.get(tenant_id)
        except Exception as exc:
            logger.error("[MODERATION SERVICE] Config lookup failed for tenant %s: %s", tenant_id, exc)
            return CheckOutcome.failed(f"Tenant config unavailable: {exc}")

        if config is None or not config.enabled:
            return CheckOutcome.disabled()

        return await self.check_many(items, config.policy_id, tenant_id=tenant_id, metadata=metadata)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _rate_gate(self, tenant_id: str | None) -> CheckOutcome | None:
        """Return the outcome for a rejected call, or None to proceed."""
        if tenant_id is None or self.rate_limiter is None:
            return None
        if self.rate_limiter.admit(tenant_id):
            return None

        logger.warning("[MODERATION SERVICE] Tenant %s is rate limited", tenant_id)
        if self.rate_limit_mode == RATE_LIMIT_BLOCK:
            return CheckOutcome.completed(
                Decision(safe=False, action=Action.BLOCK, primary_category="rate_limited")
            )
        return CheckOutcome.rate_limited()

    async def _score_items(
        self,
        items: Sequence[ContentItem],
        policy: Policy,
        tenant_id: str | None,
        metadata: Mapping[str, Any] | None,
    ) -> list[Decision]:
        request_metadata = dict(metadata or {})
        request_metadata.setdefault("requestId", generate_request_id())
        if tenant_id is not None:
            request_metadata.setdefault("tenantId", tenant_id)
        logger.debug(
            "[MODERATION SERVICE] %s: scoring %d items under %s",
            request_metadata["requestId"],
            len(items),
            policy.policy_id,
        )
        return list(
            await asyncio.gather(*(self._score_item(item, policy, request_metadata) for item in items))
        )

    def _timeout_for(self, policy: Policy) -> float:
        if policy.fallback is not None:
            return policy.fallback.timeout_seconds
        return self.client.timeout_seconds

    async def _score_item(self, item: ContentItem, policy: Policy, metadata: Mapping[str, Any]) -> Decision:
        started = time.monotonic()
        try:
            result = await asyncio.wait_for(
                self.client.score(item, policy.policy_id, metadata),
                timeout=self._timeout_for(policy),
            )
        except (asyncio.TimeoutError, ProviderTimeoutError):
            return await self._score_after_timeout(item, policy, metadata, started)
        except ProviderError as exc:
            return Decision.failed(str(exc), latency_ms=self._elapsed_ms(started))

        return policy_engine.evaluate(policy, result)

    async def _score_after_timeout(
        self,
        item: ContentItem,
        policy: Policy,
        metadata: Mapping[str, Any],
        started: float,
    ) -> Decision:
        fallback = policy.fallback
        fallback_result = None
        if fallback is not None and fallback.on_timeout and fallback.mode is FallbackMode.FAIL_OPEN:
            logger.info(
                "[MODERATION SERVICE] %s timed out, retrying via fallback provider %s",
                item.describe(),
                fallback.provider,
            )
            try:
                fallback_result = await asyncio.wait_for(
                    self.client.score(item, policy.policy_id, metadata, provider=fallback.provider),
                    timeout=fallback.timeout_seconds,
                )
            except (asyncio.TimeoutError, ModerationError) as exc:
                logger.warning("[MODERATION SERVICE] Fallback provider failed for %s: %s", item.describe(), exc)

        decision = policy_engine.evaluate_timeout(policy, fallback_result)
        if decision is None:
            return Decision.failed(str(ProviderTimeoutError()), latency_ms=self._elapsed_ms(started))
        return decision

    @staticmethod
    def _elapsed_ms(started: float) -> float:
        return (time.monotonic() - started) * 1000.0
