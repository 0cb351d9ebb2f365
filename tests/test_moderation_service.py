import asyncio
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from conftest import make_policy
from modgate.datatypes.content_datatypes import ContentItem
from modgate.datatypes.decision_datatypes import AggregateDecision, CheckStatus, ProviderResult
from modgate.datatypes.policy_datatypes import Action
from modgate.datatypes.tenant_config import TenantConfig
from modgate.moderation.moderation_errors import (
    ContentValidationError,
    PolicyValidationError,
    ProviderError,
    VideoValidationError,
)
from modgate.moderation.moderation_service import ModerationService
from modgate.moderation.policy_loader import PolicyRegistry
from modgate.util.config_cache import TenantConfigCache
from modgate.util.rate_limiter import RateLimiter
from modgate.video.frame_sampler import VideoFrameSampler


class FakeClient:
    """Scores content from a lookup table; ``"slow"`` never answers in time."""

    def __init__(self, table=None, fallback_table=None, timeout_seconds=1.0):
        self.table = table or {}
        self.fallback_table = fallback_table or {}
        self.timeout_seconds = timeout_seconds
        self.calls = []

    async def score(self, item, policy_id, metadata=None, provider=None):
        self.calls.append((item, policy_id, dict(metadata or {}), provider))
        key = item.payload if isinstance(item.payload, str) else item.ordinal
        table = self.fallback_table if provider else self.table
        value = table.get(key, {})
        if value == "slow":
            await asyncio.sleep(10)
        if value == "error":
            raise ProviderError("Moderation API error: 500", status_code=500)
        return ProviderResult(provider=provider or "openai", scores=value, latency_ms=100, cost=0.0001)


def build_service(client, policy=None, **kwargs):
    registry = PolicyRegistry()
    registry.register(
        policy
        or make_policy(
            [("hate_speech", 0.5, Action.BLOCK, 100), ("violence", 0.7, Action.FLAG, 80), ("spam", 0.8, Action.WARN)],
            policy_id="discord-balanced",
        )
    )
    return ModerationService(client, registry, **kwargs)


@pytest.mark.asyncio
async def test_check_returns_single_decision():
    client = FakeClient({"you are awful": {"hate_speech": 0.9}})
    service = build_service(client)

    outcome = await service.check("you are awful", "discord-balanced")

    assert outcome.status is CheckStatus.COMPLETED
    assert outcome.action is Action.BLOCK
    assert outcome.decision.primary_category == "hate_speech"


@pytest.mark.asyncio
async def test_blank_content_skips_everything(clock):
    client = FakeClient()
    limiter = RateLimiter(max_requests=1, clock=clock)
    service = build_service(client, rate_limiter=limiter)

    outcome = await service.check("   ", "no-such-policy", tenant_id="g1")

    assert outcome.action is Action.ALLOW
    assert client.calls == []
    assert limiter.remaining("g1") == 1


@pytest.mark.asyncio
async def test_disabled_service_answers_disabled():
    client = FakeClient()
    outcome = await build_service(client, enabled=False).check("hello", "discord-balanced")
    assert outcome.status is CheckStatus.DISABLED
    assert client.calls == []


@pytest.mark.asyncio
async def test_unknown_policy_raises_before_rate_limiter(clock):
    limiter = RateLimiter(max_requests=1, clock=clock)
    service = build_service(FakeClient(), rate_limiter=limiter)

    with pytest.raises(PolicyValidationError):
        await service.check("hello", "missing", tenant_id="g1")

    assert limiter.remaining("g1") == 1


@pytest.mark.asyncio
async def test_invalid_content_raises_before_backend(clock):
    client = FakeClient()
    limiter = RateLimiter(max_requests=1, clock=clock)
    service = build_service(client, rate_limiter=limiter)

    with pytest.raises(ContentValidationError):
        await service.check(12345, "discord-balanced", tenant_id="g1")
    with pytest.raises(ContentValidationError):
        await service.check_many(["raw text"], "discord-balanced", tenant_id="g1")

    assert client.calls == []
    assert limiter.remaining("g1") == 1


@pytest.mark.asyncio
async def test_rate_limited_tenant_is_skipped(clock):
    client = FakeClient()
    service = build_service(client, rate_limiter=RateLimiter(max_requests=1, clock=clock))

    first = await service.check("one", "discord-balanced", tenant_id="g1")
    second = await service.check("two", "discord-balanced", tenant_id="g1")
    untenanted = await service.check("three", "discord-balanced")

    assert first.status is CheckStatus.COMPLETED
    assert second.status is CheckStatus.RATE_LIMITED
    assert second.safe is None
    assert untenanted.status is CheckStatus.COMPLETED
    assert len(client.calls) == 2


@pytest.mark.asyncio
async def test_rate_limit_block_mode_blocks(clock):
    service = build_service(FakeClient(), rate_limiter=RateLimiter(max_requests=1, clock=clock), rate_limit_mode="block")

    await service.check("one", "discord-balanced", tenant_id="g1")
    outcome = await service.check("two", "discord-balanced", tenant_id="g1")

    assert outcome.status is CheckStatus.COMPLETED
    assert outcome.action is Action.BLOCK
    assert outcome.decision.primary_category == "rate_limited"


def test_invalid_rate_limit_mode():
    with pytest.raises(ValueError):
        build_service(FakeClient(), rate_limit_mode="ignore")


@pytest.mark.asyncio
async def test_tenant_id_is_forwarded_in_metadata():
    client = FakeClient()
    await build_service(client).check("hello", "discord-balanced", tenant_id="g1", metadata={"channel": "42"})
    metadata = client.calls[0][2]
    assert metadata["channel"] == "42"
    assert metadata["tenantId"] == "g1"
    assert metadata["requestId"].startswith("req_")


@pytest.mark.asyncio
async def test_items_of_one_call_share_a_request_id():
    client = FakeClient()
    items = [ContentItem.text("a", 0), ContentItem.text("b", 1)]
    service = build_service(client)

    await service.check_many(items, "discord-balanced")
    await service.check("c", "discord-balanced")

    first, second, third = (call[2]["requestId"] for call in client.calls)
    assert first == second
    assert third != first


@pytest.mark.asyncio
async def test_check_many_aggregates_in_order():
    client = FakeClient({"fine": {}, "fight": {"violence": 0.75}, "buy now": {"spam": 0.9}})
    items = [ContentItem.text("fine", 0), ContentItem.text("fight", 1), ContentItem.text(" ", 2), ContentItem.text("buy now", 3)]

    outcome = await build_service(client).check_many(items, "discord-balanced")

    decision = outcome.decision
    assert isinstance(decision, AggregateDecision)
    assert decision.action is Action.FLAG
    assert [d.action for d in decision.per_item] == [Action.ALLOW, Action.FLAG, Action.ALLOW, Action.WARN]
    assert decision.total_latency_ms == 300
    assert len(client.calls) == 3


@pytest.mark.asyncio
async def test_check_many_keeps_blank_item_slots():
    client = FakeClient({"bad": {"hate_speech": 0.95}})
    items = [ContentItem.text("ok", 0), ContentItem.text("", 1), ContentItem.text("bad", 2)]

    outcome = await build_service(client).check_many(items, "discord-balanced")

    per_item = outcome.decision.per_item
    assert len(per_item) == len(items)
    assert [d.action for d in per_item] == [Action.ALLOW, Action.ALLOW, Action.BLOCK]
    assert per_item[1].is_error is False
    assert outcome.action is Action.BLOCK
    assert [call[0].payload for call in client.calls] == ["ok", "bad"]


@pytest.mark.asyncio
async def test_check_many_all_blank_completes_without_backend():
    client = FakeClient()
    outcome = await build_service(client).check_many([ContentItem.text(" ", 0)], "discord-balanced")

    assert outcome.status is CheckStatus.COMPLETED
    assert outcome.action is Action.ALLOW
    assert client.calls == []


@pytest.mark.asyncio
async def test_check_many_counts_one_rate_limit_slot(clock):
    limiter = RateLimiter(max_requests=2, clock=clock)
    items = [ContentItem.text(str(i), i) for i in range(5)]

    await build_service(FakeClient(), rate_limiter=limiter).check_many(items, "discord-balanced", tenant_id="g1")

    assert limiter.remaining("g1") == 1


@pytest.mark.asyncio
async def test_partial_failure_reports_error_with_partial_results():
    client = FakeClient({"ok": {"spam": 0.9}, "broken": "error"})
    items = [ContentItem.text("ok", 0), ContentItem.text("broken", 1)]

    outcome = await build_service(client).check_many(items, "discord-balanced")

    assert outcome.status is CheckStatus.ERROR
    assert outcome.error.startswith("1 of 2 items failed moderation")
    assert outcome.decision.per_item[0].action is Action.WARN
    assert outcome.decision.action is Action.FLAG
    assert outcome.decision.failed_items == (1,)


@pytest.mark.asyncio
async def test_partial_failure_fail_open_completes():
    client = FakeClient({"ok": {"spam": 0.9}, "broken": "error"})
    items = [ContentItem.text("ok", 0), ContentItem.text("broken", 1)]

    outcome = await build_service(client, fail_open=True).check_many(items, "discord-balanced")

    assert outcome.status is CheckStatus.COMPLETED
    assert outcome.action is Action.WARN


@pytest.mark.asyncio
async def test_transport_error_on_single_check_is_error_outcome():
    outcome = await build_service(FakeClient({"boom": "error"})).check("boom", "discord-balanced")

    assert outcome.status is CheckStatus.ERROR
    assert outcome.safe is None
    assert "500" in outcome.error


@pytest.mark.asyncio
async def test_timeout_without_fallback_is_an_error_not_a_zero_score():
    client = FakeClient({"slow": "slow"}, timeout_seconds=0.02)

    outcome = await build_service(client).check("slow", "discord-balanced")

    assert outcome.status is CheckStatus.ERROR
    assert outcome.error == "Moderation backend timed out"


@pytest.mark.asyncio
async def test_timeout_fail_closed_flags(fail_closed_fallback):
    policy = make_policy([("spam", 0.8, Action.WARN)], fallback=fail_closed_fallback, policy_id="discord-balanced")
    client = FakeClient({"slow": "slow"})

    outcome = await build_service(client, policy).check("slow", "discord-balanced")

    assert outcome.status is CheckStatus.COMPLETED
    assert outcome.action is Action.FLAG
    assert outcome.decision.fallback_used is True
    assert [call[3] for call in client.calls] == [None]


@pytest.mark.asyncio
async def test_timeout_fail_open_rescores_with_fallback_provider(fail_open_fallback):
    policy = make_policy([("hate_speech", 0.5, Action.BLOCK)], fallback=fail_open_fallback, policy_id="discord-balanced")
    client = FakeClient({"slow": "slow"}, fallback_table={"slow": {"hate_speech": 0.6}})

    outcome = await build_service(client, policy).check("slow", "discord-balanced")

    assert outcome.action is Action.BLOCK
    assert outcome.decision.provider == "fallback"
    assert outcome.decision.fallback_used is True
    assert [call[3] for call in client.calls] == [None, "fallback"]


@pytest.mark.asyncio
async def test_timeout_fail_open_with_failing_fallback_errors(fail_open_fallback):
    policy = make_policy([("hate_speech", 0.5, Action.BLOCK)], fallback=fail_open_fallback, policy_id="discord-balanced")
    client = FakeClient({"slow": "slow"}, fallback_table={"slow": "error"})

    outcome = await build_service(client, policy).check("slow", "discord-balanced")

    assert outcome.status is CheckStatus.ERROR


@pytest.mark.asyncio
async def test_check_tenant_uses_tenant_policy(clock):
    strict = make_policy([("hate_speech", 0.3, Action.BLOCK)], policy_id="discord-strict")
    client = FakeClient({"meh": {"hate_speech": 0.35}})
    cache = TenantConfigCache(AsyncMock(return_value=TenantConfig("g1", policy_preset="strict")), clock=clock)
    service = build_service(client, strict, config_cache=cache)

    outcome = await service.check_tenant("g1", [ContentItem.text("meh")])

    assert outcome.action is Action.BLOCK
    assert client.calls[0][1] == "discord-strict"


@pytest.mark.asyncio
async def test_check_tenant_disabled_or_unknown(clock):
    configs = {"off": TenantConfig("off", enabled=False)}
    cache = TenantConfigCache(AsyncMock(side_effect=lambda tenant_id: configs.get(tenant_id)), clock=clock)
    service = build_service(FakeClient(), config_cache=cache)

    assert (await service.check_tenant("off", [ContentItem.text("x")])).status is CheckStatus.DISABLED
    assert (await service.check_tenant("ghost", [ContentItem.text("x")])).status is CheckStatus.DISABLED


@pytest.mark.asyncio
async def test_check_tenant_store_failure_is_error(clock):
    cache = TenantConfigCache(AsyncMock(side_effect=RuntimeError("db locked")), clock=clock)
    outcome = await build_service(FakeClient(), config_cache=cache).check_tenant("g1", [ContentItem.text("x")])

    assert outcome.status is CheckStatus.ERROR
    assert "db locked" in outcome.error


class FakeVideo:
    def __init__(self, duration):
        self.duration = duration
        self.closed = False

    def capture(self, seconds):
        return b"jpeg"

    def close(self):
        self.closed = True


@pytest.fixture
def video_file(tmp_path):
    path = tmp_path / "clip.mp4"
    path.write_bytes(b"\x00" * 128)
    return path


@pytest.mark.asyncio
async def test_check_video_scores_every_frame(video_file):
    client = FakeClient({2: {"violence": 0.8}})
    video = FakeVideo(30)
    service = build_service(client, sampler=VideoFrameSampler(frame_count=3), source_factory=lambda path: video)
    progress = []

    outcome = await service.check_video(video_file, "discord-balanced", on_progress=progress.append)

    assert outcome.action is Action.FLAG
    assert outcome.thumbnail == b"jpeg"
    assert len(outcome.decision.per_item) == 3
    assert outcome.decision.per_item[2].primary_category == "violence"
    assert all(call[2]["duration"] == 30 for call in client.calls)
    assert progress[-1] == 1.0
    assert video.closed is True


@pytest.mark.asyncio
async def test_check_video_rejects_long_video_without_backend_calls(video_file, clock):
    client = FakeClient()
    limiter = RateLimiter(max_requests=1, clock=clock)
    service = build_service(client, rate_limiter=limiter, source_factory=lambda path: FakeVideo(301))

    with pytest.raises(VideoValidationError):
        await service.check_video(video_file, "discord-balanced", tenant_id="g1")

    assert client.calls == []
    assert limiter.remaining("g1") == 1


@pytest.mark.asyncio
async def test_check_video_rate_limited_before_decoding(video_file, clock):
    class CountingVideo(FakeVideo):
        captures = 0

        def capture(self, seconds):
            CountingVideo.captures += 1
            return super().capture(seconds)

    limiter = RateLimiter(max_requests=1, clock=clock)
    limiter.admit("g1")
    video = CountingVideo(30)
    client = FakeClient()
    service = build_service(client, rate_limiter=limiter, source_factory=lambda path: video)

    outcome = await service.check_video(video_file, "discord-balanced", tenant_id="g1")

    assert outcome.status is CheckStatus.RATE_LIMITED
    assert CountingVideo.captures == 0
    assert video.closed is True
    assert client.calls == []


@pytest.mark.asyncio
async def test_check_video_rejects_bad_format(tmp_path):
    path = tmp_path / "clip.avi"
    path.write_bytes(b"\x00")
    opened = []
    service = build_service(FakeClient(), source_factory=opened.append)

    with pytest.raises(VideoValidationError):
        await service.check_video(Path(path), "discord-balanced")

    assert opened == []
