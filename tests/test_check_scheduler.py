import asyncio
from unittest.mock import AsyncMock

import pytest

from modgate.datatypes.content_datatypes import ContentItem
from modgate.datatypes.decision_datatypes import CheckOutcome, CheckStatus, Decision
from modgate.datatypes.policy_datatypes import Action
from modgate.moderation.check_scheduler import CheckScheduler, is_blank


def verdict(action):
    return CheckOutcome.completed(Decision(safe=action is Action.ALLOW, action=action))


class RecordingChecker:
    """Checker that answers after ``delay`` seconds with a per-content verdict."""

    def __init__(self, verdicts, delay=0.0):
        self.verdicts = verdicts
        self.delay = delay
        self.calls = []

    async def __call__(self, content, policy_id, **kwargs):
        self.calls.append((content, policy_id, kwargs))
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.verdicts[content]


@pytest.mark.parametrize(
    "content, expected",
    [
        ("", True),
        ("   \n", True),
        (None, True),
        (b"", True),
        ([], True),
        ([ContentItem.text("  ")], True),
        ("hello", False),
        (b"\x00", False),
        ([ContentItem.text(""), ContentItem.text("hi")], False),
    ],
)
def test_is_blank(content, expected):
    assert is_blank(content) is expected


@pytest.mark.asyncio
async def test_blank_content_makes_no_checker_calls():
    checker = AsyncMock()
    on_result = []
    scheduler = CheckScheduler(checker, debounce_ms=0, on_result=on_result.append)

    outcome = await scheduler.schedule("   ")

    checker.assert_not_awaited()
    assert outcome.status is CheckStatus.COMPLETED
    assert outcome.action is Action.ALLOW
    assert outcome.safe is True
    assert on_result == [outcome]


@pytest.mark.asyncio
async def test_disabled_scheduler_does_nothing():
    checker = AsyncMock()
    scheduler = CheckScheduler(checker, debounce_ms=0, enabled=False)

    outcome = await scheduler.schedule("hello")

    checker.assert_not_awaited()
    assert outcome.status is CheckStatus.DISABLED
    assert scheduler.state.last_status is CheckStatus.DISABLED


@pytest.mark.asyncio
async def test_checker_receives_policy_and_kwargs():
    checker = RecordingChecker({"hello": verdict(Action.ALLOW)})
    scheduler = CheckScheduler(checker, debounce_ms=0)

    await scheduler.schedule("hello", "discord-strict", tenant_id="guild-1")

    assert checker.calls == [("hello", "discord-strict", {"tenant_id": "guild-1"})]


@pytest.mark.asyncio
async def test_debounce_collapses_rapid_calls():
    checker = RecordingChecker({"h": verdict(Action.ALLOW), "he": verdict(Action.ALLOW), "hello": verdict(Action.WARN)})
    delivered = []
    scheduler = CheckScheduler(checker, debounce_ms=30, on_result=delivered.append)

    first = asyncio.create_task(scheduler.schedule("h"))
    await asyncio.sleep(0.005)
    second = asyncio.create_task(scheduler.schedule("he"))
    await asyncio.sleep(0.005)
    final = await scheduler.schedule("hello")

    assert (await first).status is CheckStatus.SUPERSEDED
    assert (await second).status is CheckStatus.SUPERSEDED
    assert final.action is Action.WARN
    assert [call[0] for call in checker.calls] == ["hello"]
    assert delivered == [final]


@pytest.mark.asyncio
async def test_second_call_supersedes_in_flight_check():
    """A then B while A is in flight: only B is delivered."""
    results = {"A": verdict(Action.BLOCK), "B": verdict(Action.ALLOW)}
    delays = {"A": 0.05, "B": 0.0}
    delivered = []

    async def checker(content, policy_id, **kwargs):
        await asyncio.sleep(delays[content])
        return results[content]

    scheduler = CheckScheduler(checker, debounce_ms=0, on_result=delivered.append)

    first = asyncio.create_task(scheduler.schedule("A"))
    await asyncio.sleep(0.01)
    second = await scheduler.schedule("B")
    await asyncio.sleep(0.06)

    assert (await first).status is CheckStatus.SUPERSEDED
    assert second.action is Action.ALLOW
    assert delivered == [second]
    assert scheduler.state.decision.action is Action.ALLOW


@pytest.mark.asyncio
async def test_uncancellable_checker_result_is_discarded():
    release = asyncio.Event()
    delivered = []

    async def checker(content, policy_id, **kwargs):
        if content == "slow":
            try:
                await release.wait()
            except asyncio.CancelledError:
                pass
            return verdict(Action.BLOCK)
        return verdict(Action.ALLOW)

    scheduler = CheckScheduler(checker, debounce_ms=0, on_result=delivered.append)

    slow = asyncio.create_task(scheduler.schedule("slow"))
    await asyncio.sleep(0.01)
    fast = await scheduler.schedule("fast")

    assert (await slow).status is CheckStatus.SUPERSEDED
    assert delivered == [fast]
    assert scheduler.state.decision.action is Action.ALLOW


@pytest.mark.asyncio
async def test_checker_exception_becomes_error_and_keeps_decision():
    calls = {"n": 0}

    async def checker(content, policy_id, **kwargs):
        calls["n"] += 1
        if calls["n"] == 2:
            raise RuntimeError("backend unreachable")
        return verdict(Action.WARN)

    errors = []
    scheduler = CheckScheduler(checker, debounce_ms=0, on_error=errors.append)

    await scheduler.schedule("first")
    outcome = await scheduler.schedule("second")

    assert outcome.status is CheckStatus.ERROR
    assert outcome.error == "backend unreachable"
    assert errors == [outcome]
    assert scheduler.state.error == "backend unreachable"
    assert scheduler.state.decision.action is Action.WARN
    assert scheduler.state.is_checking is False


@pytest.mark.asyncio
async def test_rate_limited_outcome_is_delivered_as_result():
    scheduler_results = []
    scheduler = CheckScheduler(AsyncMock(return_value=CheckOutcome.rate_limited()), debounce_ms=0, on_result=scheduler_results.append)

    outcome = await scheduler.schedule("hello")

    assert outcome.status is CheckStatus.RATE_LIMITED
    assert outcome.safe is None
    assert scheduler_results == [outcome]
    assert scheduler.state.decision is None


@pytest.mark.asyncio
async def test_callback_errors_do_not_break_delivery():
    def explode(outcome):
        raise ValueError("render failed")

    scheduler = CheckScheduler(AsyncMock(return_value=verdict(Action.ALLOW)), debounce_ms=0, on_result=explode)
    outcome = await scheduler.schedule("hello")
    assert outcome.status is CheckStatus.COMPLETED


@pytest.mark.asyncio
async def test_shutdown_supersedes_pending_check():
    checker = RecordingChecker({"hello": verdict(Action.ALLOW)})
    scheduler = CheckScheduler(checker, debounce_ms=1000)

    pending = asyncio.create_task(scheduler.schedule("hello"))
    await asyncio.sleep(0.01)
    await scheduler.shutdown()

    assert (await pending).status is CheckStatus.SUPERSEDED
    assert checker.calls == []
    assert scheduler.state.is_checking is False


def test_negative_debounce_rejected():
    with pytest.raises(ValueError):
        CheckScheduler(AsyncMock(), debounce_ms=-1)
