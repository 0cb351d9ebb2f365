import pytest

from modgate.datatypes.content_datatypes import ContentItem
from modgate.datatypes.decision_datatypes import Decision, TriggeredCategory
from modgate.datatypes.policy_datatypes import Action
from modgate.moderation.aggregator import aggregate


def decision(action, category=None, latency=100.0, cost=0.001):
    triggered = ()
    if category:
        triggered = (TriggeredCategory(category=category, score=0.9, threshold=0.5, action=action),)
    return Decision(
        safe=action not in (Action.BLOCK, Action.FLAG),
        action=action,
        triggered_categories=triggered,
        primary_category=category,
        latency_ms=latency,
        cost=cost,
    )


def items(count):
    return [ContentItem.text(f"item {i}", ordinal=i) for i in range(count)]


def test_most_severe_item_decides():
    result = aggregate(items(3), [decision(Action.ALLOW), decision(Action.FLAG, "violence"), decision(Action.WARN, "spam")])

    assert result.action is Action.FLAG
    assert result.safe is False
    assert result.error is None
    assert result.triggered_categories() == ["violence", "spam"]


def test_all_allowed_is_safe():
    result = aggregate(items(2), [decision(Action.ALLOW), decision(Action.ALLOW)])
    assert result.action is Action.ALLOW
    assert result.safe is True
    assert result.flagged is False


def test_per_item_decisions_keep_submission_order():
    decisions = [decision(Action.BLOCK, "hate_speech"), decision(Action.ALLOW), decision(Action.WARN, "spam")]
    result = aggregate(items(3), decisions)

    assert list(result.per_item) == decisions
    assert result.per_item[0].primary_category == "hate_speech"


def test_totals_are_summed():
    result = aggregate(items(3), [decision(Action.ALLOW, latency=100, cost=0.001)] * 3)
    assert result.total_latency_ms == 300
    assert result.total_cost == pytest.approx(0.003)


def test_failed_item_fails_closed_by_default():
    decisions = [decision(Action.ALLOW), Decision.failed("Moderation API error: 502", latency_ms=40)]
    result = aggregate(items(2), decisions)

    assert result.failed_items == (1,)
    assert result.safe is False
    assert result.is_error is True
    assert result.error == "1 of 2 items failed moderation: Moderation API error: 502"
    assert result.action is Action.FLAG
    assert result.total_latency_ms == 140


def test_failed_item_is_ignored_when_failing_open():
    decisions = [decision(Action.WARN, "spam"), Decision.failed("timeout")]
    result = aggregate(items(2), decisions, fail_open=True)

    assert result.error is None
    assert result.safe is True
    assert result.action is Action.WARN
    assert result.failed_items == (1,)


def test_blocked_item_still_dominates_with_failures():
    decisions = [Decision.failed("timeout"), decision(Action.BLOCK, "sexual")]
    result = aggregate(items(2), decisions)
    assert result.action is Action.BLOCK
    assert result.safe is False


def test_length_mismatch_raises():
    with pytest.raises(ValueError):
        aggregate(items(2), [decision(Action.ALLOW)])
