"""
Multi-item aggregation.

Combines per-item decisions (text blocks, images, sampled video frames) into a
single `AggregateDecision` while keeping every item's decision, in submission
order, so callers can tell which item caused the overall result.
"""

from __future__ import annotations

from typing import Sequence

from modgate.datatypes.content_datatypes import ContentItem
from modgate.datatypes.decision_datatypes import AggregateDecision, Decision
from modgate.datatypes.policy_datatypes import Action, most_severe


def aggregate(
    items: Sequence[ContentItem],
    decisions: Sequence[Decision],
    fail_open: bool = False,
) -> AggregateDecision:
    """Combine per-item decisions.

    Args:
        items: Items in submission order.
        decisions: One decision per item, same order.
        fail_open: When True, failed items are left out of the verdict instead
            of failing the whole aggregate.

    Raises:
        ValueError: If ``items`` and ``decisions`` differ in length.
    """
    if len(items) != len(decisions):
        raise ValueError(f"aggregate() got {len(items)} items but {len(decisions)} decisions")

    failed = tuple(idx for idx, decision in enumerate(decisions) if decision.is_error)
    evaluated = [decision for decision in decisions if not decision.is_error]

    total_latency = sum(decision.latency_ms for decision in decisions)
    total_cost = sum(decision.cost for decision in decisions)

    action = most_severe(decision.action for decision in evaluated)
    safe = all(decision.safe for decision in evaluated)

    error: str | None = None
    if failed and not fail_open:
        first = decisions[failed[0]]
        error = f"{len(failed)} of {len(decisions)} items failed moderation: {first.error}"
        safe = False
        action = most_severe((action, Action.FLAG))

    return AggregateDecision(
        safe=safe,
        action=action,
        per_item=tuple(decisions),
        error=error,
        failed_items=failed,
        total_latency_ms=total_latency,
        total_cost=total_cost,
    )
