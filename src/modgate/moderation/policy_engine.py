"""
Policy decision engine.

Pure, deterministic mapping from a provider's category scores and a validated
policy to a single `Decision`. Nothing here performs I/O or raises: malformed
policies are rejected earlier by `modgate.moderation.policy_loader`.

Algorithm:
1. Each rule looks up its category score (0 when the provider omitted it).
2. A rule triggers when ``score >= threshold``.
3. The decision action is the most severe triggered action; among rules of that
   severity the highest priority names the primary category (declaration order
   breaks remaining ties).
4. No triggered rule means ALLOW and safe.
"""

from __future__ import annotations

from typing import List

from modgate.datatypes.decision_datatypes import Decision, ProviderResult, TriggeredCategory
from modgate.datatypes.policy_datatypes import (
    ACTION_SEVERITY,
    UNSAFE_ACTIONS,
    Action,
    FallbackMode,
    Policy,
)


def evaluate(policy: Policy, result: ProviderResult, fallback_used: bool = False) -> Decision:
    """Evaluate one item's scores against ``policy``.

    Args:
        policy: Validated policy.
        result: Scores returned by the provider for the item.
        fallback_used: Marks decisions computed from fallback provider scores.

    Returns:
        Decision for the item.
    """
    triggered: List[TriggeredCategory] = []
    for rule in policy.rules:
        score = result.score_for(rule.category)
        if score >= rule.threshold:
            triggered.append(
                TriggeredCategory(
                    category=rule.category,
                    score=score,
                    threshold=rule.threshold,
                    action=rule.action,
                    priority=rule.priority,
                )
            )

    if not triggered:
        return Decision(
            safe=True,
            action=Action.ALLOW,
            provider=result.provider,
            latency_ms=result.latency_ms,
            cost=result.cost,
            fallback_used=fallback_used,
        )

    primary = triggered[0]
    for candidate in triggered[1:]:
        candidate_rank = (ACTION_SEVERITY[candidate.action], candidate.priority)
        primary_rank = (ACTION_SEVERITY[primary.action], primary.priority)
        if candidate_rank > primary_rank:
            primary = candidate

    return Decision(
        safe=primary.action not in UNSAFE_ACTIONS,
        action=primary.action,
        triggered_categories=tuple(triggered),
        primary_category=primary.category,
        provider=result.provider,
        latency_ms=result.latency_ms,
        cost=result.cost,
        fallback_used=fallback_used,
    )


def evaluate_timeout(policy: Policy, fallback_result: ProviderResult | None = None) -> Decision | None:
    """Decide an item whose primary provider produced no scores in time.

    "No score" is never treated as "score 0": without a usable fallback this
    returns None and the caller reports a transport error instead.

    Args:
        policy: Validated policy.
        fallback_result: Scores from the fallback provider, when one was queried.

    Returns:
        The fallback decision, or None when the policy has no timeout fallback.
    """
    fallback = policy.fallback
    if fallback is None or not fallback.on_timeout:
        return None

    if fallback.mode is FallbackMode.FAIL_CLOSED:
        return Decision(safe=False, action=Action.FLAG, provider=fallback.provider, fallback_used=True)

    if fallback_result is None:
        return None
    return evaluate(policy, fallback_result, fallback_used=True)
