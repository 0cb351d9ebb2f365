"""
Policy types: actions, rules and fallback configuration.

Severity is an explicit table (`ACTION_SEVERITY`) rather than the declaration
order of `Action`, so reordering the enum can never change which action wins.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, Tuple


class Action(Enum):
    """Outcome of a moderation decision."""

    BLOCK = "block"
    FLAG = "flag"
    WARN = "warn"
    ALLOW = "allow"

    def __str__(self) -> str:
        return self.value

    @property
    def severity(self) -> int:
        return ACTION_SEVERITY[self]


ACTION_SEVERITY: Dict[Action, int] = {
    Action.BLOCK: 3,
    Action.FLAG: 2,
    Action.WARN: 1,
    Action.ALLOW: 0,
}

# Actions that make a decision unsafe
UNSAFE_ACTIONS = frozenset({Action.BLOCK, Action.FLAG})


def most_severe(actions: Iterable[Action]) -> Action:
    """Return the most severe action, or ALLOW for an empty iterable."""
    result = Action.ALLOW
    for action in actions:
        if ACTION_SEVERITY[action] > ACTION_SEVERITY[result]:
            result = action
    return result


class FallbackMode(Enum):
    """What to do when the primary provider does not answer in time."""

    FAIL_OPEN = "fail_open"
    FAIL_CLOSED = "fail_closed"

    def __str__(self) -> str:
        return self.value


@dataclass(slots=True, frozen=True)
class PolicyRule:
    """One row of a policy.

    Attributes:
        category: Harm category the rule inspects.
        threshold: Inclusive score threshold in [0, 1].
        action: Action taken when the rule triggers.
        priority: Higher wins when triggered rules tie on severity.
        provider: Optional provider the rule was authored against.
    """

    category: str
    threshold: float
    action: Action
    priority: int = 0
    provider: str | None = None


@dataclass(slots=True, frozen=True)
class FallbackConfig:
    """Policy-level behaviour for a primary provider timeout.

    Attributes:
        provider: Provider re-queried in fail-open mode.
        on_timeout: Whether the fallback applies to timeouts at all.
        timeout_ms: How long to wait for the primary provider.
        mode: Fail-open (re-score with ``provider``) or fail-closed (force flag).
    """

    provider: str
    on_timeout: bool = True
    timeout_ms: int = 5000
    mode: FallbackMode = FallbackMode.FAIL_CLOSED

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0


@dataclass(slots=True, frozen=True)
class Policy:
    """A validated, named set of rules.

    Rules are stored in declaration order with at most one rule per category.
    """

    policy_id: str
    name: str
    version: str
    rules: Tuple[PolicyRule, ...] = field(default_factory=tuple)
    fallback: FallbackConfig | None = None
