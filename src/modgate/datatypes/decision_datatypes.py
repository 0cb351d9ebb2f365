"""
Decision types produced by the moderation pipeline.

Key Features:
- `ProviderResult`: raw per-category scores returned by the remote backend.
- `Decision`: the policy engine's verdict for one content item.
- `AggregateDecision`: the combined verdict over several items.
- `CheckOutcome`: what a caller receives, separating rate limiting,
  supersession and transport errors from safe/unsafe verdicts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Tuple, Union

from modgate.datatypes.policy_datatypes import Action


@dataclass(slots=True, frozen=True)
class ProviderResult:
    """Scores returned by the remote backend for one item.

    Attributes:
        provider: Name of the provider that produced the scores.
        scores: Category -> score in [0, 1]. Missing categories mean 0.
        latency_ms: Backend-reported latency.
        cost: Backend-reported cost in USD.
    """

    provider: str
    scores: Dict[str, float] = field(default_factory=dict)
    latency_ms: float = 0.0
    cost: float = 0.0

    def score_for(self, category: str) -> float:
        return float(self.scores.get(category, 0.0))


@dataclass(slots=True, frozen=True)
class TriggeredCategory:
    """A rule whose score met or exceeded its threshold."""

    category: str
    score: float
    threshold: float
    action: Action
    priority: int = 0


@dataclass(slots=True, frozen=True)
class Decision:
    """Policy verdict for a single content item.

    Attributes:
        safe: False when a BLOCK or FLAG rule triggered.
        action: Most severe triggered action (ALLOW if none).
        triggered_categories: Triggered rules in policy declaration order.
        primary_category: Category that determined ``action``.
        provider: Provider whose scores were evaluated.
        latency_ms: Backend latency for this item.
        cost: Backend cost for this item.
        error: Transport failure for this item; the verdict fields are
            meaningless when set.
        fallback_used: True when the policy fallback produced this decision.
    """

    safe: bool
    action: Action
    triggered_categories: Tuple[TriggeredCategory, ...] = ()
    primary_category: str | None = None
    provider: str | None = None
    latency_ms: float = 0.0
    cost: float = 0.0
    error: str | None = None
    fallback_used: bool = False

    @classmethod
    def allowed(cls) -> "Decision":
        return cls(safe=True, action=Action.ALLOW)

    @classmethod
    def failed(cls, error: str, latency_ms: float = 0.0) -> "Decision":
        return cls(safe=False, action=Action.ALLOW, error=error, latency_ms=latency_ms)

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @property
    def flagged(self) -> bool:
        return bool(self.triggered_categories)


@dataclass(slots=True, frozen=True)
class AggregateDecision:
    """Combined verdict across several items submitted together.

    Attributes:
        safe: AND over every item's ``safe``.
        action: Most severe action over every item.
        per_item: Item decisions, in submission order.
        error: Set when one or more items failed and the aggregate fails closed.
        failed_items: Indexes of items whose remote check failed.
        total_latency_ms: Sum of per-item latency.
        total_cost: Sum of per-item cost.
    """

    safe: bool
    action: Action
    per_item: Tuple[Decision, ...] = ()
    error: str | None = None
    failed_items: Tuple[int, ...] = ()
    total_latency_ms: float = 0.0
    total_cost: float = 0.0

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @property
    def flagged(self) -> bool:
        return any(d.flagged for d in self.per_item if not d.is_error)

    def triggered_categories(self) -> List[str]:
        """Distinct triggered categories across all items, first-seen order."""
        seen: List[str] = []
        for decision in self.per_item:
            for triggered in decision.triggered_categories:
                if triggered.category not in seen:
                    seen.append(triggered.category)
        return seen


AnyDecision = Union[Decision, AggregateDecision]


class CheckStatus(Enum):
    """Outcome category of a check request."""

    COMPLETED = "completed"
    RATE_LIMITED = "rate_limited"
    DISABLED = "disabled"
    ERROR = "error"
    SUPERSEDED = "superseded"

    def __str__(self) -> str:
        return self.value


@dataclass(slots=True, frozen=True)
class CheckOutcome:
    """Result handed back to callers of the moderation service.

    ``decision`` is populated for COMPLETED outcomes. For ERROR outcomes it may
    hold an aggregate carrying the partial results alongside ``error``.
    """

    status: CheckStatus
    decision: AnyDecision | None = None
    error: str | None = None
    thumbnail: bytes | None = None

    @classmethod
    def completed(cls, decision: AnyDecision, thumbnail: bytes | None = None) -> "CheckOutcome":
        if decision.is_error:
            return cls(status=CheckStatus.ERROR, decision=decision, error=decision.error, thumbnail=thumbnail)
        return cls(status=CheckStatus.COMPLETED, decision=decision, thumbnail=thumbnail)

    @classmethod
    def failed(cls, error: str) -> "CheckOutcome":
        return cls(status=CheckStatus.ERROR, error=error)

    @classmethod
    def rate_limited(cls) -> "CheckOutcome":
        return cls(status=CheckStatus.RATE_LIMITED)

    @classmethod
    def disabled(cls) -> "CheckOutcome":
        return cls(status=CheckStatus.DISABLED)

    @classmethod
    def superseded(cls) -> "CheckOutcome":
        return cls(status=CheckStatus.SUPERSEDED)

    @property
    def action(self) -> Action | None:
        if self.status is CheckStatus.COMPLETED and self.decision is not None:
            return self.decision.action
        return None

    @property
    def safe(self) -> bool | None:
        """True/False for completed checks, None when no verdict exists."""
        if self.status is CheckStatus.COMPLETED and self.decision is not None:
            return self.decision.safe
        return None
