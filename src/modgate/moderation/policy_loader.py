"""
Policy loading and validation.

Policies are authored as YAML documents::

    name: Discord Balanced
    version: "1.0"
    rules:
      - category: hate_speech
        threshold: 0.7
        action: block
        priority: 10
    fallback:
      provider: mock
      timeout_ms: 3000
      mode: fail_closed

Every malformed policy is rejected here with `PolicyValidationError`, so that
evaluation at decision time can never fail.
"""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping

import yaml

from modgate.datatypes.content_datatypes import KNOWN_CATEGORIES
from modgate.datatypes.policy_datatypes import Action, FallbackConfig, FallbackMode, Policy, PolicyRule
from modgate.moderation.moderation_errors import PolicyValidationError
from modgate.util.logger import get_logger

logger = get_logger("policy_loader")


def calculate_policy_version(source: str) -> str:
    """Derive a stable version string from the policy's YAML source."""
    return hashlib.sha256(source.encode("utf-8")).hexdigest()[:16]


def _parse_action(raw: Any, where: str) -> Action:
    try:
        return Action(str(raw).strip().lower())
    except ValueError:
        raise PolicyValidationError(f"{where}: unknown action {raw!r}") from None


def _parse_threshold(raw: Any, where: str) -> float:
    if isinstance(raw, bool):
        raise PolicyValidationError(f"{where}: threshold must be a number, got {raw!r}")
    try:
        threshold = float(raw)
    except (TypeError, ValueError):
        raise PolicyValidationError(f"{where}: threshold must be a number, got {raw!r}") from None
    if not 0.0 <= threshold <= 1.0:
        raise PolicyValidationError(f"{where}: threshold {threshold} is outside [0, 1]")
    return threshold


def _parse_priority(raw: Any, where: str) -> int:
    if raw is None:
        return 0
    if isinstance(raw, bool):
        raise PolicyValidationError(f"{where}: priority must be an integer, got {raw!r}")
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise PolicyValidationError(f"{where}: priority must be an integer, got {raw!r}") from None


def _parse_rule(raw: Any, index: int, categories: Iterable[str]) -> PolicyRule:
    where = f"rule #{index}"
    if not isinstance(raw, Mapping):
        raise PolicyValidationError(f"{where}: expected a mapping, got {type(raw).__name__}")

    category = str(raw.get("category", "")).strip()
    if category not in categories:
        raise PolicyValidationError(f"{where}: unknown category {category!r}")

    provider = raw.get("provider")
    return PolicyRule(
        category=category,
        threshold=_parse_threshold(raw.get("threshold"), where),
        action=_parse_action(raw.get("action"), where),
        priority=_parse_priority(raw.get("priority"), where),
        provider=str(provider) if provider else None,
    )


def _parse_fallback(raw: Any) -> FallbackConfig | None:
    if raw is None:
        return None
    if not isinstance(raw, Mapping):
        raise PolicyValidationError("fallback: expected a mapping")

    provider = raw.get("provider")
    if not provider:
        raise PolicyValidationError("fallback: provider is required")

    timeout_ms = raw.get("timeout_ms", 5000)
    if isinstance(timeout_ms, bool) or not isinstance(timeout_ms, (int, float)) or timeout_ms <= 0:
        raise PolicyValidationError(f"fallback: timeout_ms must be a positive number, got {timeout_ms!r}")

    try:
        mode = FallbackMode(str(raw.get("mode", FallbackMode.FAIL_CLOSED.value)).strip().lower())
    except ValueError:
        raise PolicyValidationError(f"fallback: unknown mode {raw.get('mode')!r}") from None

    return FallbackConfig(
        provider=str(provider),
        on_timeout=bool(raw.get("on_timeout", True)),
        timeout_ms=int(timeout_ms),
        mode=mode,
    )


def _collapse_duplicates(rules: List[PolicyRule]) -> List[PolicyRule]:
    """Keep one rule per category, the one with the highest priority.

    Equal-priority duplicates are ambiguous and rejected. The surviving rule
    keeps the position of the first rule declared for its category.
    """
    chosen: Dict[str, PolicyRule] = {}
    order: List[str] = []
    for rule in rules:
        existing = chosen.get(rule.category)
        if existing is None:
            chosen[rule.category] = rule
            order.append(rule.category)
        elif existing.priority == rule.priority:
            raise PolicyValidationError(
                f"duplicate rules for category {rule.category!r} share priority {rule.priority}",
                details={"category": rule.category, "priority": rule.priority},
            )
        elif rule.priority > existing.priority:
            chosen[rule.category] = rule
    return [chosen[category] for category in order]


def load_policy(
    source: Mapping[str, Any] | str,
    policy_id: str,
    extra_categories: Iterable[str] = (),
) -> Policy:
    """Validate a policy document and build a `Policy`.

    Args:
        source: Parsed mapping or raw YAML text.
        policy_id: Identifier the policy is registered under.
        extra_categories: Categories accepted in addition to KNOWN_CATEGORIES.

    Raises:
        PolicyValidationError: If the document is malformed.
    """
    raw_text: str | None = None
    if isinstance(source, str):
        raw_text = source
        try:
            data = yaml.safe_load(source)
        except yaml.YAMLError as exc:
            raise PolicyValidationError(f"policy {policy_id!r} is not valid YAML: {exc}") from exc
    else:
        data = source

    if not isinstance(data, Mapping):
        raise PolicyValidationError(f"policy {policy_id!r} must be a mapping")
    # Documents may nest everything under a top-level ``policy`` key
    if isinstance(data.get("policy"), Mapping):
        data = data["policy"]

    raw_rules = data.get("rules")
    if not isinstance(raw_rules, list):
        raise PolicyValidationError(f"policy {policy_id!r} must declare a list of rules")

    categories = KNOWN_CATEGORIES | frozenset(extra_categories)
    rules = _collapse_duplicates([_parse_rule(raw, idx, categories) for idx, raw in enumerate(raw_rules)])

    version = data.get("version")
    if version is None:
        version = calculate_policy_version(raw_text if raw_text is not None else yaml.safe_dump(dict(data), sort_keys=True))

    return Policy(
        policy_id=policy_id,
        name=str(data.get("name") or policy_id),
        version=str(version),
        rules=tuple(rules),
        fallback=_parse_fallback(data.get("fallback")),
    )


class PolicyRegistry:
    """In-memory registry of validated policies keyed by policy ID."""

    def __init__(self, extra_categories: Iterable[str] = ()) -> None:
        self._policies: Dict[str, Policy] = {}
        self._extra_categories = frozenset(extra_categories)

    def register(self, policy: Policy) -> None:
        self._policies[policy.policy_id] = policy
        logger.debug("[POLICY] Registered %s v%s (%d rules)", policy.policy_id, policy.version, len(policy.rules))

    def register_source(self, policy_id: str, source: Mapping[str, Any] | str) -> Policy:
        policy = load_policy(source, policy_id, self._extra_categories)
        self.register(policy)
        return policy

    def load_directory(self, directory: Path) -> int:
        """Load every ``*.yml`` / ``*.yaml`` file in ``directory``.

        The file stem becomes the policy ID. A malformed file aborts the load.

        Returns:
            Number of policies loaded.
        """
        if not directory.is_dir():
            logger.warning("[POLICY] Policy directory %s does not exist", directory)
            return 0

        paths = sorted(list(directory.glob("*.yml")) + list(directory.glob("*.yaml")))
        for path in paths:
            self.register_source(path.stem, path.read_text(encoding="utf-8"))

        logger.info("[POLICY] Loaded %d policies from %s", len(paths), directory)
        return len(paths)

    def get(self, policy_id: str) -> Policy | None:
        return self._policies.get(policy_id)

    def require(self, policy_id: str) -> Policy:
        """Return the policy or raise `PolicyValidationError` if it is unknown."""
        policy = self._policies.get(policy_id)
        if policy is None:
            raise PolicyValidationError(f"unknown policy {policy_id!r}")
        return policy

    def __contains__(self, policy_id: object) -> bool:
        return policy_id in self._policies

    def __len__(self) -> int:
        return len(self._policies)
