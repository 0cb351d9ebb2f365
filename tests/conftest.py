"""
Pytest configuration and fixtures for modgate tests.
"""

import sys
from pathlib import Path

import pytest

# Add src directory to path so imports work
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from modgate.datatypes.policy_datatypes import Action, FallbackConfig, FallbackMode, Policy, PolicyRule  # noqa: E402


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


def make_policy(rules, fallback=None, policy_id="test-policy"):
    return Policy(
        policy_id=policy_id,
        name=policy_id,
        version="1",
        rules=tuple(PolicyRule(*rule) if isinstance(rule, tuple) else rule for rule in rules),
        fallback=fallback,
    )


@pytest.fixture
def balanced_policy():
    return make_policy(
        [
            ("hate_speech", 0.5, Action.BLOCK, 100),
            ("harassment", 0.6, Action.BLOCK, 90),
            ("violence", 0.7, Action.FLAG, 80),
            ("spam", 0.8, Action.WARN, 10),
        ],
        policy_id="discord-balanced",
    )


@pytest.fixture
def fail_closed_fallback():
    return FallbackConfig(provider="fallback", on_timeout=True, timeout_ms=50, mode=FallbackMode.FAIL_CLOSED)


@pytest.fixture
def fail_open_fallback():
    return FallbackConfig(provider="fallback", on_timeout=True, timeout_ms=50, mode=FallbackMode.FAIL_OPEN)
