"""
CheckScheduler: debounce and supersede controller for one content stream.

A content stream is one logical input (a text field, an upload widget, a
message being edited). Every `schedule` call supersedes the previous one: a
pending debounce is dropped, an in-flight check is cancelled (best effort) and
its late result is discarded without touching scheduler state or callbacks.

Usage:
    scheduler = CheckScheduler(service.check, debounce_ms=500, on_result=render)
    outcome = await scheduler.schedule("hello wor", policy_id="discord-balanced")
    if outcome.status is CheckStatus.SUPERSEDED:
        ...  # a newer call owns the stream; nothing to render
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from modgate.datatypes.decision_datatypes import (
    AnyDecision,
    CheckOutcome,
    CheckStatus,
    Decision,
)
from modgate.util.logger import get_logger

logger = get_logger("check_scheduler")

# Performs one check; usually a bound ModerationService method
Checker = Callable[..., Awaitable[CheckOutcome]]
ResultCallback = Callable[[CheckOutcome], Any]
ErrorCallback = Callable[[CheckOutcome], Any]


def is_blank(content: Any) -> bool:
    """Return True for empty/whitespace text, empty bytes or an empty item list."""
    if content is None:
        return True
    if isinstance(content, str):
        return not content.strip()
    if isinstance(content, (bytes, bytearray)):
        return len(content) == 0
    if isinstance(content, (list, tuple)):
        return len(content) == 0 or all(is_blank(getattr(item, "payload", item)) for item in content)
    is_blank_method = getattr(content, "is_blank", None)
    if callable(is_blank_method):
        return bool(is_blank_method())
    return False


@dataclass(slots=True)
class SchedulerState:
    """What a caller should currently render for the stream.

    ``decision`` keeps the last delivered verdict; an error leaves it in place
    and only sets ``error``.
    """

    is_checking: bool = False
    decision: AnyDecision | None = None
    error: str | None = None
    last_status: CheckStatus | None = None


class CheckScheduler:
    """
    Ensures only the latest call of a stream delivers a result.

    Args:
        checker: Coroutine function performing the check. It is called as
            ``checker(content, policy_id, **kwargs)``.
        debounce_ms: Quiet period before a call fires; 0 fires immediately.
        enabled: When False every call completes as DISABLED without work.
        on_result: Called once per delivered non-error outcome.
        on_error: Called once per delivered ERROR outcome.
    """

    def __init__(
        self,
        checker: Checker,
        debounce_ms: int = 500,
        enabled: bool = True,
        on_result: ResultCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> None:
        if debounce_ms < 0:
            raise ValueError("debounce_ms must be >= 0")
        self._checker = checker
        self._debounce_seconds = debounce_ms / 1000.0
        self.enabled = enabled
        self._on_result = on_result
        self._on_error = on_error
        self._generation = 0
        self._task: asyncio.Task[CheckOutcome] | None = None
        self.state = SchedulerState()

    @property
    def debounce_ms(self) -> int:
        return int(self._debounce_seconds * 1000)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def schedule(self, content: Any, policy_id: str | None = None, **kwargs: Any) -> CheckOutcome:
        """
        Check ``content`` once the stream has been quiet for the debounce delay.

        Returns:
            The delivered outcome, or a SUPERSEDED outcome if a newer call
            arrived before this one finished.
        """
        self._generation += 1
        generation = self._generation
        self._supersede_pending()

        if not self.enabled:
            outcome = CheckOutcome.disabled()
            self._deliver(generation, outcome)
            return outcome

        if is_blank(content):
            outcome = CheckOutcome.completed(Decision.allowed())
            self._deliver(generation, outcome)
            return outcome

        self.state.is_checking = True
        self.state.error = None
        task = asyncio.create_task(self._run(generation, content, policy_id, kwargs))
        self._task = task

        try:
            return await task
        except asyncio.CancelledError:
            if task.cancelled() and generation != self._generation:
                return CheckOutcome.superseded()
            raise

    async def shutdown(self) -> None:
        """Supersede any pending work, e.g. when the stream's widget goes away."""
        self._generation += 1
        task = self._task
        self._supersede_pending()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.state.is_checking = False

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _supersede_pending(self) -> None:
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            logger.debug("[SCHEDULER] Superseded pending check")
        self._task = None

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    async def _run(self, generation: int, content: Any, policy_id: str | None, kwargs: dict) -> CheckOutcome:
        if self._debounce_seconds > 0:
            await asyncio.sleep(self._debounce_seconds)

        try:
            outcome = await self._checker(content, policy_id, **kwargs)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("[SCHEDULER] Check failed: %s", exc)
            outcome = CheckOutcome.failed(str(exc) or type(exc).__name__)

        if not self._is_current(generation):
            logger.debug("[SCHEDULER] Discarding result of superseded check")
            return CheckOutcome.superseded()

        self._deliver(generation, outcome)
        return outcome

    def _deliver(self, generation: int, outcome: CheckOutcome) -> None:
        if not self._is_current(generation):
            return

        self.state.is_checking = False
        self.state.last_status = outcome.status
        if outcome.status is CheckStatus.ERROR:
            self.state.error = outcome.error
            self._notify(self._on_error, outcome)
            return

        if outcome.status is CheckStatus.COMPLETED:
            self.state.decision = outcome.decision
        self.state.error = None
        self._notify(self._on_result, outcome)

    @staticmethod
    def _notify(callback: ResultCallback | None, outcome: CheckOutcome) -> None:
        if callback is None:
            return
        try:
            callback(outcome)
        except Exception:
            logger.exception("[SCHEDULER] Callback raised")
