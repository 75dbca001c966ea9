"""
Retry and fallback building blocks.

- AsyncRetryStrategy: bounded attempts with a backoff between them
- FallbackChain: ordered named steps, first one producing a value wins
- run_shielded: finish work even when the awaiting caller is cancelled

All of them are independent of the node so policies can be tested in isolation.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from functools import partial
from typing import Any, Awaitable, Callable, Generic, Sequence, TypeVar

from kaspa_explorer.exceptions import ExplorerError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleeper = Callable[[float], Awaitable[Any]]

# Tasks whose caller went away; held so they are not garbage collected mid-run
_detached_tasks: set[asyncio.Task] = set()


class AsyncRetryStrategy:
    """
    Retry an async operation a bounded number of times.

    Failures matching ``retry_on`` are retried identically, transient or
    not. The last failure is re-raised once attempts are exhausted.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 0.25,
        exponential_base: float = 1.0,
        max_delay: float = 5.0,
        retry_on: tuple[type[BaseException], ...] = (ExplorerError,),
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        """
        Initialize retry strategy.

        Args:
            max_attempts: Total attempts including the first one
            base_delay: Delay before the second attempt in seconds
            exponential_base: Growth factor per attempt (1.0 keeps a fixed backoff)
            max_delay: Upper bound for any single delay
            retry_on: Exception types that trigger another attempt
            sleep: Awaitable sleep used between attempts
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.exponential_base = exponential_base
        self.max_delay = max_delay
        self.retry_on = retry_on
        self._sleep = sleep

    def delay_for(self, attempt: int) -> float:
        """Delay after the given zero-based failed attempt."""
        return min(self.base_delay * (self.exponential_base**attempt), self.max_delay)

    async def execute(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        last_error: BaseException | None = None

        for attempt in range(self.max_attempts):
            try:
                result = await func(*args, **kwargs)
                if attempt > 0:
                    logger.info(
                        "Operation succeeded on attempt %d",
                        attempt + 1,
                        extra={"event": "retry.recovered", "attempt": attempt + 1},
                    )
                return result
            except self.retry_on as e:
                last_error = e
                logger.warning(
                    "Attempt %d/%d failed: %s",
                    attempt + 1,
                    self.max_attempts,
                    e,
                    extra={"event": "retry.attempt_failed", "error_type": type(e).__name__},
                )
                if attempt + 1 < self.max_attempts:
                    await self._sleep(self.delay_for(attempt))

        if last_error is None:
            raise ExplorerError("retry strategy finished without an attempt")
        raise last_error


@dataclass(frozen=True)
class FallbackStep(Generic[T]):
    """
    One strategy in a fallback chain.

    ``run`` returns a value to finish the chain, or None when the step does
    not apply (for example an expired cache). Raising an ExplorerError moves
    on to the next step as well.
    """

    name: str
    run: Callable[[], Awaitable[T | None]]


class FallbackChain(Generic[T]):
    """Try named steps in order; the first step yielding a value wins."""

    def __init__(self, steps: Sequence[FallbackStep[T]], component: str = "fallback") -> None:
        if not steps:
            raise ValueError("a fallback chain needs at least one step")
        self.steps = tuple(steps)
        self.component = component

    async def run(self) -> tuple[str, T]:
        """
        Execute the chain.

        Returns:
            Tuple of (winning step name, value)

        Raises:
            ExplorerError: the last step's error when no step produced a value
        """
        last_error: ExplorerError | None = None
        for step in self.steps:
            try:
                value = await step.run()
            except ExplorerError as e:
                last_error = e
                logger.warning(
                    "%s step '%s' failed: %s",
                    self.component,
                    step.name,
                    e,
                    extra={"event": f"{self.component}.step_failed", "step": step.name},
                )
                continue
            if value is None:
                logger.debug(
                    "%s step '%s' not applicable",
                    self.component,
                    step.name,
                    extra={"event": f"{self.component}.step_skipped", "step": step.name},
                )
                continue
            return step.name, value

        if last_error is not None:
            raise last_error
        raise ExplorerError(f"{self.component}: no fallback step produced a value")


def _finish_detached(component: str, task: asyncio.Task) -> None:
    _detached_tasks.discard(task)
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.warning(
            "%s work finished after its caller left and failed: %s",
            component,
            error,
            extra={"event": f"{component}.detached_failure", "error_type": type(error).__name__},
        )


async def run_shielded(work: Awaitable[T], component: str) -> T:
    """
    Await ``work`` without letting a cancelled caller cancel it.

    When the caller is cancelled the work keeps running to completion, so its
    side effects (cache updates) still happen; a late failure is logged
    instead of surfacing as an unretrieved task exception.
    """
    task = asyncio.ensure_future(work)
    try:
        return await asyncio.shield(task)
    except asyncio.CancelledError:
        _detached_tasks.add(task)
        task.add_done_callback(partial(_finish_detached, component))
        raise
