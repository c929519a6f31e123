"""Bounded polling for eventually-consistent provider state."""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator
from typing import TypeVar

from pydantic import BaseModel, ConfigDict, Field, model_validator

from nimbus.lib.errors import PollTimeoutError
from nimbus.lib.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class PollPolicy(BaseModel):
    """Attempt ceiling and delay schedule for one poll loop.

    Attributes:
        interval: Delay before the first attempt, in seconds
        max_attempts: Hard ceiling on attempts
        backoff: Multiplier applied to the delay after each attempt (1 = fixed)
        max_interval: Upper bound for the delay when backing off
        warmup_attempts: Leading attempts that only wait without checking
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    interval: float = Field(default=1.0, ge=0, description="Initial delay (s)")
    max_attempts: int = Field(default=30, ge=1, description="Attempt ceiling")
    backoff: float = Field(default=1.0, ge=1.0, description="Delay multiplier")
    max_interval: float | None = Field(
        default=None, ge=0, description="Cap on the delay when backing off"
    )
    warmup_attempts: int = Field(
        default=0, ge=0, description="Attempts that wait without checking"
    )

    @model_validator(mode="after")
    def validate_warmup(self) -> PollPolicy:
        """Warmup must leave at least one checked attempt."""
        if self.warmup_attempts >= self.max_attempts:
            raise ValueError(
                f"warmup_attempts ({self.warmup_attempts}) must be < "
                f"max_attempts ({self.max_attempts})"
            )
        return self

    def delays(self) -> Iterator[float]:
        """Yield the delay to apply before each attempt."""
        delay = self.interval
        for _ in range(self.max_attempts):
            yield delay
            delay = delay * self.backoff
            if self.max_interval is not None:
                delay = min(delay, self.max_interval)


def poll_until(
    check: Callable[[], T | None],
    policy: PollPolicy,
    operation: str,
    *,
    sleep: Callable[[float], None] = time.sleep,
    wait_first: bool = True,
) -> T:
    """Call ``check`` until it returns a non-None value.

    ``check`` signals "not ready yet" by returning None and aborts the loop by
    raising. The loop never runs more than ``policy.max_attempts`` times.

    Args:
        check: Callable returning a result when the condition holds
        policy: Attempt ceiling and delays
        operation: Human description used in logs and the timeout error
        sleep: Sleep function, replaceable in tests
        wait_first: Sleep before the first attempt instead of after it

    Returns:
        The first non-None value returned by ``check``

    Raises:
        PollTimeoutError: If the ceiling is reached
    """
    for attempt, delay in enumerate(policy.delays(), start=1):
        if wait_first and delay:
            sleep(delay)
        if attempt > policy.warmup_attempts:
            result = check()
            if result is not None:
                logger.debug(f"{operation} ready after {attempt} attempt(s)")
                return result
        if not wait_first and delay:
            sleep(delay)
    raise PollTimeoutError(operation, policy.max_attempts)
