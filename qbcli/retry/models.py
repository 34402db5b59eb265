"""Data models for the retry engine."""

from dataclasses import dataclass, field
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field

from qbcli.retry.cancellation import CancellationToken


class RetryConfig(BaseModel):
    """Configuration for one engine run.

    ``max_attempts`` of 0 means attempts are unbounded; the run then ends
    only on success, a fatal error, cancellation, or the timeout budget.
    ``timeout_seconds`` bounds the whole loop, not a single attempt.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_attempts: Annotated[int, Field(ge=0, le=1000)] = 1
    retry_delay_seconds: Annotated[float, Field(ge=0.0, le=3600.0)] = 0.0
    timeout_seconds: Annotated[float, Field(ge=0.0, le=86400.0)] = 0.0

    @property
    def unbounded(self) -> bool:
        """Check whether attempts are unbounded."""
        return self.max_attempts == 0


@dataclass
class RetryState:
    """Mutable state of one engine run, handed to every phase.

    ``attempt`` only moves forward within a run. ``errors`` keeps every
    phase error in chronological order.
    """

    operation_id: str
    max_attempts: int
    retry_delay_seconds: float
    cancel: CancellationToken
    attempt: int = 1
    errors: list[BaseException] = field(default_factory=list)

    @property
    def is_last_attempt(self) -> bool:
        """Check whether the current attempt is the final allowed one."""
        return self.max_attempts != 0 and self.attempt >= self.max_attempts

    def remaining(self) -> float | None:
        """Get seconds left in the run's budget, or None if unbounded."""
        return self.cancel.remaining()
