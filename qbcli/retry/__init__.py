"""Generic bounded-retry execution engine.

This module provides:
- RetryEngine with setup/prepare/do phases
- Pluggable transient/fatal classification and error wrapping
- Server-suggested delays that extend the base retry delay
- CancellationToken for interruptible waits and an overall deadline
"""

from qbcli.retry.cancellation import CANCELLED, DEADLINE_EXCEEDED, CancellationToken
from qbcli.retry.engine import RetryEngine, never_transient, retry_after_hint
from qbcli.retry.errors import (
    AttemptsExhaustedError,
    FatalAbortError,
    RetryCancelledError,
    RetryError,
)
from qbcli.retry.models import RetryConfig, RetryState


__all__ = [
    # Engine
    "RetryEngine",
    "never_transient",
    "retry_after_hint",
    # Cancellation
    "CancellationToken",
    "CANCELLED",
    "DEADLINE_EXCEEDED",
    # Models
    "RetryConfig",
    "RetryState",
    # Errors
    "RetryError",
    "AttemptsExhaustedError",
    "FatalAbortError",
    "RetryCancelledError",
]
