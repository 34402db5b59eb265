"""Bounded-attempt execution loop with transient/fatal classification."""

from collections.abc import Callable

import structlog

from qbcli.retry.cancellation import CancellationToken
from qbcli.retry.errors import (
    AttemptsExhaustedError,
    FatalAbortError,
    RetryCancelledError,
)
from qbcli.retry.models import RetryConfig, RetryState


logger = structlog.get_logger()

Phase = Callable[[RetryState], None]
ErrorClassifier = Callable[[BaseException], bool]
ErrorWrapper = Callable[[Exception, str], Exception]
DelayHint = Callable[[BaseException], float | None]


def never_transient(error: BaseException) -> bool:  # noqa: ARG001
    """Classify every error as fatal."""
    return False


def retry_after_hint(error: BaseException) -> float | None:
    """Read a server-suggested delay from an error's ``retry_after``."""
    value = getattr(error, "retry_after", None)
    if isinstance(value, int | float) and value > 0:
        return float(value)
    return None


class RetryEngine:
    """Reusable, domain-agnostic retry loop.

    A run executes ``setup`` once, then for each attempt ``prepare``
    followed by ``do``. Every phase error is wrapped with context and
    classified:
    - fatal: the run aborts at once with FatalAbortError
    - transient: the engine waits, then starts the next attempt

    The wait is the configured delay, extended to any server-suggested
    delay carried by the error. Waits and attempt starts observe the
    cancellation token, and the optional timeout bounds the whole loop.
    """

    def __init__(
        self,
        config: RetryConfig,
        *,
        is_transient: ErrorClassifier = never_transient,
        wrap_error: ErrorWrapper | None = None,
        suggested_delay: DelayHint = retry_after_hint,
        log: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            config: Attempt, delay, and timeout limits.
            is_transient: Predicate deciding whether an error is retryable.
            wrap_error: Adds context to a phase error; errors pass through
                unchanged when None.
            suggested_delay: Extracts a minimum wait from a transient error.
            log: Logger to bind run context to (default: module logger).
        """
        self._config = config
        self._is_transient = is_transient
        self._wrap_error = wrap_error
        self._suggested_delay = suggested_delay
        self._log = (log or logger).bind(component="retry")

    @property
    def config(self) -> RetryConfig:
        """Get the engine configuration."""
        return self._config

    def run(
        self,
        operation_id: str,
        do: Phase,
        *,
        setup: Phase | None = None,
        prepare: Phase | None = None,
        cancel: CancellationToken | None = None,
    ) -> None:
        """Run an operation until it succeeds or the run must stop.

        Args:
            operation_id: Identifier used in logs and error messages.
            do: Main phase; returning normally means success.
            setup: Runs once before the loop.
            prepare: Runs before ``do`` on every attempt.
            cancel: Governing cancellation token.

        Raises:
            FatalAbortError: A phase failed with a fatal error.
            AttemptsExhaustedError: Every allowed attempt failed.
            RetryCancelledError: Cancelled or out of time.
        """
        token = (cancel or CancellationToken()).with_timeout(
            self._config.timeout_seconds
        )
        state = RetryState(
            operation_id=operation_id,
            max_attempts=self._config.max_attempts,
            retry_delay_seconds=self._config.retry_delay_seconds,
            cancel=token,
        )
        log = self._log.bind(
            operation=operation_id,
            max_attempts=self._config.max_attempts,
            delay_seconds=self._config.retry_delay_seconds,
        )

        if setup is not None:
            error, fatal = self._run_phase("setup", setup, state, log)
            if error is not None:
                state.errors.append(error)
                if fatal:
                    raise self._abort(state)

        while True:
            if token.done:
                raise self._cancelled(state, log)

            log = log.bind(attempt=state.attempt)

            error, fatal = self._run_phase("preparing", prepare, state, log)
            if error is None:
                error, fatal = self._run_phase("doing", do, state, log)
                if error is None:
                    log.debug("execution_succeeded")
                    return

            state.errors.append(error)
            if fatal:
                raise self._abort(state)

            if token.done:
                raise self._cancelled(state, log)

            if state.is_last_attempt:
                break

            delay = self._next_delay(error)
            log.debug("retry_scheduled", wait_seconds=delay)
            if token.wait(delay):
                raise self._cancelled(state, log)

            state.attempt += 1

        log.error("execution_exhausted", attempts=state.attempt)
        raise AttemptsExhaustedError(operation_id, state.errors, state.attempt)

    def _run_phase(
        self,
        name: str,
        phase: Phase | None,
        state: RetryState,
        log: structlog.stdlib.BoundLogger,
    ) -> tuple[Exception | None, bool]:
        if phase is None:
            return None, False

        try:
            phase(state)
        except Exception as e:  # noqa: BLE001
            error = e
        else:
            log.debug(name, result="success")
            return None, False

        if self._wrap_error is not None:
            error = self._wrap_error(error, f"{name}: {state.operation_id}")

        if self._is_transient(error):
            log.warning(name, result="transient", error=str(error))
            return error, False

        log.error(name, result="fatal", error=str(error))
        return error, True

    def _next_delay(self, error: BaseException) -> float:
        delay = self._config.retry_delay_seconds
        hint = self._suggested_delay(error)
        if hint is not None and hint > delay:
            return hint
        return delay

    def _abort(self, state: RetryState) -> FatalAbortError:
        return FatalAbortError(
            state.operation_id,
            "execution loop aborted by fatal error",
            state.errors,
            state.attempt,
        )

    def _cancelled(
        self,
        state: RetryState,
        log: structlog.stdlib.BoundLogger,
    ) -> RetryCancelledError:
        reason = state.cancel.reason or "cancelled"
        log.error("execution_cancelled", reason=reason)
        return RetryCancelledError(
            state.operation_id, reason, state.errors, state.attempt
        )
