"""Errors raised by the retry engine.

Every terminal failure of a run carries the ordered history of phase
errors seen across all attempts, so no intermediate error is dropped.
"""


class RetryError(Exception):
    """Base exception for a failed engine run.

    Attributes:
        operation_id: Identifier of the operation that failed.
        errors: Phase errors in the order they occurred.
        attempts: Number of attempts that were started.
    """

    def __init__(
        self,
        operation_id: str,
        message: str,
        errors: list[BaseException],
        attempts: int,
    ) -> None:
        """Initialize the error.

        Args:
            operation_id: Identifier of the operation that failed.
            message: Human-readable summary.
            errors: Phase errors in the order they occurred.
            attempts: Number of attempts that were started.
        """
        self.operation_id = operation_id
        self.errors = list(errors)
        self.attempts = attempts
        self.summary = message
        super().__init__(message)

    @property
    def last_error(self) -> BaseException | None:
        """Get the most recent phase error, if any."""
        return self.errors[-1] if self.errors else None

    def __str__(self) -> str:
        if not self.errors:
            return f"{self.summary}: {self.operation_id}"

        lines = [f"{self.summary}: {self.operation_id} ({len(self.errors)} error(s))"]
        lines.extend(f"  {i}. {err}" for i, err in enumerate(self.errors, start=1))
        return "\n".join(lines)


class FatalAbortError(RetryError):
    """Raised when a phase fails with an error classified as fatal."""


class AttemptsExhaustedError(RetryError):
    """Raised when every allowed attempt failed with a transient error."""

    def __init__(
        self,
        operation_id: str,
        errors: list[BaseException],
        attempts: int,
    ) -> None:
        super().__init__(
            operation_id,
            f"execution loop terminated: reached {attempts} max attempts",
            errors,
            attempts,
        )


class RetryCancelledError(RetryError):
    """Raised when the run is cancelled or its deadline passes.

    Attributes:
        reason: ``"cancelled"`` or ``"deadline exceeded"``.
    """

    def __init__(
        self,
        operation_id: str,
        reason: str,
        errors: list[BaseException],
        attempts: int,
    ) -> None:
        self.reason = reason
        super().__init__(
            operation_id,
            f"execution loop aborted: {reason}",
            errors,
            attempts,
        )
