"""Request error taxonomy: transient (retryable) versus fatal.

Only a RequestError flagged transient is ever retried. Any other
exception reaching the retry engine, whatever its type, is fatal.
"""


class RequestError(Exception):
    """Classified failure of a request or of the session exchange.

    Attributes:
        transient: Whether another attempt may succeed.
        retry_after: Server-suggested minimum wait in seconds, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        transient: bool,
        retry_after: float | None = None,
    ) -> None:
        """Initialize the error.

        Args:
            message: Human-readable message.
            transient: Whether another attempt may succeed.
            retry_after: Server-suggested minimum wait in seconds.
        """
        super().__init__(message)
        self.transient = transient
        self.retry_after = retry_after

    @property
    def is_fatal(self) -> bool:
        """Check whether the error must abort the operation."""
        return not self.transient

    def with_context(self, context: str) -> "RequestError":
        """Return a copy of this error with a context prefix.

        The copy keeps the type and classification and chains this error
        as its cause.

        Args:
            context: Prefix describing what was being done.

        Returns:
            New error of the same classification.
        """
        cls = type(self)
        wrapped = cls.__new__(cls)
        Exception.__init__(wrapped, f"{context}: {self}")
        wrapped.__dict__.update(self.__dict__)
        wrapped.__cause__ = self
        return wrapped


class TransientError(RequestError):
    """Retryable failure: timeouts, refused connections, 408/429/5xx."""

    def __init__(self, message: str, *, retry_after: float | None = None) -> None:
        super().__init__(message, transient=True, retry_after=retry_after)


class FatalError(RequestError):
    """Non-retryable failure: bad input, redirects, denials, bad statuses."""

    def __init__(self, message: str) -> None:
        super().__init__(message, transient=False)


class AuthRejectedError(FatalError):
    """Raised when the server rejects the session token (401/403).

    Attributes:
        status_code: HTTP status returned by the server.
        cached: Whether the rejected token came from the cache.
    """

    def __init__(self, message: str, *, status_code: int, cached: bool) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.cached = cached


def new_transient_error(message: str, retry_after: float | None = None) -> TransientError:
    """Create a transient error.

    Args:
        message: Human-readable message.
        retry_after: Server-suggested minimum wait in seconds.

    Returns:
        Error classified as transient.
    """
    return TransientError(message, retry_after=retry_after)


def new_fatal_error(message: str) -> FatalError:
    """Create a fatal error.

    Args:
        message: Human-readable message.

    Returns:
        Error classified as fatal.
    """
    return FatalError(message)


def wrap_fatal_unless_explicit(error: Exception, context: str) -> RequestError:
    """Add context to an error, treating unclassified errors as fatal.

    A RequestError keeps its own classification. Any other exception
    becomes a FatalError. The original error is chained as the cause.

    Args:
        error: Error to wrap.
        context: Prefix describing what was being done.

    Returns:
        Classified error with the context prefix.
    """
    if isinstance(error, RequestError):
        return error.with_context(context)

    wrapped = FatalError(f"{context}: {error}")
    wrapped.__cause__ = error
    return wrapped


def is_transient_error(error: BaseException) -> bool:
    """Check whether an error is explicitly marked transient.

    All errors are fatal except RequestErrors flagged transient.

    Args:
        error: Error to classify.

    Returns:
        True if the error may be retried.
    """
    return isinstance(error, RequestError) and error.transient
