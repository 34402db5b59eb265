"""Authentication strategies attached to API requests."""

from typing import Protocol, runtime_checkable

from qbcli.cache import SessionToken
from qbcli.client.session import SessionNegotiator
from qbcli.retry import CancellationToken


@runtime_checkable
class Authenticator(Protocol):
    """Supplies the session token for a request."""

    def authenticate(
        self, cancel: CancellationToken | None
    ) -> tuple[SessionToken | None, bool]:
        """Get the token to attach.

        Args:
            cancel: Cancellation token bounding any login exchange.

        Returns:
            Tuple of (token or None, whether the token came from a cache).
        """
        ...

    def reject(self) -> bool:
        """Handle server rejection of the attached token.

        Returns:
            True if a fresh authentication is worth one more try.
        """
        ...


class NoAuth:
    """Sends requests without a session token."""

    def authenticate(
        self, cancel: CancellationToken | None  # noqa: ARG002
    ) -> tuple[SessionToken | None, bool]:
        return None, False

    def reject(self) -> bool:
        return False


class SessionAuth:
    """Attaches the session token negotiated for the client's identity."""

    def __init__(self, negotiator: SessionNegotiator) -> None:
        self._negotiator = negotiator

    @property
    def negotiator(self) -> SessionNegotiator:
        """Get the underlying negotiator."""
        return self._negotiator

    def authenticate(
        self, cancel: CancellationToken | None
    ) -> tuple[SessionToken | None, bool]:
        return self._negotiator.acquire(cancel)

    def reject(self) -> bool:
        self._negotiator.reject()
        return True
