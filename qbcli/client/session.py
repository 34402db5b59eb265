"""Session negotiation: obtain, cache, and re-validate the session token."""

from enum import Enum, auto
from typing import ClassVar
from urllib.parse import urlencode

import structlog

from qbcli.cache import CacheError, EncryptedTokenCache, SessionToken
from qbcli.client.constants import (
    CONTENT_TYPE_FORM,
    LOGIN_PATH,
    LOGIN_SUCCESS_MARKER,
)
from qbcli.client.errors import FatalError, wrap_fatal_unless_explicit
from qbcli.client.models import ApiRequest, Success
from qbcli.client.redact import redact_form
from qbcli.client.transport import HttpTransport, extract_session_token
from qbcli.credentials import ConnectionIdentity
from qbcli.retry import CancellationToken


logger = structlog.get_logger()


class SessionState(Enum):
    """Session negotiation states.

    State transitions:
        NO_TOKEN -> CACHED_VALID: Cache lookup returned a usable token
        NO_TOKEN -> AUTHENTICATING: No usable token, or forced login
        CACHED_VALID -> REJECTED: Server rejected the cached token
        AUTHENTICATING -> AUTHENTICATED: Login exchange succeeded
        AUTHENTICATING -> NO_TOKEN: Login exchange failed
        AUTHENTICATED -> REJECTED: Server rejected the token
        REJECTED -> AUTHENTICATING: Forced re-authentication
        any -> NO_TOKEN: Token dropped (expired, cleared, logged out)
    """

    NO_TOKEN = auto()
    CACHED_VALID = auto()
    AUTHENTICATING = auto()
    AUTHENTICATED = auto()
    REJECTED = auto()


class SessionStateError(Exception):
    """Raised when an invalid session state transition is attempted."""

    def __init__(self, from_state: SessionState, to_state: SessionState) -> None:
        """Initialize the error.

        Args:
            from_state: The current state.
            to_state: The attempted target state.
        """
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"Invalid session state transition: {from_state.name} -> {to_state.name}"
        )


class SessionStateMachine:
    """Enforces valid session state transitions."""

    VALID_TRANSITIONS: ClassVar[dict[SessionState, set[SessionState]]] = {
        SessionState.NO_TOKEN: {
            SessionState.CACHED_VALID,
            SessionState.AUTHENTICATING,
        },
        SessionState.CACHED_VALID: {
            SessionState.REJECTED,
            SessionState.AUTHENTICATING,
            SessionState.NO_TOKEN,
        },
        SessionState.AUTHENTICATING: {
            SessionState.AUTHENTICATED,
            SessionState.NO_TOKEN,
        },
        SessionState.AUTHENTICATED: {
            SessionState.REJECTED,
            SessionState.AUTHENTICATING,
            SessionState.NO_TOKEN,
        },
        SessionState.REJECTED: {
            SessionState.AUTHENTICATING,
            SessionState.NO_TOKEN,
        },
    }

    def __init__(self, log: structlog.stdlib.BoundLogger) -> None:
        """Initialize the machine in NO_TOKEN state.

        Args:
            log: Bound logger of the owning negotiator.
        """
        self._state = SessionState.NO_TOKEN
        self._log = log

    @property
    def state(self) -> SessionState:
        """Get the current state."""
        return self._state

    def can_transition(self, to_state: SessionState) -> bool:
        """Check if a transition to the given state is valid."""
        return to_state in self.VALID_TRANSITIONS.get(self._state, set())

    def transition(self, to_state: SessionState) -> None:
        """Transition to a new state.

        Args:
            to_state: The target state.

        Raises:
            SessionStateError: If the transition is invalid.
        """
        if not self.can_transition(to_state):
            self._log.error(
                "invariant_violation",
                error_type="illegal_state_transition",
                from_state=self._state.name,
                to_state=to_state.name,
            )
            raise SessionStateError(self._state, to_state)

        old_state = self._state
        self._state = to_state
        self._log.debug(
            "session_state_transition",
            from_state=old_state.name,
            to_state=to_state.name,
        )

    def reset(self) -> None:
        """Return to NO_TOKEN from any state."""
        if self._state is not SessionState.NO_TOKEN:
            self.transition(SessionState.NO_TOKEN)


class SessionNegotiator:
    """Obtains a usable session token for one connection identity.

    Lookup order is the in-memory token, then the encrypted cache, then a
    live login exchange. A successful login is mirrored to the cache; a
    failed cache write is logged and does not fail the login. Rejection
    of a token deletes the cache slot and forces exactly one fresh login
    on the next acquisition.
    """

    def __init__(
        self,
        identity: ConnectionIdentity,
        transport: HttpTransport,
        cache: EncryptedTokenCache | None = None,
        *,
        force_auth: bool = False,
    ) -> None:
        """Initialize the negotiator.

        Args:
            identity: Connection identity to authenticate.
            transport: Transport used for the login exchange.
            cache: Optional encrypted token cache.
            force_auth: Ignore the on-disk cache and log in.
        """
        self._identity = identity
        self._transport = transport
        self._cache = cache
        self._force_auth = force_auth
        self._force_next = False
        self._token: SessionToken | None = None
        self._log = logger.bind(component="session", target=str(identity))
        self._machine = SessionStateMachine(self._log)

    @property
    def state(self) -> SessionState:
        """Get the current negotiation state."""
        return self._machine.state

    @property
    def token(self) -> SessionToken | None:
        """Get the in-memory token, if any."""
        return self._token

    def acquire(self, cancel: CancellationToken | None = None) -> tuple[SessionToken, bool]:
        """Get a usable token, logging in only when necessary.

        Args:
            cancel: Cancellation token bounding the login exchange.

        Returns:
            Tuple of (token, was_cached). ``was_cached`` is False only for a
            token issued by a login performed in this call.

        Raises:
            RequestError: If the login exchange fails.
        """
        if not self._force_next:
            token = self.current_token()
            if token is not None:
                return token, True

        return self.authenticate(cancel), False

    def current_token(self) -> SessionToken | None:
        """Get a known token without contacting the server.

        Returns:
            The in-memory token, else a cache hit, else None.
        """
        if self._token is not None:
            if not self._token.is_expired():
                return self._token
            self._log.debug("session_token_expired")
            self._token = None
            self._machine.reset()

        if self._cache is None or self._force_auth:
            return None

        try:
            token = self._cache.retrieve(self._identity)
        except CacheError as e:
            self._log.debug(
                "cache_lookup_failed", reason=type(e).__name__, error=str(e)
            )
            return None

        self._token = token
        self._machine.reset()
        self._machine.transition(SessionState.CACHED_VALID)
        return token

    def authenticate(self, cancel: CancellationToken | None = None) -> SessionToken:
        """Perform the login exchange.

        Args:
            cancel: Cancellation token bounding the exchange.

        Returns:
            Freshly issued token.

        Raises:
            TransientError: If the exchange failed transiently.
            FatalError: If the login was denied or the response is invalid.
        """
        self._machine.transition(SessionState.AUTHENTICATING)
        self._token = None

        try:
            token = self._login(cancel)
        except Exception:
            self._machine.transition(SessionState.NO_TOKEN)
            raise

        self._token = token
        self._force_next = False
        self._machine.transition(SessionState.AUTHENTICATED)
        self._log.debug(
            "authenticated",
            expires_at=token.expires_at.isoformat() if token.expires_at else None,
        )

        if self._cache is not None:
            try:
                self._cache.store(self._identity, token)
            except CacheError as e:
                self._log.warning("token_cache_store_failed", error=str(e))

        return token

    def reject(self) -> None:
        """Handle a server rejection of the current token.

        Drops the in-memory token, deletes the cache slot, and forces the
        next acquisition to log in.
        """
        if self._machine.can_transition(SessionState.REJECTED):
            self._machine.transition(SessionState.REJECTED)
        self._token = None
        self._force_next = True
        self._log.warning("session_token_rejected")

        if self._cache is not None:
            try:
                self._cache.delete(self._identity)
            except CacheError as e:
                self._log.warning("token_cache_delete_failed", error=str(e))

    def clear(self) -> None:
        """Forget the token in memory and on disk.

        Raises:
            CacheIOError: If the cache slot cannot be deleted.
        """
        self._token = None
        self._machine.reset()
        if self._cache is None:
            self._log.debug("token_cache_not_configured")
            return
        self._cache.delete(self._identity)

    def _login(self, cancel: CancellationToken | None) -> SessionToken:
        fields = {
            "username": self._identity.username,
            "password": self._identity.password,
        }
        self._log.debug("login_requested", form=redact_form(fields))
        request = ApiRequest(
            method="POST",
            path=LOGIN_PATH,
            payload=urlencode(fields).encode("utf-8"),
            content_type=CONTENT_TYPE_FORM,
        )

        outcome = self._transport.execute(request, None, cancel)
        if not isinstance(outcome, Success):
            raise wrap_fatal_unless_explicit(
                outcome.error, f"authenticating {self._identity}"
            )

        if outcome.status_code != 200:  # noqa: PLR2004
            msg = (
                f"authentication request for {self._identity} failed "
                f"with status {outcome.status_code}"
            )
            raise FatalError(msg)

        body = outcome.text
        if not body.startswith(LOGIN_SUCCESS_MARKER):
            msg = f"authentication denied for {self._identity}: {body.strip()}"
            raise FatalError(msg)

        try:
            return extract_session_token(outcome.headers)
        except FatalError as e:
            msg = f"authentication denied for {self._identity}: no session cookie found"
            raise FatalError(msg) from e
