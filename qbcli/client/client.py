"""qBittorrent Web API client: generic fetch plus thin API helpers."""

import json
from collections.abc import Mapping
from types import TracebackType
from typing import Any
from urllib.parse import urlencode

import httpx
import structlog

from qbcli.cache import CacheError, EncryptedTokenCache, SessionToken
from qbcli.client.auth import Authenticator, NoAuth, SessionAuth
from qbcli.client.constants import (
    CONTENT_TYPE_FORM,
    LISTEN_PORT_KEY,
    LOGOUT_PATH,
    PREFERENCES_PATH,
    SET_PREFERENCES_PATH,
    VERSION_PATH,
)
from qbcli.client.errors import (
    AuthRejectedError,
    FatalError,
    is_transient_error,
    wrap_fatal_unless_explicit,
)
from qbcli.client.models import (
    ApiRequest,
    ClientConfig,
    Fatal,
    RequestOutcome,
    Success,
    unwrap_outcome,
)
from qbcli.client.session import SessionNegotiator
from qbcli.client.transport import HttpTransport
from qbcli.credentials import ConnectionIdentity
from qbcli.credentials.constants import PORT_MAX, PORT_MIN
from qbcli.retry import CancellationToken, RetryEngine, RetryState, retry_after_hint


logger = structlog.get_logger()


class QbClient:
    """Client for one qBittorrent Web API endpoint.

    Every call runs through the retry engine: ``prepare`` obtains the
    session token, ``do`` issues the request. A cached token rejected by
    the server is replaced within the same attempt by exactly one fresh
    login; a second rejection is fatal.
    """

    def __init__(
        self,
        identity: ConnectionIdentity,
        config: ClientConfig | None = None,
        cache: EncryptedTokenCache | None = None,
        http_transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            identity: Target connection identity.
            config: Client configuration (defaults apply when None).
            cache: Encrypted token cache; tokens live in memory only when None.
            http_transport: Optional httpx transport (used by tests).
        """
        self._identity = identity
        self._config = config or ClientConfig()
        self._log = logger.bind(component="client", target=str(identity))
        self._transport = HttpTransport(identity, self._config, http_transport)
        self._negotiator = SessionNegotiator(
            identity,
            self._transport,
            cache,
            force_auth=self._config.force_auth,
        )
        self._engine = RetryEngine(
            self._config.retry,
            is_transient=is_transient_error,
            wrap_error=wrap_fatal_unless_explicit,
            suggested_delay=retry_after_hint,
            log=self._log,
        )
        self.session_auth = SessionAuth(self._negotiator)
        self.no_auth = NoAuth()

    @property
    def identity(self) -> ConnectionIdentity:
        """Get the connection identity."""
        return self._identity

    @property
    def config(self) -> ClientConfig:
        """Get the client configuration."""
        return self._config

    @property
    def negotiator(self) -> SessionNegotiator:
        """Get the session negotiator."""
        return self._negotiator

    @property
    def session_token(self) -> SessionToken | None:
        """Get the in-memory session token, if any."""
        return self._negotiator.token

    def close(self) -> None:
        """Release the HTTP connection pool."""
        self._transport.close()

    def __enter__(self) -> "QbClient":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    # Generic requests

    def fetch(
        self,
        request: ApiRequest,
        auth: Authenticator | None = None,
        cancel: CancellationToken | None = None,
    ) -> Success:
        """Run one API request under the retry policy.

        Args:
            request: Request to issue.
            auth: Authenticator for the request (default: session auth).
            cancel: Cancellation token governing the whole run.

        Returns:
            Successful response.

        Raises:
            RetryError: If the request could not be completed.
        """
        authenticator = auth or self.session_auth
        attached: dict[str, Any] = {"token": None, "cached": False}
        result: list[Success] = []

        def prepare(state: RetryState) -> None:
            token, cached = authenticator.authenticate(state.cancel)
            attached["token"] = token
            attached["cached"] = cached

        def do(state: RetryState) -> None:
            outcome = self._send(request, attached, state.cancel)
            if _is_auth_rejection(outcome) and authenticator.reject():
                error = outcome.error
                if error.cached:
                    self._log.warning(
                        "cached_session_rejected",
                        request=str(request),
                        status_code=error.status_code,
                    )
                    state.errors.append(
                        wrap_fatal_unless_explicit(
                            error, f"doing: {state.operation_id}"
                        )
                    )
                    prepare(state)
                    outcome = self._send(request, attached, state.cancel)
                    if _is_auth_rejection(outcome):
                        authenticator.reject()
            result.append(unwrap_outcome(outcome))

        operation_id = f"{request.method} {self._transport.build_url(request.path)}"
        self._engine.run(operation_id, do, prepare=prepare, cancel=cancel)
        return result[-1]

    def do(
        self,
        method: str,
        path: str,
        params: Mapping[str, str] | None = None,
        payload: bytes | None = None,
        auth: Authenticator | None = None,
        *,
        content_type: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> Success:
        """Issue a request built from its parts.

        Args:
            method: HTTP method.
            path: Path relative to the API base endpoint.
            params: Query parameters.
            payload: Encoded request body.
            auth: Authenticator (default: session auth).
            content_type: Body content type.
            cancel: Cancellation token governing the run.

        Returns:
            Successful response.
        """
        request = ApiRequest(
            method=method.upper(),
            path=path,
            params=params,
            payload=payload,
            content_type=content_type,
        )
        return self.fetch(request, auth, cancel)

    def get(
        self,
        path: str,
        params: Mapping[str, str] | None = None,
        auth: Authenticator | None = None,
        cancel: CancellationToken | None = None,
    ) -> Success:
        """Issue a GET request."""
        return self.do("GET", path, params, auth=auth, cancel=cancel)

    def post(
        self,
        path: str,
        payload: bytes | None = None,
        auth: Authenticator | None = None,
        *,
        content_type: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> Success:
        """Issue a POST request with an already encoded body."""
        return self.do(
            "POST",
            path,
            payload=payload,
            auth=auth,
            content_type=content_type,
            cancel=cancel,
        )

    def post_form(
        self,
        path: str,
        form: Mapping[str, str],
        auth: Authenticator | None = None,
        cancel: CancellationToken | None = None,
    ) -> Success:
        """Issue a POST request with a url-encoded form body."""
        return self.post(
            path,
            urlencode(form).encode("utf-8"),
            auth,
            content_type=CONTENT_TYPE_FORM,
            cancel=cancel,
        )

    def do_resource(
        self,
        method: str,
        path: str,
        params: Mapping[str, str] | None = None,
        payload: bytes | None = None,
        auth: Authenticator | None = None,
        cancel: CancellationToken | None = None,
    ) -> Any:
        """Issue a request and decode the JSON body.

        Returns:
            Decoded JSON value.

        Raises:
            FatalError: If the body is not valid JSON.
        """
        success = self.do(method, path, params, payload, auth, cancel=cancel)
        return _decode_json(success)

    def get_resource(
        self,
        path: str,
        params: Mapping[str, str] | None = None,
        auth: Authenticator | None = None,
        cancel: CancellationToken | None = None,
    ) -> Any:
        """Issue a GET request and decode the JSON body."""
        return self.do_resource("GET", path, params, auth=auth, cancel=cancel)

    # Session

    def login(self, cancel: CancellationToken | None = None) -> str:
        """Establish a session and verify it against the server.

        Returns:
            Application version reported by the server.
        """
        success = self.get(VERSION_PATH, auth=self.session_auth, cancel=cancel)
        version = success.text.strip()
        self._log.info("login_succeeded", version=version)
        return version

    def logout(self, cancel: CancellationToken | None = None) -> None:
        """End the session on the server and forget the token.

        The local token is removed even when the server call fails.
        """
        try:
            if self._negotiator.current_token() is None:
                self._log.warning("logout_skipped", reason="no session token")
                return
            self.post(LOGOUT_PATH, auth=self.session_auth, cancel=cancel)
            self._log.info("logout_succeeded")
        finally:
            try:
                self.clean_session()
            except CacheError as e:
                self._log.error("session_cleanup_failed", error=str(e))

    def clean_session(self) -> None:
        """Forget the session token in memory and in the cache.

        Raises:
            CacheIOError: If the cache slot cannot be deleted.
        """
        self._negotiator.clear()

    # Preferences

    def get_preferences(self, cancel: CancellationToken | None = None) -> dict[str, Any]:
        """Get the application preferences.

        Raises:
            FatalError: If the response is not a JSON object.
        """
        prefs = self.get_resource(PREFERENCES_PATH, cancel=cancel)
        if not isinstance(prefs, dict):
            msg = f"invalid preferences: expected object, got {type(prefs).__name__}"
            raise FatalError(msg)
        return prefs

    def get_preference(self, name: str, cancel: CancellationToken | None = None) -> Any:
        """Get a single preference value.

        Raises:
            FatalError: If the preference does not exist.
        """
        prefs = self.get_preferences(cancel)
        if name not in prefs:
            msg = f"preference {name} not found"
            raise FatalError(msg)
        return prefs[name]

    def set_preferences(
        self,
        prefs: Mapping[str, Any],
        cancel: CancellationToken | None = None,
    ) -> None:
        """Update application preferences.

        Args:
            prefs: Preference names and their new values.
            cancel: Cancellation token governing the run.
        """
        self.post_form(
            SET_PREFERENCES_PATH,
            {"json": json.dumps(dict(prefs))},
            cancel=cancel,
        )
        self._log.info("preferences_updated", keys=sorted(prefs))

    def get_listening_port(self, cancel: CancellationToken | None = None) -> int:
        """Get the incoming connection port.

        Raises:
            FatalError: If the value is not a valid port number.
        """
        return _coerce_port(self.get_preference(LISTEN_PORT_KEY, cancel))

    def set_listening_port(self, port: int, cancel: CancellationToken | None = None) -> None:
        """Set the incoming connection port.

        Raises:
            FatalError: If ``port`` is out of range.
        """
        if isinstance(port, bool) or not PORT_MIN <= port <= PORT_MAX:
            msg = f"invalid port {port}: must be between {PORT_MIN} and {PORT_MAX}"
            raise FatalError(msg)
        self.set_preferences({LISTEN_PORT_KEY: port}, cancel)

    def _send(
        self,
        request: ApiRequest,
        attached: dict[str, Any],
        cancel: CancellationToken,
    ) -> RequestOutcome:
        return self._transport.execute(
            request,
            attached["token"],
            cancel,
            token_cached=attached["cached"],
        )


def _is_auth_rejection(outcome: RequestOutcome) -> bool:
    return isinstance(outcome, Fatal) and isinstance(outcome.error, AuthRejectedError)


def _decode_json(success: Success) -> Any:
    try:
        return json.loads(success.body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        msg = f"decoding JSON response from {success.url} failed: {e}"
        raise FatalError(msg) from e


def _coerce_port(value: Any) -> int:
    if isinstance(value, bool):
        port = None
    elif isinstance(value, int):
        port = value
    elif isinstance(value, float) and value.is_integer():
        port = int(value)
    elif isinstance(value, str) and value.strip().isdigit():
        port = int(value.strip())
    else:
        port = None

    if port is None or not PORT_MIN <= port <= PORT_MAX:
        msg = f"invalid listening port value: {value!r}"
        raise FatalError(msg)
    return port
