"""HTTP transport: one request in, one classified outcome out."""

import errno
from datetime import UTC, datetime, timedelta
from email.utils import parsedate_to_datetime
from http import HTTPStatus
from http.cookiejar import parse_ns_headers
from types import TracebackType

import httpx
import structlog

from qbcli.cache import SessionToken
from qbcli.client.constants import (
    CONTENT_TYPE_FORM,
    HTTP_STATUS_OK_MAX,
    HTTP_STATUS_OK_MIN,
    HTTP_STATUS_REDIRECT_MAX,
    SESSION_COOKIE_NAME,
    TRANSIENT_STATUS_CODES,
)
from qbcli.client.errors import AuthRejectedError, FatalError, TransientError
from qbcli.client.models import (
    ApiRequest,
    ClientConfig,
    Fatal,
    RequestOutcome,
    Success,
    Transient,
)
from qbcli.client.redact import redact_headers
from qbcli.credentials import ConnectionIdentity
from qbcli.retry import CancellationToken


logger = structlog.get_logger()


class HttpTransport:
    """Issues single HTTP requests against the API base endpoint.

    Network and protocol results are mapped to exactly one outcome:
    - Success: 2xx
    - Transient: timeouts, refused connections, 408/429/500/502/503/504
    - Fatal: redirects, auth rejection, other statuses, other failures

    Redirects are never followed. Every request carries Origin and Referer
    set to the target's base URL.
    """

    def __init__(
        self,
        identity: ConnectionIdentity,
        config: ClientConfig,
        http_transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            identity: Target connection identity.
            config: Client configuration.
            http_transport: Optional httpx transport (used by tests).
        """
        self._identity = identity
        self._config = config
        self._base_endpoint = f"{identity.base_url}/api/{config.api_version}/"
        self._client = httpx.Client(
            timeout=config.request_timeout_seconds,
            follow_redirects=False,
            transport=http_transport,
            headers={"User-Agent": config.user_agent},
        )
        self._log = logger.bind(component="transport", target=str(identity))

    @property
    def base_endpoint(self) -> str:
        """Get the API base endpoint, e.g. ``http://host:8080/api/v2/``."""
        return self._base_endpoint

    def build_url(self, path: str) -> str:
        """Build the absolute URL for an API path."""
        return f"{self._base_endpoint}{path.lstrip('/')}"

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._client.close()

    def __enter__(self) -> "HttpTransport":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def execute(
        self,
        request: ApiRequest,
        token: SessionToken | None = None,
        cancel: CancellationToken | None = None,
        *,
        token_cached: bool = False,
    ) -> RequestOutcome:
        """Execute one request and classify the result.

        Args:
            request: Request to issue.
            token: Session token to attach, if any.
            cancel: Cancellation token bounding the request.
            token_cached: Whether ``token`` came from the cache.

        Returns:
            Classified outcome.
        """
        url = self.build_url(request.path)
        log = self._log.bind(method=request.method, url=url)

        timeout = self._config.request_timeout_seconds
        if cancel is not None:
            if cancel.done:
                msg = f"request not started: {cancel.reason}"
                return Transient(TransientError(msg))
            remaining = cancel.remaining()
            if remaining is not None:
                timeout = min(timeout, remaining)

        headers = self._build_headers(request, token)
        log.debug("request_prepared", headers=redact_headers(headers))

        try:
            response = self._client.request(
                request.method,
                url,
                params=dict(request.params) if request.params else None,
                content=request.payload,
                headers=headers,
                timeout=timeout,
            )
        except httpx.TimeoutException as e:
            log.warning("request_timed_out", error=str(e))
            return Transient(TransientError(f"request timed out: {e}"))
        except httpx.ConnectError as e:
            if _is_connection_refused(e):
                log.warning("connection_refused", error=str(e))
                return Transient(TransientError(f"connection refused: {e}"))
            log.error("connect_failed", error=str(e))
            return Fatal(FatalError(f"failed before receiving response: {e}"))
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            log.error("request_failed", error=str(e))
            return Fatal(FatalError(f"request failed: {e}"))

        # Session cookies are attached per request, never from the client jar
        self._client.cookies.clear()

        log.debug(
            "response_received",
            status_code=response.status_code,
            bytes=len(response.content),
        )

        return classify_response(
            response,
            token_cached=token_cached,
            max_retry_after=self._config.max_retry_after_seconds,
        )

    def _build_headers(
        self,
        request: ApiRequest,
        token: SessionToken | None,
    ) -> dict[str, str]:
        base_url = self._identity.base_url
        headers: dict[str, str] = {
            "Origin": base_url,
            "Referer": base_url,
        }
        if request.content_type:
            headers["Content-Type"] = request.content_type
        elif request.payload is not None:
            headers["Content-Type"] = CONTENT_TYPE_FORM
        if token is not None:
            headers["Cookie"] = f"{SESSION_COOKIE_NAME}={token.value}"
        return headers


def classify_response(
    response: httpx.Response,
    *,
    token_cached: bool,
    max_retry_after: float | None = None,
) -> RequestOutcome:
    """Classify an HTTP response.

    Args:
        response: Received response.
        token_cached: Whether the attached token came from the cache.
        max_retry_after: Cap for a server-suggested delay, in seconds.

    Returns:
        Classified outcome.
    """
    status = response.status_code
    label = _status_label(status)

    if HTTP_STATUS_OK_MIN <= status < HTTP_STATUS_OK_MAX:
        return Success(
            status_code=status,
            body=response.content,
            url=str(response.url),
            headers=response.headers,
        )

    if HTTP_STATUS_OK_MAX <= status < HTTP_STATUS_REDIRECT_MAX:
        return Fatal(FatalError(f"unexpected redirection: {label}"))

    # 401 always; 403 only for a cached token
    if status == HTTPStatus.UNAUTHORIZED or (
        status == HTTPStatus.FORBIDDEN and token_cached
    ):
        source = "cached" if token_cached else "fresh"
        return Fatal(
            AuthRejectedError(
                f"{source} authentication rejected: {label}",
                status_code=status,
                cached=token_cached,
            )
        )

    if status in TRANSIENT_STATUS_CODES:
        retry_after = parse_retry_after(response.headers.get("retry-after"))
        if retry_after is not None and max_retry_after is not None:
            retry_after = min(retry_after, max_retry_after)
        return Transient(
            TransientError(f"transient error: {label}", retry_after=retry_after),
            retry_after=retry_after,
        )

    return Fatal(FatalError(f"unexpected response: {label}"))


def parse_retry_after(value: str | None, now: datetime | None = None) -> float | None:
    """Parse a Retry-After header value.

    Args:
        value: Header value (delay seconds or HTTP date).
        now: Reference time for HTTP dates (default: current UTC time).

    Returns:
        Seconds to wait, or None if absent or not parseable.
    """
    if not value:
        return None

    value = value.strip()

    # Delay in seconds
    if value.isdigit():
        return float(int(value))

    # HTTP date
    try:
        dt = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)

    delta = dt - (now or datetime.now(UTC))
    return max(0.0, delta.total_seconds())


def extract_session_token(
    headers: httpx.Headers,
    now: datetime | None = None,
) -> SessionToken:
    """Extract the session token from login response headers.

    Scans every Set-Cookie header for the session cookie. Attributes the
    cookie parser does not know (``SameSite``, ``Partitioned``) are
    skipped. Expiry comes from Max-Age when present, else from Expires.

    Args:
        headers: Response headers.
        now: Reference time for Max-Age (default: current UTC time).

    Returns:
        Session token.

    Raises:
        FatalError: If no non-empty session cookie is present.
    """
    current = now or datetime.now(UTC)

    for pairs in parse_ns_headers(headers.get_list("set-cookie")):
        if not pairs:
            continue

        name, value = pairs[0]
        if name != SESSION_COOKIE_NAME or not value:
            continue

        attrs = dict(pairs[1:])
        return SessionToken(
            value=value,
            expires_at=_cookie_expiry(attrs.get("max-age"), attrs.get("expires"), current),
        )

    msg = f"session cookie {SESSION_COOKIE_NAME} not found in login response"
    raise FatalError(msg)


def _cookie_expiry(
    max_age: str | None,
    expires: float | None,
    now: datetime,
) -> datetime | None:
    # Expires arrives as epoch seconds, or None when unparseable
    if max_age:
        try:
            seconds = int(max_age)
        except ValueError:
            seconds = None
        if seconds is not None:
            return now + timedelta(seconds=max(seconds, 0))

    if expires is not None:
        return datetime.fromtimestamp(expires, UTC)

    return None


def _status_label(status: int) -> str:
    try:
        phrase = HTTPStatus(status).phrase
    except ValueError:
        phrase = "Unknown"
    return f"{status} {phrase}"


def _is_connection_refused(error: BaseException) -> bool:
    seen: set[int] = set()
    current: BaseException | None = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, ConnectionRefusedError):
            return True
        if isinstance(current, OSError) and current.errno == errno.ECONNREFUSED:
            return True
        current = current.__cause__ or current.__context__
    return False
