"""Unit tests for session negotiation."""

from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import MagicMock

import httpx
import pytest
import structlog
from structlog.testing import capture_logs

from qbcli.cache import CacheConfig, CacheIOError, EncryptedTokenCache, SessionToken
from qbcli.client import (
    ClientConfig,
    FatalError,
    HttpTransport,
    SessionNegotiator,
    SessionState,
    SessionStateError,
    SessionStateMachine,
    TransientError,
)
from qbcli.client.redact import REDACTED_VALUE
from qbcli.credentials import ConnectionIdentity
from tests.helpers.fake_qbittorrent import FakeQbittorrent


IDENTITY = ConnectionIdentity("http", "nas.local", 8080, "admin", "secret")


@pytest.fixture
def server() -> FakeQbittorrent:
    """Create a fake qBittorrent server."""
    return FakeQbittorrent()


@pytest.fixture
def transport(server: FakeQbittorrent) -> HttpTransport:
    """Create a transport bound to the fake server."""
    return HttpTransport(IDENTITY, ClientConfig(), server.transport())


@pytest.fixture
def cache(tmp_path: Path) -> EncryptedTokenCache:
    """Create a token cache in a temporary directory."""
    return EncryptedTokenCache(CacheConfig(directory=tmp_path))


class TestSessionStateMachine:
    """Tests for session state transitions."""

    def test_initial_state(self) -> None:
        """Test that the machine starts without a token."""
        machine = SessionStateMachine(MagicMock())

        assert machine.state == SessionState.NO_TOKEN

    def test_login_path(self) -> None:
        """Test the NO_TOKEN -> AUTHENTICATING -> AUTHENTICATED path."""
        machine = SessionStateMachine(MagicMock())

        machine.transition(SessionState.AUTHENTICATING)
        machine.transition(SessionState.AUTHENTICATED)

        assert machine.state == SessionState.AUTHENTICATED

    def test_rejection_path(self) -> None:
        """Test CACHED_VALID -> REJECTED -> AUTHENTICATING."""
        machine = SessionStateMachine(MagicMock())
        machine.transition(SessionState.CACHED_VALID)

        machine.transition(SessionState.REJECTED)
        machine.transition(SessionState.AUTHENTICATING)

        assert machine.state == SessionState.AUTHENTICATING

    def test_invalid_transition_raises(self) -> None:
        """Test that skipping the login exchange is rejected."""
        log = MagicMock()
        machine = SessionStateMachine(log)

        with pytest.raises(SessionStateError):
            machine.transition(SessionState.AUTHENTICATED)

        log.error.assert_called_once()
        assert machine.state == SessionState.NO_TOKEN

    def test_reset_from_any_state(self) -> None:
        """Test that reset returns to NO_TOKEN."""
        machine = SessionStateMachine(MagicMock())
        machine.transition(SessionState.CACHED_VALID)

        machine.reset()
        machine.reset()

        assert machine.state == SessionState.NO_TOKEN


class TestAcquire:
    """Tests for token acquisition order."""

    def test_login_without_cache(
        self, server: FakeQbittorrent, transport: HttpTransport
    ) -> None:
        """Test that the first acquisition logs in."""
        negotiator = SessionNegotiator(IDENTITY, transport)

        token, cached = negotiator.acquire()

        assert cached is False
        assert token.value in server.sessions
        assert server.login_count == 1
        assert negotiator.state == SessionState.AUTHENTICATED

    def test_in_memory_token_reused(
        self, server: FakeQbittorrent, transport: HttpTransport
    ) -> None:
        """Test that a second acquisition reuses the token without login."""
        negotiator = SessionNegotiator(IDENTITY, transport)
        first, _ = negotiator.acquire()

        second, cached = negotiator.acquire()

        assert second == first
        assert cached is True
        assert server.login_count == 1

    def test_login_form(
        self, server: FakeQbittorrent, transport: HttpTransport
    ) -> None:
        """Test that credentials are posted as a form without a cookie."""
        SessionNegotiator(IDENTITY, transport).acquire()

        request = server.calls_to("auth/login")[0]
        assert request.method == "POST"
        assert request.content == b"username=admin&password=secret"
        assert "Cookie" not in request.headers

    def test_login_log_hides_password(
        self, server: FakeQbittorrent, transport: HttpTransport
    ) -> None:
        """Test that the logged login form never carries the password."""
        structlog.reset_defaults()
        with capture_logs() as logs:
            SessionNegotiator(IDENTITY, transport).acquire()

        requested = [e for e in logs if e["event"] == "login_requested"]
        assert requested[0]["form"] == {
            "username": "admin",
            "password": REDACTED_VALUE,
        }
        assert "secret" not in repr(logs)

    def test_login_stores_in_cache(
        self,
        server: FakeQbittorrent,
        transport: HttpTransport,
        cache: EncryptedTokenCache,
    ) -> None:
        """Test that a fresh token is written to the cache."""
        token, _ = SessionNegotiator(IDENTITY, transport, cache).acquire()

        assert cache.retrieve(IDENTITY) == token

    def test_cache_hit_skips_login(
        self,
        server: FakeQbittorrent,
        transport: HttpTransport,
        cache: EncryptedTokenCache,
    ) -> None:
        """Test that a valid cached token avoids the login exchange."""
        stored = SessionToken(value=server.issue_session())
        cache.store(IDENTITY, stored)
        negotiator = SessionNegotiator(IDENTITY, transport, cache)

        token, cached = negotiator.acquire()

        assert token == stored
        assert cached is True
        assert server.login_count == 0
        assert negotiator.state == SessionState.CACHED_VALID

    def test_force_auth_ignores_cache(
        self,
        server: FakeQbittorrent,
        transport: HttpTransport,
        cache: EncryptedTokenCache,
    ) -> None:
        """Test that force_auth logs in despite a cached token."""
        cache.store(IDENTITY, SessionToken(value=server.issue_session()))
        negotiator = SessionNegotiator(IDENTITY, transport, cache, force_auth=True)

        _, cached = negotiator.acquire()

        assert cached is False
        assert server.login_count == 1

    def test_expired_in_memory_token_triggers_login(
        self, server: FakeQbittorrent, transport: HttpTransport
    ) -> None:
        """Test that an expired in-memory token is not reused."""
        server.max_age = 0
        negotiator = SessionNegotiator(IDENTITY, transport)
        negotiator.acquire()

        _, cached = negotiator.acquire()

        assert cached is False
        assert server.login_count == 2

    def test_cache_store_failure_is_not_fatal(
        self, server: FakeQbittorrent, transport: HttpTransport
    ) -> None:
        """Test that a failed cache write does not fail the login."""
        cache = MagicMock(spec=EncryptedTokenCache)
        cache.retrieve.side_effect = CacheIOError(Path("x"), "unreadable")
        cache.store.side_effect = CacheIOError(Path("x"), "read-only")
        negotiator = SessionNegotiator(IDENTITY, transport, cache)

        token, cached = negotiator.acquire()

        assert cached is False
        assert token.value in server.sessions


class TestLoginFailures:
    """Tests for failed login exchanges."""

    def test_wrong_password_is_fatal(
        self, server: FakeQbittorrent, transport: HttpTransport
    ) -> None:
        """Test that a 'Fails.' body is an authentication denial."""
        server.password = "other"
        negotiator = SessionNegotiator(IDENTITY, transport)

        with pytest.raises(FatalError, match="authentication denied"):
            negotiator.acquire()

        assert negotiator.state == SessionState.NO_TOKEN
        assert negotiator.token is None

    def test_missing_cookie_is_fatal(self) -> None:
        """Test that an Ok response without SID is fatal."""
        transport = HttpTransport(
            IDENTITY,
            ClientConfig(),
            httpx.MockTransport(lambda r: httpx.Response(200, text="Ok.")),
        )

        with pytest.raises(FatalError, match="no session cookie"):
            SessionNegotiator(IDENTITY, transport).acquire()

    def test_non_200_success_is_fatal(self) -> None:
        """Test that a 2xx other than 200 is not a valid login."""
        transport = HttpTransport(
            IDENTITY,
            ClientConfig(),
            httpx.MockTransport(lambda r: httpx.Response(204)),
        )

        with pytest.raises(FatalError, match="status 204"):
            SessionNegotiator(IDENTITY, transport).acquire()

    def test_server_error_is_transient(self) -> None:
        """Test that a 503 during login stays transient."""
        transport = HttpTransport(
            IDENTITY,
            ClientConfig(),
            httpx.MockTransport(lambda r: httpx.Response(503)),
        )

        with pytest.raises(TransientError, match="authenticating"):
            SessionNegotiator(IDENTITY, transport).acquire()

    def test_banned_client_is_fatal(self) -> None:
        """Test that a 403 on the login request is fatal."""
        transport = HttpTransport(
            IDENTITY,
            ClientConfig(),
            httpx.MockTransport(lambda r: httpx.Response(403)),
        )

        with pytest.raises(FatalError):
            SessionNegotiator(IDENTITY, transport).acquire()


class TestRejectAndClear:
    """Tests for rejection and cleanup."""

    def test_reject_forces_login_and_deletes_cache(
        self,
        server: FakeQbittorrent,
        transport: HttpTransport,
        cache: EncryptedTokenCache,
    ) -> None:
        """Test that a rejected token leads to exactly one fresh login."""
        cache.store(IDENTITY, SessionToken(value="stale"))
        negotiator = SessionNegotiator(IDENTITY, transport, cache)
        negotiator.acquire()

        negotiator.reject()

        assert negotiator.state == SessionState.REJECTED
        assert not cache.path_for(IDENTITY).exists()

        token, cached = negotiator.acquire()
        assert cached is False
        assert token.value != "stale"
        assert server.login_count == 1

        _, cached = negotiator.acquire()
        assert cached is True
        assert server.login_count == 1

    def test_clear_removes_memory_and_cache(
        self,
        transport: HttpTransport,
        cache: EncryptedTokenCache,
    ) -> None:
        """Test that clear forgets the token everywhere."""
        negotiator = SessionNegotiator(IDENTITY, transport, cache)
        negotiator.acquire()

        negotiator.clear()

        assert negotiator.token is None
        assert negotiator.state == SessionState.NO_TOKEN
        assert not cache.path_for(IDENTITY).exists()

    def test_current_token_never_logs_in(
        self, server: FakeQbittorrent, transport: HttpTransport
    ) -> None:
        """Test that current_token does not contact the server."""
        negotiator = SessionNegotiator(IDENTITY, transport)

        assert negotiator.current_token() is None
        assert server.requests == []

    def test_expired_cache_entry_ignored(
        self, transport: HttpTransport, cache: EncryptedTokenCache
    ) -> None:
        """Test that an expired cached token is discarded, not returned."""
        past = datetime.now(UTC) - timedelta(hours=2)
        cache.store(
            IDENTITY,
            SessionToken(value="old", expires_at=past + timedelta(hours=1)),
            now=past,
        )
        negotiator = SessionNegotiator(IDENTITY, transport, cache)

        assert negotiator.current_token() is None
        assert not cache.path_for(IDENTITY).exists()
