"""Unit tests for the encrypted token cache."""

import base64
import json
import stat
from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import patch

import pytest

from qbcli.cache import (
    CACHE_FILE_SUFFIX,
    CacheConfig,
    CacheIOError,
    CacheMissError,
    CorruptCacheError,
    EncryptedTokenCache,
    ExpiredCacheError,
    SessionToken,
)
from qbcli.credentials import ConnectionIdentity


NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=UTC)


@pytest.fixture
def identity() -> ConnectionIdentity:
    """Create a test identity."""
    return ConnectionIdentity("http", "nas.local", 8080, "admin", "secret")


@pytest.fixture
def cache(tmp_path: Path) -> EncryptedTokenCache:
    """Create a cache rooted in a temporary directory."""
    return EncryptedTokenCache(CacheConfig(directory=tmp_path / "cache"))


@pytest.fixture
def token() -> SessionToken:
    """Create a token valid for one hour after NOW."""
    return SessionToken(value="sid-value-123", expires_at=NOW + timedelta(hours=1))


class TestStoreAndRetrieve:
    """Tests for the store/retrieve cycle."""

    def test_round_trip(
        self,
        cache: EncryptedTokenCache,
        identity: ConnectionIdentity,
        token: SessionToken,
    ) -> None:
        """Test that a stored token is returned unchanged."""
        cache.store(identity, token, now=NOW)

        result = cache.retrieve(identity, now=NOW)

        assert result == token

    def test_round_trip_without_expiry(
        self, cache: EncryptedTokenCache, identity: ConnectionIdentity
    ) -> None:
        """Test that a token without expiry is cached."""
        token = SessionToken(value="forever")
        cache.store(identity, token, now=NOW)

        assert cache.retrieve(identity, now=NOW).value == "forever"

    def test_file_layout(
        self,
        cache: EncryptedTokenCache,
        identity: ConnectionIdentity,
        token: SessionToken,
    ) -> None:
        """Test the slot name, permissions, and plaintext content."""
        cache.store(identity, token, now=NOW)

        path = cache.path_for(identity)
        assert path.name == f"http+admin@nas.local+8080{CACHE_FILE_SUFFIX}"
        assert stat.S_IMODE(path.stat().st_mode) == 0o600
        assert stat.S_IMODE(cache.directory.stat().st_mode) == 0o700

        content = path.read_text()
        data = json.loads(content)
        assert set(data) == {"expiresAt", "cookie"}
        assert "sid-value-123" not in content
        assert "secret" not in content

    def test_fresh_salt_per_write(
        self,
        cache: EncryptedTokenCache,
        identity: ConnectionIdentity,
        token: SessionToken,
    ) -> None:
        """Test that rewriting the same token produces different ciphertext."""
        cache.store(identity, token, now=NOW)
        first = json.loads(cache.path_for(identity).read_text())["cookie"]
        cache.store(identity, token, now=NOW)
        second = json.loads(cache.path_for(identity).read_text())["cookie"]

        assert first != second

    def test_no_temp_files_left(
        self,
        cache: EncryptedTokenCache,
        identity: ConnectionIdentity,
        token: SessionToken,
    ) -> None:
        """Test that atomic writes leave only the slot file."""
        cache.store(identity, token, now=NOW)

        assert [p.name for p in cache.directory.iterdir()] == [
            cache.path_for(identity).name
        ]

    def test_identities_use_separate_slots(
        self, cache: EncryptedTokenCache, token: SessionToken
    ) -> None:
        """Test that different users do not share a slot."""
        alice = ConnectionIdentity("http", "nas.local", 8080, "alice", "pw")
        bob = ConnectionIdentity("http", "nas.local", 8080, "bob", "pw")

        cache.store(alice, token, now=NOW)

        with pytest.raises(CacheMissError):
            cache.retrieve(bob, now=NOW)


class TestRetrieveFailures:
    """Tests for miss, expiry, and corruption handling."""

    def test_missing_slot(
        self, cache: EncryptedTokenCache, identity: ConnectionIdentity
    ) -> None:
        """Test that a missing slot is a miss."""
        with pytest.raises(CacheMissError):
            cache.retrieve(identity, now=NOW)

    def test_expired_mirror_deletes_slot(
        self,
        cache: EncryptedTokenCache,
        identity: ConnectionIdentity,
        token: SessionToken,
    ) -> None:
        """Test that an expired entry is deleted and reported once."""
        cache.store(identity, token, now=NOW)
        later = NOW + timedelta(hours=2)

        with patch.object(cache, "_decrypt") as mock_decrypt:
            with pytest.raises(ExpiredCacheError):
                cache.retrieve(identity, now=later)
            mock_decrypt.assert_not_called()

        assert not cache.path_for(identity).exists()
        with pytest.raises(CacheMissError):
            cache.retrieve(identity, now=later)

    def test_expired_token_behind_stale_mirror(
        self,
        cache: EncryptedTokenCache,
        identity: ConnectionIdentity,
        token: SessionToken,
    ) -> None:
        """Test that the decrypted expiry is authoritative."""
        cache.store(identity, token, now=NOW)
        path = cache.path_for(identity)
        data = json.loads(path.read_text())
        data["expiresAt"] = (NOW + timedelta(days=30)).isoformat()
        path.write_text(json.dumps(data))

        with pytest.raises(ExpiredCacheError):
            cache.retrieve(identity, now=NOW + timedelta(hours=2))

        assert not path.exists()

    def test_expiry_boundary_is_expired(
        self,
        cache: EncryptedTokenCache,
        identity: ConnectionIdentity,
        token: SessionToken,
    ) -> None:
        """Test that a token is expired at exactly its expiry instant."""
        cache.store(identity, token, now=NOW)

        with pytest.raises(ExpiredCacheError):
            cache.retrieve(identity, now=token.expires_at)

    def test_tampered_ciphertext_is_corrupt(
        self,
        cache: EncryptedTokenCache,
        identity: ConnectionIdentity,
        token: SessionToken,
    ) -> None:
        """Test that a modified ciphertext fails authentication."""
        cache.store(identity, token, now=NOW)
        path = cache.path_for(identity)
        data = json.loads(path.read_text())
        raw = bytearray(base64.b64decode(data["cookie"]))
        raw[-1] ^= 0x01
        data["cookie"] = base64.b64encode(bytes(raw)).decode("ascii")
        path.write_text(json.dumps(data))

        with pytest.raises(CorruptCacheError):
            cache.retrieve(identity, now=NOW)

        assert not path.exists()
        with pytest.raises(CacheMissError):
            cache.retrieve(identity, now=NOW)

    def test_wrong_password_is_corrupt(
        self,
        cache: EncryptedTokenCache,
        identity: ConnectionIdentity,
        token: SessionToken,
    ) -> None:
        """Test that another password cannot decrypt the slot."""
        cache.store(identity, token, now=NOW)
        other = ConnectionIdentity("http", "nas.local", 8080, "admin", "wrong")

        with pytest.raises(CorruptCacheError):
            cache.retrieve(other, now=NOW)

    @pytest.mark.parametrize(
        "content",
        [
            "not json at all",
            '{"expiresAt": "2099-01-01T00:00:00Z"}',
            '{"cookie": "***not base64***"}',
            '{"cookie": "c2hvcnQ="}',
        ],
    )
    def test_malformed_slot_is_corrupt(
        self,
        cache: EncryptedTokenCache,
        identity: ConnectionIdentity,
        content: str,
    ) -> None:
        """Test that unparseable slots are deleted and reported corrupt."""
        path = cache.path_for(identity)
        path.parent.mkdir(parents=True)
        path.write_text(content)

        with pytest.raises(CorruptCacheError):
            cache.retrieve(identity, now=NOW)

        assert not path.exists()


class TestStoreFailures:
    """Tests for refused and failed writes."""

    def test_refuses_expired_token(
        self, cache: EncryptedTokenCache, identity: ConnectionIdentity
    ) -> None:
        """Test that an already expired token is never written."""
        expired = SessionToken(value="old", expires_at=NOW - timedelta(seconds=1))

        with pytest.raises(ExpiredCacheError):
            cache.store(identity, expired, now=NOW)

        assert not cache.path_for(identity).exists()

    def test_write_failure_raises_io_error(
        self,
        cache: EncryptedTokenCache,
        identity: ConnectionIdentity,
        token: SessionToken,
    ) -> None:
        """Test that a failed write surfaces as CacheIOError."""
        with patch(
            "qbcli.cache.token_cache.AtomicWriter.write",
            side_effect=OSError("disk full"),
        ):
            with pytest.raises(CacheIOError, match="disk full"):
                cache.store(identity, token, now=NOW)

    def test_unwritable_directory(
        self, tmp_path: Path, identity: ConnectionIdentity, token: SessionToken
    ) -> None:
        """Test that a file in place of the directory raises CacheIOError."""
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        cache = EncryptedTokenCache(CacheConfig(directory=blocker / "cache"))

        with pytest.raises(CacheIOError):
            cache.store(identity, token, now=NOW)


class TestDelete:
    """Tests for slot deletion."""

    def test_delete_removes_slot(
        self,
        cache: EncryptedTokenCache,
        identity: ConnectionIdentity,
        token: SessionToken,
    ) -> None:
        """Test that delete removes the slot."""
        cache.store(identity, token, now=NOW)

        cache.delete(identity)

        assert not cache.path_for(identity).exists()

    def test_delete_is_idempotent(
        self, cache: EncryptedTokenCache, identity: ConnectionIdentity
    ) -> None:
        """Test that deleting a missing slot is not an error."""
        cache.delete(identity)
        cache.delete(identity)
