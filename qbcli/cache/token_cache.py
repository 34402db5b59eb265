"""Encrypted on-disk cache for session tokens."""

import base64
import binascii
import os
from datetime import UTC, datetime
from pathlib import Path

import structlog
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from pydantic import ValidationError

from qbcli.cache.constants import CACHE_DIR_MODE, CACHE_FILE_SUFFIX, GCM_TAG_SIZE
from qbcli.cache.errors import (
    CacheIOError,
    CacheMissError,
    CorruptCacheError,
    ExpiredCacheError,
)
from qbcli.cache.io import AtomicWriter
from qbcli.cache.models import CacheConfig, EncryptedCacheEntry, SessionToken
from qbcli.credentials import (
    ConnectionIdentity,
    derive_cache_key,
    derive_encryption_key,
)


logger = structlog.get_logger()


class EncryptedTokenCache:
    """Persists one session token per connection identity.

    Each slot is a JSON file holding a plaintext expiry mirror and
    base64(salt || nonce || AES-GCM ciphertext). The key is derived from
    the identity password with scrypt and a fresh salt on every write.

    Retrieval checks expiry twice: first against the plaintext mirror to
    skip decryption of stale entries, then against the decrypted token,
    which is authoritative. Any decode, decrypt, or parse failure deletes
    the slot before raising.
    """

    def __init__(self, config: CacheConfig) -> None:
        """Initialize the cache.

        Args:
            config: Cache configuration.
        """
        self._config = config
        self._writer = AtomicWriter()
        self._log = logger.bind(component="cache", directory=str(config.directory))

    @property
    def directory(self) -> Path:
        """Get the cache directory."""
        return self._config.directory

    def path_for(self, identity: ConnectionIdentity) -> Path:
        """Get the slot path for an identity.

        Args:
            identity: Connection identity.

        Returns:
            Path of the identity's cache file.
        """
        return self._config.directory / f"{derive_cache_key(identity)}{CACHE_FILE_SUFFIX}"

    def store(
        self,
        identity: ConnectionIdentity,
        token: SessionToken,
        now: datetime | None = None,
    ) -> None:
        """Encrypt and persist a token.

        Args:
            identity: Connection identity owning the slot.
            token: Token to persist.
            now: Reference time for the expiry check.

        Raises:
            ExpiredCacheError: If the token is already expired.
            CacheIOError: If the directory or file cannot be written.
        """
        path = self.path_for(identity)
        log = self._log.bind(path=str(path))

        if token.is_expired(now or datetime.now(UTC)):
            log.warning("cache_store_refused", reason="token_expired")
            raise ExpiredCacheError(path, "refusing to cache expired token")

        try:
            self._config.directory.mkdir(
                mode=CACHE_DIR_MODE, parents=True, exist_ok=True
            )
        except OSError as e:
            log.error("cache_dir_create_failed", error=str(e))
            msg = f"creating cache dir failed: {e}"
            raise CacheIOError(path, msg) from e

        salt = os.urandom(self._config.salt_size)
        nonce = os.urandom(self._config.nonce_size)
        key = self._derive_key(identity, salt)

        plaintext = token.model_dump_json(by_alias=True).encode("utf-8")
        ciphertext = AESGCM(key).encrypt(nonce, plaintext, None)

        entry = EncryptedCacheEntry(
            expires_at=token.expires_at,
            cookie=base64.b64encode(salt + nonce + ciphertext).decode("ascii"),
        )

        try:
            self._writer.write(path, entry.to_json())
        except OSError as e:
            log.error("cache_write_failed", error=str(e))
            msg = f"writing cache file failed: {e}"
            raise CacheIOError(path, msg) from e

        log.debug("cache_stored", expires_at=_format_expiry(token.expires_at))

    def retrieve(
        self,
        identity: ConnectionIdentity,
        now: datetime | None = None,
    ) -> SessionToken:
        """Read and decrypt the token for an identity.

        Args:
            identity: Connection identity owning the slot.
            now: Reference time for expiry checks.

        Returns:
            The cached token.

        Raises:
            CacheMissError: If no slot exists.
            CacheIOError: If the slot exists but cannot be read.
            ExpiredCacheError: If the token expired (slot deleted).
            CorruptCacheError: If the slot is unreadable (slot deleted).
        """
        path = self.path_for(identity)
        log = self._log.bind(path=str(path))
        current = now or datetime.now(UTC)

        try:
            data = path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            log.debug("cache_miss")
            raise CacheMissError(path) from e
        except (OSError, UnicodeDecodeError) as e:
            log.error("cache_read_failed", error=str(e))
            msg = f"reading cache file failed: {e}"
            raise CacheIOError(path, msg) from e

        try:
            entry = EncryptedCacheEntry.model_validate_json(data)
        except ValidationError as e:
            raise self._corrupt(path, "parsing cache metadata failed", e) from e

        if entry.is_expired(current):
            log.debug("cache_expired", expires_at=_format_expiry(entry.expires_at))
            self._discard(path)
            raise ExpiredCacheError(path, "cached session expired")

        token = self._decrypt(identity, path, entry)

        if token.is_expired(current):
            log.debug("cache_expired", expires_at=_format_expiry(token.expires_at))
            self._discard(path)
            raise ExpiredCacheError(path, "cached session expired")

        log.debug("cache_hit", expires_at=_format_expiry(token.expires_at))
        return token

    def delete(self, identity: ConnectionIdentity) -> None:
        """Delete the slot for an identity.

        Idempotent: a missing slot is not an error.

        Args:
            identity: Connection identity owning the slot.

        Raises:
            CacheIOError: If an existing slot cannot be removed.
        """
        path = self.path_for(identity)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            self._log.error("cache_delete_failed", path=str(path), error=str(e))
            msg = f"deleting cache file failed: {e}"
            raise CacheIOError(path, msg) from e
        self._log.debug("cache_deleted", path=str(path))

    def _decrypt(
        self,
        identity: ConnectionIdentity,
        path: Path,
        entry: EncryptedCacheEntry,
    ) -> SessionToken:
        salt_size = self._config.salt_size
        nonce_size = self._config.nonce_size

        try:
            decoded = base64.b64decode(entry.cookie, validate=True)
        except (binascii.Error, ValueError) as e:
            raise self._corrupt(path, "invalid base64 encoding", e) from e

        if len(decoded) < salt_size + nonce_size + GCM_TAG_SIZE:
            raise self._corrupt(path, "encrypted payload too short", None)

        salt = decoded[:salt_size]
        nonce = decoded[salt_size : salt_size + nonce_size]
        ciphertext = decoded[salt_size + nonce_size :]

        try:
            key = self._derive_key(identity, salt)
            plaintext = AESGCM(key).decrypt(nonce, ciphertext, None)
        except (InvalidTag, ValueError) as e:
            raise self._corrupt(path, "decryption failed", e) from e

        try:
            return SessionToken.model_validate_json(plaintext)
        except ValidationError as e:
            raise self._corrupt(path, "parsing cached token failed", e) from e

    def _derive_key(self, identity: ConnectionIdentity, salt: bytes) -> bytes:
        return derive_encryption_key(
            identity.password,
            salt,
            self._config.key_length,
            n=self._config.scrypt_n,
            r=self._config.scrypt_r,
            p=self._config.scrypt_p,
        )

    def _corrupt(
        self, path: Path, message: str, cause: Exception | None
    ) -> CorruptCacheError:
        self._log.error(
            "cache_corrupt",
            path=str(path),
            reason=message,
            error=str(cause) if cause else None,
        )
        self._discard(path)
        return CorruptCacheError(path, message)

    def _discard(self, path: Path) -> None:
        # Cleanup failures are logged, never raised.
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            self._log.error("cache_cleanup_failed", path=str(path), error=str(e))


def _format_expiry(expires_at: datetime | None) -> str | None:
    return expires_at.isoformat() if expires_at else None
