"""Data models for the encrypted token cache."""

from datetime import UTC, datetime
from pathlib import Path
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator

from qbcli.cache.constants import DEFAULT_NONCE_SIZE, DEFAULT_SALT_SIZE
from qbcli.credentials.constants import (
    DEFAULT_KEY_LENGTH,
    SCRYPT_N,
    SCRYPT_P,
    SCRYPT_R,
)


AES_KEY_LENGTHS = frozenset({16, 24, 32})


def _ensure_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class SessionToken(BaseModel):
    """Opaque session credential issued by the server after login.

    A token without an expiry stays valid until the server rejects it.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    value: Annotated[str, Field(min_length=1, description="Opaque session value")]
    expires_at: datetime | None = Field(
        default=None,
        alias="expiresAt",
        description="Expiry timestamp (UTC), None for no expiry",
    )

    @field_validator("expires_at")
    @classmethod
    def normalize_expiry(cls, v: datetime | None) -> datetime | None:
        """Store expiry as an aware UTC timestamp."""
        return _ensure_utc(v)

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check whether the token has expired.

        Args:
            now: Reference time (default: current UTC time).

        Returns:
            True if the token has an expiry that is not in the future.
        """
        if self.expires_at is None:
            return False
        current = now or datetime.now(UTC)
        return current >= self.expires_at

    def __repr__(self) -> str:
        return f"SessionToken(value='<redacted>', expires_at={self.expires_at!r})"

    __str__ = __repr__


class EncryptedCacheEntry(BaseModel):
    """On-disk representation of one cache slot.

    ``expires_at`` is a plaintext mirror of the token expiry used for a
    cheap pre-decryption check. ``cookie`` holds
    base64(salt || nonce || ciphertext).
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    expires_at: datetime | None = Field(default=None, alias="expiresAt")
    cookie: Annotated[str, Field(min_length=1)]

    @field_validator("expires_at")
    @classmethod
    def normalize_expiry(cls, v: datetime | None) -> datetime | None:
        """Store expiry as an aware UTC timestamp."""
        return _ensure_utc(v)

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check the plaintext expiry mirror.

        Args:
            now: Reference time (default: current UTC time).

        Returns:
            True if the mirror says the token is expired.
        """
        if self.expires_at is None:
            return False
        current = now or datetime.now(UTC)
        return current >= self.expires_at

    def to_json(self) -> str:
        """Serialize to the cache file format."""
        return self.model_dump_json(by_alias=True, exclude_none=True, indent=2)


class CacheConfig(BaseModel):
    """Configuration for the encrypted token cache."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    directory: Path = Field(description="Directory holding cache slots")
    salt_size: Annotated[int, Field(ge=16, le=64)] = DEFAULT_SALT_SIZE
    nonce_size: Annotated[int, Field(ge=12, le=16)] = DEFAULT_NONCE_SIZE
    key_length: int = DEFAULT_KEY_LENGTH
    scrypt_n: Annotated[int, Field(ge=SCRYPT_N)] = SCRYPT_N
    scrypt_r: Annotated[int, Field(ge=SCRYPT_R)] = SCRYPT_R
    scrypt_p: Annotated[int, Field(ge=SCRYPT_P, le=16)] = SCRYPT_P

    @field_validator("key_length")
    @classmethod
    def validate_key_length(cls, v: int) -> int:
        """Ensure the key length matches an AES key size."""
        if v not in AES_KEY_LENGTHS:
            msg = f"key_length must be one of {sorted(AES_KEY_LENGTHS)}, got {v}"
            raise ValueError(msg)
        return v

    @field_validator("scrypt_n")
    @classmethod
    def validate_power_of_two(cls, v: int) -> int:
        """Ensure the scrypt cost parameter is a power of two."""
        if v & (v - 1):
            msg = f"scrypt_n must be a power of two, got {v}"
            raise ValueError(msg)
        return v
