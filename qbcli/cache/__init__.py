"""Encrypted local cache for session tokens.

This module provides:
- SessionToken value type (value plus optional expiry)
- EncryptedTokenCache keyed by connection identity
- AES-256-GCM encryption with scrypt-derived keys
- Atomic writes and self-healing deletion of corrupt or expired slots
"""

from qbcli.cache.constants import (
    CACHE_FILE_SUFFIX,
    DEFAULT_NONCE_SIZE,
    DEFAULT_SALT_SIZE,
)
from qbcli.cache.errors import (
    CacheError,
    CacheIOError,
    CacheMissError,
    CorruptCacheError,
    ExpiredCacheError,
)
from qbcli.cache.io import AtomicWriter
from qbcli.cache.models import CacheConfig, EncryptedCacheEntry, SessionToken
from qbcli.cache.token_cache import EncryptedTokenCache


__all__ = [
    # Cache
    "EncryptedTokenCache",
    "AtomicWriter",
    # Models
    "CacheConfig",
    "EncryptedCacheEntry",
    "SessionToken",
    # Errors
    "CacheError",
    "CacheIOError",
    "CacheMissError",
    "CorruptCacheError",
    "ExpiredCacheError",
    # Constants
    "CACHE_FILE_SUFFIX",
    "DEFAULT_NONCE_SIZE",
    "DEFAULT_SALT_SIZE",
]
