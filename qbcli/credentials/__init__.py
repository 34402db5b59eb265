"""Connection identity and credential-derived material.

Provides:
- ConnectionIdentity built from a host URL and overrides
- Cache key derivation that never embeds the password
- scrypt key derivation for the encrypted token cache
"""

from qbcli.credentials.constants import (
    DEFAULT_HOST,
    DEFAULT_KEY_LENGTH,
    DEFAULT_PORT,
    DEFAULT_SCHEME,
    SCRYPT_N,
    SCRYPT_P,
    SCRYPT_R,
)
from qbcli.credentials.errors import InvalidIdentityError
from qbcli.credentials.kdf import derive_encryption_key
from qbcli.credentials.models import ConnectionIdentity, derive_cache_key


__all__ = [
    # Models
    "ConnectionIdentity",
    # Derivation
    "derive_cache_key",
    "derive_encryption_key",
    # Errors
    "InvalidIdentityError",
    # Constants
    "DEFAULT_HOST",
    "DEFAULT_KEY_LENGTH",
    "DEFAULT_PORT",
    "DEFAULT_SCHEME",
    "SCRYPT_N",
    "SCRYPT_P",
    "SCRYPT_R",
]
