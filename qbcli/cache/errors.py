"""Errors raised by the encrypted token cache.

Every retrieval failure resolves to one of these. Corrupt and expired
slots are deleted before the error is raised, so a caller only ever sees
each bad entry once; the next lookup reports a clean miss.
"""

from pathlib import Path


class CacheError(Exception):
    """Base exception for all token cache errors.

    Attributes:
        path: Cache slot the error refers to.
    """

    def __init__(self, path: Path, message: str) -> None:
        """Initialize the error.

        Args:
            path: Cache slot the error refers to.
            message: Human-readable message.
        """
        self.path = path
        super().__init__(f"{message}: {path}")


class CacheMissError(CacheError):
    """Raised when no entry exists for the identity."""

    def __init__(self, path: Path) -> None:
        super().__init__(path, "no cached session")


class CorruptCacheError(CacheError):
    """Raised when an entry cannot be decoded, decrypted, or parsed.

    The slot has already been deleted when this is raised.
    """


class ExpiredCacheError(CacheError):
    """Raised when an entry or token has expired.

    On retrieval the slot has already been deleted. On store the token
    was refused and nothing was written.
    """


class CacheIOError(CacheError):
    """Raised when the cache directory or slot cannot be read or written."""
