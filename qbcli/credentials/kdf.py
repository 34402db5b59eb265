"""Password-based key derivation for the token cache."""

from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from qbcli.credentials.constants import (
    DEFAULT_KEY_LENGTH,
    SCRYPT_N,
    SCRYPT_P,
    SCRYPT_R,
)


def derive_encryption_key(
    password: str,
    salt: bytes,
    key_length: int = DEFAULT_KEY_LENGTH,
    *,
    n: int = SCRYPT_N,
    r: int = SCRYPT_R,
    p: int = SCRYPT_P,
) -> bytes:
    """Derive a symmetric key from a password with scrypt.

    Args:
        password: Password whose UTF-8 bytes seed the derivation.
        salt: Per-entry random salt.
        key_length: Length of the derived key in bytes.
        n: CPU/memory cost parameter.
        r: Block size.
        p: Parallelism.

    Returns:
        Derived key bytes.

    Raises:
        ValueError: If the salt is empty or the key length is not positive.
    """
    if not salt:
        msg = "salt must not be empty"
        raise ValueError(msg)
    if key_length <= 0:
        msg = f"key length must be positive, got {key_length}"
        raise ValueError(msg)

    kdf = Scrypt(salt=salt, length=key_length, n=n, r=r, p=p)
    return kdf.derive(password.encode("utf-8"))
