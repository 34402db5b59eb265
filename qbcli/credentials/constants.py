"""Defaults and key-derivation parameters for connection identities."""

DEFAULT_SCHEME = "http"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8080

ALLOWED_SCHEMES = frozenset({"http", "https"})

PORT_MIN = 0
PORT_MAX = 65535

# scrypt work factors (N=2^15, r=8, p=1)
SCRYPT_N = 1 << 15
SCRYPT_R = 8
SCRYPT_P = 1

DEFAULT_KEY_LENGTH = 32  # AES-256
