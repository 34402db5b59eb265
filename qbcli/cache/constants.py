"""Constants for the encrypted token cache."""

DEFAULT_SALT_SIZE = 16
DEFAULT_NONCE_SIZE = 12

# AES-GCM authentication tag appended to every ciphertext
GCM_TAG_SIZE = 16

CACHE_FILE_SUFFIX = ".cookie"

CACHE_DIR_MODE = 0o700
CACHE_FILE_MODE = 0o600
