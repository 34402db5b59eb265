"""I/O utilities for the token cache.

Provides atomic file writing so concurrent readers never see a partially
written slot.
"""

import os
import tempfile
from pathlib import Path

import structlog

from qbcli.cache.constants import CACHE_FILE_MODE


logger = structlog.get_logger()


class AtomicWriter:
    """Provides atomic file writing operations.

    Writes content to a uniquely named temporary file in the target
    directory, then renames it over the final path. Concurrent writers
    never share a temporary file and readers see either the complete old
    file or the complete new one.
    """

    def __init__(self, mode: int = CACHE_FILE_MODE) -> None:
        """Initialize the atomic writer.

        Args:
            mode: Permission bits applied to written files.
        """
        self._mode = mode
        self._log = logger.bind(component="atomic_writer")

    def write(self, path: Path, content: str) -> int:
        """Write content to file with atomic semantics.

        Args:
            path: Target file path.
            content: Content to write (encoded as UTF-8).

        Returns:
            Number of bytes written.

        Raises:
            OSError: If the temporary file cannot be written or renamed.
        """
        content_bytes = content.encode("utf-8")

        fd, temp_name = tempfile.mkstemp(
            dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
        )
        temp_path = Path(temp_name)
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(content_bytes)
                fh.flush()
                os.fsync(fh.fileno())
            temp_path.chmod(self._mode)
            temp_path.replace(path)
        except BaseException:
            temp_path.unlink(missing_ok=True)
            raise

        self._log.debug("file_written", path=str(path), bytes=len(content_bytes))
        return len(content_bytes)
