"""Local file management for key artifacts and rotation scratch space."""

import logging
import os
import tempfile
import uuid
from pathlib import Path
from typing import IO, Iterable, Optional

from splurge_envelope.exceptions import FileOperationError

logger = logging.getLogger(__name__)


class FileManager:
    """Manages local file operations with atomic writes and owner-only permissions."""

    def __init__(
        self,
        scratch_dir: Optional[str] = None
    ):
        """Initialize the file manager.

        Args:
            scratch_dir: Directory for rotation scratch files (default: system temp dir)
        """
        self._scratch_dir = Path(scratch_dir).expanduser() if scratch_dir else None
        if self._scratch_dir is not None:
            self.ensure_directory(self._scratch_dir)

    def ensure_directory(self, directory: Path) -> None:
        """Ensure a directory exists.

        Raises:
            FileOperationError: If the directory cannot be created
        """
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FileOperationError(f"Failed to create directory {directory}: {e}") from e

    def write_bytes_atomic(
        self,
        file_path: Path,
        data: bytes,
        *,
        secure: bool = False
    ) -> None:
        """Write bytes atomically using a temporary file.

        Raises:
            FileOperationError: If write operation fails
        """
        self.write_chunks_atomic(file_path, [data], secure=secure)

    def write_chunks_atomic(
        self,
        file_path: Path,
        chunks: Iterable[bytes],
        *,
        secure: bool = False
    ) -> None:
        """Stream chunks into a temporary file, then rename it over the target.

        Readers see either the previous file or the complete new one.

        Args:
            file_path: Path to the target file
            chunks: Data to write
            secure: Restrict the final file to owner read/write

        Raises:
            FileOperationError: If write operation fails
        """
        temp_file = file_path.with_name(f".{file_path.name}.{uuid.uuid4().hex}.temp")

        try:
            self.ensure_directory(file_path.parent)

            # Create the temporary file with its final permissions from the start
            mode = 0o600 if secure else 0o644
            fd = os.open(temp_file, os.O_WRONLY | os.O_CREAT | os.O_EXCL, mode)
            with os.fdopen(fd, "wb") as f:
                for chunk in chunks:
                    f.write(chunk)
                f.flush()
                os.fsync(f.fileno())

            os.replace(temp_file, file_path)

            if secure:
                self._set_secure_permissions(file_path)

        except BaseException as e:
            # Also covers failures raised by the chunk iterator itself
            if temp_file.exists():
                temp_file.unlink()
            if isinstance(e, OSError):
                raise FileOperationError(f"Failed to write file {file_path}: {e}") from e
            raise

    def read_bytes(self, file_path: Path) -> Optional[bytes]:
        """Read a file.

        Args:
            file_path: Path to the file to read

        Returns:
            File contents, or None if the file doesn't exist

        Raises:
            FileOperationError: If read operation fails
        """
        if not file_path.exists():
            return None

        try:
            return file_path.read_bytes()
        except OSError as e:
            raise FileOperationError(f"Failed to read file {file_path}: {e}") from e

    def create_scratch_file(self) -> IO[bytes]:
        """Create an exclusively owned, anonymous scratch file.

        The file is removed from the filesystem when closed.

        Raises:
            FileOperationError: If the scratch file cannot be created
        """
        try:
            return tempfile.TemporaryFile(
                mode="w+b",
                prefix="splurge-envelope-",
                dir=str(self._scratch_dir) if self._scratch_dir else None,
            )
        except OSError as e:
            raise FileOperationError(f"Failed to create scratch file: {e}") from e

    def cleanup_temp_files(self, directory: Path) -> int:
        """Clean up temporary files left behind by interrupted atomic writes.

        Returns:
            Number of files removed
        """
        removed = 0
        for temp_file in directory.rglob(".*.temp"):
            try:
                temp_file.unlink()
                removed += 1
            except OSError as e:
                logger.warning(f"Failed to remove temporary file {temp_file}: {e}")
        return removed

    def _set_secure_permissions(self, file_path: Path) -> None:
        """Set secure file permissions (owner read/write only).

        Args:
            file_path: Path to the file to secure
        """
        try:
            os.chmod(file_path, 0o600)
        except OSError as e:
            # Not every filesystem supports POSIX modes
            logger.debug(f"Could not restrict permissions on {file_path}: {e}")

    @property
    def scratch_directory(self) -> Optional[Path]:
        """Get the scratch directory path."""
        return self._scratch_dir
