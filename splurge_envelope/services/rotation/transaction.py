"""Rotation transaction management for a single object."""

import logging
from typing import IO, Optional

from splurge_envelope.exceptions import KeyRotationError
from splurge_envelope.file_manager import FileManager

logger = logging.getLogger(__name__)


class RotationTransaction:
    """Owns the scratch plaintext of one object rotation.

    The scratch file is anonymous and removed when the transaction exits,
    whether the rotation committed or not. Nothing in the object store is
    touched by the transaction itself; the old ciphertext stays in place until
    the caller's single put of the new version succeeds.
    """

    def __init__(self, file_manager: FileManager, object_key: str):
        """Initialize rotation transaction.

        Args:
            file_manager: File manager used to create the scratch file
            object_key: Key of the object being rotated
        """
        self._file_manager = file_manager
        self._object_key = object_key
        self._scratch: Optional[IO[bytes]] = None
        self._is_committed = False

    @property
    def scratch(self) -> IO[bytes]:
        """The scratch file, created on first use."""
        if self._is_committed:
            raise KeyRotationError("Transaction already committed", object_key=self._object_key)
        if self._scratch is None:
            self._scratch = self._file_manager.create_scratch_file()
        return self._scratch

    @property
    def is_committed(self) -> bool:
        return self._is_committed

    def commit(self) -> None:
        """Mark the new version as durably written and drop the scratch file."""
        self._is_committed = True
        self._discard_scratch()

    def _discard_scratch(self) -> None:
        if self._scratch is not None:
            try:
                self._scratch.close()
            finally:
                self._scratch = None

    def __enter__(self) -> "RotationTransaction":
        """Enter transaction context."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit transaction context - discard scratch plaintext either way."""
        if exc_type is not None and not self._is_committed:
            logger.warning("Rotation aborted before commit, previous version left in place", extra={
                "object_key": self._object_key,
                "error": str(exc_val),
                "event": "rotation_aborted"
            })
        self._discard_scratch()
