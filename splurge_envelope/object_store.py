"""Object store adapters.

The envelope and rotation code only depends on the ``ObjectStore`` protocol.
Two adapters ship with the package: an in-memory store for tests and
embedding, and a local directory that behaves like a bucket.
"""

import json
import logging
import os
import struct
import threading
from pathlib import Path
from typing import Iterable, Iterator, Optional, Protocol, runtime_checkable

from splurge_envelope.constants import Constants
from splurge_envelope.exceptions import (
    FileOperationError,
    ObjectNotFoundError,
    StoreError,
    ValidationError,
)
from splurge_envelope.file_manager import FileManager

logger = logging.getLogger(__name__)


@runtime_checkable
class ObjectStore(Protocol):
    """Interface the core needs from a bucket-style object store."""

    def put(self, object_key: str, chunks: Iterable[bytes], metadata: dict[str, str]) -> None:
        """Store bytes and metadata under a key, replacing any previous object."""
        ...

    def get(self, object_key: str) -> Iterator[bytes]:
        """Return the object's bytes as chunks. Raises ObjectNotFoundError."""
        ...

    def get_metadata(self, object_key: str) -> dict[str, str]:
        """Return a copy of the object's metadata. Raises ObjectNotFoundError."""
        ...

    def delete(self, object_key: str) -> None:
        """Delete an object. Raises ObjectNotFoundError."""
        ...

    def list(self, prefix: str = "") -> Iterator[str]:
        """Lazily iterate over every key starting with prefix."""
        ...


def _validate_metadata(metadata: dict[str, str]) -> dict[str, str]:
    for key, value in metadata.items():
        if not isinstance(key, str) or not isinstance(value, str):
            raise ValidationError("Object metadata keys and values must be strings")
    return dict(metadata)


class InMemoryObjectStore:
    """Thread-safe object store held in a dictionary."""

    def __init__(self, *, chunk_size: int | None = None):
        self._objects: dict[str, tuple[bytes, dict[str, str]]] = {}
        self._lock = threading.Lock()
        self._chunk_size = chunk_size or Constants.DEFAULT_SEGMENT_SIZE()

    def put(self, object_key: str, chunks: Iterable[bytes], metadata: dict[str, str]) -> None:
        metadata = _validate_metadata(metadata)
        # Consume the stream before touching the stored object
        data = b"".join(chunks)
        with self._lock:
            self._objects[object_key] = (data, metadata)

    def get(self, object_key: str) -> Iterator[bytes]:
        data, _ = self._lookup(object_key)
        return (data[i:i + self._chunk_size] for i in range(0, len(data), self._chunk_size))

    def get_metadata(self, object_key: str) -> dict[str, str]:
        _, metadata = self._lookup(object_key)
        return dict(metadata)

    def delete(self, object_key: str) -> None:
        with self._lock:
            if object_key not in self._objects:
                raise ObjectNotFoundError("Object not found", object_key=object_key)
            del self._objects[object_key]

    def list(self, prefix: str = "") -> Iterator[str]:
        with self._lock:
            keys = sorted(self._objects)
        return (key for key in keys if key.startswith(prefix))

    def _lookup(self, object_key: str) -> tuple[bytes, dict[str, str]]:
        with self._lock:
            try:
                return self._objects[object_key]
            except KeyError:
                raise ObjectNotFoundError("Object not found", object_key=object_key) from None


class LocalObjectStore:
    """A local directory used as a bucket.

    Each object is a single file at ``<root>/<key>`` holding a 4-byte big-endian
    header length, the metadata as JSON, then the object bytes. Files are
    written through a temporary file and renamed into place, so bytes and
    metadata always change together.
    """

    _HEADER_LENGTH = struct.Struct(">I")

    def __init__(
        self,
        root: str,
        *,
        file_manager: Optional[FileManager] = None,
        chunk_size: int | None = None
    ):
        """Initialize the store.

        Args:
            root: Directory holding the objects
            file_manager: File manager used for atomic writes
            chunk_size: Read size for object downloads
        """
        self._root = Path(root).expanduser()
        self._file_manager = file_manager or FileManager()
        self._chunk_size = chunk_size or Constants.DEFAULT_SEGMENT_SIZE()
        self._file_manager.ensure_directory(self._root)
        removed = self._file_manager.cleanup_temp_files(self._root)
        if removed:
            logger.info(f"Removed {removed} interrupted uploads from {self._root}")

    @property
    def root(self) -> Path:
        return self._root

    def put(self, object_key: str, chunks: Iterable[bytes], metadata: dict[str, str]) -> None:
        path = self._path_for(object_key)
        header = json.dumps(_validate_metadata(metadata), sort_keys=True).encode("utf-8")

        def framed() -> Iterator[bytes]:
            yield self._HEADER_LENGTH.pack(len(header))
            yield header
            yield from chunks

        try:
            self._file_manager.write_chunks_atomic(path, framed())
        except FileOperationError as e:
            raise StoreError(f"Failed to store object: {e}", object_key=object_key) from e

    def get(self, object_key: str) -> Iterator[bytes]:
        path = self._path_for(object_key)
        try:
            handle = path.open("rb")
        except FileNotFoundError:
            raise ObjectNotFoundError("Object not found", object_key=object_key) from None
        except OSError as e:
            raise StoreError(f"Failed to open object: {e}", object_key=object_key) from e

        try:
            self._read_header(handle, object_key)
        except BaseException:
            handle.close()
            raise
        return self._stream(handle, object_key)

    def get_metadata(self, object_key: str) -> dict[str, str]:
        path = self._path_for(object_key)
        try:
            with path.open("rb") as handle:
                return self._read_header(handle, object_key)
        except FileNotFoundError:
            raise ObjectNotFoundError("Object not found", object_key=object_key) from None
        except OSError as e:
            raise StoreError(f"Failed to read object metadata: {e}", object_key=object_key) from e

    def delete(self, object_key: str) -> None:
        path = self._path_for(object_key)
        try:
            path.unlink()
        except FileNotFoundError:
            raise ObjectNotFoundError("Object not found", object_key=object_key) from None
        except OSError as e:
            raise StoreError(f"Failed to delete object: {e}", object_key=object_key) from e

    def list(self, prefix: str = "") -> Iterator[str]:
        yield from self._walk(self._root, "", prefix)

    def _walk(self, directory: Path, base: str, prefix: str) -> Iterator[str]:
        # Directories sort as "name/" so keys come out in lexicographic order
        with os.scandir(directory) as it:
            entries = sorted(it, key=lambda e: e.name + "/" if e.is_dir() else e.name)
        for entry in entries:
            if entry.name.startswith("."):
                continue
            object_key = base + entry.name
            if entry.is_dir():
                subtree = object_key + "/"
                if subtree.startswith(prefix) or prefix.startswith(subtree):
                    yield from self._walk(Path(entry.path), subtree, prefix)
            elif object_key.startswith(prefix):
                yield object_key

    def _stream(self, handle, object_key: str) -> Iterator[bytes]:
        with handle:
            while True:
                try:
                    chunk = handle.read(self._chunk_size)
                except OSError as e:
                    raise StoreError(f"Failed to read object: {e}", object_key=object_key) from e
                if not chunk:
                    return
                yield chunk

    def _read_header(self, handle, object_key: str) -> dict[str, str]:
        raw_length = handle.read(self._HEADER_LENGTH.size)
        if len(raw_length) != self._HEADER_LENGTH.size:
            raise StoreError("Object file is truncated", object_key=object_key)
        (length,) = self._HEADER_LENGTH.unpack(raw_length)
        header = handle.read(length)
        if len(header) != length:
            raise StoreError("Object metadata is truncated", object_key=object_key)
        try:
            metadata = json.loads(header.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise StoreError(f"Object metadata is unreadable: {e}", object_key=object_key) from e
        if not isinstance(metadata, dict):
            raise StoreError("Object metadata is not a JSON object", object_key=object_key)
        return metadata

    def _path_for(self, object_key: str) -> Path:
        if not object_key:
            raise ValidationError("Object key cannot be empty")
        parts = object_key.split("/")
        if any(not part or part.startswith(".") for part in parts):
            raise ValidationError(f"Invalid object key: {object_key}")
        return self._root.joinpath(*parts)
