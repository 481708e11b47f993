"""Typed operations and their runner.

Every action the tool can perform is a small frozen dataclass. The
``CommandRunner`` dispatches on the command type and returns a typed result,
so callers never route work by string name.
"""

import threading
from dataclasses import dataclass, field
from functools import singledispatchmethod
from pathlib import Path
from typing import Any, Iterator, Optional

from splurge_envelope.bucket import EncryptedBucket
from splurge_envelope.exceptions import FileOperationError, ValidationError
from splurge_envelope.file_manager import FileManager
from splurge_envelope.key_store import KeyStore
from splurge_envelope.models import Instruction, RotationOutcome


@dataclass(frozen=True)
class CreateKey:
    key_path: str


@dataclass(frozen=True)
class Seal:
    """Encrypt a local file and upload it."""

    object_key: str
    source: str
    key_path: str
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Open:
    """Download and decrypt an object into a local file."""

    object_key: str
    destination: str
    key_path: str


@dataclass(frozen=True)
class RotateOne:
    object_key: str
    old_key_path: str
    new_key_path: str


@dataclass(frozen=True)
class RotateAll:
    prefix: str
    old_key_path: str
    new_key_path: str
    max_workers: Optional[int] = None
    cancel_event: Optional[threading.Event] = field(default=None, repr=False, compare=False)


@dataclass(frozen=True)
class ListObjects:
    prefix: str = ""


@dataclass(frozen=True)
class DeleteObject:
    object_key: str


Command = CreateKey | Seal | Open | RotateOne | RotateAll | ListObjects | DeleteObject


@dataclass(frozen=True)
class CreateKeyResult:
    identity: str
    fingerprint: str
    private_key_path: str
    public_key_path: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "identity": self.identity,
            "fingerprint": self.fingerprint,
            "private_key_path": self.private_key_path,
            "public_key_path": self.public_key_path,
        }


@dataclass(frozen=True)
class SealResult:
    object_key: str
    instruction: Instruction

    def to_dict(self) -> dict[str, Any]:
        return {
            "object_key": self.object_key,
            "key_identity": self.instruction.key_identity,
            "key_fingerprint": self.instruction.key_fingerprint,
        }


@dataclass(frozen=True)
class OpenResult:
    object_key: str
    destination: str
    size: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "object_key": self.object_key,
            "destination": self.destination,
            "size": self.size,
        }


@dataclass(frozen=True)
class ListObjectsResult:
    prefix: str
    object_keys: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "prefix": self.prefix,
            "count": len(self.object_keys),
            "object_keys": list(self.object_keys),
        }


@dataclass(frozen=True)
class DeleteObjectResult:
    object_key: str

    def to_dict(self) -> dict[str, Any]:
        return {"object_key": self.object_key}


class CommandRunner:
    """Executes typed commands against a bucket and a key store."""

    def __init__(
        self,
        bucket: EncryptedBucket,
        key_store: KeyStore,
        *,
        file_manager: FileManager | None = None
    ):
        self._bucket = bucket
        self._key_store = key_store
        self._file_manager = file_manager or FileManager()

    @singledispatchmethod
    def execute(self, command: Any) -> Any:
        """Run a command and return its typed result.

        Raises:
            ValidationError: If the command type is not supported
        """
        raise ValidationError(f"Unsupported command: {type(command).__name__}")

    @execute.register
    def _create_key(self, command: CreateKey) -> CreateKeyResult:
        key_pair = self._key_store.generate(command.key_path)
        private_path, public_path = self._key_store.artifact_paths(command.key_path)
        return CreateKeyResult(
            identity=key_pair.identity,
            fingerprint=key_pair.fingerprint,
            private_key_path=str(private_path),
            public_key_path=str(public_path),
        )

    @execute.register
    def _seal(self, command: Seal) -> SealResult:
        public_key = self._key_store.load_public(command.key_path)
        source = Path(command.source).expanduser()
        try:
            handle = source.open("rb")
        except OSError as e:
            raise FileOperationError(f"Failed to open {source}: {e}") from e
        with handle:
            instruction = self._bucket.put_object(
                command.object_key,
                handle,
                public_key,
                metadata=dict(command.metadata),
            )
        return SealResult(object_key=command.object_key, instruction=instruction)

    @execute.register
    def _open(self, command: Open) -> OpenResult:
        key_pair = self._key_store.load_private(command.key_path)
        destination = Path(command.destination).expanduser()
        size = 0

        def counted(chunks: Iterator[bytes]) -> Iterator[bytes]:
            nonlocal size
            for chunk in chunks:
                size += len(chunk)
                yield chunk

        # Nothing appears at the destination unless the whole object authenticates
        self._file_manager.write_chunks_atomic(
            destination,
            counted(self._bucket.get_object(command.object_key, key_pair)),
        )
        return OpenResult(object_key=command.object_key, destination=str(destination), size=size)

    @execute.register
    def _rotate_one(self, command: RotateOne) -> RotationOutcome:
        old_key = self._key_store.load_private(command.old_key_path)
        new_key = self._key_store.load_public(command.new_key_path)
        return self._bucket.coordinator.rotate_one(command.object_key, old_key, new_key)

    @execute.register
    def _rotate_all(self, command: RotateAll) -> Iterator[RotationOutcome]:
        old_key = self._key_store.load_private(command.old_key_path)
        new_key = self._key_store.load_public(command.new_key_path)
        return self._bucket.coordinator.rotate_all(
            command.prefix,
            old_key,
            new_key,
            max_workers=command.max_workers,
            cancel_event=command.cancel_event,
        )

    @execute.register
    def _list_objects(self, command: ListObjects) -> ListObjectsResult:
        return ListObjectsResult(
            prefix=command.prefix,
            object_keys=list(self._bucket.list_objects(command.prefix)),
        )

    @execute.register
    def _delete_object(self, command: DeleteObject) -> DeleteObjectResult:
        self._bucket.delete_object(command.object_key)
        return DeleteObjectResult(object_key=command.object_key)

