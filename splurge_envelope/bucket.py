"""Encrypted bucket: client-side envelope encryption over an object store."""

import logging
from typing import BinaryIO, Iterable, Iterator, Optional, Union

from splurge_envelope.config import DEFAULT_CONFIG, EnvelopeConfig
from splurge_envelope.envelope import EnvelopeCodec, read_chunks
from splurge_envelope.exceptions import EnvelopeError, ValidationError
from splurge_envelope.file_manager import FileManager
from splurge_envelope.models import Instruction, KeyPair, PublicKey
from splurge_envelope.object_store import ObjectStore
from splurge_envelope.services import InstructionService, KeyedLock, RotationCoordinator

logger = logging.getLogger(__name__)

PlaintextSource = Union[bytes, BinaryIO, Iterable[bytes]]


class EncryptedBucket:
    """Encrypts objects before upload and decrypts them after download.

    Plaintext and private keys never reach the object store; each object is
    stored with its wrapped content key and the identity of the wrapping key
    in its metadata.
    """

    def __init__(
        self,
        store: ObjectStore,
        *,
        config: EnvelopeConfig | None = None,
        file_manager: FileManager | None = None
    ):
        """Initialize the encrypted bucket.

        Args:
            store: Object store adapter
            config: Envelope configuration
            file_manager: File manager for rotation scratch files
        """
        self._store = store
        self._config = config or DEFAULT_CONFIG
        self._codec = EnvelopeCodec(config=self._config)
        self._locks = KeyedLock()
        self._instructions = InstructionService(store, self._config)
        self._coordinator = RotationCoordinator(
            store,
            config=self._config,
            codec=self._codec,
            file_manager=file_manager,
            locks=self._locks,
        )

    @property
    def store(self) -> ObjectStore:
        return self._store

    @property
    def config(self) -> EnvelopeConfig:
        return self._config

    @property
    def coordinator(self) -> RotationCoordinator:
        """Rotation coordinator sharing this bucket's per-object locks."""
        return self._coordinator

    def put_object(
        self,
        object_key: str,
        plaintext: PlaintextSource,
        public_key: PublicKey,
        *,
        metadata: Optional[dict[str, str]] = None
    ) -> Instruction:
        """Encrypt and upload an object.

        Args:
            object_key: Key to store the object under
            plaintext: Bytes, a binary file object, or an iterable of chunks
            public_key: Key to wrap the content key with
            metadata: Extra metadata stored with the object

        Returns:
            The object's Instruction

        Raises:
            ValidationError: If the key or metadata is invalid
            StoreError: If the upload fails
        """
        self._validate_object_key(object_key)
        extra = dict(metadata or {})
        reserved = {self._config.tag_key, self._config.instruction_metadata_key} & set(extra)
        if reserved:
            raise ValidationError(f"Metadata keys are reserved: {', '.join(sorted(reserved))}")

        ciphertext, instruction = self._codec.seal(self._as_chunks(plaintext), public_key)
        with self._locks.hold(object_key):
            try:
                self._store.put(object_key, ciphertext, self._instructions.metadata_for(extra, instruction))
                # A new inline instruction supersedes any sibling left from earlier uploads
                self._instructions.remove_sibling(object_key)
            except EnvelopeError as e:
                raise e.with_object_key(object_key)

        logger.info("Object stored", extra={
            "object_key": object_key,
            "identity": instruction.key_identity,
            "event": "object_stored"
        })
        return instruction

    def get_object(self, object_key: str, key_pair: KeyPair) -> Iterator[bytes]:
        """Download and decrypt an object.

        Metadata and the byte stream are fetched under the object's lock, so
        a concurrent rotation cannot pair an old instruction with new bytes.

        Raises:
            ObjectNotFoundError: If the object does not exist
            KeyMismatchError: If key_pair did not wrap the object's content key
            CorruptDataError: If the object fails integrity checks
        """
        with self._locks.hold(object_key):
            try:
                instruction = self.get_instruction(object_key)
                ciphertext = self._store.get(object_key)
            except EnvelopeError as e:
                raise e.with_object_key(object_key)

        try:
            plaintext = self._codec.open(ciphertext, instruction, key_pair)
        except EnvelopeError as e:
            close = getattr(ciphertext, "close", None)
            if close is not None:
                close()
            raise e.with_object_key(object_key)
        return self._tag_errors(plaintext, object_key)

    def read_object(self, object_key: str, key_pair: KeyPair) -> bytes:
        """Download and decrypt a small object into memory."""
        return b"".join(self.get_object(object_key, key_pair))

    def get_instruction(self, object_key: str) -> Instruction:
        """Return the Instruction stored with an object.

        Raises:
            ObjectNotFoundError: If the object does not exist
            CorruptDataError: If the instruction is missing or malformed
        """
        metadata = self._store.get_metadata(object_key)
        return self._instructions.load(object_key, metadata).instruction

    def key_identity(self, object_key: str) -> Optional[str]:
        """Return the identity tag of the key protecting an object."""
        return self._instructions.key_identity(self._store.get_metadata(object_key))

    def list_objects(self, prefix: str = "") -> Iterator[str]:
        """Lazily list object keys, skipping instruction artifacts."""
        for object_key in self._store.list(prefix):
            if not self._config.is_instruction_artifact(object_key):
                yield object_key

    def delete_object(self, object_key: str) -> None:
        """Delete an object together with any sibling instruction."""
        with self._locks.hold(object_key):
            try:
                self._store.delete(object_key)
                self._instructions.remove_sibling(object_key)
            except EnvelopeError as e:
                raise e.with_object_key(object_key)

        logger.info("Object deleted", extra={
            "object_key": object_key,
            "event": "object_deleted"
        })

    def _as_chunks(self, plaintext: PlaintextSource) -> Iterable[bytes]:
        if isinstance(plaintext, (bytes, bytearray, memoryview)):
            return [bytes(plaintext)]
        if hasattr(plaintext, "read"):
            return read_chunks(plaintext, self._config.segment_size)
        return plaintext

    def _validate_object_key(self, object_key: str) -> None:
        if not object_key:
            raise ValidationError("Object key cannot be empty")
        if self._config.is_instruction_artifact(object_key):
            raise ValidationError(
                f"Object keys ending in '{self._config.instruction_suffix}' are reserved",
                object_key=object_key
            )

    @staticmethod
    def _tag_errors(plaintext: Iterator[bytes], object_key: str) -> Iterator[bytes]:
        try:
            yield from plaintext
        except EnvelopeError as e:
            raise e.with_object_key(object_key)
