"""Rotation coordinator that re-keys encrypted objects."""

import logging
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Iterable, Iterator, Optional

from splurge_envelope.config import DEFAULT_CONFIG, EnvelopeConfig
from splurge_envelope.envelope import EnvelopeCodec
from splurge_envelope.exceptions import EnvelopeError, KeyRotationError
from splurge_envelope.file_manager import FileManager
from splurge_envelope.models import (
    KeyPair,
    PublicKey,
    RotationOutcome,
    RotationStatus,
)
from splurge_envelope.object_store import ObjectStore
from splurge_envelope.services.instruction_service import InstructionService
from splurge_envelope.services.locks import KeyedLock
from splurge_envelope.services.rotation.operations import (
    decrypt_to_scratch,
    seal_from_scratch,
)
from splurge_envelope.services.rotation.transaction import RotationTransaction

logger = logging.getLogger(__name__)


class RotationCoordinator:
    """Replaces the wrapping key of stored objects.

    Each object is rotated under its own lock: fetch, decrypt into a private
    scratch file, re-seal for the new key, then write ciphertext, instruction
    and key tag in a single put. The previous version stays readable until
    that put succeeds.
    """

    def __init__(
        self,
        store: ObjectStore,
        *,
        config: EnvelopeConfig | None = None,
        codec: EnvelopeCodec | None = None,
        file_manager: FileManager | None = None,
        locks: KeyedLock | None = None
    ):
        """Initialize the rotation coordinator.

        Args:
            store: Object store adapter
            config: Envelope configuration
            codec: Envelope codec (built from config if omitted)
            file_manager: File manager for scratch files
            locks: Per-object locks, shared with writers of the same store
        """
        self._store = store
        self._config = config or DEFAULT_CONFIG
        self._codec = codec or EnvelopeCodec(config=self._config)
        self._file_manager = file_manager or FileManager(self._config.scratch_dir)
        self._locks = locks or KeyedLock()
        self._instructions = InstructionService(store, self._config)

    def rotate_one(
        self,
        object_key: str,
        old_key: KeyPair,
        new_key: PublicKey
    ) -> RotationOutcome:
        """Rotate one object from an old key-pair to a new public key.

        An object already tagged with the new identity is skipped only when
        its instruction was wrapped by the new key. A matching tag on content
        wrapped by a different key means two keys share an identity label.
        Tools that compare tags only would skip such an object; this raises
        KeyRotationError so the object is not left under the wrong key.

        Args:
            object_key: Key of the object to rotate
            old_key: Key-pair currently protecting the object
            new_key: Public key to protect the object with

        Returns:
            ROTATED with the new instruction, or ALREADY_ROTATED

        Raises:
            KeyMismatchError: If old_key did not wrap the object's content key
            CorruptDataError: If the object or its instruction is damaged
            StoreError: If the object store fails
            KeyRotationError: If the tag names the new identity but a different key wrapped it
        """
        with self._locks.hold(object_key):
            try:
                return self._rotate_locked(object_key, old_key, new_key)
            except EnvelopeError as e:
                raise e.with_object_key(object_key)

    def rotate_all(
        self,
        prefix: str,
        old_key: KeyPair,
        new_key: PublicKey,
        *,
        max_workers: int | None = None,
        cancel_event: Optional[threading.Event] = None
    ) -> Iterator[RotationOutcome]:
        """Rotate every object under a prefix.

        Outcomes are produced lazily, one per object, in completion order.
        Instruction artifacts are skipped. A failing object yields a FAILED
        outcome and the batch continues. Setting ``cancel_event`` stops new
        objects from starting; rotations already in flight finish.

        Args:
            prefix: Key prefix to rotate
            old_key: Key-pair currently protecting the objects
            new_key: Public key to protect the objects with
            max_workers: Parallel rotations (default from config)
            cancel_event: Event that cancels the batch at object boundaries

        Yields:
            RotationOutcome per object
        """
        workers = max_workers or self._config.max_workers
        if workers < 1:
            raise KeyRotationError("max_workers must be at least 1")

        object_keys = (
            key for key in self._store.list(prefix)
            if not self._config.is_instruction_artifact(key)
        )
        counts = {status: 0 for status in RotationStatus}

        try:
            if workers == 1:
                outcomes = self._rotate_sequential(object_keys, old_key, new_key, cancel_event)
            else:
                outcomes = self._rotate_parallel(object_keys, old_key, new_key, workers, cancel_event)
            for outcome in outcomes:
                counts[outcome.status] += 1
                yield outcome
        finally:
            logger.info("Bulk rotation finished", extra={
                "prefix": prefix,
                "new_identity": new_key.identity,
                "rotated": counts[RotationStatus.ROTATED],
                "already_rotated": counts[RotationStatus.ALREADY_ROTATED],
                "failed": counts[RotationStatus.FAILED],
                "cancelled": bool(cancel_event and cancel_event.is_set()),
                "event": "bulk_rotation_finished"
            })

    def _rotate_locked(
        self,
        object_key: str,
        old_key: KeyPair,
        new_key: PublicKey
    ) -> RotationOutcome:
        metadata = self._store.get_metadata(object_key)
        stored = self._instructions.load(object_key, metadata)
        current = stored.instruction

        if self._instructions.key_identity(metadata) == new_key.identity:
            if current.key_fingerprint != new_key.fingerprint:
                raise KeyRotationError(
                    f"Object is tagged '{new_key.identity}' but was wrapped by a different key "
                    f"with the same identity"
                )
            if stored.has_stale_sibling:
                self._instructions.remove_sibling(object_key)
            logger.info("Object already rotated", extra={
                "object_key": object_key,
                "identity": new_key.identity,
                "event": "rotation_skipped"
            })
            return RotationOutcome(
                object_key=object_key,
                status=RotationStatus.ALREADY_ROTATED,
                instruction=current,
            )

        if current.key_fingerprint == new_key.fingerprint:
            # Already wrapped by the new key under another label: retag only
            self._store.put(
                object_key,
                self._store.get(object_key),
                self._instructions.metadata_for(metadata, current, identity=new_key.identity),
            )
            new_instruction = current
        else:
            with RotationTransaction(self._file_manager, object_key) as transaction:
                decrypt_to_scratch(
                    object_key,
                    current,
                    old_key,
                    self._codec,
                    self._store,
                    transaction.scratch
                )
                ciphertext, new_instruction = seal_from_scratch(
                    transaction.scratch,
                    new_key,
                    self._codec
                )
                self._store.put(
                    object_key,
                    ciphertext,
                    self._instructions.metadata_for(metadata, new_instruction),
                )
                transaction.commit()

        if stored.sibling_key is not None:
            self._instructions.remove_sibling(object_key)

        logger.info("Object rotated", extra={
            "object_key": object_key,
            "old_identity": current.key_identity,
            "new_identity": new_key.identity,
            "event": "object_rotated"
        })
        return RotationOutcome(
            object_key=object_key,
            status=RotationStatus.ROTATED,
            instruction=new_instruction,
        )

    def _rotate_safely(
        self,
        object_key: str,
        old_key: KeyPair,
        new_key: PublicKey
    ) -> RotationOutcome:
        try:
            return self.rotate_one(object_key, old_key, new_key)
        except EnvelopeError as e:
            logger.warning("Object rotation failed", extra={
                "object_key": object_key,
                "error_kind": e.kind,
                "error": str(e),
                "event": "object_rotation_failed"
            })
            return RotationOutcome(
                object_key=object_key,
                status=RotationStatus.FAILED,
                error_kind=e.kind,
                reason=str(e),
            )

    def _rotate_sequential(
        self,
        object_keys: Iterable[str],
        old_key: KeyPair,
        new_key: PublicKey,
        cancel_event: Optional[threading.Event]
    ) -> Iterator[RotationOutcome]:
        for object_key in object_keys:
            if cancel_event is not None and cancel_event.is_set():
                return
            yield self._rotate_safely(object_key, old_key, new_key)

    def _rotate_parallel(
        self,
        object_keys: Iterable[str],
        old_key: KeyPair,
        new_key: PublicKey,
        workers: int,
        cancel_event: Optional[threading.Event]
    ) -> Iterator[RotationOutcome]:
        key_iter = iter(object_keys)
        pending: set[Future] = set()
        exhausted = False
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="envelope-rotation")
        try:
            while True:
                # Keep a bounded window of scheduled objects
                while not exhausted and len(pending) < workers * 2:
                    if cancel_event is not None and cancel_event.is_set():
                        exhausted = True
                        for future in pending:
                            future.cancel()
                        break
                    try:
                        object_key = next(key_iter)
                    except StopIteration:
                        exhausted = True
                        break
                    pending.add(executor.submit(self._rotate_safely, object_key, old_key, new_key))

                if not pending:
                    return

                done, pending = wait(pending, return_when=FIRST_COMPLETED)
                for future in done:
                    if not future.cancelled():
                        yield future.result()
        finally:
            # Objects not yet started are dropped; started ones run to completion
            executor.shutdown(wait=True, cancel_futures=True)
