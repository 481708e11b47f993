"""Locating, attaching and cleaning up object instructions."""

import logging
from dataclasses import dataclass
from typing import Optional

from splurge_envelope.config import EnvelopeConfig
from splurge_envelope.exceptions import CorruptDataError, ObjectNotFoundError
from splurge_envelope.models import Instruction
from splurge_envelope.object_store import ObjectStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredInstruction:
    """An instruction together with where it was found."""

    instruction: Instruction
    inline: bool
    sibling_key: Optional[str] = None

    @property
    def has_stale_sibling(self) -> bool:
        """True when an inline instruction supersedes a leftover sibling object."""
        return self.inline and self.sibling_key is not None


class InstructionService:
    """Service for the instruction that accompanies each encrypted object.

    Instructions are written inline, in the object's own metadata, so one put
    replaces ciphertext, instruction and key tag together. Sibling
    ``<key>.instruction`` objects are still read, and removed once an inline
    instruction supersedes them.
    """

    def __init__(self, store: ObjectStore, config: EnvelopeConfig):
        """Initialize the instruction service.

        Args:
            store: Object store adapter
            config: Envelope configuration (metadata key names)
        """
        self._store = store
        self._config = config

    def load(self, object_key: str, metadata: dict[str, str]) -> StoredInstruction:
        """Find the instruction for an object.

        Args:
            object_key: Key of the encrypted object
            metadata: The object's current metadata

        Returns:
            The instruction and its location

        Raises:
            CorruptDataError: If no instruction exists or it is malformed
        """
        sibling_key = self._config.instruction_key_for(object_key)
        sibling_exists = self._exists(sibling_key)

        inline_value = metadata.get(self._config.instruction_metadata_key)
        if inline_value is not None:
            return StoredInstruction(
                instruction=Instruction.from_json(inline_value),
                inline=True,
                sibling_key=sibling_key if sibling_exists else None,
            )

        if sibling_exists:
            data = b"".join(self._store.get(sibling_key))
            return StoredInstruction(
                instruction=Instruction.from_json(data),
                inline=False,
                sibling_key=sibling_key,
            )

        raise CorruptDataError("Object has no encryption instruction", object_key=object_key)

    def metadata_for(
        self,
        current_metadata: dict[str, str],
        instruction: Instruction,
        *,
        identity: Optional[str] = None
    ) -> dict[str, str]:
        """Build object metadata carrying an instruction and its key tag.

        The tag defaults to the identity recorded in the instruction.
        Unrelated metadata entries are preserved.
        """
        metadata = dict(current_metadata)
        metadata[self._config.instruction_metadata_key] = instruction.to_json()
        metadata[self._config.tag_key] = identity or instruction.key_identity
        return metadata

    def key_identity(self, metadata: dict[str, str]) -> Optional[str]:
        """Return the key tag recorded in object metadata."""
        return metadata.get(self._config.tag_key)

    def remove_sibling(self, object_key: str) -> None:
        """Delete a sibling instruction object if present.

        Raises:
            StoreError: If the delete fails for a reason other than absence
        """
        sibling_key = self._config.instruction_key_for(object_key)
        try:
            self._store.delete(sibling_key)
        except ObjectNotFoundError:
            return
        logger.info("Removed superseded instruction", extra={
            "object_key": object_key,
            "instruction_key": sibling_key,
            "event": "instruction_sibling_removed"
        })

    def _exists(self, object_key: str) -> bool:
        try:
            self._store.get_metadata(object_key)
        except ObjectNotFoundError:
            return False
        return True
