"""Stateless rotation operations for re-encrypting one object."""

import logging
from typing import IO

from splurge_envelope.envelope import EnvelopeCodec, read_chunks
from splurge_envelope.models import Instruction, KeyPair, PublicKey
from splurge_envelope.object_store import ObjectStore

logger = logging.getLogger(__name__)


def decrypt_to_scratch(
    object_key: str,
    instruction: Instruction,
    old_key: KeyPair,
    codec: EnvelopeCodec,
    store: ObjectStore,
    scratch: IO[bytes]
) -> int:
    """Decrypt an object into a scratch file.

    Args:
        object_key: Key of the object to decrypt
        instruction: The object's current instruction
        old_key: Key-pair that wrapped the current content key
        codec: Envelope codec
        store: Object store adapter
        scratch: Writable scratch file, rewound on return

    Returns:
        Number of plaintext bytes written
    """
    def download():
        yield from store.get(object_key)

    # The key is checked before any bytes are downloaded
    plaintext = codec.open(download(), instruction, old_key)

    written = 0
    for chunk in plaintext:
        scratch.write(chunk)
        written += len(chunk)
    scratch.flush()
    scratch.seek(0)
    return written


def seal_from_scratch(
    scratch: IO[bytes],
    new_key: PublicKey,
    codec: EnvelopeCodec
):
    """Seal the scratch plaintext for a new key.

    Returns:
        Tuple of (ciphertext iterator, new Instruction)
    """
    return codec.seal(read_chunks(scratch, codec.segment_size), new_key)
