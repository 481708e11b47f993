"""Envelope codec: streaming seal and open of object contents.

A fresh content key encrypts the plaintext as a sequence of AES-256-GCM
segments. Segment ``i`` uses the nonce ``iv || uint32_be(i) || last_flag``;
only the final segment carries ``last_flag = 1``, so a truncated, reordered or
extended ciphertext fails authentication. The content key itself is wrapped
with RSA-OAEP under the recipient's public key and travels in the Instruction.

Both directions work on iterables of byte chunks and hold at most one segment
plus one input chunk in memory, whatever the object size.
"""

import logging
from typing import BinaryIO, Iterable, Iterator

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from splurge_envelope.config import DEFAULT_CONFIG, EnvelopeConfig
from splurge_envelope.constants import Constants
from splurge_envelope.crypto_utils import ContentKey, CryptoUtils
from splurge_envelope.exceptions import CorruptDataError, KeyMismatchError
from splurge_envelope.models import Instruction, KeyPair, PublicKey

logger = logging.getLogger(__name__)


def read_chunks(source: BinaryIO, chunk_size: int | None = None) -> Iterator[bytes]:
    """Iterate over a binary file object in fixed-size reads."""
    chunk_size = chunk_size or Constants.DEFAULT_SEGMENT_SIZE()
    while True:
        chunk = source.read(chunk_size)
        if not chunk:
            return
        yield chunk


def rechunk(chunks: Iterable[bytes], size: int) -> Iterator[tuple[bytes, bool]]:
    """Regroup arbitrary chunks into pieces of exactly ``size`` bytes.

    Yields ``(piece, is_last)``. Every piece but the last is full; the last one
    may be shorter, and is empty only when the whole input is empty.
    """
    buffer = bytearray()
    for chunk in chunks:
        if not chunk:
            continue
        buffer += chunk
        while len(buffer) > size:
            yield bytes(buffer[:size]), False
            del buffer[:size]
    yield bytes(buffer), True


class EnvelopeCodec:
    """Turns plaintext streams into (ciphertext, Instruction) pairs and back."""

    def __init__(self, *, config: EnvelopeConfig | None = None):
        """Initialize the codec.

        Args:
            config: Envelope configuration (segment size)
        """
        self._config = config or DEFAULT_CONFIG

    @property
    def segment_size(self) -> int:
        return self._config.segment_size

    def seal(
        self,
        plaintext: Iterable[bytes],
        public_key: PublicKey
    ) -> tuple[Iterator[bytes], Instruction]:
        """Encrypt a plaintext stream for a public key.

        The Instruction is returned immediately; the ciphertext is produced
        lazily as the returned iterator is consumed.

        Args:
            plaintext: Plaintext as an iterable of byte chunks
            public_key: Recipient wrapping key

        Returns:
            Tuple of (ciphertext iterator, Instruction)
        """
        content_key = ContentKey.generate()
        try:
            instruction = Instruction(
                wrapped_key=CryptoUtils.wrap_content_key(public_key.key, content_key),
                iv=content_key.nonce_prefix,
                key_fingerprint=public_key.fingerprint,
                key_identity=public_key.identity,
                segment_size=self.segment_size,
            )
        except BaseException:
            content_key.wipe()
            raise

        logger.debug("Sealing object", extra={
            "key_identity": public_key.identity,
            "segment_size": self.segment_size,
            "event": "envelope_seal"
        })
        return self._encrypt_segments(plaintext, content_key, self.segment_size), instruction

    def open(
        self,
        ciphertext: Iterable[bytes],
        instruction: Instruction,
        key_pair: KeyPair
    ) -> Iterator[bytes]:
        """Decrypt a ciphertext stream.

        The instruction and key are checked before this returns; segment
        failures surface while iterating. Every chunk yielded has already been
        authenticated.

        Args:
            ciphertext: Ciphertext as an iterable of byte chunks
            instruction: Instruction stored with the ciphertext
            key_pair: Key-pair whose public half wrapped the content key

        Returns:
            Plaintext iterator

        Raises:
            KeyMismatchError: If the key-pair did not wrap this instruction
            CorruptDataError: If the instruction or ciphertext is invalid
        """
        self._validate_instruction(instruction)

        if not CryptoUtils.constant_time_compare(key_pair.fingerprint, instruction.key_fingerprint):
            raise KeyMismatchError(
                f"Key '{key_pair.identity}' cannot unwrap content key wrapped by '{instruction.key_identity}'"
            )

        content_key = CryptoUtils.unwrap_content_key(
            key_pair.private_key,
            instruction.wrapped_key,
            instruction.iv
        )
        return self._decrypt_segments(ciphertext, content_key, instruction.segment_size)

    def seal_bytes(self, plaintext: bytes, public_key: PublicKey) -> tuple[bytes, Instruction]:
        """Encrypt a small in-memory payload."""
        ciphertext, instruction = self.seal([plaintext], public_key)
        return b"".join(ciphertext), instruction

    def open_bytes(self, ciphertext: bytes, instruction: Instruction, key_pair: KeyPair) -> bytes:
        """Decrypt a small in-memory payload."""
        return b"".join(self.open([ciphertext], instruction, key_pair))

    @staticmethod
    def _encrypt_segments(
        plaintext: Iterable[bytes],
        content_key: ContentKey,
        segment_size: int
    ) -> Iterator[bytes]:
        with content_key:
            aead = AESGCM(content_key.key_bytes())
            for index, (chunk, last) in enumerate(rechunk(plaintext, segment_size)):
                yield CryptoUtils.encrypt_segment(aead, content_key.nonce_prefix, index, chunk, last=last)

    @staticmethod
    def _decrypt_segments(
        ciphertext: Iterable[bytes],
        content_key: ContentKey,
        segment_size: int
    ) -> Iterator[bytes]:
        with content_key:
            aead = AESGCM(content_key.key_bytes())
            encrypted_size = segment_size + Constants.TAG_SIZE()
            for index, (segment, last) in enumerate(rechunk(ciphertext, encrypted_size)):
                yield CryptoUtils.decrypt_segment(aead, content_key.nonce_prefix, index, segment, last=last)

    @staticmethod
    def _validate_instruction(instruction: Instruction) -> None:
        if instruction.version != Constants.INSTRUCTION_VERSION():
            raise CorruptDataError(f"Unsupported instruction version: {instruction.version}")
        if instruction.cipher != Constants.CIPHER_ID():
            raise CorruptDataError(f"Unsupported cipher: {instruction.cipher}")
        if instruction.wrap_algorithm != Constants.WRAP_ALGORITHM_ID():
            raise CorruptDataError(f"Unsupported wrap algorithm: {instruction.wrap_algorithm}")
        if not Constants.MIN_SEGMENT_SIZE() <= instruction.segment_size <= Constants.MAX_SEGMENT_SIZE():
            raise CorruptDataError(f"Segment size out of range: {instruction.segment_size}")
