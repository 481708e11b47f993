"""Splurge Envelope - Client-side envelope encryption for object stores.

Objects are encrypted on the client with a fresh content key that is wrapped
by an RSA public key and stored alongside the ciphertext. Key rotation
re-wraps stored objects for a new key-pair without exposing plaintext to the
store.
"""

from splurge_envelope.bucket import EncryptedBucket
from splurge_envelope.config import DEFAULT_CONFIG, EnvelopeConfig
from splurge_envelope.envelope import EnvelopeCodec
from splurge_envelope.exceptions import (
    CorruptDataError,
    EnvelopeError,
    FileOperationError,
    KeyAlreadyExistsError,
    KeyMismatchError,
    KeyNotFoundError,
    KeyRotationError,
    KeyUnreadableError,
    ObjectNotFoundError,
    StoreError,
    ValidationError,
)
from splurge_envelope.key_store import KeyStore
from splurge_envelope.models import (
    IdentityScheme,
    Instruction,
    KeyPair,
    PublicKey,
    RotationOutcome,
    RotationStatus,
)
from splurge_envelope.object_store import InMemoryObjectStore, LocalObjectStore, ObjectStore
from splurge_envelope.services import RotationCoordinator

try:
    from importlib.metadata import PackageNotFoundError, version
    __version__ = version("splurge-envelope")
except PackageNotFoundError:
    # Running from a source checkout that is not installed
    __version__ = "unknown"

__all__ = [
    "CorruptDataError",
    "DEFAULT_CONFIG",
    "EncryptedBucket",
    "EnvelopeCodec",
    "EnvelopeConfig",
    "EnvelopeError",
    "FileOperationError",
    "IdentityScheme",
    "InMemoryObjectStore",
    "Instruction",
    "KeyAlreadyExistsError",
    "KeyMismatchError",
    "KeyNotFoundError",
    "KeyPair",
    "KeyRotationError",
    "KeyStore",
    "KeyUnreadableError",
    "LocalObjectStore",
    "ObjectNotFoundError",
    "ObjectStore",
    "PublicKey",
    "RotationCoordinator",
    "RotationOutcome",
    "RotationStatus",
    "StoreError",
    "ValidationError",
]
