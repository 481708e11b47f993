"""Data models for the Splurge Envelope system."""

import base64
import binascii
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from cryptography.hazmat.primitives.asymmetric import rsa

from splurge_envelope.constants import Constants
from splurge_envelope.exceptions import CorruptDataError


class IdentityScheme(str, Enum):
    """How the identity label of a key-pair is derived."""

    FILENAME = "filename"  # base name of the key path, compatible with existing tags
    FINGERPRINT = "fingerprint"  # hash of the public key contents


class RotationStatus(str, Enum):
    """Terminal states of a single-object rotation."""

    ROTATED = "rotated"
    ALREADY_ROTATED = "already_rotated"
    FAILED = "failed"


@dataclass(frozen=True)
class PublicKey:
    """Public half of a wrapping key-pair."""

    identity: str
    fingerprint: str
    key: rsa.RSAPublicKey = field(repr=False, compare=False)
    path: Optional[str] = field(default=None, compare=False)

    def __post_init__(self) -> None:
        """Validate fields after initialization."""
        if not self.identity:
            raise ValueError("identity cannot be empty")
        if not self.fingerprint:
            raise ValueError("fingerprint cannot be empty")


@dataclass(frozen=True)
class KeyPair:
    """A wrapping key-pair. The private half never leaves the process."""

    identity: str
    fingerprint: str
    private_key: rsa.RSAPrivateKey = field(repr=False, compare=False)
    path: Optional[str] = field(default=None, compare=False)

    def __post_init__(self) -> None:
        """Validate fields after initialization."""
        if not self.identity:
            raise ValueError("identity cannot be empty")
        if not self.fingerprint:
            raise ValueError("fingerprint cannot be empty")

    @property
    def public(self) -> PublicKey:
        """Return the public half of this key-pair."""
        return PublicKey(
            identity=self.identity,
            fingerprint=self.fingerprint,
            key=self.private_key.public_key(),
            path=self.path,
        )

    @property
    def key_size(self) -> int:
        """Modulus size in bits."""
        return self.private_key.key_size


def _b64encode(value: bytes) -> str:
    return base64.standard_b64encode(value).decode("ascii")


def _b64decode(value: Any, field_name: str) -> bytes:
    if not isinstance(value, str):
        raise CorruptDataError(f"Instruction field '{field_name}' must be a base64 string")
    try:
        return base64.b64decode(value.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise CorruptDataError(f"Instruction field '{field_name}' is not valid base64") from e


@dataclass(frozen=True)
class Instruction:
    """Everything needed to recover the content key of one encrypted object.

    The wrapped content key is the only durable copy of the key; the
    fingerprint and identity name the key-pair that wrapped it.
    """

    wrapped_key: bytes = field(repr=False)
    iv: bytes
    key_fingerprint: str
    key_identity: str
    segment_size: int
    cipher: str = Constants.CIPHER_ID()
    wrap_algorithm: str = Constants.WRAP_ALGORITHM_ID()
    version: int = Constants.INSTRUCTION_VERSION()

    def __post_init__(self) -> None:
        """Validate fields after initialization."""
        for name in ("wrapped_key", "iv"):
            if not isinstance(getattr(self, name), bytes):
                raise ValueError(f"{name} must be bytes")
        for name in ("key_fingerprint", "key_identity", "cipher", "wrap_algorithm"):
            if not isinstance(getattr(self, name), str):
                raise ValueError(f"{name} must be a string")
        for name in ("segment_size", "version"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"{name} must be an integer")

        if not self.wrapped_key:
            raise ValueError("wrapped_key cannot be empty")
        if len(self.iv) != Constants.NONCE_PREFIX_SIZE():
            raise ValueError(f"iv must be {Constants.NONCE_PREFIX_SIZE()} bytes")
        if not self.key_fingerprint:
            raise ValueError("key_fingerprint cannot be empty")
        if not self.key_identity:
            raise ValueError("key_identity cannot be empty")
        if self.segment_size <= 0:
            raise ValueError("segment_size must be positive")

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dictionary."""
        return {
            "version": self.version,
            "cipher": self.cipher,
            "wrap_algorithm": self.wrap_algorithm,
            "wrapped_key": _b64encode(self.wrapped_key),
            "iv": _b64encode(self.iv),
            "key_fingerprint": self.key_fingerprint,
            "key_identity": self.key_identity,
            "segment_size": self.segment_size,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Instruction":
        """Create an Instruction from a dictionary.

        Raises:
            CorruptDataError: If fields are missing or malformed
        """
        if not isinstance(data, dict):
            raise CorruptDataError("Instruction must be a JSON object")
        try:
            return cls(
                wrapped_key=_b64decode(data["wrapped_key"], "wrapped_key"),
                iv=_b64decode(data["iv"], "iv"),
                key_fingerprint=data["key_fingerprint"],
                key_identity=data["key_identity"],
                segment_size=data["segment_size"],
                cipher=data["cipher"],
                wrap_algorithm=data["wrap_algorithm"],
                version=data.get("version", Constants.INSTRUCTION_VERSION()),
            )
        except KeyError as e:
            raise CorruptDataError(f"Instruction is missing field {e}") from e
        except ValueError as e:
            raise CorruptDataError(f"Invalid instruction: {e}") from e

    def to_json(self) -> str:
        """Serialize as compact JSON, suitable for a metadata value."""
        return json.dumps(self.to_dict(), separators=(",", ":"), sort_keys=True)

    @classmethod
    def from_json(cls, value: str | bytes) -> "Instruction":
        """Parse an Instruction from its JSON form.

        Raises:
            CorruptDataError: If the value is not a valid instruction
        """
        try:
            data = json.loads(value)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise CorruptDataError(f"Instruction is not valid JSON: {e}") from e
        return cls.from_dict(data)


@dataclass(frozen=True)
class RotationOutcome:
    """Result of rotating one object."""

    object_key: str
    status: RotationStatus
    instruction: Optional[Instruction] = None
    error_kind: Optional[str] = None
    reason: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        """True for both rotated and already-rotated objects."""
        return self.status is not RotationStatus.FAILED

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for reporting."""
        data: dict[str, Any] = {
            "object_key": self.object_key,
            "status": self.status.value,
        }
        if self.instruction is not None:
            data["key_identity"] = self.instruction.key_identity
        if self.error_kind is not None:
            data["error_kind"] = self.error_kind
        if self.reason is not None:
            data["reason"] = self.reason
        return data
