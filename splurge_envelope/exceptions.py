"""Custom exceptions for the Splurge Envelope encryption system."""


class EnvelopeError(Exception):
    """Base exception for all Splurge Envelope errors.

    Every error carries a short ``kind`` string and, when the failure concerns a
    stored object, the ``object_key`` it happened on.
    """

    kind = "EnvelopeError"

    def __init__(self, message: str = "", *, object_key: str | None = None) -> None:
        super().__init__(message)
        self.object_key = object_key

    def __str__(self) -> str:
        message = super().__str__()
        if self.object_key is not None:
            return f"{message} (object: {self.object_key})"
        return message

    def with_object_key(self, object_key: str) -> "EnvelopeError":
        """Attach an object key if the error does not carry one yet."""
        if self.object_key is None:
            self.object_key = object_key
        return self


class KeyNotFoundError(EnvelopeError):
    """Raised when a key artifact does not exist."""

    kind = "KeyNotFound"


class KeyAlreadyExistsError(EnvelopeError):
    """Raised when generating a key would overwrite existing key material."""

    kind = "KeyAlreadyExists"


class KeyUnreadableError(EnvelopeError):
    """Raised when a key artifact exists but cannot be parsed."""

    kind = "KeyUnreadable"


class KeyMismatchError(EnvelopeError):
    """Raised when a private key does not belong to an instruction's wrapping key."""

    kind = "KeyMismatch"


class CorruptDataError(EnvelopeError):
    """Raised when ciphertext or an instruction fails integrity or format checks."""

    kind = "Corrupt"


class StoreError(EnvelopeError):
    """Raised when the object store fails."""

    kind = "StoreError"


class ObjectNotFoundError(StoreError):
    """Raised when an object does not exist in the store."""

    kind = "NotFound"


class FileOperationError(EnvelopeError):
    """Raised when local file operations fail."""

    kind = "FileOperation"


class ValidationError(EnvelopeError):
    """Raised when input validation fails."""

    kind = "Validation"


class KeyRotationError(EnvelopeError):
    """Raised when key rotation fails."""

    kind = "KeyRotation"
