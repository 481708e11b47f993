"""File-based storage of RSA wrapping key-pairs."""

import logging
from pathlib import Path

from cryptography.hazmat.primitives.asymmetric import rsa

from splurge_envelope.config import DEFAULT_CONFIG, EnvelopeConfig
from splurge_envelope.constants import Constants
from splurge_envelope.crypto_utils import CryptoUtils
from splurge_envelope.exceptions import (
    KeyAlreadyExistsError,
    KeyNotFoundError,
    ValidationError,
)
from splurge_envelope.file_manager import FileManager
from splurge_envelope.models import IdentityScheme, KeyPair, PublicKey

logger = logging.getLogger(__name__)


class KeyStore:
    """Creates and loads key-pairs stored as two sibling PEM artifacts.

    A key path ``P`` maps to ``P.pri.pem`` (private half, owner-only) and
    ``P.pub.pem`` (public half). Existing key material is never overwritten.
    """

    def __init__(
        self,
        *,
        config: EnvelopeConfig | None = None,
        file_manager: FileManager | None = None
    ):
        """Initialize the key store.

        Args:
            config: Envelope configuration (identity scheme, RSA key size)
            file_manager: File manager used for atomic artifact writes
        """
        self._config = config or DEFAULT_CONFIG
        self._file_manager = file_manager or FileManager()

    @staticmethod
    def base_path(path: str | Path) -> Path:
        """Normalize a key reference to its extension-less base path.

        Artifact paths (``k1.pri.pem`` / ``k1.pub.pem``) are accepted as well.
        """
        if not str(path).strip():
            raise ValidationError("Key path cannot be empty")
        base = Path(path).expanduser()
        for suffix in (Constants.PRIVATE_KEY_SUFFIX(), Constants.PUBLIC_KEY_SUFFIX()):
            if base.name.endswith(suffix) and base.name != suffix:
                return base.with_name(base.name[: -len(suffix)])
        return base

    @classmethod
    def artifact_paths(cls, path: str | Path) -> tuple[Path, Path]:
        """Return the (private, public) artifact paths for a key path."""
        base = cls.base_path(path)
        return (
            base.with_name(base.name + Constants.PRIVATE_KEY_SUFFIX()),
            base.with_name(base.name + Constants.PUBLIC_KEY_SUFFIX()),
        )

    def exists(self, path: str | Path) -> bool:
        """Return True if a private key artifact exists at the path."""
        private_path, _ = self.artifact_paths(path)
        return private_path.exists()

    def identity_for(self, path: str | Path, public_key: rsa.RSAPublicKey) -> str:
        """Derive the identity label used to tag objects.

        With the filename scheme the label is the base name of the path only, so
        two different keys saved under the same file name share one label. The
        fingerprint scheme derives the label from the key contents instead.
        """
        if self._config.identity_scheme is IdentityScheme.FINGERPRINT:
            fingerprint = CryptoUtils.public_key_fingerprint(public_key)
            return f"sha256:{fingerprint[:Constants.FINGERPRINT_IDENTITY_LENGTH()]}"
        return self.base_path(path).name

    def generate(self, path: str | Path) -> KeyPair:
        """Generate a new key-pair and write both artifacts.

        Args:
            path: Key path (artifacts are written next to it)

        Returns:
            The generated KeyPair

        Raises:
            KeyAlreadyExistsError: If a private key artifact already exists
            FileOperationError: If the artifacts cannot be written
        """
        private_path, public_path = self.artifact_paths(path)
        if private_path.exists():
            raise KeyAlreadyExistsError(f"Please remove {private_path} before recreating it")

        private_key = CryptoUtils.generate_rsa_private_key(self._config.rsa_key_size)
        public_key = private_key.public_key()

        self._file_manager.write_bytes_atomic(
            private_path,
            CryptoUtils.private_key_to_pem(private_key),
            secure=True
        )
        self._file_manager.write_bytes_atomic(
            public_path,
            CryptoUtils.public_key_to_pem(public_key)
        )

        key_pair = self._build_key_pair(path, private_key)
        logger.info("Generated key-pair", extra={
            "identity": key_pair.identity,
            "fingerprint": key_pair.fingerprint,
            "private_key_path": str(private_path),
            "public_key_path": str(public_path),
            "event": "key_pair_generated"
        })
        return key_pair

    def load_private(self, path: str | Path) -> KeyPair:
        """Load a key-pair from its private key artifact.

        Raises:
            KeyNotFoundError: If no private artifact exists
            KeyUnreadableError: If the artifact is malformed
        """
        private_path, _ = self.artifact_paths(path)
        data = self._file_manager.read_bytes(private_path)
        if data is None:
            raise KeyNotFoundError(f"Private key not found: {private_path}")

        private_key = CryptoUtils.load_private_key_pem(data)
        return self._build_key_pair(path, private_key)

    def load_public(self, path: str | Path) -> PublicKey:
        """Load only the public half from its public key artifact.

        Raises:
            KeyNotFoundError: If no public artifact exists
            KeyUnreadableError: If the artifact is malformed
        """
        _, public_path = self.artifact_paths(path)
        data = self._file_manager.read_bytes(public_path)
        if data is None:
            raise KeyNotFoundError(f"Public key not found: {public_path}")

        public_key = CryptoUtils.load_public_key_pem(data)
        return PublicKey(
            identity=self.identity_for(path, public_key),
            fingerprint=CryptoUtils.public_key_fingerprint(public_key),
            key=public_key,
            path=str(self.base_path(path)),
        )

    def _build_key_pair(self, path: str | Path, private_key: rsa.RSAPrivateKey) -> KeyPair:
        public_key = private_key.public_key()
        return KeyPair(
            identity=self.identity_for(path, public_key),
            fingerprint=CryptoUtils.public_key_fingerprint(public_key),
            private_key=private_key,
            path=str(self.base_path(path)),
        )
