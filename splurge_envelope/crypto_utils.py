"""Cryptographic utilities for the Splurge Envelope system."""

import hashlib
import hmac
import secrets
import struct

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from splurge_envelope.constants import Constants
from splurge_envelope.exceptions import CorruptDataError, KeyUnreadableError, ValidationError


class ContentKey:
    """Per-object symmetric key and nonce prefix.

    Key bytes live in a bytearray so they can be zeroed in place once the
    owning seal/open call is done. Zeroing is best-effort: the AES backend
    holds its own copy for the lifetime of the cipher object.
    """

    __slots__ = ("_key", "_nonce_prefix", "_wiped")

    def __init__(self, key: bytes | bytearray, nonce_prefix: bytes) -> None:
        if len(key) != Constants.CONTENT_KEY_SIZE_BYTES():
            raise ValidationError(f"Content key must be exactly {Constants.CONTENT_KEY_SIZE_BYTES()} bytes")
        if len(nonce_prefix) != Constants.NONCE_PREFIX_SIZE():
            raise ValidationError(f"Nonce prefix must be exactly {Constants.NONCE_PREFIX_SIZE()} bytes")
        self._key = bytearray(key)
        self._nonce_prefix = bytes(nonce_prefix)
        self._wiped = False

    @classmethod
    def generate(cls) -> "ContentKey":
        """Generate a fresh random content key and nonce prefix."""
        return cls(
            secrets.token_bytes(Constants.CONTENT_KEY_SIZE_BYTES()),
            secrets.token_bytes(Constants.NONCE_PREFIX_SIZE()),
        )

    @property
    def nonce_prefix(self) -> bytes:
        return self._nonce_prefix

    @property
    def is_wiped(self) -> bool:
        return self._wiped

    def key_bytes(self) -> bytes:
        """Return the raw key as immutable bytes.

        The returned copy cannot be zeroed; callers take one copy per
        cipher or wrap operation and drop it immediately.
        """
        if self._wiped:
            raise ValidationError("Content key has been wiped")
        return bytes(self._key)

    def wipe(self) -> None:
        """Zero the key material in place."""
        CryptoUtils.secure_zero(self._key)
        self._wiped = True

    def __enter__(self) -> "ContentKey":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.wipe()

    def __len__(self) -> int:
        return len(self._key)

    def __repr__(self) -> str:
        return "ContentKey([REDACTED])"

    def __del__(self) -> None:
        if hasattr(self, "_key"):
            CryptoUtils.secure_zero(self._key)


class CryptoUtils:
    """Cryptographic helpers for key-pairs, key wrapping and segment encryption."""

    _OAEP = padding.OAEP(
        mgf=padding.MGF1(algorithm=hashes.SHA256()),
        algorithm=hashes.SHA256(),
        label=None,
    )

    @staticmethod
    def constant_time_compare(a: bytes | str, b: bytes | str) -> bool:
        """Perform constant-time comparison of two byte strings.

        Args:
            a: First value
            b: Second value

        Returns:
            True if values are equal, False otherwise
        """
        if isinstance(a, str):
            a = a.encode("utf-8")
        if isinstance(b, str):
            b = b.encode("utf-8")
        return hmac.compare_digest(a, b)

    @staticmethod
    def generate_rsa_private_key(key_size: int | None = None) -> rsa.RSAPrivateKey:
        """Generate a new RSA private key.

        Args:
            key_size: Modulus size in bits (default and minimum: 4096)

        Returns:
            RSA private key

        Raises:
            ValidationError: If the key size is too small
        """
        if key_size is None:
            key_size = Constants.DEFAULT_RSA_KEY_SIZE()
        if key_size < Constants.MIN_RSA_KEY_SIZE():
            raise ValidationError(f"RSA key size must be at least {Constants.MIN_RSA_KEY_SIZE()} bits")
        return rsa.generate_private_key(
            public_exponent=Constants.RSA_PUBLIC_EXPONENT(),
            key_size=key_size,
        )

    @staticmethod
    def private_key_to_pem(private_key: rsa.RSAPrivateKey) -> bytes:
        """Serialize a private key as unencrypted PKCS8 PEM."""
        return private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )

    @staticmethod
    def public_key_to_pem(public_key: rsa.RSAPublicKey) -> bytes:
        """Serialize a public key as SubjectPublicKeyInfo PEM."""
        return public_key.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )

    @staticmethod
    def load_private_key_pem(data: bytes) -> rsa.RSAPrivateKey:
        """Parse a PEM private key.

        Raises:
            KeyUnreadableError: If the data is not an RSA private key
        """
        try:
            private_key = serialization.load_pem_private_key(data, password=None)
        except (ValueError, TypeError) as e:
            raise KeyUnreadableError(f"Malformed private key: {e}") from e
        if not isinstance(private_key, rsa.RSAPrivateKey):
            raise KeyUnreadableError("Private key is not an RSA key")
        return private_key

    @staticmethod
    def load_public_key_pem(data: bytes) -> rsa.RSAPublicKey:
        """Parse a PEM public key.

        Raises:
            KeyUnreadableError: If the data is not an RSA public key
        """
        try:
            public_key = serialization.load_pem_public_key(data)
        except (ValueError, TypeError) as e:
            raise KeyUnreadableError(f"Malformed public key: {e}") from e
        if not isinstance(public_key, rsa.RSAPublicKey):
            raise KeyUnreadableError("Public key is not an RSA key")
        return public_key

    @staticmethod
    def public_key_fingerprint(public_key: rsa.RSAPublicKey) -> str:
        """Return the SHA-256 hex digest of the DER-encoded public key."""
        der = public_key.public_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        return hashlib.sha256(der).hexdigest()

    @classmethod
    def wrap_content_key(cls, public_key: rsa.RSAPublicKey, content_key: ContentKey) -> bytes:
        """Encrypt a content key under an RSA public key (OAEP, SHA-256).

        Takes a single immutable copy of the key bytes for the backend call;
        that copy is not zeroed, only the ContentKey buffer is.
        """
        return public_key.encrypt(content_key.key_bytes(), cls._OAEP)

    @classmethod
    def unwrap_content_key(
        cls,
        private_key: rsa.RSAPrivateKey,
        wrapped_key: bytes,
        nonce_prefix: bytes
    ) -> ContentKey:
        """Decrypt a wrapped content key.

        Raises:
            CorruptDataError: If the wrapped key cannot be decrypted
        """
        try:
            key = bytearray(private_key.decrypt(wrapped_key, cls._OAEP))
        except ValueError as e:
            raise CorruptDataError("Wrapped content key failed to decrypt") from e
        try:
            return ContentKey(key, nonce_prefix)
        except ValidationError as e:
            raise CorruptDataError(f"Unwrapped content key is invalid: {e}") from e
        finally:
            cls.secure_zero(key)

    @staticmethod
    def segment_nonce(nonce_prefix: bytes, index: int, last: bool) -> bytes:
        """Build the 12-byte nonce for one segment: prefix, counter, last flag."""
        if index >= Constants.MAX_SEGMENTS():
            raise ValidationError("Too many segments for a single object")
        return nonce_prefix + struct.pack(">I", index) + (b"\x01" if last else b"\x00")

    @classmethod
    def encrypt_segment(
        cls,
        aead: AESGCM,
        nonce_prefix: bytes,
        index: int,
        chunk: bytes,
        *,
        last: bool
    ) -> bytes:
        """Encrypt one plaintext segment; the 16-byte tag is appended."""
        return aead.encrypt(cls.segment_nonce(nonce_prefix, index, last), chunk, None)

    @classmethod
    def decrypt_segment(
        cls,
        aead: AESGCM,
        nonce_prefix: bytes,
        index: int,
        segment: bytes,
        *,
        last: bool
    ) -> bytes:
        """Decrypt and authenticate one ciphertext segment.

        Raises:
            CorruptDataError: If authentication fails
        """
        try:
            return aead.decrypt(cls.segment_nonce(nonce_prefix, index, last), segment, None)
        except InvalidTag as e:
            raise CorruptDataError(f"Ciphertext segment {index} failed authentication") from e

    @staticmethod
    def secure_zero(data: bytearray) -> None:
        """Securely zero sensitive data from memory.

        Args:
            data: Data to zero (must be bytearray for in-place modification)
        """
        if data:
            for i in range(len(data)):
                data[i] = 0
