"""Library-wide constants.

These constants centralize tunable values used across modules to keep
behavior consistent and avoid duplication.
"""


class Constants:

    # Asymmetric wrapping keys
    _MIN_RSA_KEY_SIZE: int = 4096
    _DEFAULT_RSA_KEY_SIZE: int = 4096
    _RSA_PUBLIC_EXPONENT: int = 65537
    _PRIVATE_KEY_SUFFIX: str = ".pri.pem"
    _PUBLIC_KEY_SUFFIX: str = ".pub.pem"

    # Content keys and segmented AES-GCM
    _CONTENT_KEY_SIZE_BYTES: int = 32
    _NONCE_PREFIX_SIZE: int = 7
    _TAG_SIZE: int = 16
    _DEFAULT_SEGMENT_SIZE: int = 64 * 1024
    _MIN_SEGMENT_SIZE: int = 1024
    _MAX_SEGMENT_SIZE: int = 16 * 1024 * 1024
    _MAX_SEGMENTS: int = 2 ** 32

    # Instruction format
    _INSTRUCTION_VERSION: int = 1
    _CIPHER_ID: str = "AES-256-GCM-SEGMENTED"
    _WRAP_ALGORITHM_ID: str = "RSA-OAEP-SHA256"

    # Object metadata
    _DEFAULT_TAG_KEY: str = "encryption_key"
    _DEFAULT_INSTRUCTION_METADATA_KEY: str = "x-envelope-instruction"
    _DEFAULT_INSTRUCTION_SUFFIX: str = ".instruction"

    # Rotation
    _MAX_WORKERS: int = 32
    _FINGERPRINT_IDENTITY_LENGTH: int = 16

    @classmethod
    def MIN_RSA_KEY_SIZE(cls) -> int:
        return cls._MIN_RSA_KEY_SIZE

    @classmethod
    def DEFAULT_RSA_KEY_SIZE(cls) -> int:
        return cls._DEFAULT_RSA_KEY_SIZE

    @classmethod
    def RSA_PUBLIC_EXPONENT(cls) -> int:
        return cls._RSA_PUBLIC_EXPONENT

    @classmethod
    def PRIVATE_KEY_SUFFIX(cls) -> str:
        return cls._PRIVATE_KEY_SUFFIX

    @classmethod
    def PUBLIC_KEY_SUFFIX(cls) -> str:
        return cls._PUBLIC_KEY_SUFFIX

    # Content key size in bytes (AES-256)
    @classmethod
    def CONTENT_KEY_SIZE_BYTES(cls) -> int:
        return cls._CONTENT_KEY_SIZE_BYTES

    @classmethod
    def NONCE_PREFIX_SIZE(cls) -> int:
        return cls._NONCE_PREFIX_SIZE

    @classmethod
    def TAG_SIZE(cls) -> int:
        return cls._TAG_SIZE

    @classmethod
    def DEFAULT_SEGMENT_SIZE(cls) -> int:
        return cls._DEFAULT_SEGMENT_SIZE

    @classmethod
    def MIN_SEGMENT_SIZE(cls) -> int:
        return cls._MIN_SEGMENT_SIZE

    @classmethod
    def MAX_SEGMENT_SIZE(cls) -> int:
        return cls._MAX_SEGMENT_SIZE

    # Segment counter is a 32-bit big-endian integer inside the nonce
    @classmethod
    def MAX_SEGMENTS(cls) -> int:
        return cls._MAX_SEGMENTS

    @classmethod
    def INSTRUCTION_VERSION(cls) -> int:
        return cls._INSTRUCTION_VERSION

    @classmethod
    def CIPHER_ID(cls) -> str:
        return cls._CIPHER_ID

    @classmethod
    def WRAP_ALGORITHM_ID(cls) -> str:
        return cls._WRAP_ALGORITHM_ID

    @classmethod
    def DEFAULT_TAG_KEY(cls) -> str:
        return cls._DEFAULT_TAG_KEY

    @classmethod
    def DEFAULT_INSTRUCTION_METADATA_KEY(cls) -> str:
        return cls._DEFAULT_INSTRUCTION_METADATA_KEY

    @classmethod
    def DEFAULT_INSTRUCTION_SUFFIX(cls) -> str:
        return cls._DEFAULT_INSTRUCTION_SUFFIX

    @classmethod
    def MAX_WORKERS(cls) -> int:
        return cls._MAX_WORKERS

    @classmethod
    def FINGERPRINT_IDENTITY_LENGTH(cls) -> int:
        return cls._FINGERPRINT_IDENTITY_LENGTH
