"""Configuration management for the Splurge Envelope system."""

from dataclasses import dataclass
from typing import Optional

from splurge_envelope.constants import Constants
from splurge_envelope.models import IdentityScheme


@dataclass
class EnvelopeConfig:
    """Configuration for key stores, codecs and rotation coordinators."""

    # Metadata layout
    tag_key: str = Constants.DEFAULT_TAG_KEY()
    instruction_metadata_key: str = Constants.DEFAULT_INSTRUCTION_METADATA_KEY()
    instruction_suffix: str = Constants.DEFAULT_INSTRUCTION_SUFFIX()

    # Key settings
    identity_scheme: IdentityScheme = IdentityScheme.FILENAME
    rsa_key_size: int = Constants.DEFAULT_RSA_KEY_SIZE()

    # Streaming settings
    segment_size: int = Constants.DEFAULT_SEGMENT_SIZE()
    scratch_dir: Optional[str] = None

    # Rotation settings
    max_workers: int = 1

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if isinstance(self.identity_scheme, str):
            self.identity_scheme = IdentityScheme(self.identity_scheme)

        # Validate metadata layout
        if not self.tag_key:
            raise ValueError("tag_key cannot be empty")
        if not self.instruction_metadata_key:
            raise ValueError("instruction_metadata_key cannot be empty")
        if self.tag_key == self.instruction_metadata_key:
            raise ValueError("tag_key and instruction_metadata_key must differ")
        if not self.instruction_suffix:
            raise ValueError("instruction_suffix cannot be empty")

        # Validate key settings
        if self.rsa_key_size < Constants.MIN_RSA_KEY_SIZE():
            raise ValueError(f"rsa_key_size must be at least {Constants.MIN_RSA_KEY_SIZE()}")

        # Validate streaming settings
        if not Constants.MIN_SEGMENT_SIZE() <= self.segment_size <= Constants.MAX_SEGMENT_SIZE():
            raise ValueError(
                f"segment_size must be between {Constants.MIN_SEGMENT_SIZE()} "
                f"and {Constants.MAX_SEGMENT_SIZE()}"
            )

        # Validate rotation settings
        if not 1 <= self.max_workers <= Constants.MAX_WORKERS():
            raise ValueError(f"max_workers must be between 1 and {Constants.MAX_WORKERS()}")

    def is_instruction_artifact(self, object_key: str) -> bool:
        """Return True if the key names a sibling instruction object."""
        return object_key.endswith(self.instruction_suffix)

    def instruction_key_for(self, object_key: str) -> str:
        """Return the sibling instruction key for an object."""
        return f"{object_key}{self.instruction_suffix}"


# Default configuration instance
DEFAULT_CONFIG = EnvelopeConfig()
