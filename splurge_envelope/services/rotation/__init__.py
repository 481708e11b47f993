"""Rotation services package for Splurge Envelope."""

from splurge_envelope.services.rotation.manager import RotationCoordinator
from splurge_envelope.services.rotation.transaction import RotationTransaction
from splurge_envelope.services.rotation.operations import (
    decrypt_to_scratch,
    seal_from_scratch,
)

__all__ = [
    "RotationCoordinator",
    "RotationTransaction",
    "decrypt_to_scratch",
    "seal_from_scratch",
]
