"""Service layer for Splurge Envelope."""

from splurge_envelope.services.instruction_service import InstructionService, StoredInstruction
from splurge_envelope.services.locks import KeyedLock
from splurge_envelope.services.rotation import RotationCoordinator

__all__ = [
    "InstructionService",
    "KeyedLock",
    "RotationCoordinator",
    "StoredInstruction",
]
