"""Verification - running stage checks and launching finished services."""

from .verifier import CommandVerifier, VerificationOutcome, VerificationStep
from .container import ContainerRuntimeError, DockerRuntime, LaunchResult

__all__ = [
    "CommandVerifier",
    "VerificationOutcome",
    "VerificationStep",
    "ContainerRuntimeError",
    "DockerRuntime",
    "LaunchResult",
]
