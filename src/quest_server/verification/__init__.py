"""Verification strategies, their registry and the verifier that runs them."""

from quest_server.verification.registry import VerifierRegistry, build_registry
from quest_server.verification.strategies import (
    RedirectConfirmationStrategy,
    StarkfighterScoreStrategy,
    StarknetIdDomainStrategy,
    VerificationStrategy,
)
from quest_server.verification.verifier import TaskVerifier

__all__ = [
    "RedirectConfirmationStrategy",
    "StarkfighterScoreStrategy",
    "StarknetIdDomainStrategy",
    "TaskVerifier",
    "VerificationStrategy",
    "VerifierRegistry",
    "build_registry",
]
