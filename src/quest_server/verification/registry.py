"""Strategy registry keyed by `verify_endpoint_type`."""

from __future__ import annotations

from quest_server.config.settings import Settings
from quest_server.errors import UnsupportedVerificationType
from quest_server.verification.strategies import (
    RedirectConfirmationStrategy,
    StarkfighterScoreStrategy,
    StarknetIdDomainStrategy,
    VerificationStrategy,
)


class VerifierRegistry:
    def __init__(self, strategies: dict[str, VerificationStrategy] | None = None) -> None:
        self._strategies: dict[str, VerificationStrategy] = {}
        for key, strategy in (strategies or {}).items():
            self.register(key, strategy)

    def register(self, key: str, strategy: VerificationStrategy) -> None:
        normalized = key.strip()
        if not normalized:
            raise ValueError("strategy key must be non-empty")
        if normalized in self._strategies:
            raise ValueError(f"strategy already registered: {normalized}")
        self._strategies[normalized] = strategy

    def get(self, key: str) -> VerificationStrategy:
        strategy = self._strategies.get(key)
        if strategy is None:
            raise UnsupportedVerificationType(key)
        return strategy

    def keys(self) -> list[str]:
        return sorted(self._strategies)

    def __contains__(self, key: object) -> bool:
        return key in self._strategies


def build_registry(settings: Settings) -> VerifierRegistry:
    starkfighter_url = settings.starkfighter_base_url
    return VerifierRegistry(
        {
            "default": RedirectConfirmationStrategy(),
            "starkfighter_played": StarkfighterScoreStrategy(base_url=starkfighter_url),
            "score_gt_50": StarkfighterScoreStrategy(base_url=starkfighter_url, min_score=50),
            "score_gt_100": StarkfighterScoreStrategy(base_url=starkfighter_url, min_score=100),
            "has_domain": StarknetIdDomainStrategy(base_url=settings.starknetid_base_url),
        }
    )
