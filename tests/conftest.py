from __future__ import annotations

import json
from urllib import request

import pytest
from fastapi.testclient import TestClient

from quest_server.config.settings import Settings
from quest_server.main import create_app
from quest_server.models import NewTask
from quest_server.storage.memory import InMemoryQuestStorage
from quest_server.verification import strategies
from quest_server.verification.registry import VerifierRegistry
from quest_server.verification.strategies import (
    RedirectConfirmationStrategy,
    StarkfighterScoreStrategy,
)

from .fakes import FakeHTTPResponse

SCORES_URL = "http://scores.test"


@pytest.fixture
def storage() -> InMemoryQuestStorage:
    return InMemoryQuestStorage()


@pytest.fixture
def scores() -> dict[str, int]:
    return {"0xabc": 40, "0xbeef": 75}


@pytest.fixture
def score_service(monkeypatch: pytest.MonkeyPatch, scores: dict[str, int]) -> list[str]:
    """Answers `/fetch_user_score` from `scores`; returns the addresses asked about."""
    asked: list[str] = []

    def fake_urlopen(req: request.Request, timeout: float):
        _ = timeout
        assert req.full_url == f"{SCORES_URL}/fetch_user_score"
        user_addr = json.loads(req.data.decode("utf-8"))["user_addr"]
        asked.append(user_addr)
        if user_addr not in scores:
            return FakeHTTPResponse({"error": "user not found"})
        return FakeHTTPResponse({"data": {"score": scores[user_addr]}})

    monkeypatch.setattr(strategies.request, "urlopen", fake_urlopen)
    return asked


@pytest.fixture
def registry(score_service: list[str]) -> VerifierRegistry:
    return VerifierRegistry(
        {
            "default": RedirectConfirmationStrategy(),
            "score_gt_50": StarkfighterScoreStrategy(base_url=SCORES_URL, min_score=50),
        }
    )


@pytest.fixture
def quest_seven(storage: InMemoryQuestStorage) -> InMemoryQuestStorage:
    """Quest 7: task 1 verified by redirect, task 2 by score > 50; `0xabc` completed task 1."""
    storage.create_task(
        NewTask(
            quest_id=7,
            name="Follow us",
            desc="Follow the project account",
            cta="Follow",
            href="https://example.com/follow",
            verify_endpoint="quests/verify_follow",
            verify_endpoint_type="default",
            verify_redirect="https://example.com/follow",
        )
    )
    storage.create_task(
        NewTask(
            quest_id=7,
            name="Score above 50",
            desc="Reach 50 points",
            cta="Play",
            href="https://example.com/play",
            verify_endpoint="quests/starkfighter/verify_has_score_greater_than_50",
            verify_endpoint_type="score_gt_50",
        )
    )
    storage.record_completion(1, "0xabc")
    return storage


@pytest.fixture
def settings() -> Settings:
    return Settings(database_url="", verify_timeout_s=2.0)


@pytest.fixture
def client(
    quest_seven: InMemoryQuestStorage,
    registry: VerifierRegistry,
    settings: Settings,
) -> TestClient:
    app = create_app(storage=quest_seven, settings_override=settings, registry=registry)
    with TestClient(app) as test_client:
        yield test_client
