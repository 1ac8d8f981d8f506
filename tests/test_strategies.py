from __future__ import annotations

import io
import json
import time
from urllib import error, request

import pytest

from quest_server.config.settings import Settings
from quest_server.errors import ExternalCheckFailed, InvalidAddress, UnsupportedVerificationType
from quest_server.models import Task
from quest_server.verification import strategies
from quest_server.verification.registry import VerifierRegistry, build_registry
from quest_server.verification.strategies import (
    RedirectConfirmationStrategy,
    StarkfighterScoreStrategy,
    StarknetIdDomainStrategy,
)

from .fakes import FakeHTTPResponse

TASK = Task(id=2, quest_id=7, name="Score above 50", verify_endpoint_type="score_gt_50")


def _deadline(seconds: float = 2.0) -> float:
    return time.monotonic() + seconds


def _serve(monkeypatch: pytest.MonkeyPatch, payload: object) -> dict[str, object]:
    captured: dict[str, object] = {}

    def fake_urlopen(req: request.Request, timeout: float):
        captured["url"] = req.full_url
        captured["method"] = req.get_method()
        captured["body"] = json.loads(req.data.decode("utf-8")) if req.data else None
        captured["timeout"] = timeout
        return FakeHTTPResponse(payload)

    monkeypatch.setattr(strategies.request, "urlopen", fake_urlopen)
    return captured


def test_redirect_confirmation_verifies_any_address() -> None:
    decision = RedirectConfirmationStrategy().check(TASK, "alice", _deadline())

    assert decision.status == "verified"


def test_score_below_threshold_is_not_yet_satisfied(monkeypatch: pytest.MonkeyPatch) -> None:
    captured = _serve(monkeypatch, {"data": {"score": 40}})
    strategy = StarkfighterScoreStrategy(base_url="http://scores.example/", min_score=50)

    decision = strategy.check(TASK, "0xabc", _deadline())

    assert decision.status == "not_yet_satisfied"
    assert captured["url"] == "http://scores.example/fetch_user_score"
    assert captured["method"] == "POST"
    assert captured["body"] == {"user_addr": "0xabc"}
    assert 0 < float(captured["timeout"]) <= 2.0


def test_score_at_threshold_is_not_enough(monkeypatch: pytest.MonkeyPatch) -> None:
    _serve(monkeypatch, {"score": 50})
    strategy = StarkfighterScoreStrategy(base_url="http://scores.example", min_score=50)

    assert strategy.check(TASK, "0xabc", _deadline()).status == "not_yet_satisfied"


def test_score_above_threshold_is_verified(monkeypatch: pytest.MonkeyPatch) -> None:
    _serve(monkeypatch, {"data": {"score": 101}})
    strategy = StarkfighterScoreStrategy(base_url="http://scores.example", min_score=100)

    assert strategy.check(TASK, "0xabc", _deadline()).status == "verified"


def test_has_played_needs_any_score(monkeypatch: pytest.MonkeyPatch) -> None:
    strategy = StarkfighterScoreStrategy(base_url="http://scores.example")

    _serve(monkeypatch, {"data": {"score": 0}})
    assert strategy.check(TASK, "0xabc", _deadline()).status == "verified"

    _serve(monkeypatch, {"error": "user not found"})
    assert strategy.check(TASK, "0xabc", _deadline()).status == "not_yet_satisfied"


def test_score_strategy_rejects_non_starknet_address() -> None:
    strategy = StarkfighterScoreStrategy(base_url="http://scores.example", min_score=50)

    with pytest.raises(InvalidAddress):
        strategy.check(TASK, "alice", _deadline())


def test_server_error_is_external_check_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    def failing_urlopen(req: request.Request, timeout: float):
        raise error.HTTPError(req.full_url, 502, "Bad Gateway", {}, io.BytesIO(b"upstream"))

    monkeypatch.setattr(strategies.request, "urlopen", failing_urlopen)
    strategy = StarkfighterScoreStrategy(base_url="http://scores.example", min_score=50)

    with pytest.raises(ExternalCheckFailed, match="status 502"):
        strategy.check(TASK, "0xabc", _deadline())


def test_unreachable_service_is_external_check_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    def failing_urlopen(req: request.Request, timeout: float):
        raise error.URLError("connection refused")

    monkeypatch.setattr(strategies.request, "urlopen", failing_urlopen)
    strategy = StarknetIdDomainStrategy(base_url="http://naming.example")

    with pytest.raises(ExternalCheckFailed, match="connection refused"):
        strategy.check(TASK, "0xabc", _deadline())


def test_expired_deadline_fails_without_calling_service(monkeypatch: pytest.MonkeyPatch) -> None:
    captured = _serve(monkeypatch, {"data": {"score": 500}})
    strategy = StarkfighterScoreStrategy(base_url="http://scores.example", min_score=50)

    with pytest.raises(ExternalCheckFailed, match="deadline"):
        strategy.check(TASK, "0xabc", time.monotonic() - 1)
    assert captured == {}


def test_domain_lookup_sends_decimal_address(monkeypatch: pytest.MonkeyPatch) -> None:
    captured = _serve(monkeypatch, {"domain": "alice.stark"})
    strategy = StarknetIdDomainStrategy(base_url="http://naming.example")

    decision = strategy.check(TASK, "0xff", _deadline())

    assert decision.status == "verified"
    assert captured["url"] == "http://naming.example/addr_to_domain?addr=255"
    assert captured["method"] == "GET"


def test_domain_not_found_is_not_yet_satisfied(monkeypatch: pytest.MonkeyPatch) -> None:
    def missing_urlopen(req: request.Request, timeout: float):
        raise error.HTTPError(req.full_url, 404, "Not Found", {}, io.BytesIO(b"{}"))

    monkeypatch.setattr(strategies.request, "urlopen", missing_urlopen)
    strategy = StarknetIdDomainStrategy(base_url="http://naming.example")

    assert strategy.check(TASK, "0xff", _deadline()).status == "not_yet_satisfied"


def test_registry_rejects_duplicates_and_unknown_keys() -> None:
    registry = VerifierRegistry({"default": RedirectConfirmationStrategy()})

    with pytest.raises(ValueError, match="already registered"):
        registry.register("default", RedirectConfirmationStrategy())
    with pytest.raises(UnsupportedVerificationType):
        registry.get("quiz")
    with pytest.raises(UnsupportedVerificationType):
        registry.get("")


def test_default_registry_uses_configured_services() -> None:
    registry = build_registry(
        Settings(
            starkfighter_base_url="http://scores.example",
            starknetid_base_url="http://naming.example",
        )
    )

    assert registry.keys() == [
        "default",
        "has_domain",
        "score_gt_100",
        "score_gt_50",
        "starkfighter_played",
    ]
    score_strategy = registry.get("score_gt_100")
    assert isinstance(score_strategy, StarkfighterScoreStrategy)
    assert score_strategy.base_url == "http://scores.example"
    assert score_strategy.min_score == 100
