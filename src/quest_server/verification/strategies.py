"""Verification strategies.

Each strategy answers one question for one task: has this address done what
the task asks? Strategies that depend on a third-party service go through
`_request_json`, which maps transport failures to `ExternalCheckFailed`.
"""

from __future__ import annotations

import json
import re
import time
from typing import Any, Protocol
from urllib import error, parse, request

from quest_server.errors import ExternalCheckFailed, InvalidAddress
from quest_server.models import CheckDecision, Task

_FELT_ADDRESS = re.compile(r"^0x[0-9a-f]{1,64}$")
# Floor for the per-call timeout so a nearly-spent deadline still gets one attempt.
_MIN_TIMEOUT_S = 0.05


class VerificationStrategy(Protocol):
    def check(self, task: Task, address: str, deadline: float) -> CheckDecision: ...


class RedirectConfirmationStrategy:
    """Generic strategy: the user followed `verify_redirect`, nothing to look up."""

    def check(self, task: Task, address: str, deadline: float) -> CheckDecision:
        _ = (task, deadline)
        if not address:
            raise InvalidAddress("address must be a non-empty string")
        return CheckDecision.verified()


class StarkfighterScoreStrategy:
    """Checks the Starkfighter game-score service.

    `min_score=None` only requires that the address has played; otherwise the
    reported score must be strictly greater than `min_score`.
    """

    def __init__(self, *, base_url: str, min_score: int | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.min_score = min_score

    def check(self, task: Task, address: str, deadline: float) -> CheckDecision:
        _ = task
        _require_felt_address(address)
        payload = _request_json(
            method="POST",
            url=f"{self.base_url}/fetch_user_score",
            body={"user_addr": address},
            timeout_s=remaining_time(deadline),
            service="starkfighter",
        )
        score = _extract_score(payload)
        if score is None:
            return CheckDecision.not_yet_satisfied("address has not played starkfighter")
        if self.min_score is not None and score <= self.min_score:
            return CheckDecision.not_yet_satisfied(
                f"score {score} is not greater than {self.min_score}"
            )
        return CheckDecision.verified()


class StarknetIdDomainStrategy:
    """Checks that the naming service resolves the address to a domain."""

    def __init__(self, *, base_url: str) -> None:
        self.base_url = base_url.rstrip("/")

    def check(self, task: Task, address: str, deadline: float) -> CheckDecision:
        _ = task
        _require_felt_address(address)
        query = parse.urlencode({"addr": str(int(address, 16))})
        payload = _request_json(
            method="GET",
            url=f"{self.base_url}/addr_to_domain?{query}",
            body=None,
            timeout_s=remaining_time(deadline),
            service="starknetid",
            not_found_ok=True,
        )
        domain = payload.get("domain") if payload else None
        if isinstance(domain, str) and domain.strip():
            return CheckDecision.verified()
        return CheckDecision.not_yet_satisfied("address has no starknet.id domain")


def remaining_time(deadline: float) -> float:
    remaining = deadline - time.monotonic()
    if remaining <= 0:
        raise ExternalCheckFailed("verification deadline exceeded")
    return max(remaining, _MIN_TIMEOUT_S)


def _require_felt_address(address: str) -> None:
    if not _FELT_ADDRESS.match(address):
        raise InvalidAddress(f"not a starknet address: {address!r}")


def _extract_score(payload: dict[str, Any] | None) -> int | None:
    if not payload:
        return None
    data = payload.get("data")
    source = data if isinstance(data, dict) else payload
    raw = source.get("score")
    if raw is None or isinstance(raw, bool):
        return None
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise ExternalCheckFailed(f"starkfighter returned a non-numeric score: {raw!r}") from exc


def _request_json(
    *,
    method: str,
    url: str,
    body: dict[str, Any] | None,
    timeout_s: float,
    service: str,
    not_found_ok: bool = False,
) -> dict[str, Any] | None:
    headers = {"Accept": "application/json"}
    data = None
    if body is not None:
        data = json.dumps(body).encode("utf-8")
        headers["Content-Type"] = "application/json"
    req = request.Request(url=url, data=data, method=method, headers=headers)

    try:
        with request.urlopen(req, timeout=timeout_s) as response:
            raw_body = response.read().decode("utf-8")
    except error.HTTPError as exc:
        if exc.code == 404 and not_found_ok:
            return None
        raise ExternalCheckFailed(f"{service} request failed with status {exc.code}") from exc
    except error.URLError as exc:
        raise ExternalCheckFailed(f"{service} request failed: {exc.reason}") from exc
    except TimeoutError as exc:
        raise ExternalCheckFailed(f"{service} request timed out after {timeout_s:.2f}s") from exc

    if not raw_body:
        return {}
    try:
        parsed = json.loads(raw_body)
    except json.JSONDecodeError as exc:
        raise ExternalCheckFailed(f"{service} returned non-JSON response") from exc
    if isinstance(parsed, dict):
        return parsed
    raise ExternalCheckFailed(f"{service} returned unsupported JSON shape: {type(parsed)!r}")
