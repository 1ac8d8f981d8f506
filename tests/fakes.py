from __future__ import annotations

import json
import threading
import time

from quest_server.models import CheckDecision, Task


class ScriptedStrategy:
    """Returns a fixed decision and records every call."""

    def __init__(self, decision: CheckDecision, *, delay_s: float = 0.0) -> None:
        self.decision = decision
        self.delay_s = delay_s
        self.calls: list[tuple[int, str]] = []
        self._lock = threading.Lock()

    def check(self, task: Task, address: str, deadline: float) -> CheckDecision:
        _ = deadline
        with self._lock:
            self.calls.append((task.id, address))
        if self.delay_s:
            time.sleep(self.delay_s)
        return self.decision


class FakeHTTPResponse:
    def __init__(self, payload: object) -> None:
        self._raw_body = json.dumps(payload).encode("utf-8")

    def read(self) -> bytes:
        return self._raw_body

    def __enter__(self) -> FakeHTTPResponse:
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        _ = (exc_type, exc, tb)
        return False
