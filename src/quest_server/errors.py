"""Error taxonomy shared by storage, verification and the HTTP layer."""

from __future__ import annotations


class QuestServerError(Exception):
    """Base class; `error_code` is the stable identifier returned to clients."""

    error_code = "internal_error"


class TaskNotFound(QuestServerError):
    error_code = "task_not_found"

    def __init__(self, task_id: int) -> None:
        super().__init__(f"Task {task_id} does not exist")
        self.task_id = task_id


class UnsupportedVerificationType(QuestServerError):
    """A task names a strategy that is not registered (configuration defect)."""

    error_code = "unsupported_verification_type"

    def __init__(self, endpoint_type: str) -> None:
        super().__init__(f"Unsupported verify_endpoint_type: {endpoint_type!r}")
        self.endpoint_type = endpoint_type


class StrategyMismatch(QuestServerError):
    error_code = "strategy_mismatch"

    def __init__(self, *, task_id: int, expected: str, actual: str) -> None:
        super().__init__(
            f"Task {task_id} uses verify_endpoint_type {actual!r}, not {expected!r}"
        )
        self.task_id = task_id
        self.expected = expected
        self.actual = actual


class InvalidAddress(QuestServerError):
    error_code = "invalid_address"


class ExternalCheckFailed(QuestServerError):
    """The third-party service behind a strategy could not answer. Retryable."""

    error_code = "external_check_failed"

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class StoreUnavailable(QuestServerError):
    """The document store failed; the message stays internal."""

    error_code = "store_unavailable"
