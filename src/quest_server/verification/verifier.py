"""Runs the strategy a task names and records completions."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError

from quest_server.errors import (
    ExternalCheckFailed,
    InvalidAddress,
    StrategyMismatch,
    TaskNotFound,
    UnsupportedVerificationType,
)
from quest_server.models import CheckDecision, Task, VerificationOutcome, normalize_address
from quest_server.storage.base import QuestStorage
from quest_server.verification.registry import VerifierRegistry
from quest_server.verification.strategies import VerificationStrategy

logger = logging.getLogger(__name__)


class TaskVerifier:
    """Decides whether an address completed a task.

    The verifier keeps no state of its own. Storage and registry are injected;
    the external check runs in a worker thread bounded by the request deadline
    and never while a storage call is in flight.
    """

    def __init__(
        self,
        *,
        storage: QuestStorage,
        registry: VerifierRegistry,
        timeout_s: float = 5.0,
    ) -> None:
        self.storage = storage
        self.registry = registry
        self.timeout_s = timeout_s

    def verify(
        self,
        task_id: int,
        address: str,
        *,
        endpoint_type: str | None = None,
        timeout_s: float | None = None,
    ) -> VerificationOutcome:
        canonical = normalize_address(address)
        task = self.storage.get_task(task_id)
        if task is None:
            raise TaskNotFound(task_id)

        strategy_key = task.verify_endpoint_type
        if endpoint_type is not None and endpoint_type != strategy_key:
            raise StrategyMismatch(task_id=task.id, expected=endpoint_type, actual=strategy_key)
        try:
            strategy = self.registry.get(strategy_key)
        except UnsupportedVerificationType:
            logger.error(
                "verify event=unsupported_type task_id=%s verify_endpoint_type=%r",
                task.id,
                strategy_key,
            )
            raise

        if self.storage.has_completion(task.id, canonical):
            logger.info(
                "verify event=already_completed task_id=%s address=%s strategy=%s",
                task.id,
                canonical,
                strategy_key,
            )
            return VerificationOutcome(
                task_id=task.id,
                address=canonical,
                strategy=strategy_key,
                status="verified",
                completion="already_recorded",
            )

        budget_s = self.timeout_s if timeout_s is None else min(timeout_s, self.timeout_s)
        decision = self._run_check(strategy, task, canonical, budget_s=budget_s)
        outcome = VerificationOutcome(
            task_id=task.id,
            address=canonical,
            strategy=strategy_key,
            status=decision.status,
            reason=decision.reason,
        )
        if decision.status == "verified":
            outcome.completion = self.storage.record_completion(task.id, canonical)
        elif decision.status == "external_check_failed":
            logger.warning(
                "verify event=external_check_failed task_id=%s address=%s strategy=%s reason=%s",
                task.id,
                canonical,
                strategy_key,
                decision.reason,
            )

        logger.info(
            "verify event=completed task_id=%s address=%s strategy=%s status=%s completion=%s",
            task.id,
            canonical,
            strategy_key,
            outcome.status,
            outcome.completion,
        )
        return outcome

    def _run_check(
        self,
        strategy: VerificationStrategy,
        task: Task,
        address: str,
        *,
        budget_s: float,
    ) -> CheckDecision:
        deadline = time.monotonic() + budget_s
        pool = ThreadPoolExecutor(max_workers=1)
        try:
            future = pool.submit(strategy.check, task, address, deadline)
            return future.result(timeout=budget_s)
        except TimeoutError:
            return CheckDecision.external_check_failed(
                f"check timed out after {budget_s:.2f}s"
            )
        except ExternalCheckFailed as exc:
            return CheckDecision.external_check_failed(exc.reason)
        except InvalidAddress:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.exception("verify event=strategy_error task_id=%s", task.id)
            return CheckDecision.external_check_failed(f"check raised {type(exc).__name__}")
        finally:
            # Do not wait for a hung check; its own timeout ends the thread.
            pool.shutdown(wait=False, cancel_futures=True)
