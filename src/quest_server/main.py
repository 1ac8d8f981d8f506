"""FastAPI application wiring for the quest server.

Terms used in this file:
- app.state: holds the shared runtime objects (storage, verifier, aggregator, admin).
- Verification route: POST endpoint that runs the strategy a task names.
- Admin route: task mutation endpoint; caller authorization happens upstream.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from . import __version__
from .admin import TWITTER_RW_VERIFY_ENDPOINT, TaskAdmin
from .aggregator import CompletionAggregator
from .config.settings import Settings, get_settings
from .errors import (
    InvalidAddress,
    QuestServerError,
    StoreUnavailable,
    StrategyMismatch,
    TaskNotFound,
    UnsupportedVerificationType,
)
from .models import (
    CreateTaskResponse,
    CreateTwitterRwRequest,
    NewTask,
    Task,
    UpdateTaskRequest,
    UserTask,
    VerificationOutcome,
    VerifyRequest,
)
from .storage.base import QuestStorage
from .storage.postgres import PostgresQuestStorage
from .verification.registry import VerifierRegistry, build_registry
from .verification.verifier import TaskVerifier

logger = logging.getLogger(__name__)

# HTTP status per error class for verification responses.
VERIFY_ERROR_STATUS: dict[type[QuestServerError], int] = {
    InvalidAddress: 400,
    TaskNotFound: 404,
    StrategyMismatch: 409,
    UnsupportedVerificationType: 500,
    StoreUnavailable: 503,
}

# `verify_endpoint` paths handed to clients, mapped to the strategy they run.
VERIFY_ENDPOINT_ALIASES: dict[str, str] = {
    "quests/starkfighter/verify_has_played": "starkfighter_played",
    "quests/starkfighter/verify_has_score_greater_than_50": "score_gt_50",
    "quests/starkfighter/verify_has_score_greater_than_100": "score_gt_100",
    "quests/starknetid/verify_has_domain": "has_domain",
    TWITTER_RW_VERIFY_ENDPOINT: "default",
}


def _ensure_runtime_state(
    app: FastAPI,
    *,
    settings: Settings,
    registry: VerifierRegistry,
    storage_override: QuestStorage | None,
) -> None:
    if not hasattr(app.state, "storage"):
        database_url = settings.resolved_database_url()
        if storage_override is None and not database_url:
            raise RuntimeError(
                "Missing database URL. Set QUEST_SERVER_DATABASE_URL "
                "or DATABASE_URL before starting the app."
            )
        app.state.storage = storage_override or PostgresQuestStorage(database_url)
        app.state.storage.migrate()

    if not hasattr(app.state, "settings"):
        app.state.settings = settings

    if not hasattr(app.state, "verifier"):
        storage = app.state.storage
        app.state.verifier = TaskVerifier(
            storage=storage,
            registry=registry,
            timeout_s=settings.verify_timeout_s,
        )
        app.state.aggregator = CompletionAggregator(storage=storage)
        app.state.admin = TaskAdmin(storage=storage)


def create_app(
    *,
    storage: QuestStorage | None = None,
    settings_override: Settings | None = None,
    registry: VerifierRegistry | None = None,
) -> FastAPI:
    """Application factory.

    Passing `storage` skips database setup; tests use this with
    `InMemoryQuestStorage`. `registry` replaces the default strategy set.
    """
    settings = settings_override or get_settings()
    strategy_registry = registry or build_registry(settings)

    def _ensure(target: FastAPI) -> None:
        _ensure_runtime_state(
            target,
            settings=settings,
            registry=strategy_registry,
            storage_override=storage,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _ensure(app)
        yield

    app_lifespan = lifespan if storage is None else None
    app = FastAPI(title=settings.app_name, version=__version__, lifespan=app_lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Keep test paths reliable when lifespan is not executed by the client.
    if storage is not None:
        _ensure(app)

    def _state(request: Request) -> Any:
        if not hasattr(request.app.state, "verifier"):
            _ensure(request.app)
        return request.app.state

    @app.get("/", response_class=PlainTextResponse)
    def root() -> str:
        return f"{settings.app_name} v{__version__}"

    @app.get("/health")
    @app.get("/healthz")
    @app.get("/live")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/get_tasks", response_model=None)
    def get_tasks(
        request: Request,
        quest_id: int = Query(gt=0),
        addr: str = Query(min_length=1),
    ) -> list[UserTask] | JSONResponse:
        aggregator: CompletionAggregator = _state(request).aggregator
        try:
            listing = aggregator.list_user_tasks(quest_id, addr)
        except InvalidAddress:
            return JSONResponse(status_code=400, content={"error": "invalid address"})
        except StoreUnavailable:
            return JSONResponse(status_code=503, content={"error": "Error querying tasks"})
        if not listing.found:
            return JSONResponse(status_code=200, content={"error": "no tasks found"})
        return listing.tasks

    @app.get("/tasks/{task_id}", response_model=Task)
    def get_task(task_id: int, request: Request) -> Task:
        task_storage: QuestStorage = _state(request).storage
        try:
            task = task_storage.get_task(task_id)
        except StoreUnavailable as exc:
            raise HTTPException(status_code=503, detail="Store unavailable") from exc
        if task is None:
            raise HTTPException(status_code=404, detail="Task not found")
        return task

    @app.get("/quests/verify/strategies")
    def list_strategies() -> dict[str, list[str]]:
        return {"strategies": strategy_registry.keys()}

    @app.post("/quests/verify")
    def verify(payload: VerifyRequest, request: Request) -> JSONResponse:
        return _run_verification(_state(request).verifier, payload, endpoint_type=None)

    # One route per registered strategy; the task's type must match the route.
    for key in strategy_registry.keys():
        app.add_api_route(
            f"/quests/{key}/verify",
            _strategy_route(key, _state),
            methods=["POST"],
            name=f"verify_{key}",
        )
    for path, key in VERIFY_ENDPOINT_ALIASES.items():
        if key in strategy_registry:
            app.add_api_route(
                f"/{path}",
                _strategy_route(key, _state),
                methods=["POST"],
                name=f"verify_alias_{path.replace('/', '_')}",
            )

    @app.post("/admin/tasks/custom/create", response_model=CreateTaskResponse)
    def create_custom_task(payload: NewTask, request: Request) -> CreateTaskResponse:
        admin: TaskAdmin = _state(request).admin
        try:
            task = admin.create_task(payload)
        except StoreUnavailable as exc:
            raise HTTPException(status_code=503, detail="Error creating task") from exc
        return CreateTaskResponse(id=task.id)

    @app.post("/admin/tasks/twitter_rw/create", response_model=CreateTaskResponse)
    def create_twitter_rw(payload: CreateTwitterRwRequest, request: Request) -> CreateTaskResponse:
        admin: TaskAdmin = _state(request).admin
        try:
            task = admin.create_twitter_rw(payload)
        except StoreUnavailable as exc:
            raise HTTPException(status_code=503, detail="Error creating task") from exc
        return CreateTaskResponse(id=task.id)

    @app.post("/admin/tasks/custom/update")
    def update_custom_task(payload: UpdateTaskRequest, request: Request) -> dict[str, bool]:
        admin: TaskAdmin = _state(request).admin
        try:
            admin.update_task(payload.id, payload.patch())
        except TaskNotFound as exc:
            raise HTTPException(status_code=404, detail="Task not found") from exc
        except StoreUnavailable as exc:
            raise HTTPException(status_code=503, detail="Error updating task") from exc
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        return {"ok": True}

    return app


def _strategy_route(
    key: str, state_getter: Callable[[Request], Any]
) -> Callable[[VerifyRequest, Request], JSONResponse]:
    def verify_with_strategy(payload: VerifyRequest, request: Request) -> JSONResponse:
        return _run_verification(state_getter(request).verifier, payload, endpoint_type=key)

    return verify_with_strategy


def _run_verification(
    verifier: TaskVerifier,
    payload: VerifyRequest,
    *,
    endpoint_type: str | None,
) -> JSONResponse:
    """Map verifier outcomes and errors to the public `{verified: bool}` contract."""
    try:
        outcome = verifier.verify(
            payload.task_id,
            payload.addr,
            endpoint_type=endpoint_type,
            timeout_s=payload.timeout_s,
        )
    except QuestServerError as exc:
        status_code = VERIFY_ERROR_STATUS.get(type(exc), 500)
        return JSONResponse(
            status_code=status_code,
            content={"verified": False, "error_code": exc.error_code},
        )
    return _outcome_response(outcome)


def _outcome_response(outcome: VerificationOutcome) -> JSONResponse:
    if outcome.status == "external_check_failed":
        return JSONResponse(
            status_code=503,
            content={
                "verified": False,
                "error_code": "external_check_failed",
                "retryable": True,
            },
        )
    return JSONResponse(status_code=200, content={"verified": outcome.verified})


# Module-level app for `uvicorn quest_server.main:app`.
app = create_app()
