"""FastAPI entrypoint exposing the message contract, history and maintenance endpoints."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Mapping

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from clarity_agent.analysis.batch import BatchCoordinator, BatchItem
from clarity_agent.analysis.orchestrator import AnalysisOrchestrator
from clarity_agent.backends.base import TextBackend
from clarity_agent.backends.chat_model import ChatModelPromptBackend, ChatModelRewriteBackend
from clarity_agent.backends.heuristic import HeuristicRewriteBackend
from clarity_agent.config import ServiceConfig
from clarity_agent.messaging.router import MessageRouter
from clarity_agent.obs.logging_config import configure_logging
from clarity_agent.preferences import InMemoryPreferenceStore, PreferenceStore, SqlitePreferenceStore
from clarity_agent.sessions.manager import BackendSessionManager
from clarity_agent.types import BackendKind, FieldKind

LOGGER = logging.getLogger(__name__)


def _create_llm() -> Any:
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        return None

    from langchain_openai import ChatOpenAI

    return ChatOpenAI(model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"), temperature=0)


def build_backends(llm: Any | None) -> dict[BackendKind, TextBackend]:
    """Chat-model backends when an LLM is configured, else the offline rewrite backend."""
    rewrite: TextBackend = ChatModelRewriteBackend(llm) if llm is not None else HeuristicRewriteBackend()
    return {
        BackendKind.REWRITE: rewrite,
        BackendKind.PROMPT: ChatModelPromptBackend(llm),
    }


class BatchRequestItem(BaseModel):
    text: str
    field_kind: FieldKind = FieldKind.TEXTAREA
    field_locator: str = "temp-analysis"


class BatchRequest(BaseModel):
    items: list[BatchRequestItem] = Field(min_length=1)
    max_concurrent: int | None = Field(default=None, ge=1, le=10)


class SweepRequest(BaseModel):
    max_idle_ms: float | None = Field(default=None, ge=0)


async def _sweep_forever(sessions: BackendSessionManager, interval_seconds: float) -> None:
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await sessions.sweep_idle()
        except Exception as exc:  # noqa: BLE001 - the sweep loop must survive one bad pass
            LOGGER.warning("session.sweep_failed", extra={"extra_payload": {"error": str(exc)}})


def create_app(
    *,
    config: ServiceConfig | None = None,
    backends: Mapping[BackendKind | str, TextBackend] | None = None,
    preference_store: PreferenceStore | None = None,
    llm: Any | None = None,
    log_level: str | None = None,
) -> FastAPI:
    config = config or ServiceConfig.from_env()
    configure_logging(log_level or os.getenv("CLARITY_LOG_LEVEL", "INFO"))

    if backends is None:
        llm = llm if llm is not None else _create_llm()
        backends = build_backends(llm)
    if preference_store is None:
        preference_store = (
            SqlitePreferenceStore(config.preferences_db)
            if config.preferences_db
            else InMemoryPreferenceStore()
        )

    sessions = BackendSessionManager(backends, config=config.sessions)
    orchestrator = AnalysisOrchestrator(
        session_manager=sessions,
        preference_store=preference_store,
        config=config.analysis,
    )
    router = MessageRouter(orchestrator, preference_store=preference_store)
    coordinator = BatchCoordinator(orchestrator, config=config.batch)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        sweeper = asyncio.create_task(_sweep_forever(sessions, config.sessions.sweep_interval_seconds))
        LOGGER.info(
            "service.started",
            extra={"extra_payload": {"sweep_interval_seconds": config.sessions.sweep_interval_seconds}},
        )
        try:
            yield
        finally:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper
            await sessions.close()
            LOGGER.info("service.stopped")

    app = FastAPI(title="Clarity Agent", version="0.1.0", lifespan=lifespan)
    app.state.orchestrator = orchestrator
    app.state.sessions = sessions
    app.state.router = router

    @app.get("/health")
    async def health() -> dict[str, Any]:
        available = await sessions.available_backends()
        return {
            "status": "ok",
            "available_backends": sorted(kind.value for kind in available),
            "session_count": sessions.session_count,
            "history_size": len(orchestrator.history),
        }

    @app.post("/messages")
    async def messages(payload: dict[str, Any]) -> dict[str, Any]:
        return await router.handle(payload)

    @app.post("/batch")
    async def batch(request: BatchRequest) -> dict[str, Any]:
        outcomes = await coordinator.analyze_batch(
            [
                BatchItem(text=item.text, field_kind=item.field_kind, field_locator=item.field_locator)
                for item in request.items
            ],
            max_concurrent=request.max_concurrent,
        )
        return {"items": [outcome.to_dict() for outcome in outcomes]}

    @app.get("/history")
    def history(limit: int = 10) -> dict[str, Any]:
        return {"items": orchestrator.get_history(limit=limit)}

    @app.get("/history/{entry_id}")
    def history_detail(entry_id: str) -> dict[str, Any]:
        entry = orchestrator.get_history_entry(entry_id)
        if entry is None:
            raise HTTPException(status_code=404, detail=f"Unknown analysis: {entry_id}")
        quality = orchestrator.assess_quality(entry.result)
        return {
            "id": entry.entry_id,
            "recorded_at": entry.recorded_at.isoformat(),
            "result": entry.result.to_dict(),
            "quality": quality.to_dict(),
        }

    @app.get("/statistics")
    def statistics() -> dict[str, Any]:
        return {
            **orchestrator.get_statistics(),
            "analytics": orchestrator.analytics.summary().to_view(),
        }

    @app.post("/maintenance/sweep")
    async def sweep(request: SweepRequest | None = None) -> dict[str, Any]:
        expired = await sessions.sweep_idle(request.max_idle_ms if request else None)
        return {"expired": expired, "session_count": sessions.session_count}

    return app


app = create_app()
