"""Windowed batch analysis over the orchestrator."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Iterable

from clarity_agent.analysis.orchestrator import AnalysisOptions, AnalysisOrchestrator, AnalysisOutcome
from clarity_agent.config import BatchConfig
from clarity_agent.errors import ClarityError
from clarity_agent.types import FieldKind

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class BatchItem:
    text: str
    field_kind: FieldKind | str = FieldKind.TEXTAREA
    field_locator: str = "temp-analysis"


@dataclass(slots=True)
class BatchOutcome:
    index: int
    success: bool
    outcome: AnalysisOutcome | None = None
    error_code: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        if self.success and self.outcome is not None:
            return {"index": self.index, **self.outcome.to_response()}
        return {"index": self.index, "success": False, "error": self.error, "code": self.error_code}


class BatchCoordinator:
    """Runs analyses in fixed windows of ``max_concurrent`` with a pause between windows."""

    def __init__(
        self,
        orchestrator: AnalysisOrchestrator,
        *,
        config: BatchConfig | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.orchestrator = orchestrator
        self.config = config or BatchConfig()
        self._sleep = sleep

    async def analyze_batch(
        self,
        items: Iterable[BatchItem | str],
        *,
        max_concurrent: int | None = None,
        options: AnalysisOptions | None = None,
    ) -> list[BatchOutcome]:
        window = max_concurrent if max_concurrent is not None else self.config.max_concurrent
        if window < 1:
            raise ValueError("max_concurrent must be at least 1")

        batch = [item if isinstance(item, BatchItem) else BatchItem(text=item) for item in items]
        outcomes: list[BatchOutcome] = []
        for start in range(0, len(batch), window):
            if start:
                await self._sleep(self.config.pacing_ms / 1000.0)
            chunk = batch[start : start + window]
            outcomes.extend(
                await asyncio.gather(
                    *(
                        self._analyze_one(start + offset, item, options)
                        for offset, item in enumerate(chunk)
                    )
                )
            )

        LOGGER.info(
            "batch.completed",
            extra={
                "extra_payload": {
                    "items": len(outcomes),
                    "succeeded": sum(1 for outcome in outcomes if outcome.success),
                    "window": window,
                }
            },
        )
        return outcomes

    async def _analyze_one(
        self, index: int, item: BatchItem, options: AnalysisOptions | None
    ) -> BatchOutcome:
        item_options = replace(
            options or AnalysisOptions(),
            field_kind=item.field_kind,
            field_locator=item.field_locator,
        )
        try:
            outcome = await self.orchestrator.analyze(item.text, item_options)
        except ClarityError as exc:
            return BatchOutcome(
                index=index,
                success=False,
                error_code=getattr(exc, "code", type(exc).__name__),
                error=str(exc),
            )
        return BatchOutcome(
            index=index,
            success=outcome.success,
            outcome=outcome,
            error_code=outcome.error_code,
            error=outcome.error,
        )
