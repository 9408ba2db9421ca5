"""Analysis orchestration: validation, backend fallback, scoring and history."""

from __future__ import annotations

import logging
import uuid
from collections import Counter, OrderedDict, deque
from dataclasses import dataclass, field
from typing import Any, Literal

from clarity_agent.analysis.prompts import build_clarity_prompt
from clarity_agent.analysis.scoring import QualityAssessment, assess_quality, resolve_confidence
from clarity_agent.config import AnalysisConfig
from clarity_agent.errors import (
    AnalysisErrorCode,
    BackendError,
    BackendUnavailableError,
    InsufficientResourcesError,
    ProcessingError,
    SessionErrorCode,
    TextValidationError,
)
from clarity_agent.obs.tracing import AnalyticsTracker, Timer
from clarity_agent.preferences import PreferenceStore, Preferences, build_backend_parameters
from clarity_agent.sessions.manager import BackendSessionManager
from clarity_agent.types import (
    AnalysisHistoryEntry,
    BackendKind,
    BackendOutput,
    FieldKind,
    ImprovementResult,
    TextSample,
    validate_text,
)

LOGGER = logging.getLogger(__name__)

_SESSION_ERRORS: dict[SessionErrorCode | None, type[BackendError]] = {
    SessionErrorCode.BACKEND_UNAVAILABLE: BackendUnavailableError,
    SessionErrorCode.INSUFFICIENT_RESOURCES: InsufficientResourcesError,
}

_PURPOSE_HINTS = ("email", "comment", "message")
_MIN_PROCESSING_MS = 0.001


@dataclass(slots=True)
class AnalysisOptions:
    """Per-call options: field metadata, a preferences snapshot and backend overrides."""

    field_kind: FieldKind | str = FieldKind.TEXTAREA
    field_locator: str = "temp-analysis"
    preferences: Preferences | None = None
    backend: BackendKind | str | None = None
    fallback: bool | None = None
    length: str | None = None


@dataclass(slots=True)
class BackendAttempt:
    backend_kind: BackendKind
    success: bool
    error_code: str | None = None
    error: str | None = None


@dataclass(slots=True)
class AnalysisOutcome:
    """Result of :meth:`AnalysisOrchestrator.analyze`.

    Backend exhaustion is reported here (``success=False``) instead of raised.
    """

    success: bool
    sample: TextSample
    result: ImprovementResult | None = None
    analysis_id: str | None = None
    error_code: str | None = None
    error: str | None = None
    attempts: list[BackendAttempt] = field(default_factory=list)

    def to_response(self) -> dict[str, Any]:
        if not self.success or self.result is None:
            return {"success": False, "error": self.error or "Analysis failed", "code": self.error_code}
        view = self.result.to_view()
        view["analysisId"] = self.analysis_id
        return {"success": True, "result": view}


class AnalysisOrchestrator:
    """Single entry point turning raw text into a scored, validated improvement."""

    def __init__(
        self,
        *,
        session_manager: BackendSessionManager,
        preference_store: PreferenceStore | None = None,
        config: AnalysisConfig | None = None,
        analytics: AnalyticsTracker | None = None,
    ) -> None:
        self.session_manager = session_manager
        self.preference_store = preference_store
        self.config = config or AnalysisConfig()
        self.analytics = analytics or AnalyticsTracker()
        self._history: deque[AnalysisHistoryEntry] = deque(maxlen=self.config.history_capacity)
        self._pending_samples: OrderedDict[str, TextSample] = OrderedDict()

    async def analyze(self, text: str, options: AnalysisOptions | None = None) -> AnalysisOutcome:
        """Analyze ``text`` for clarity.

        Raises:
            TextValidationError: For empty, whitespace-only or over-long text, invalid
                field metadata or invalid parameter overrides. Raised before any
                backend is touched.
        """
        with Timer() as timer:
            options = options or AnalysisOptions()
            validate_text(text, max_length=self.config.max_text_length)
            sample = TextSample(
                original_text=text,
                field_kind=options.field_kind,
                field_locator=options.field_locator,
                max_length=self.config.max_text_length,
            )

            preferences = options.preferences
            if preferences is None and self.preference_store is not None:
                preferences = await self.preference_store.load()
            parameters = build_backend_parameters(preferences, length=options.length)

            try:
                primary = BackendKind(options.backend or self.config.default_backend)
            except ValueError as exc:
                raise TextValidationError(f"Invalid backend kind: {options.backend!r}") from exc
            use_fallback = self.config.fallback_enabled if options.fallback is None else options.fallback
            order = [primary, primary.other] if use_fallback else [primary]

            self.analytics.record_request()
            sample.start_analysis()
            attempts: list[BackendAttempt] = []

            for kind in order:
                if attempts:
                    LOGGER.info(
                        "analysis.fallback",
                        extra={"extra_payload": {"from": attempts[-1].backend_kind.value, "to": kind.value}},
                    )
                try:
                    output = await self._run_backend(kind, text, parameters)
                except BackendError as exc:
                    attempts.append(
                        BackendAttempt(
                            backend_kind=kind,
                            success=False,
                            error_code=_error_code(exc),
                            error=str(exc),
                        )
                    )
                    LOGGER.warning(
                        "analysis.backend_failed",
                        extra={"extra_payload": {"backend": kind.value, "error": str(exc)}},
                    )
                    continue

                processing_ms = max(timer.lap_ms(), _MIN_PROCESSING_MS)
                attempts.append(BackendAttempt(backend_kind=kind, success=True))
                return self._complete(
                    sample,
                    output,
                    backend_kind=kind,
                    parameters=parameters,
                    context=self._build_context(sample, preferences),
                    processing_ms=processing_ms,
                    attempts=attempts,
                )

        self.analytics.record_failure()
        if use_fallback:
            code = AnalysisErrorCode.BOTH_BACKENDS_FAILED.value
            message = "No AI backends available for text analysis"
        else:
            code = attempts[-1].error_code or SessionErrorCode.UNKNOWN.value
            message = attempts[-1].error or f"{primary.value} backend failed"
        LOGGER.warning(
            "analysis.failed",
            extra={"extra_payload": {"code": code, "attempts": len(attempts), "elapsed_ms": timer.elapsed_ms}},
        )
        return AnalysisOutcome(
            success=False,
            sample=sample,
            error_code=code,
            error=message,
            attempts=attempts,
        )

    async def _run_backend(
        self, kind: BackendKind, text: str, parameters: dict[str, str]
    ) -> BackendOutput:
        session = await self.session_manager.get_or_create_session(kind, parameters)
        if not session.success or session.session_id is None:
            error_type = _SESSION_ERRORS.get(session.error_code, BackendError)
            raise error_type(session.error or f"{kind.value} session could not be created")

        limit = session.capabilities.max_text_length if session.capabilities else None
        if limit is not None and len(text) > limit:
            raise ProcessingError(f"Text exceeds the {kind.value} backend limit of {limit} characters")

        payload = text if kind is BackendKind.REWRITE else build_clarity_prompt(text, parameters)
        output = await self.session_manager.invoke(session.session_id, payload)
        if not isinstance(output, BackendOutput) or not isinstance(output.improved_text, str):
            raise ProcessingError(f"{kind.value} backend returned malformed output")
        if not output.improved_text.strip():
            raise ProcessingError(f"{kind.value} backend returned no text")
        return output

    def _complete(
        self,
        sample: TextSample,
        output: BackendOutput,
        *,
        backend_kind: BackendKind,
        parameters: dict[str, str],
        context: dict[str, Any],
        processing_ms: float,
        attempts: list[BackendAttempt],
    ) -> AnalysisOutcome:
        confidence = resolve_confidence(output.confidence, sample.original_text, output.improved_text)
        result = ImprovementResult.from_backend_output(
            output,
            original_text=sample.original_text,
            backend_kind=backend_kind,
            confidence=confidence,
            processing_time_ms=processing_ms,
            backend_parameters={**parameters, "context": context},
        )
        sample.mark_analyzed()
        entry = self._record(sample.original_text, result)
        self._remember_sample(entry.entry_id, sample)
        self.analytics.record_completion(result.processing_time_ms)
        LOGGER.info(
            "analysis.completed",
            extra={
                "extra_payload": {
                    "analysis_id": entry.entry_id,
                    "backend": backend_kind.value,
                    "confidence": result.confidence,
                    "changes": len(result.changes),
                    "processing_ms": round(result.processing_time_ms, 3),
                }
            },
        )
        return AnalysisOutcome(
            success=True,
            sample=sample,
            result=result,
            analysis_id=entry.entry_id,
            attempts=attempts,
        )

    def _build_context(self, sample: TextSample, preferences: Preferences | None) -> dict[str, Any]:
        context: dict[str, Any] = {
            "field_kind": sample.field_kind.value,
            "word_count": sample.word_count,
            "is_short": sample.is_short(),
            "is_long": sample.is_long(),
        }
        if preferences is not None and preferences.show_change_details:
            context["detailed_analysis"] = True
        locator = sample.field_locator.lower()
        for purpose in _PURPOSE_HINTS:
            if purpose in locator:
                context["purpose"] = purpose
                break
        return context

    # -- quality -------------------------------------------------------------

    def assess_quality(self, result: ImprovementResult) -> QualityAssessment:
        return assess_quality(result)

    # -- user decisions ------------------------------------------------------

    def record_decision(
        self, action: Literal["accept", "reject"], analysis_id: str | None = None
    ) -> bool:
        """Count a user decision and close the matching sample's lifecycle.

        Returns whether ``analysis_id`` referred to a pending sample.
        """
        if action not in ("accept", "reject"):
            raise ValueError(f"Invalid action: {action}")
        self.analytics.record_decision(action == "accept")
        sample = self._pending_samples.pop(analysis_id, None) if analysis_id else None
        if sample is None:
            return False
        if action == "accept":
            sample.accept()
        else:
            sample.reject()
        return True

    def _remember_sample(self, analysis_id: str, sample: TextSample) -> None:
        self._pending_samples[analysis_id] = sample
        while len(self._pending_samples) > self.config.pending_decisions_capacity:
            self._pending_samples.popitem(last=False)

    # -- history -------------------------------------------------------------

    @property
    def history(self) -> tuple[AnalysisHistoryEntry, ...]:
        """Newest-first, read-only view of the bounded history."""
        return tuple(self._history)

    def _record(self, original_text: str, result: ImprovementResult) -> AnalysisHistoryEntry:
        entry = AnalysisHistoryEntry(
            entry_id=f"analysis_{uuid.uuid4().hex}",
            original_text=original_text,
            result=result,
        )
        self._history.appendleft(entry)
        return entry

    def get_history(self, limit: int = 10) -> list[dict[str, Any]]:
        return [
            {
                "id": entry.entry_id,
                "recorded_at": entry.recorded_at.isoformat(),
                "original_text": entry.display_text(self.config.display_truncate),
                "summary": entry.result.summary(),
            }
            for entry in list(self._history)[: max(limit, 0)]
        ]

    def get_history_entry(self, entry_id: str) -> AnalysisHistoryEntry | None:
        for entry in self._history:
            if entry.entry_id == entry_id:
                return entry
        return None

    def clear_history(self) -> None:
        self._history.clear()

    def get_statistics(self) -> dict[str, Any]:
        entries = list(self._history)
        if not entries:
            return {
                "total_analyses": 0,
                "average_confidence": 0.0,
                "average_processing_time_ms": 0.0,
                "backend_kinds": {},
                "change_kinds": {},
            }
        backend_kinds = Counter(entry.result.backend_kind.value for entry in entries)
        change_kinds = Counter(
            change.change_kind.value for entry in entries for change in entry.result.changes
        )
        total = len(entries)
        return {
            "total_analyses": total,
            "average_confidence": sum(entry.result.confidence for entry in entries) / total,
            "average_processing_time_ms": sum(entry.result.processing_time_ms for entry in entries)
            / total,
            "backend_kinds": dict(backend_kinds),
            "change_kinds": dict(change_kinds),
        }


def _error_code(exc: BackendError) -> str:
    if isinstance(exc, ProcessingError):
        return AnalysisErrorCode.PROCESSING_ERROR.value
    if isinstance(exc, BackendUnavailableError):
        return AnalysisErrorCode.BACKEND_UNAVAILABLE.value
    return exc.code.value
