"""Shared domain models."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Sequence

from clarity_agent.errors import (
    EmptyTextError,
    InvalidChangeKindError,
    InvalidFieldError,
    InvalidPositionRangeError,
    InvalidStateTransition,
    TextTooLongError,
    TextValidationError,
)

if TYPE_CHECKING:
    from clarity_agent.surface import FieldSnapshot

LOGGER = logging.getLogger(__name__)

MAX_TEXT_LENGTH = 5000
WHOLE_TEXT_REASON = "Overall clarity improvement."


class BackendKind(str, Enum):
    REWRITE = "rewrite"
    PROMPT = "prompt"

    @property
    def other(self) -> "BackendKind":
        return BackendKind.PROMPT if self is BackendKind.REWRITE else BackendKind.REWRITE


class ChangeKind(str, Enum):
    WORD_CHOICE = "word-choice"
    SENTENCE_STRUCTURE = "sentence-structure"
    CLARITY = "clarity"
    CONCISENESS = "conciseness"


class FieldKind(str, Enum):
    INPUT = "input"
    TEXTAREA = "textarea"
    RICH_EDIT = "rich-edit"


class SampleState(str, Enum):
    CREATED = "created"
    ANALYZING = "analyzing"
    ANALYZED = "analyzed"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


# Priority used when picking the most significant change of a result.
_CHANGE_PRIORITY = (
    ChangeKind.SENTENCE_STRUCTURE,
    ChangeKind.CLARITY,
    ChangeKind.WORD_CHOICE,
    ChangeKind.CONCISENESS,
)

_TRANSITIONS: dict[SampleState, frozenset[SampleState]] = {
    SampleState.CREATED: frozenset({SampleState.ANALYZING}),
    SampleState.ANALYZING: frozenset({SampleState.ANALYZED}),
    SampleState.ANALYZED: frozenset({SampleState.ACCEPTED, SampleState.REJECTED}),
    SampleState.ACCEPTED: frozenset(),
    SampleState.REJECTED: frozenset(),
}


def validate_text(text: str, *, max_length: int = MAX_TEXT_LENGTH) -> str:
    """Reject empty, whitespace-only and over-long text."""
    if not isinstance(text, str):
        raise TextValidationError("Text must be a string")
    if not text.strip():
        raise EmptyTextError("Text cannot be empty")
    if len(text) > max_length:
        raise TextTooLongError(
            f"Text is {len(text)} characters; the maximum is {max_length}"
        )
    return text


def count_words(text: str) -> int:
    return len(text.split())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


def _parse_change_kind(value: Any) -> ChangeKind:
    try:
        return ChangeKind(value)
    except ValueError as exc:
        allowed = ", ".join(kind.value for kind in ChangeKind)
        raise InvalidChangeKindError(
            f"Invalid change kind: {value!r}. Must be one of: {allowed}"
        ) from exc


@dataclass(frozen=True, slots=True)
class SessionCapabilities:
    """Limits a backend reports when a session is created."""

    max_text_length: int = MAX_TEXT_LENGTH
    supported_locales: tuple[str, ...] = ("en",)


@dataclass(slots=True)
class BackendOutput:
    """Raw response from a backend before normalization."""

    improved_text: str
    confidence: float | None = None
    changes: list[dict[str, Any]] | None = None


@dataclass(frozen=True, slots=True)
class ChangeRecord:
    """One localized edit between original and improved text.

    ``start_offset``/``end_offset`` form a half-open range into the original text.
    Records built by :meth:`whole_text` are flagged ``synthesized`` and may carry
    identical phrases when the backend returned the text unchanged.
    """

    change_kind: ChangeKind
    original_phrase: str
    improved_phrase: str
    reason: str
    start_offset: int
    end_offset: int
    synthesized: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "change_kind", _parse_change_kind(self.change_kind))

        if not isinstance(self.original_phrase, str) or not self.original_phrase:
            raise TextValidationError("original_phrase is required and must be a string")
        if not isinstance(self.improved_phrase, str) or not self.improved_phrase:
            raise TextValidationError("improved_phrase is required and must be a string")
        if not self.synthesized and self.original_phrase == self.improved_phrase:
            raise TextValidationError("original_phrase and improved_phrase must differ")
        if not isinstance(self.reason, str) or not self.reason.strip():
            raise TextValidationError("reason is required and must be a string")

        for name in ("start_offset", "end_offset"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidPositionRangeError(f"{name} must be an integer")
        if self.start_offset < 0 or self.start_offset >= self.end_offset:
            raise InvalidPositionRangeError(
                f"Invalid range [{self.start_offset}, {self.end_offset}): "
                "start must be non-negative and less than end"
            )

    @classmethod
    def whole_text(cls, original_text: str, improved_text: str) -> "ChangeRecord":
        return cls(
            change_kind=ChangeKind.CLARITY,
            original_phrase=original_text,
            improved_phrase=improved_text,
            reason=WHOLE_TEXT_REASON,
            start_offset=0,
            end_offset=len(original_text),
            synthesized=True,
        )

    @classmethod
    def from_raw(cls, data: dict[str, Any]) -> "ChangeRecord":
        """Build a record from backend or wire data (camelCase or snake_case keys)."""
        original = _first(data, "original_phrase", "originalPhrase")
        start = _first(data, "start_offset", "startOffset", "startPosition")
        end = _first(data, "end_offset", "endOffset", "endPosition")
        return cls(
            change_kind=_first(data, "change_kind", "changeKind", "changeType"),
            original_phrase=original,
            improved_phrase=_first(data, "improved_phrase", "improvedPhrase"),
            reason=_first(data, "reason") or "Text improvement",
            start_offset=0 if start is None else start,
            end_offset=(len(original) if isinstance(original, str) else 0) if end is None else end,
            synthesized=bool(data.get("synthesized", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "change_kind": self.change_kind.value,
            "original_phrase": self.original_phrase,
            "improved_phrase": self.improved_phrase,
            "reason": self.reason,
            "start_offset": self.start_offset,
            "end_offset": self.end_offset,
            "synthesized": self.synthesized,
        }

    def to_view(self) -> dict[str, Any]:
        return {
            "changeKind": self.change_kind.value,
            "originalPhrase": self.original_phrase,
            "improvedPhrase": self.improved_phrase,
            "reason": self.reason,
            "startOffset": self.start_offset,
            "endOffset": self.end_offset,
        }


def _first(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def normalize_changes(
    raw_changes: Sequence[dict[str, Any] | ChangeRecord] | None,
    *,
    original_text: str,
    improved_text: str,
) -> tuple[ChangeRecord, ...]:
    """Turn backend diff entries into records, synthesizing one if none survive."""
    records: list[ChangeRecord] = []
    if raw_changes is not None and not isinstance(raw_changes, (list, tuple)):
        LOGGER.warning(
            "analysis.changes_ignored",
            extra={"extra_payload": {"type": type(raw_changes).__name__}},
        )
        raw_changes = None
    for raw in raw_changes or ():
        if isinstance(raw, ChangeRecord):
            records.append(raw)
            continue
        try:
            records.append(ChangeRecord.from_raw(raw))
        except (TextValidationError, TypeError, AttributeError) as exc:
            LOGGER.warning(
                "analysis.change_dropped",
                extra={"extra_payload": {"error": str(exc)}},
            )
    if not records:
        records.append(ChangeRecord.whole_text(original_text, improved_text))
    return tuple(records)


@dataclass(frozen=True, slots=True)
class ImprovementResult:
    """Validated outcome of one successful clarity analysis."""

    original_text: str
    improved_text: str
    backend_kind: BackendKind
    confidence: float
    changes: tuple[ChangeRecord, ...]
    processing_time_ms: float
    backend_parameters: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        if not isinstance(self.improved_text, str) or not self.improved_text:
            raise TextValidationError("improved_text is required and must not be empty")
        try:
            object.__setattr__(self, "backend_kind", BackendKind(self.backend_kind))
        except ValueError as exc:
            raise TextValidationError(
                f"backend_kind must be one of: rewrite, prompt (got {self.backend_kind!r})"
            ) from exc
        if isinstance(self.confidence, bool) or not isinstance(self.confidence, (int, float)):
            raise TextValidationError("confidence must be a number")
        if not 0.0 <= self.confidence <= 1.0:
            raise TextValidationError("confidence must be between 0 and 1")
        changes = tuple(self.changes)
        if not changes:
            raise TextValidationError("changes must contain at least one change")
        for index, change in enumerate(changes):
            if not isinstance(change, ChangeRecord):
                raise TextValidationError(f"Change at index {index} must be a ChangeRecord")
        object.__setattr__(self, "changes", changes)
        if not isinstance(self.processing_time_ms, (int, float)) or self.processing_time_ms <= 0:
            raise TextValidationError("processing_time_ms must be a positive number")
        if not isinstance(self.backend_parameters, dict):
            raise TextValidationError("backend_parameters must be a mapping")
        object.__setattr__(self, "backend_parameters", dict(self.backend_parameters))

    @classmethod
    def from_backend_output(
        cls,
        output: BackendOutput,
        *,
        original_text: str,
        backend_kind: BackendKind,
        confidence: float,
        processing_time_ms: float,
        backend_parameters: dict[str, Any] | None = None,
    ) -> "ImprovementResult":
        return cls(
            original_text=original_text,
            improved_text=output.improved_text,
            backend_kind=backend_kind,
            confidence=confidence,
            changes=normalize_changes(
                output.changes,
                original_text=original_text,
                improved_text=output.improved_text,
            ),
            processing_time_ms=processing_time_ms,
            backend_parameters=backend_parameters or {},
        )

    @property
    def confidence_level(self) -> str:
        if self.confidence >= 0.8:
            return "high"
        if self.confidence >= 0.6:
            return "medium"
        return "low"

    @property
    def is_quick_processing(self) -> bool:
        return self.processing_time_ms < 500

    @property
    def has_significant_changes(self) -> bool:
        return any(
            change.change_kind in (ChangeKind.SENTENCE_STRUCTURE, ChangeKind.CLARITY)
            for change in self.changes
        )

    def reduction_percentage(self) -> int:
        """Character reduction relative to the original, as a rounded percentage."""
        if not self.original_text:
            return 0
        delta = len(self.original_text) - len(self.improved_text)
        return round(delta / len(self.original_text) * 100)

    def word_count_reduction(self) -> int:
        return count_words(self.original_text) - count_words(self.improved_text)

    def changes_by_kind(self, kind: ChangeKind | str) -> list[ChangeRecord]:
        kind = ChangeKind(kind)
        return [change for change in self.changes if change.change_kind is kind]

    def most_significant_change(self) -> ChangeRecord:
        for kind in _CHANGE_PRIORITY:
            candidates = self.changes_by_kind(kind)
            if candidates:
                return max(candidates, key=lambda change: len(change.original_phrase))
        return self.changes[0]

    def summary(self) -> dict[str, Any]:
        kinds = list(dict.fromkeys(change.change_kind.value for change in self.changes))
        return {
            "primary_improvement": kinds[0] if kinds else "general",
            "change_count": len(self.changes),
            "confidence_level": self.confidence_level,
            "processing_speed": "fast" if self.is_quick_processing else "normal",
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "original_text": self.original_text,
            "improved_text": self.improved_text,
            "backend_kind": self.backend_kind.value,
            "confidence": self.confidence,
            "changes": [change.to_dict() for change in self.changes],
            "processing_time_ms": self.processing_time_ms,
            "backend_parameters": dict(self.backend_parameters),
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ImprovementResult":
        created_at = data.get("created_at")
        return cls(
            original_text=data["original_text"],
            improved_text=data["improved_text"],
            backend_kind=data["backend_kind"],
            confidence=data["confidence"],
            changes=tuple(ChangeRecord.from_raw(item) for item in data["changes"]),
            processing_time_ms=data["processing_time_ms"],
            backend_parameters=data.get("backend_parameters") or {},
            created_at=datetime.fromisoformat(created_at) if created_at else _utcnow(),
        )

    def to_view(self) -> dict[str, Any]:
        """camelCase shape exposed to the presentation layer."""
        return {
            "originalText": self.original_text,
            "improvedText": self.improved_text,
            "changes": [change.to_view() for change in self.changes],
            "confidence": self.confidence,
            "processingTimeMs": self.processing_time_ms,
            "backendKind": self.backend_kind.value,
        }


@dataclass(slots=True)
class TextSample:
    """Text captured from an input field, with its review lifecycle."""

    original_text: str
    field_kind: FieldKind = FieldKind.TEXTAREA
    field_locator: str = "temp-analysis"
    captured_at: datetime = field(default_factory=_utcnow)
    max_length: int = MAX_TEXT_LENGTH
    state: SampleState = field(default=SampleState.CREATED, init=False)

    def __post_init__(self) -> None:
        if not isinstance(self.original_text, str) or not self.original_text:
            raise EmptyTextError("original_text must not be empty")
        if len(self.original_text) > self.max_length:
            raise TextTooLongError(
                f"original_text maximum length is {self.max_length} characters"
            )
        try:
            self.field_kind = FieldKind(self.field_kind)
        except ValueError as exc:
            raise InvalidFieldError(
                "field_kind must be one of: input, textarea, rich-edit"
            ) from exc
        if not isinstance(self.field_locator, str) or not self.field_locator.strip():
            raise InvalidFieldError("field_locator must be a non-empty string")

    @property
    def word_count(self) -> int:
        return count_words(self.original_text)

    def start_analysis(self) -> None:
        self._transition(SampleState.ANALYZING)

    def mark_analyzed(self) -> None:
        self._transition(SampleState.ANALYZED)

    def accept(self) -> None:
        self._transition(SampleState.ACCEPTED)

    def reject(self) -> None:
        self._transition(SampleState.REJECTED)

    def _transition(self, target: SampleState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise InvalidStateTransition(self.state.value, target.value)
        self.state = target

    def is_short(self) -> bool:
        return self.word_count < 3

    def is_long(self) -> bool:
        return self.word_count > 200

    def excerpt(self, max_length: int = 50) -> str:
        if len(self.original_text) <= max_length:
            return self.original_text
        return self.original_text[:max_length] + "..."

    def to_dict(self) -> dict[str, Any]:
        return {
            "original_text": self.original_text,
            "field_kind": self.field_kind.value,
            "field_locator": self.field_locator,
            "captured_at": self.captured_at.isoformat(),
            "word_count": self.word_count,
            "state": self.state.value,
        }

    @classmethod
    def from_field(cls, snapshot: "FieldSnapshot") -> "TextSample":
        return cls(
            original_text=snapshot.text,
            field_kind=snapshot.field_kind,
            field_locator=snapshot.locator,
        )


@dataclass(frozen=True, slots=True)
class AnalysisHistoryEntry:
    entry_id: str
    original_text: str
    result: ImprovementResult
    recorded_at: datetime = field(default_factory=_utcnow)

    def display_text(self, max_length: int = 100) -> str:
        return _truncate(self.original_text, max_length)
