"""Input Surface collaborator boundary.

Field detection and text replacement happen in the host page. This module fixes
the shape of what crosses that boundary and the two calls made across it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from clarity_agent.errors import NotAnInputField
from clarity_agent.types import FieldKind, ImprovementResult, TextSample


@dataclass(frozen=True, slots=True)
class FieldSnapshot:
    """Text and caret state read from a detected input field."""

    text: str
    field_kind: FieldKind
    locator: str
    cursor_position: int = 0
    selection_start: int = 0
    selection_end: int = 0

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "FieldSnapshot":
        """Build a snapshot from a content-script payload.

        Raises:
            NotAnInputField: If the payload does not describe a supported field.
        """
        try:
            kind = FieldKind(payload.get("fieldKind") or payload.get("field_kind"))
        except ValueError as exc:
            raise NotAnInputField(f"Unsupported field kind: {payload.get('fieldKind')!r}") from exc
        locator = payload.get("locator") or ""
        if not isinstance(locator, str) or not locator.strip():
            raise NotAnInputField("Field payload is missing a locator")
        text = payload.get("text") or ""
        cursor = int(payload.get("cursorPosition", len(text)))
        return cls(
            text=text,
            field_kind=kind,
            locator=locator,
            cursor_position=cursor,
            selection_start=int(payload.get("selectionStart", cursor)),
            selection_end=int(payload.get("selectionEnd", cursor)),
        )


class InputSurface(Protocol):
    def detect_field(self, element_ref: Any) -> FieldSnapshot:
        """Return the field's text and metadata or raise ``NotAnInputField``."""
        ...

    def replace_text(self, element_ref: Any, new_text: str, *, preserve_cursor: bool = True) -> None:
        ...


def capture_sample(surface: InputSurface, element_ref: Any) -> TextSample:
    """Read the field behind ``element_ref`` into a fresh sample.

    Raises:
        NotAnInputField: Propagated from the surface.
        TextValidationError: If the field's text cannot be analyzed.
    """
    return TextSample.from_field(surface.detect_field(element_ref))


def apply_improvement(
    surface: InputSurface,
    element_ref: Any,
    result: ImprovementResult,
    *,
    preserve_cursor: bool = True,
) -> None:
    surface.replace_text(element_ref, result.improved_text, preserve_cursor=preserve_cursor)
