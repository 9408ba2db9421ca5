"""Error taxonomy and result codes shared across the analysis stack."""

from __future__ import annotations

from enum import Enum


class SessionErrorCode(str, Enum):
    BACKEND_UNAVAILABLE = "BackendUnavailable"
    INSUFFICIENT_RESOURCES = "InsufficientResources"
    UNKNOWN = "Unknown"


class AnalysisErrorCode(str, Enum):
    BOTH_BACKENDS_FAILED = "BothBackendsFailed"
    BACKEND_UNAVAILABLE = "BackendUnavailable"
    PROCESSING_ERROR = "ProcessingError"


class ClarityError(Exception):
    """Base class for every error raised by this package."""


class TextValidationError(ClarityError, ValueError):
    """Input rejected before any backend interaction."""

    code = "ValidationError"


class EmptyTextError(TextValidationError):
    code = "EmptyText"


class TextTooLongError(TextValidationError):
    code = "TextTooLong"


class InvalidChangeKindError(TextValidationError):
    code = "InvalidChangeKind"


class InvalidPositionRangeError(TextValidationError):
    code = "InvalidPositionRange"


class InvalidFieldError(TextValidationError):
    code = "InvalidField"


class PreferenceValidationError(TextValidationError):
    code = "InvalidPreference"


class InvalidStateTransition(ClarityError, RuntimeError):
    """A TextSample was asked to move to a state it cannot reach."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Cannot transition from {current} to {target}")
        self.current = current
        self.target = target


class BackendError(ClarityError):
    """Raised by backend adapters; absorbed by the session manager and orchestrator."""

    code = SessionErrorCode.UNKNOWN


class BackendUnavailableError(BackendError):
    code = SessionErrorCode.BACKEND_UNAVAILABLE


class InsufficientResourcesError(BackendError):
    code = SessionErrorCode.INSUFFICIENT_RESOURCES


class ProcessingError(BackendError):
    """A backend call failed mid-processing."""


class NotAnInputField(ClarityError):
    """The referenced element is not a supported text input."""
