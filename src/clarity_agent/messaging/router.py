"""Typed message contract between the presentation layer and the analysis core."""

from __future__ import annotations

import logging
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from clarity_agent.analysis.orchestrator import AnalysisOptions, AnalysisOrchestrator
from clarity_agent.errors import ClarityError, TextValidationError
from clarity_agent.preferences import InMemoryPreferenceStore, PreferenceStore, Preferences
from clarity_agent.types import FieldKind

LOGGER = logging.getLogger(__name__)

UNKNOWN_MESSAGE_TYPE = "Unknown message type"


class _Message(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class AnalyzeTextMessage(_Message):
    type: Literal["ANALYZE_TEXT"]
    text: str
    field_kind: FieldKind = FieldKind.TEXTAREA
    field_context: str = "temp-analysis"
    preferences: Preferences | None = None


class UserActionMessage(_Message):
    type: Literal["USER_ACTION"]
    action: Literal["accept", "reject"]
    analysis_id: str | None = None
    analysis_result: dict[str, Any] | None = None


class GetAnalyticsMessage(_Message):
    type: Literal["GET_ANALYTICS"]


class GetPreferencesMessage(_Message):
    type: Literal["GET_PREFERENCES"]


class UpdatePreferencesMessage(_Message):
    type: Literal["UPDATE_PREFERENCES"]
    preferences: Preferences


class GetExtensionStateMessage(_Message):
    type: Literal["GET_EXTENSION_STATE"]


Message = Annotated[
    Union[
        AnalyzeTextMessage,
        UserActionMessage,
        GetAnalyticsMessage,
        GetPreferencesMessage,
        UpdatePreferencesMessage,
        GetExtensionStateMessage,
    ],
    Field(discriminator="type"),
]

_MESSAGE_ADAPTER: TypeAdapter[Any] = TypeAdapter(Message)
_KNOWN_TYPES = frozenset(
    {
        "ANALYZE_TEXT",
        "USER_ACTION",
        "GET_ANALYTICS",
        "GET_PREFERENCES",
        "UPDATE_PREFERENCES",
        "GET_EXTENSION_STATE",
    }
)


class MessageRouter:
    """Dispatches contract messages; every failure resolves to ``{"success": False, ...}``."""

    def __init__(
        self,
        orchestrator: AnalysisOrchestrator,
        *,
        preference_store: PreferenceStore | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.preference_store = preference_store or orchestrator.preference_store or InMemoryPreferenceStore()

    async def handle(self, payload: Any) -> dict[str, Any]:
        message_type = payload.get("type") if isinstance(payload, dict) else None
        if not isinstance(message_type, str) or message_type not in _KNOWN_TYPES:
            LOGGER.warning("message.unknown_type", extra={"extra_payload": {"type": str(message_type)}})
            return {"success": False, "error": UNKNOWN_MESSAGE_TYPE}

        try:
            message = _MESSAGE_ADAPTER.validate_python(payload)
        except ValidationError as exc:
            return {"success": False, "error": _first_error(exc)}

        try:
            return await self._dispatch(message)
        except TextValidationError as exc:
            return {"success": False, "error": str(exc), "code": exc.code}
        except ClarityError as exc:
            LOGGER.warning(
                "message.failed",
                extra={"extra_payload": {"type": message_type, "error": str(exc)}},
            )
            return {"success": False, "error": str(exc)}

    async def _dispatch(self, message: BaseModel) -> dict[str, Any]:
        if isinstance(message, AnalyzeTextMessage):
            outcome = await self.orchestrator.analyze(
                message.text,
                AnalysisOptions(
                    field_kind=message.field_kind,
                    field_locator=message.field_context,
                    preferences=message.preferences,
                ),
            )
            return outcome.to_response()

        if isinstance(message, UserActionMessage):
            analysis_id = message.analysis_id
            if analysis_id is None and message.analysis_result:
                analysis_id = message.analysis_result.get("analysisId")
            self.orchestrator.record_decision(message.action, analysis_id)
            return {"success": True}

        if isinstance(message, GetAnalyticsMessage):
            return self.orchestrator.analytics.summary().to_view()

        if isinstance(message, GetPreferencesMessage):
            preferences = await self.preference_store.load()
            return {"success": True, "preferences": preferences.to_storage()}

        if isinstance(message, UpdatePreferencesMessage):
            await self.preference_store.save(message.preferences)
            return {"success": True, "preferences": message.preferences.to_storage()}

        sessions = self.orchestrator.session_manager
        available = await sessions.available_backends()
        return {
            "success": True,
            "sessionCount": sessions.session_count,
            "availableBackends": sorted(kind.value for kind in available),
            "historySize": len(self.orchestrator.history),
        }


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid message"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part)
    return f"Invalid message: {location}: {first.get('msg')}" if location else f"Invalid message: {first.get('msg')}"
