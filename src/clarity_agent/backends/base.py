"""Capability protocol shared by every text backend."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from clarity_agent.types import BackendKind, BackendOutput, SessionCapabilities


@runtime_checkable
class TextBackend(Protocol):
    """An on-device text generation service.

    ``create_session`` returns an opaque handle that is passed back to ``invoke`` and
    ``release``. Implementations raise ``BackendUnavailableError``,
    ``InsufficientResourcesError`` or ``ProcessingError`` on failure.
    """

    kind: BackendKind
    capabilities: SessionCapabilities

    async def is_available(self) -> bool: ...

    async def create_session(self, parameters: dict[str, Any]) -> Any: ...

    async def invoke(self, handle: Any, text: str) -> BackendOutput: ...

    async def release(self, handle: Any) -> None: ...


def extract_message_text(message: Any) -> str:
    """Flatten a chat model response into plain text."""
    if isinstance(message, str):
        return message
    if isinstance(message, dict):
        return str(message.get("content", ""))
    content = getattr(message, "content", message)
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and "text" in item:
                parts.append(str(item["text"]))
            else:
                parts.append(str(item))
        return " ".join(parts).strip()
    return str(content)
