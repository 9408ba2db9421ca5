"""LangChain chat-model adapters for the rewrite and prompt backends."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from langchain_core.prompts import ChatPromptTemplate

from clarity_agent.backends.base import extract_message_text
from clarity_agent.errors import BackendError, BackendUnavailableError, ProcessingError
from clarity_agent.types import BackendKind, BackendOutput, SessionCapabilities

_REWRITE_SYSTEM_PROMPT = """
You are a writing assistant that rewrites text for clarity.

Rules:
1) Preserve the original meaning and intent.
2) Tone adjustment: {tone}. Length adjustment: {length}. Output format: {format}.
3) Return only the rewritten text, with no quotes, preamble or commentary.
""".strip()

_PROMPT_SYSTEM_PROMPT = (
    "You are a careful editor. Follow the user's instruction and reply with the "
    "improved text only."
)

_DEFAULT_CONTEXT = "Improve text clarity and readability"


class ChatModelRewriteBackend:
    """Structured rewrite backend.

    Each session is a ``ChatPromptTemplate | llm`` runnable with the session's tone,
    length and format baked into the system prompt, so sessions are only reusable
    for identical parameters.
    """

    kind = BackendKind.REWRITE

    def __init__(
        self,
        llm: Any | None,
        *,
        capabilities: SessionCapabilities | None = None,
        context: str = _DEFAULT_CONTEXT,
    ) -> None:
        self._llm = llm
        self._context = context
        self.capabilities = capabilities or SessionCapabilities()

    async def is_available(self) -> bool:
        return self._llm is not None

    async def create_session(self, parameters: dict[str, Any]) -> Any:
        if self._llm is None:
            raise BackendUnavailableError("Rewrite backend is not configured")
        prompt = ChatPromptTemplate.from_messages(
            [
                ("system", _REWRITE_SYSTEM_PROMPT),
                ("human", "{context}:\n\n{text}"),
            ]
        ).partial(
            tone=str(parameters.get("tone", "as-is")),
            length=str(parameters.get("length", "as-is")),
            format=str(parameters.get("format", "plain-text")),
            context=self._context,
        )
        return prompt | self._llm

    async def invoke(self, handle: Any, text: str) -> BackendOutput:
        try:
            message = await handle.ainvoke({"text": text})
        except BackendError:
            raise
        except Exception as exc:
            raise ProcessingError(f"Rewrite backend failed: {exc}") from exc
        return _to_output(message)

    async def release(self, handle: Any) -> None:
        # Runnables hold no backend resources.
        return None


@dataclass(slots=True)
class PromptSession:
    llm: Any
    parameters: dict[str, Any] = field(default_factory=dict)


class ChatModelPromptBackend:
    """Free-form prompt backend; the caller supplies the full instruction."""

    kind = BackendKind.PROMPT

    def __init__(
        self,
        llm: Any | None,
        *,
        capabilities: SessionCapabilities | None = None,
        system_prompt: str = _PROMPT_SYSTEM_PROMPT,
    ) -> None:
        self._llm = llm
        self._system_prompt = system_prompt
        self.capabilities = capabilities or SessionCapabilities()

    async def is_available(self) -> bool:
        return self._llm is not None

    async def create_session(self, parameters: dict[str, Any]) -> PromptSession:
        if self._llm is None:
            raise BackendUnavailableError("Prompt backend is not configured")
        return PromptSession(llm=self._llm, parameters=dict(parameters))

    async def invoke(self, handle: PromptSession, text: str) -> BackendOutput:
        try:
            message = await handle.llm.ainvoke(
                [("system", self._system_prompt), ("human", text)]
            )
        except BackendError:
            raise
        except Exception as exc:
            raise ProcessingError(f"Prompt backend failed: {exc}") from exc
        return _to_output(message)

    async def release(self, handle: PromptSession) -> None:
        return None


def _to_output(message: Any) -> BackendOutput:
    improved = _strip_wrapping_quotes(extract_message_text(message).strip())
    if not improved:
        raise ProcessingError("Backend returned empty text")
    return BackendOutput(improved_text=improved)


def _strip_wrapping_quotes(text: str) -> str:
    if len(text) >= 2 and text[0] == text[-1] == '"':
        return text[1:-1].strip()
    return text
