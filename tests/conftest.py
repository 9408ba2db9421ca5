from __future__ import annotations

from typing import Any, Callable

import pytest

from clarity_agent.errors import ProcessingError
from clarity_agent.types import BackendKind, BackendOutput, SessionCapabilities


class FakeBackend:
    """Scriptable backend that records every call made against it."""

    def __init__(
        self,
        kind: BackendKind,
        *,
        available: bool = True,
        respond: Callable[[str], BackendOutput] | None = None,
        fail_invoke: bool = False,
        max_text_length: int = 5000,
    ) -> None:
        self.kind = kind
        self.capabilities = SessionCapabilities(max_text_length=max_text_length)
        self.available = available
        self.respond = respond or (lambda text: BackendOutput(improved_text=text))
        self.fail_invoke = fail_invoke
        self.availability_checks = 0
        self.created: list[dict[str, Any]] = []
        self.invocations: list[str] = []
        self.released: list[Any] = []

    @property
    def calls(self) -> int:
        return self.availability_checks + len(self.created) + len(self.invocations)

    async def is_available(self) -> bool:
        self.availability_checks += 1
        return self.available

    async def create_session(self, parameters: dict[str, Any]) -> dict[str, Any]:
        self.created.append(dict(parameters))
        return {"kind": self.kind.value, "n": len(self.created)}

    async def invoke(self, handle: Any, text: str) -> BackendOutput:
        self.invocations.append(text)
        if self.fail_invoke:
            raise ProcessingError(f"{self.kind.value} exploded")
        return self.respond(text)

    async def release(self, handle: Any) -> None:
        self.released.append(handle)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def make_backend() -> Callable[..., FakeBackend]:
    def _make(kind: BackendKind | str = BackendKind.REWRITE, **kwargs: Any) -> FakeBackend:
        return FakeBackend(BackendKind(kind), **kwargs)

    return _make
