"""Session cache over the interchangeable text backends."""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from clarity_agent.backends.base import TextBackend
from clarity_agent.config import SessionConfig
from clarity_agent.errors import (
    BackendError,
    ProcessingError,
    SessionErrorCode,
    TextValidationError,
)
from clarity_agent.preferences import validate_backend_parameters
from clarity_agent.types import BackendKind, BackendOutput, SessionCapabilities

LOGGER = logging.getLogger(__name__)

SessionKey = tuple[BackendKind, str]


def fingerprint(parameters: Mapping[str, Any] | None) -> str:
    """Canonical serialization used to match sessions to parameter sets."""
    return json.dumps(dict(parameters or {}), sort_keys=True, separators=(",", ":"), default=str)


@dataclass(slots=True)
class SessionEntry:
    session_id: str
    backend_kind: BackendKind
    parameters_fingerprint: str
    parameters: dict[str, Any]
    handle: Any
    capabilities: SessionCapabilities
    created_at: float
    last_used_at: float

    @property
    def key(self) -> SessionKey:
        return (self.backend_kind, self.parameters_fingerprint)

    def touch(self, now: float) -> None:
        self.last_used_at = now

    def idle_ms(self, now: float) -> float:
        return (now - self.last_used_at) * 1000.0


@dataclass(frozen=True, slots=True)
class SessionResult:
    """Outcome of a session request; failures are values, never exceptions."""

    success: bool
    backend_kind: BackendKind
    session_id: str | None = None
    handle: Any = None
    capabilities: SessionCapabilities | None = None
    error_code: SessionErrorCode | None = None
    error: str | None = None
    reused: bool = False

    @classmethod
    def failure(cls, kind: BackendKind, code: SessionErrorCode, message: str) -> "SessionResult":
        return cls(success=False, backend_kind=kind, error_code=code, error=message)

    def to_dict(self) -> dict[str, Any]:
        if not self.success:
            return {
                "success": False,
                "error": {"code": self.error_code.value if self.error_code else None, "message": self.error},
            }
        caps = self.capabilities or SessionCapabilities()
        return {
            "success": True,
            "sessionId": self.session_id,
            "capabilities": {
                "maxTextLength": caps.max_text_length,
                "supportedLocales": list(caps.supported_locales),
            },
        }


class BackendSessionManager:
    """Creates, reuses and expires backend sessions.

    Sessions are cached per ``(backend kind, parameter fingerprint)``; differing
    parameter sets never share a session. Idle expiry is driven externally through
    :meth:`sweep_idle`. Concurrent requests for the same key share one in-flight
    creation instead of racing to create duplicates.
    """

    def __init__(
        self,
        backends: Mapping[BackendKind | str, TextBackend],
        *,
        config: SessionConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._backends: dict[BackendKind, TextBackend] = {
            BackendKind(kind): backend for kind, backend in backends.items()
        }
        self.config = config or SessionConfig()
        self._clock = clock
        self._sessions: dict[str, SessionEntry] = {}
        self._pending: dict[SessionKey, asyncio.Future[SessionResult]] = {}

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    def entries(self) -> list[SessionEntry]:
        return list(self._sessions.values())

    def get_entry(self, session_id: str) -> SessionEntry | None:
        return self._sessions.get(session_id)

    async def create_session(
        self,
        backend_kind: BackendKind | str,
        parameters: Mapping[str, Any] | None = None,
    ) -> SessionResult:
        """Create and cache a new session.

        Raises:
            TextValidationError: For an unknown backend kind or invalid parameters.
                Backend failures are returned as unsuccessful ``SessionResult`` values.
        """
        kind = _resolve_kind(backend_kind)
        params = dict(parameters or {})
        validate_backend_parameters(params)

        backend = self._backends.get(kind)
        if backend is None:
            return SessionResult.failure(
                kind, SessionErrorCode.BACKEND_UNAVAILABLE, f"No {kind.value} backend is registered"
            )

        try:
            if not await backend.is_available():
                LOGGER.info("session.backend_unavailable", extra={"extra_payload": {"backend": kind.value}})
                return SessionResult.failure(
                    kind, SessionErrorCode.BACKEND_UNAVAILABLE, f"{kind.value} backend is not available"
                )
            handle = await backend.create_session(params)
        except asyncio.CancelledError:
            raise
        except BackendError as exc:
            return self._creation_failed(kind, SessionErrorCode(exc.code), exc)
        except MemoryError as exc:
            return self._creation_failed(kind, SessionErrorCode.INSUFFICIENT_RESOURCES, exc)
        except Exception as exc:  # noqa: BLE001 - creation failures are reported as values
            return self._creation_failed(kind, SessionErrorCode.UNKNOWN, exc)

        now = self._clock()
        entry = SessionEntry(
            session_id=f"{kind.value}_session_{uuid.uuid4().hex}",
            backend_kind=kind,
            parameters_fingerprint=fingerprint(params),
            parameters=params,
            handle=handle,
            capabilities=backend.capabilities,
            created_at=now,
            last_used_at=now,
        )
        self._sessions[entry.session_id] = entry
        LOGGER.info(
            "session.created",
            extra={"extra_payload": {"backend": kind.value, "session_id": entry.session_id}},
        )
        return SessionResult(
            success=True,
            backend_kind=kind,
            session_id=entry.session_id,
            handle=handle,
            capabilities=entry.capabilities,
        )

    async def get_or_create_session(
        self,
        backend_kind: BackendKind | str,
        parameters: Mapping[str, Any] | None = None,
    ) -> SessionResult:
        kind = _resolve_kind(backend_kind)
        params = dict(parameters or {})
        validate_backend_parameters(params)
        key: SessionKey = (kind, fingerprint(params))

        # No suspension point between the lookup and registering the pending creation.
        entry = self._find(key)
        if entry is not None:
            entry.touch(self._clock())
            return SessionResult(
                success=True,
                backend_kind=kind,
                session_id=entry.session_id,
                handle=entry.handle,
                capabilities=entry.capabilities,
                reused=True,
            )

        pending = self._pending.get(key)
        if pending is None:
            pending = asyncio.ensure_future(self.create_session(kind, params))
            self._pending[key] = pending
            pending.add_done_callback(lambda done: self._clear_pending(key, done))
        return await asyncio.shield(pending)

    async def invoke(self, session_id: str, text: str) -> BackendOutput:
        """Run ``text`` through the backend behind ``session_id``.

        Raises:
            ProcessingError: If the session is gone or the backend call fails.
        """
        entry = self._sessions.get(session_id)
        if entry is None:
            raise ProcessingError(f"Session not found: {session_id}")
        entry.touch(self._clock())
        backend = self._backends[entry.backend_kind]
        try:
            return await backend.invoke(entry.handle, text)
        except BackendError:
            raise
        except Exception as exc:
            raise ProcessingError(f"{entry.backend_kind.value} backend failed: {exc}") from exc

    async def destroy_session(self, session_id: str) -> bool:
        entry = self._sessions.pop(session_id, None)
        if entry is None:
            LOGGER.debug("session.not_found", extra={"extra_payload": {"session_id": session_id}})
            return False
        backend = self._backends.get(entry.backend_kind)
        if backend is not None:
            try:
                await backend.release(entry.handle)
            except Exception as exc:  # noqa: BLE001 - release failures never propagate
                LOGGER.warning(
                    "session.release_failed",
                    extra={"extra_payload": {"session_id": session_id, "error": str(exc)}},
                )
        LOGGER.info("session.destroyed", extra={"extra_payload": {"session_id": session_id}})
        return True

    async def sweep_idle(self, max_idle_ms: float | None = None) -> list[str]:
        """Destroy sessions idle for longer than ``max_idle_ms``; returns their ids."""
        limit = self.config.idle_timeout_ms if max_idle_ms is None else max_idle_ms
        now = self._clock()
        candidates = [
            session_id
            for session_id, entry in self._sessions.items()
            if entry.idle_ms(now) > limit
        ]
        expired: list[str] = []
        for session_id in candidates:
            # Earlier releases may suspend; a session reused meanwhile is no longer idle.
            entry = self._sessions.get(session_id)
            if entry is None or entry.idle_ms(self._clock()) <= limit:
                continue
            await self.destroy_session(session_id)
            expired.append(session_id)
        if expired:
            LOGGER.info("session.sweep", extra={"extra_payload": {"expired": len(expired)}})
        return expired

    async def available_backends(self) -> frozenset[BackendKind]:
        """Probe every registered backend without creating sessions."""
        available: set[BackendKind] = set()
        for kind, backend in self._backends.items():
            try:
                if await backend.is_available():
                    available.add(kind)
            except Exception as exc:  # noqa: BLE001 - a failing probe means unavailable
                LOGGER.warning(
                    "session.probe_failed",
                    extra={"extra_payload": {"backend": kind.value, "error": str(exc)}},
                )
        return frozenset(available)

    async def close(self) -> None:
        for session_id in list(self._sessions):
            await self.destroy_session(session_id)

    def _find(self, key: SessionKey) -> SessionEntry | None:
        for entry in self._sessions.values():
            if entry.key == key:
                return entry
        return None

    def _clear_pending(self, key: SessionKey, done: asyncio.Future[SessionResult]) -> None:
        if self._pending.get(key) is done:
            del self._pending[key]

    def _creation_failed(
        self, kind: BackendKind, code: SessionErrorCode, exc: BaseException
    ) -> SessionResult:
        LOGGER.warning(
            "session.create_failed",
            extra={"extra_payload": {"backend": kind.value, "code": code.value, "error": str(exc)}},
        )
        return SessionResult.failure(kind, code, str(exc) or code.value)


def _resolve_kind(backend_kind: BackendKind | str) -> BackendKind:
    try:
        return BackendKind(backend_kind)
    except ValueError as exc:
        raise TextValidationError(f"Invalid backend kind: {backend_kind!r}") from exc
