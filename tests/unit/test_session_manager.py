import asyncio

import pytest

from clarity_agent.config import SessionConfig
from clarity_agent.errors import InsufficientResourcesError, ProcessingError, SessionErrorCode, TextValidationError
from clarity_agent.sessions.manager import BackendSessionManager, fingerprint
from clarity_agent.types import BackendKind

pytestmark = pytest.mark.anyio

PARAMS = {"tone": "as-is", "format": "plain-text", "length": "as-is"}


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def test_fingerprint_is_order_independent() -> None:
    assert fingerprint({"a": 1, "b": 2}) == fingerprint({"b": 2, "a": 1})
    assert fingerprint({"a": 1}) != fingerprint({"a": 2})


async def test_create_session_reports_capabilities(make_backend) -> None:
    manager = BackendSessionManager({"rewrite": make_backend("rewrite", max_text_length=4000)})

    result = await manager.create_session("rewrite", PARAMS)

    assert result.success
    assert result.session_id.startswith("rewrite_session_")
    assert result.to_dict()["capabilities"] == {"maxTextLength": 4000, "supportedLocales": ["en"]}
    assert manager.session_count == 1


async def test_unavailable_backend_returns_failure_value(make_backend) -> None:
    backend = make_backend("prompt", available=False)
    manager = BackendSessionManager({"prompt": backend})

    result = await manager.create_session("prompt", PARAMS)

    assert not result.success
    assert result.error_code is SessionErrorCode.BACKEND_UNAVAILABLE
    assert backend.created == []
    assert manager.session_count == 0


async def test_missing_backend_and_creation_errors_are_values(make_backend) -> None:
    backend = make_backend("rewrite")

    async def _boom(parameters):
        raise InsufficientResourcesError("out of memory")

    backend.create_session = _boom
    manager = BackendSessionManager({"rewrite": backend})

    failed = await manager.create_session("rewrite", PARAMS)
    missing = await manager.create_session("prompt", PARAMS)

    assert failed.error_code is SessionErrorCode.INSUFFICIENT_RESOURCES
    assert missing.error_code is SessionErrorCode.BACKEND_UNAVAILABLE
    assert failed.to_dict() == {
        "success": False,
        "error": {"code": "InsufficientResources", "message": "out of memory"},
    }


async def test_invalid_kind_or_parameters_raise(make_backend) -> None:
    manager = BackendSessionManager({"rewrite": make_backend("rewrite")})

    with pytest.raises(TextValidationError):
        await manager.create_session("cloud", PARAMS)
    with pytest.raises(TextValidationError):
        await manager.get_or_create_session("rewrite", {"tone": "loud"})


async def test_get_or_create_reuses_matching_session(make_backend) -> None:
    clock = FakeClock()
    backend = make_backend("rewrite")
    manager = BackendSessionManager({"rewrite": backend}, clock=clock)

    first = await manager.get_or_create_session("rewrite", PARAMS)
    clock.advance(5)
    second = await manager.get_or_create_session("rewrite", dict(reversed(list(PARAMS.items()))))

    assert second.reused
    assert second.session_id == first.session_id
    entry = manager.get_entry(first.session_id)
    assert entry.created_at == 1000.0
    assert entry.last_used_at == 1005.0
    assert len(backend.created) == 1


async def test_differing_parameters_never_share_sessions(make_backend) -> None:
    manager = BackendSessionManager({"rewrite": make_backend("rewrite")})

    first = await manager.get_or_create_session("rewrite", PARAMS)
    second = await manager.get_or_create_session("rewrite", {**PARAMS, "tone": "more-formal"})

    assert first.session_id != second.session_id
    assert manager.session_count == 2


async def test_concurrent_requests_create_a_single_session(make_backend) -> None:
    backend = make_backend("rewrite")
    original_create = backend.create_session

    async def _slow_create(parameters):
        await asyncio.sleep(0.01)
        return await original_create(parameters)

    backend.create_session = _slow_create
    manager = BackendSessionManager({"rewrite": backend})

    results = await asyncio.gather(*(manager.get_or_create_session("rewrite", PARAMS) for _ in range(5)))

    assert len({result.session_id for result in results}) == 1
    assert len(backend.created) == 1
    assert manager.session_count == 1


async def test_destroy_session_is_idempotent_and_swallows_release_errors(make_backend) -> None:
    backend = make_backend("rewrite")

    async def _release(handle):
        raise RuntimeError("release failed")

    backend.release = _release
    manager = BackendSessionManager({"rewrite": backend})
    created = await manager.create_session("rewrite", PARAMS)

    assert await manager.destroy_session(created.session_id) is True
    assert await manager.destroy_session(created.session_id) is False
    assert await manager.destroy_session("unknown") is False
    assert manager.session_count == 0


async def test_sweep_idle_removes_only_stale_sessions(make_backend) -> None:
    clock = FakeClock()
    backend = make_backend("rewrite")
    manager = BackendSessionManager(
        {"rewrite": backend},
        config=SessionConfig(idle_timeout_ms=300_000),
        clock=clock,
    )
    stale = await manager.create_session("rewrite", PARAMS)
    clock.advance(200)
    fresh = await manager.create_session("rewrite", {**PARAMS, "length": "shorter"})
    clock.advance(101)

    expired = await manager.sweep_idle()

    assert expired == [stale.session_id]
    assert manager.get_entry(fresh.session_id) is not None
    assert len(backend.released) == 1
    assert await manager.sweep_idle(max_idle_ms=0) == [fresh.session_id]


async def test_sweep_idle_spares_sessions_reused_during_a_slow_release(make_backend) -> None:
    clock = FakeClock()
    backend = make_backend("rewrite")
    manager = BackendSessionManager(
        {"rewrite": backend},
        config=SessionConfig(idle_timeout_ms=300_000),
        clock=clock,
    )
    first = await manager.create_session("rewrite", PARAMS)
    second_params = {**PARAMS, "length": "shorter"}
    second = await manager.create_session("rewrite", second_params)
    clock.advance(301)

    async def _slow_release(handle) -> None:
        await asyncio.sleep(0.01)
        backend.released.append(handle)

    backend.release = _slow_release

    expired, reused = await asyncio.gather(
        manager.sweep_idle(),
        manager.get_or_create_session("rewrite", second_params),
    )

    assert expired == [first.session_id]
    assert reused.reused
    assert reused.session_id == second.session_id
    assert manager.get_entry(second.session_id) is not None
    assert len(backend.released) == 1


async def test_invoke_wraps_backend_failures(make_backend) -> None:
    manager = BackendSessionManager({"rewrite": make_backend("rewrite", fail_invoke=True)})
    created = await manager.create_session("rewrite", PARAMS)

    with pytest.raises(ProcessingError):
        await manager.invoke(created.session_id, "text")
    with pytest.raises(ProcessingError):
        await manager.invoke("missing", "text")


async def test_available_backends_probes_without_sessions(make_backend) -> None:
    manager = BackendSessionManager(
        {"rewrite": make_backend("rewrite"), "prompt": make_backend("prompt", available=False)}
    )

    assert await manager.available_backends() == frozenset({BackendKind.REWRITE})
    assert manager.session_count == 0


async def test_close_destroys_every_session(make_backend) -> None:
    manager = BackendSessionManager({"rewrite": make_backend("rewrite")})
    await manager.create_session("rewrite", PARAMS)
    await manager.create_session("rewrite", {**PARAMS, "tone": "more-casual"})

    await manager.close()

    assert manager.session_count == 0
