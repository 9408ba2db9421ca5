import pytest

from clarity_agent.analysis.orchestrator import AnalysisOrchestrator
from clarity_agent.messaging.router import MessageRouter
from clarity_agent.sessions.manager import BackendSessionManager
from clarity_agent.types import BackendKind, BackendOutput

pytestmark = pytest.mark.anyio

RESULT_VIEW_KEYS = {
    "originalText",
    "improvedText",
    "changes",
    "confidence",
    "processingTimeMs",
    "backendKind",
    "analysisId",
}
CHANGE_VIEW_KEYS = {"changeKind", "originalPhrase", "improvedPhrase", "reason", "startOffset", "endOffset"}

OUTPUTS = [
    BackendOutput(improved_text="Same input."),
    BackendOutput(improved_text="Totally different words.", confidence=3.2),
    BackendOutput(improved_text="Shorter.", confidence=-1.0),
    BackendOutput(
        improved_text="Use it.",
        changes=[{"change_kind": "word-choice", "original_phrase": "Utilize", "improved_phrase": "Use",
                  "reason": "Plainer", "start_offset": 0, "end_offset": 7}],
    ),
    BackendOutput(improved_text="Dropped diff.", changes=[{"original_phrase": "x"}]),
]


def _router(make_backend, output: BackendOutput) -> MessageRouter:
    sessions = BackendSessionManager(
        {
            BackendKind.REWRITE: make_backend("rewrite", respond=lambda text: output),
            BackendKind.PROMPT: make_backend("prompt"),
        }
    )
    return MessageRouter(AnalysisOrchestrator(session_manager=sessions))


@pytest.mark.parametrize("output", OUTPUTS)
async def test_successful_responses_honor_boundary_constraints(make_backend, output) -> None:
    response = await _router(make_backend, output).handle({"type": "ANALYZE_TEXT", "text": "Same input."})

    assert set(response) == {"success", "result"}
    result = response["result"]
    assert set(result) == RESULT_VIEW_KEYS
    assert 0.0 <= result["confidence"] <= 1.0
    assert result["changes"]
    assert all(set(change) == CHANGE_VIEW_KEYS for change in result["changes"])
    assert result["processingTimeMs"] > 0


async def test_failure_responses_carry_error_text(make_backend) -> None:
    sessions = BackendSessionManager(
        {
            BackendKind.REWRITE: make_backend("rewrite", available=False),
            BackendKind.PROMPT: make_backend("prompt", available=False),
        }
    )
    router = MessageRouter(AnalysisOrchestrator(session_manager=sessions))

    response = await router.handle({"type": "ANALYZE_TEXT", "text": "Anything."})

    assert response["success"] is False
    assert isinstance(response["error"], str) and response["error"]
    assert "result" not in response


async def test_analytics_view_keys(make_backend) -> None:
    response = await _router(make_backend, OUTPUTS[0]).handle({"type": "GET_ANALYTICS"})

    assert set(response) == {"analysisCount", "acceptanceRate", "averageProcessingTimeMs"}
