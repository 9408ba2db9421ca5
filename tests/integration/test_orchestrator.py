import pytest

from clarity_agent.analysis.orchestrator import AnalysisOptions, AnalysisOrchestrator
from clarity_agent.config import AnalysisConfig
from clarity_agent.errors import AnalysisErrorCode, EmptyTextError, TextTooLongError, TextValidationError
from clarity_agent.preferences import InMemoryPreferenceStore, Preferences
from clarity_agent.sessions.manager import BackendSessionManager
from clarity_agent.types import BackendKind, BackendOutput, ChangeKind, SampleState

pytestmark = pytest.mark.anyio


def _orchestrator(rewrite, prompt, **kwargs) -> AnalysisOrchestrator:
    sessions = BackendSessionManager({BackendKind.REWRITE: rewrite, BackendKind.PROMPT: prompt})
    return AnalysisOrchestrator(session_manager=sessions, **kwargs)


async def test_echo_backend_yields_one_synthesized_change(make_backend) -> None:
    orchestrator = _orchestrator(make_backend("rewrite"), make_backend("prompt"))

    outcome = await orchestrator.analyze("This sentence is already clear.")

    assert outcome.success
    result = outcome.result
    assert result.improved_text == result.original_text == "This sentence is already clear."
    assert len(result.changes) == 1
    assert result.changes[0].synthesized
    assert result.changes[0].reason == "Overall clarity improvement."
    assert 0.0 <= result.confidence <= 1.0
    assert result.processing_time_ms > 0
    assert outcome.sample.state is SampleState.ANALYZED
    assert orchestrator.assess_quality(result).level == "poor"


async def test_validation_happens_before_any_backend_call(make_backend) -> None:
    rewrite, prompt = make_backend("rewrite"), make_backend("prompt")
    orchestrator = _orchestrator(rewrite, prompt)

    with pytest.raises(EmptyTextError):
        await orchestrator.analyze("")
    with pytest.raises(EmptyTextError):
        await orchestrator.analyze("   ")
    with pytest.raises(TextTooLongError):
        await orchestrator.analyze("a" * 5001)
    with pytest.raises(TextValidationError):
        await orchestrator.analyze("fine", AnalysisOptions(length="tiny"))

    assert rewrite.calls == 0
    assert prompt.calls == 0
    assert orchestrator.analytics.summary().analysis_count == 0


async def test_backend_confidence_scenario(make_backend) -> None:
    paraphrase = "I visited a great place today."
    rewrite = make_backend(
        "rewrite", respond=lambda text: BackendOutput(improved_text=paraphrase, confidence=0.9)
    )
    orchestrator = _orchestrator(rewrite, make_backend("prompt"))

    outcome = await orchestrator.analyze("So I was at this place today... pretty cool.")

    assert outcome.result.improved_text == paraphrase
    assert outcome.result.confidence == 0.9
    assert len(outcome.result.changes) >= 1
    assert outcome.result.backend_kind is BackendKind.REWRITE


async def test_fallback_runs_exactly_once(make_backend) -> None:
    rewrite = make_backend("rewrite", fail_invoke=True)
    prompt = make_backend("prompt", respond=lambda text: BackendOutput(improved_text="Better text."))
    orchestrator = _orchestrator(rewrite, prompt)

    outcome = await orchestrator.analyze("Worse text, honestly.")

    assert outcome.success
    assert outcome.result.backend_kind is BackendKind.PROMPT
    assert len(rewrite.invocations) == 1
    assert len(prompt.invocations) == 1
    assert 'Text to improve: "Worse text, honestly."' in prompt.invocations[0]
    assert [attempt.success for attempt in outcome.attempts] == [False, True]


async def test_both_backends_failing_is_a_value(make_backend) -> None:
    orchestrator = _orchestrator(
        make_backend("rewrite", available=False), make_backend("prompt", fail_invoke=True)
    )

    outcome = await orchestrator.analyze("Some text to improve.")

    assert not outcome.success
    assert outcome.error_code == "BothBackendsFailed"
    assert outcome.to_response()["success"] is False
    assert orchestrator.history == ()
    assert orchestrator.analytics.summary().failed_count == 1


async def test_non_list_changes_fall_back_to_a_synthesized_record(make_backend) -> None:
    rewrite = make_backend(
        "rewrite", respond=lambda text: BackendOutput(improved_text="Clear text.", changes=5)
    )
    orchestrator = _orchestrator(rewrite, make_backend("prompt"))

    outcome = await orchestrator.analyze("Unclear text, sort of.")

    assert outcome.success
    assert outcome.result.backend_kind is BackendKind.REWRITE
    assert len(outcome.result.changes) == 1
    assert outcome.result.changes[0].synthesized


async def test_non_string_improved_text_is_a_backend_failure(make_backend) -> None:
    rewrite = make_backend("rewrite", respond=lambda text: BackendOutput(improved_text=None))
    prompt = make_backend("prompt", respond=lambda text: BackendOutput(improved_text="Recovered."))
    orchestrator = _orchestrator(rewrite, prompt)

    outcome = await orchestrator.analyze("Some text to improve.")

    assert outcome.success
    assert outcome.result.backend_kind is BackendKind.PROMPT
    assert outcome.attempts[0].error_code == AnalysisErrorCode.PROCESSING_ERROR.value

    solo = _orchestrator(
        make_backend("rewrite", respond=lambda text: BackendOutput(improved_text=42)),
        make_backend("prompt"),
        config=AnalysisConfig(fallback_enabled=False),
    )
    failed = await solo.analyze("Some text to improve.")

    assert not failed.success
    assert failed.error_code == "ProcessingError"


async def test_disabled_fallback_reports_primary_error(make_backend) -> None:
    prompt = make_backend("prompt")
    orchestrator = _orchestrator(
        make_backend("rewrite", available=False),
        prompt,
        config=AnalysisConfig(fallback_enabled=False),
    )

    outcome = await orchestrator.analyze("Some text to improve.")

    assert outcome.error_code == AnalysisErrorCode.BACKEND_UNAVAILABLE.value == "BackendUnavailable"
    assert prompt.calls == 0


async def test_prompt_backend_can_be_primary(make_backend) -> None:
    rewrite = make_backend("rewrite")
    prompt = make_backend("prompt", respond=lambda text: BackendOutput(improved_text="Shorter."))
    orchestrator = _orchestrator(rewrite, prompt)

    outcome = await orchestrator.analyze("A much longer sentence here.", AnalysisOptions(backend="prompt"))

    assert outcome.result.backend_kind is BackendKind.PROMPT
    assert rewrite.calls == 0


async def test_capability_limit_triggers_fallback(make_backend) -> None:
    rewrite = make_backend("rewrite", max_text_length=10)
    prompt = make_backend("prompt", respond=lambda text: BackendOutput(improved_text="Trimmed."))
    orchestrator = _orchestrator(rewrite, prompt)

    outcome = await orchestrator.analyze("This text is longer than ten characters.")

    assert outcome.result.backend_kind is BackendKind.PROMPT
    assert rewrite.invocations == []


async def test_history_keeps_ten_newest_first(make_backend) -> None:
    orchestrator = _orchestrator(make_backend("rewrite"), make_backend("prompt"))

    for index in range(15):
        await orchestrator.analyze(f"Sample text number {index}")

    history = orchestrator.history
    assert len(history) == 10
    assert history[0].original_text == "Sample text number 14"
    assert history[-1].original_text == "Sample text number 5"
    assert len(orchestrator.get_history(limit=3)) == 3
    assert orchestrator.get_history_entry(history[0].entry_id) is history[0]
    assert orchestrator.get_statistics()["total_analyses"] == 10

    orchestrator.clear_history()
    assert orchestrator.history == ()
    assert orchestrator.get_statistics()["total_analyses"] == 0


async def test_history_display_text_is_truncated(make_backend) -> None:
    orchestrator = _orchestrator(make_backend("rewrite"), make_backend("prompt"))

    await orchestrator.analyze("word " * 40)

    [entry] = orchestrator.get_history()
    assert len(entry["original_text"]) == 100
    assert entry["original_text"].endswith("...")


async def test_stored_preferences_shape_backend_parameters(make_backend) -> None:
    rewrite = make_backend("rewrite")
    store = InMemoryPreferenceStore(Preferences(preferred_tone="formal"))
    orchestrator = _orchestrator(rewrite, make_backend("prompt"), preference_store=store)

    await orchestrator.analyze("hey, what's up")
    await orchestrator.analyze(
        "hey, what's up", AnalysisOptions(preferences=Preferences(preferred_tone="casual"))
    )

    assert [params["tone"] for params in rewrite.created] == ["more-formal", "more-casual"]


async def test_context_and_granular_changes(make_backend) -> None:
    rewrite = make_backend(
        "rewrite",
        respond=lambda text: BackendOutput(
            improved_text="Reply to the email.",
            changes=[
                {
                    "changeType": "conciseness",
                    "originalPhrase": "in order to",
                    "improvedPhrase": "to",
                    "reason": "Wordy",
                    "startPosition": 6,
                    "endPosition": 17,
                }
            ],
        ),
    )
    orchestrator = _orchestrator(rewrite, make_backend("prompt"))

    outcome = await orchestrator.analyze(
        "Reply in order to the email.", AnalysisOptions(field_locator="email-body", field_kind="rich-edit")
    )

    context = outcome.result.backend_parameters["context"]
    assert context["purpose"] == "email"
    assert context["field_kind"] == "rich-edit"
    assert outcome.result.changes[0].change_kind is ChangeKind.CONCISENESS
    assert not outcome.result.changes[0].synthesized


async def test_user_decisions_close_sample_lifecycle(make_backend) -> None:
    orchestrator = _orchestrator(make_backend("rewrite"), make_backend("prompt"))
    accepted = await orchestrator.analyze("First text here.")
    rejected = await orchestrator.analyze("Second text here.")

    assert orchestrator.record_decision("accept", accepted.analysis_id) is True
    assert orchestrator.record_decision("reject", rejected.analysis_id) is True
    assert orchestrator.record_decision("accept", accepted.analysis_id) is False

    assert accepted.sample.state is SampleState.ACCEPTED
    assert rejected.sample.state is SampleState.REJECTED
    snapshot = orchestrator.analytics.summary()
    assert snapshot.analysis_count == 2
    assert snapshot.acceptance_rate == 2 / 3


async def test_sessions_are_reused_across_analyses(make_backend) -> None:
    rewrite = make_backend("rewrite")
    orchestrator = _orchestrator(rewrite, make_backend("prompt"))

    await orchestrator.analyze("One text.")
    await orchestrator.analyze("Another text.")

    assert len(rewrite.created) == 1
    assert orchestrator.session_manager.session_count == 1


async def test_response_shape(make_backend) -> None:
    orchestrator = _orchestrator(make_backend("rewrite"), make_backend("prompt"))

    response = (await orchestrator.analyze("Check the shape.")).to_response()

    assert response["success"] is True
    assert response["result"]["analysisId"].startswith("analysis_")
    assert response["result"]["backendKind"] == "rewrite"
