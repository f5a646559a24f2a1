"""
Pipeline orchestrator tests: the session state machine end to end.

Async flows run through asyncio.run inside plain tests. Generation and
scoring are faked; the result store is the real in-memory implementation.

Run:  pytest tests/test_pipeline.py -v
"""

import asyncio
import json
import math
import threading
import time

import pytest

from soap_evaluator import SoapNotePipeline
from soap_evaluator.core.constants import Messages, StoreKeys
from soap_evaluator.core.enums import ErrorCategory, OutcomeStatus, PipelineState, Provider
from soap_evaluator.core.exceptions import ConfigurationError, InputValidationError, StorageError
from soap_evaluator.core.models import GenerationOutcome
from soap_evaluator.evaluation import NoteEvaluator
from soap_evaluator.repository import InMemoryBackend, ResultStore

from conftest import (
    OPENAI_MODEL,
    SAMPLE_NOTE,
    SAMPLE_REFERENCE,
    SAMPLE_TRANSCRIPT,
    FakeGenerator,
    QuotaGenerator,
    hard_failure,
)


# ===========================================================================
# Helpers
# ===========================================================================

class EchoGenerator(FakeGenerator):
    """Returns the transcript as the note, to tell sessions apart."""

    def generate(self, request):
        super().generate(request)
        return GenerationOutcome.success(request.model, request.provider, request.model, request.transcript)


class ScriptedEvaluator(NoteEvaluator):
    """Real scoring unless told to fail or stall."""

    def __init__(self):
        super().__init__()
        self.error = None
        self.delay = 0.0
        self.release = None
        self.calls = 0

    def evaluate_outcomes(self, reference, outcomes):
        self.calls += 1
        if self.release is not None:
            self.release.wait(timeout=5)
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return super().evaluate_outcomes(reference, outcomes)


def _pipeline(config, store, generator=None, evaluator=None, on_evaluated=None):
    return SoapNotePipeline(
        config,
        store=store,
        generator=generator or FakeGenerator(),
        evaluator=evaluator or ScriptedEvaluator(),
        on_evaluated=on_evaluated,
    )


def _stored_session(**extra):
    data = {
        StoreKeys.SCHEMA_VERSION: "1",
        StoreKeys.TRANSCRIPT: SAMPLE_TRANSCRIPT,
        StoreKeys.MODEL: OPENAI_MODEL,
        StoreKeys.GENERATION_IN_PROGRESS: "true",
        StoreKeys.EVALUATION_IN_PROGRESS: "false",
    }
    data.update(extra)
    return ResultStore(InMemoryBackend(data))


def _outcomes_json(note=SAMPLE_NOTE):
    outcome = GenerationOutcome.success(OPENAI_MODEL, Provider.OPENAI, OPENAI_MODEL, note)
    return json.dumps([outcome.to_dict()])


async def _wait_started(event: threading.Event) -> None:
    assert await asyncio.to_thread(event.wait, 2)


# ===========================================================================
# Upload
# ===========================================================================

class TestUpload:

    def test_upload_generates_and_persists(self, config, store):
        generator = FakeGenerator()
        pipeline = _pipeline(config, store, generator)

        async def scenario():
            entered = await pipeline.upload(SAMPLE_TRANSCRIPT, OPENAI_MODEL, SAMPLE_REFERENCE)
            assert entered == PipelineState.GENERATION_IN_FLIGHT
            assert pipeline.is_generating
            return await pipeline.wait_for_generation()

        assert asyncio.run(scenario()) == PipelineState.GENERATED
        assert not pipeline.is_generating
        assert generator.call_count == 1
        assert generator.requests[0].reference == SAMPLE_REFERENCE

        snapshot = store.snapshot()
        assert snapshot.outcomes[0].note_text == SAMPLE_NOTE
        assert not snapshot.generation_in_progress
        assert snapshot.has_reference
        assert pipeline.generation_error is None

    def test_default_model_is_used(self, config, store):
        generator = FakeGenerator()
        pipeline = _pipeline(config, store, generator)

        async def scenario():
            await pipeline.upload(SAMPLE_TRANSCRIPT)
            await pipeline.wait_for_generation()

        asyncio.run(scenario())
        assert generator.requests[0].model == config.default_model

    def test_missing_transcript_leaves_state_unchanged(self, config, store):
        generator = FakeGenerator()
        pipeline = _pipeline(config, store, generator)

        with pytest.raises(InputValidationError, match="Transcript is required."):
            asyncio.run(pipeline.upload("  ", OPENAI_MODEL))

        assert pipeline.state == PipelineState.IDLE
        assert store.get(StoreKeys.TRANSCRIPT) is None
        assert generator.call_count == 0

    def test_storage_failure_aborts_upload(self, config, backend, store):
        generator = FakeGenerator()
        pipeline = _pipeline(config, store, generator)
        backend.fail_writes = True

        with pytest.raises(StorageError):
            asyncio.run(pipeline.upload(SAMPLE_TRANSCRIPT, OPENAI_MODEL))

        assert pipeline.state == PipelineState.IDLE
        assert generator.call_count == 0

    def test_new_upload_clears_previous_results(self, config):
        store = _stored_session(
            **{StoreKeys.RESULTS: _outcomes_json(), StoreKeys.METRICS: '[{"id": "x", "label": "x"}]'}
        )
        pipeline = _pipeline(config, store, EchoGenerator())

        async def scenario():
            await pipeline.resume()
            await pipeline.upload("Second visit transcript", OPENAI_MODEL)
            await pipeline.wait_for_generation()

        asyncio.run(scenario())
        snapshot = store.snapshot()
        assert snapshot.metrics == []
        assert snapshot.outcomes[0].note_text == "Second visit transcript"
        assert not snapshot.has_reference

    def test_upload_files_reads_txt(self, config, store, tmp_path):
        transcript = tmp_path / "visit.txt"
        transcript.write_text(SAMPLE_TRANSCRIPT, encoding="utf-8")
        reference = tmp_path / "reference.TXT"
        reference.write_text(SAMPLE_REFERENCE, encoding="utf-8")
        pipeline = _pipeline(config, store)

        async def scenario():
            await pipeline.upload_files(str(transcript), OPENAI_MODEL, str(reference))
            await pipeline.wait_for_generation()

        asyncio.run(scenario())
        assert store.get(StoreKeys.TRANSCRIPT) == SAMPLE_TRANSCRIPT
        assert store.get(StoreKeys.REFERENCE) == SAMPLE_REFERENCE

    def test_upload_files_rejects_other_types(self, config, store, tmp_path):
        document = tmp_path / "visit.pdf"
        document.write_bytes(b"%PDF-1.4")
        pipeline = _pipeline(config, store)

        with pytest.raises(InputValidationError) as exc_info:
            asyncio.run(pipeline.upload_files(str(document), OPENAI_MODEL))
        assert exc_info.value.user_message == Messages.TXT_ONLY


# ===========================================================================
# Resume
# ===========================================================================

class TestResume:

    def test_empty_store_is_idle(self, config, store):
        generator = FakeGenerator()
        pipeline = _pipeline(config, store, generator)

        assert asyncio.run(pipeline.resume()) == PipelineState.IDLE
        assert generator.call_count == 0
        assert store.get(StoreKeys.SCHEMA_VERSION) == "1"

    def test_inputs_without_outcome_generate_once(self, config):
        store = _stored_session()
        generator = FakeGenerator()
        pipeline = _pipeline(config, store, generator)

        async def scenario():
            entered = await pipeline.resume()
            final = await pipeline.wait_for_generation()
            return entered, final

        assert asyncio.run(scenario()) == (PipelineState.GENERATION_IN_FLIGHT, PipelineState.GENERATED)
        assert generator.call_count == 1
        assert store.snapshot().results_stored

    def test_stored_outcome_is_never_regenerated(self, config):
        store = _stored_session(**{StoreKeys.RESULTS: _outcomes_json(), StoreKeys.GENERATION_IN_PROGRESS: "false"})
        generator = FakeGenerator()
        pipeline = _pipeline(config, store, generator)

        async def scenario():
            entered = await pipeline.resume()
            started = await pipeline.generate()
            return entered, started

        assert asyncio.run(scenario()) == (PipelineState.GENERATED, False)
        assert generator.call_count == 0
        assert pipeline.outcomes[0].note_text == SAMPLE_NOTE

    def test_stored_metrics_resume_as_evaluated(self, config):
        metrics = json.dumps([{"id": OPENAI_MODEL, "label": OPENAI_MODEL, "rouge1": 0.75, "bleu1": 0.5, "combined": 0.625}])
        store = _stored_session(**{StoreKeys.RESULTS: _outcomes_json(), StoreKeys.METRICS: metrics})
        pipeline = _pipeline(config, store)

        assert asyncio.run(pipeline.resume()) == PipelineState.EVALUATED
        assert pipeline.metrics[0].combined == pytest.approx(0.625)
        assert store.get(StoreKeys.GENERATION_IN_PROGRESS) == "false"

    def test_interrupted_evaluation_flag_is_cleared(self, config):
        store = _stored_session(
            **{StoreKeys.RESULTS: _outcomes_json(), StoreKeys.EVALUATION_IN_PROGRESS: "true"}
        )
        pipeline = _pipeline(config, store)

        assert asyncio.run(pipeline.resume()) == PipelineState.GENERATED
        assert store.get(StoreKeys.EVALUATION_IN_PROGRESS) == "false"
        assert not pipeline.is_evaluating

    def test_newer_schema_is_refused(self, config):
        store = _stored_session(**{StoreKeys.SCHEMA_VERSION: "99"})
        generator = FakeGenerator()
        pipeline = _pipeline(config, store, generator)

        with pytest.raises(StorageError):
            asyncio.run(pipeline.resume())
        assert generator.call_count == 0

    def test_duplicate_triggers_start_one_generation(self, config):
        store = _stored_session()
        generator = FakeGenerator()
        release = generator.hold()
        pipeline = _pipeline(config, store, generator)

        async def scenario():
            first = await pipeline.resume()
            await _wait_started(generator.started)
            second = await pipeline.resume()
            manual = await pipeline.generate()
            release.set()
            await pipeline.wait_for_generation()
            return first, second, manual

        first, second, manual = asyncio.run(scenario())
        assert first == second == PipelineState.GENERATION_IN_FLIGHT
        assert manual is False
        assert generator.call_count == 1
        assert pipeline.state == PipelineState.GENERATED

    def test_unparseable_results_are_not_regenerated(self, config):
        store = _stored_session(**{StoreKeys.RESULTS: "{not json"})
        generator = FakeGenerator()
        pipeline = _pipeline(config, store, generator)

        async def scenario():
            entered = await pipeline.resume()
            started = await pipeline.generate()
            return entered, started

        assert asyncio.run(scenario()) == (PipelineState.GENERATED, False)
        assert generator.call_count == 0
        assert pipeline.outcomes == []
        assert store.get(StoreKeys.RESULTS) == "{not json"
        assert store.get(StoreKeys.GENERATION_IN_PROGRESS) == "false"

    def test_resumed_generation_sets_the_stored_flag(self, config):
        store = _stored_session(**{StoreKeys.GENERATION_IN_PROGRESS: "false"})
        generator = FakeGenerator()
        release = generator.hold()
        pipeline = _pipeline(config, store, generator)

        async def scenario():
            await pipeline.resume()
            await _wait_started(generator.started)
            during = (store.get(StoreKeys.GENERATION_IN_PROGRESS), pipeline.snapshot.generation_in_progress)
            release.set()
            await pipeline.wait_for_generation()
            return during

        assert asyncio.run(scenario()) == ("true", True)
        assert store.get(StoreKeys.GENERATION_IN_PROGRESS) == "false"
        assert not pipeline.snapshot.generation_in_progress


# ===========================================================================
# Generation failures
# ===========================================================================

class TestGenerationFailures:

    def test_quota_outcome_is_persisted(self, config, store):
        pipeline = _pipeline(config, store, QuotaGenerator())

        async def scenario():
            await pipeline.upload(SAMPLE_TRANSCRIPT, OPENAI_MODEL, SAMPLE_REFERENCE)
            await pipeline.wait_for_generation()

        asyncio.run(scenario())
        assert pipeline.state == PipelineState.GENERATED
        assert pipeline.generation_error is None

        stored = store.snapshot().outcomes[0]
        assert stored.status == OutcomeStatus.QUOTA_EXCEEDED
        assert stored.error_detail == "insufficient_quota"

    def test_hard_failure_returns_to_idle(self, config, store):
        pipeline = _pipeline(config, store, FakeGenerator(error=hard_failure()))

        async def scenario():
            await pipeline.upload(SAMPLE_TRANSCRIPT, OPENAI_MODEL)
            return await pipeline.wait_for_generation()

        assert asyncio.run(scenario()) == PipelineState.IDLE
        assert pipeline.generation_error.category == ErrorCategory.UPSTREAM_FAILURE
        assert pipeline.generation_error.message == Messages.GENERATION_FAILED
        assert store.get(StoreKeys.RESULTS) is None
        assert store.get(StoreKeys.GENERATION_IN_PROGRESS) == "false"
        assert pipeline.outcomes == []

    def test_configuration_error_is_reported_distinctly(self, config, store):
        error = ConfigurationError("Missing OPENAI_API_KEY", context={"setting": "OPENAI_API_KEY"})
        pipeline = _pipeline(config, store, FakeGenerator(error=error))

        async def scenario():
            await pipeline.upload(SAMPLE_TRANSCRIPT, OPENAI_MODEL)
            await pipeline.wait_for_generation()

        asyncio.run(scenario())
        assert pipeline.state == PipelineState.IDLE
        assert pipeline.generation_error.category == ErrorCategory.CONFIGURATION
        assert pipeline.generation_error.message == "Missing OPENAI_API_KEY"

    def test_unexpected_error_uses_generic_message(self, config, store):
        pipeline = _pipeline(config, store, FakeGenerator(error=RuntimeError("segfault-ish")))

        async def scenario():
            await pipeline.upload(SAMPLE_TRANSCRIPT, OPENAI_MODEL)
            await pipeline.wait_for_generation()

        asyncio.run(scenario())
        assert pipeline.generation_error.message == Messages.GENERATION_FAILED
        assert "segfault" not in pipeline.generation_error.message

    def test_timeout_is_a_hard_failure(self, config, store):
        config.request_timeout = 0.05
        pipeline = _pipeline(config, store, FakeGenerator(delay=0.5))

        async def scenario():
            await pipeline.upload(SAMPLE_TRANSCRIPT, OPENAI_MODEL)
            return await pipeline.wait_for_generation()

        assert asyncio.run(scenario()) == PipelineState.IDLE
        assert pipeline.generation_error.category == ErrorCategory.UPSTREAM_FAILURE
        assert "took too long" in pipeline.generation_error.message
        assert store.get(StoreKeys.RESULTS) is None

    def test_generate_retries_after_hard_failure(self, config, store):
        generator = FakeGenerator(error=hard_failure())
        pipeline = _pipeline(config, store, generator)

        async def scenario():
            await pipeline.upload(SAMPLE_TRANSCRIPT, OPENAI_MODEL)
            await pipeline.wait_for_generation()
            generator.error = None
            started = await pipeline.generate()
            await pipeline.wait_for_generation()
            return started

        assert asyncio.run(scenario()) is True
        assert pipeline.state == PipelineState.GENERATED
        assert pipeline.generation_error is None
        assert generator.call_count == 2


# ===========================================================================
# Evaluation
# ===========================================================================

class TestEvaluation:

    def _generated(self, config, store, reference=SAMPLE_REFERENCE, **kwargs):
        pipeline = _pipeline(config, store, **kwargs)

        async def scenario():
            await pipeline.upload(SAMPLE_TRANSCRIPT, OPENAI_MODEL, reference)
            await pipeline.wait_for_generation()

        asyncio.run(scenario())
        return pipeline

    def test_successful_evaluation(self, config, store):
        reports = []
        pipeline = self._generated(config, store, on_evaluated=reports.append)

        async def scenario():
            started = await pipeline.evaluate()
            assert pipeline.is_evaluating
            await pipeline.wait_for_evaluation()
            return started

        assert asyncio.run(scenario()) is True
        assert pipeline.state == PipelineState.EVALUATED
        assert pipeline.evaluation_error is None

        metric = pipeline.metrics[0]
        assert metric.rouge1 == pytest.approx(0.75)
        assert metric.bleu1 == pytest.approx(math.exp(1 - 5 / 3))

        snapshot = store.snapshot()
        assert snapshot.metrics[0].combined == pytest.approx(metric.combined)
        assert not snapshot.evaluation_in_progress

        assert len(reports) == 1
        assert reports[0].soap_note == SAMPLE_NOTE
        assert reports[0].metric == metric

    def test_requires_reference(self, config, store):
        evaluator = ScriptedEvaluator()
        pipeline = self._generated(config, store, reference=None, evaluator=evaluator)

        assert asyncio.run(pipeline.evaluate()) is False
        assert pipeline.state == PipelineState.GENERATED
        assert pipeline.evaluation_error.message == Messages.UPLOAD_REFERENCE
        assert pipeline.evaluation_error.category == ErrorCategory.SCORING_INPUT
        assert evaluator.calls == 0

    def test_reference_added_later(self, config, store):
        pipeline = self._generated(config, store, reference=None)
        pipeline.update_reference(SAMPLE_REFERENCE)

        async def scenario():
            await pipeline.evaluate()
            await pipeline.wait_for_evaluation()

        asyncio.run(scenario())
        assert pipeline.state == PipelineState.EVALUATED
        assert store.get(StoreKeys.HAS_REFERENCE) == "true"

    def test_quota_outcome_cannot_be_evaluated(self, config, store):
        pipeline = self._generated(config, store, generator=QuotaGenerator())

        assert asyncio.run(pipeline.evaluate()) is False
        assert pipeline.evaluation_error.message == Messages.NO_VALID_CANDIDATES

    def test_failure_keeps_previous_metrics(self, config, store):
        evaluator = ScriptedEvaluator()
        pipeline = self._generated(config, store, evaluator=evaluator)

        async def scenario():
            await pipeline.evaluate()
            await pipeline.wait_for_evaluation()
            evaluator.error = RuntimeError("scoring backend down")
            await pipeline.evaluate()
            await pipeline.wait_for_evaluation()

        asyncio.run(scenario())
        assert pipeline.state == PipelineState.GENERATED
        assert pipeline.evaluation_error.message == Messages.EVALUATION_FAILED
        assert len(pipeline.metrics) == 1
        assert len(store.snapshot().metrics) == 1
        assert store.get(StoreKeys.EVALUATION_IN_PROGRESS) == "false"

    def test_timeout_is_a_failure(self, config, store):
        config.evaluation_timeout = 0.05
        evaluator = ScriptedEvaluator()
        evaluator.delay = 0.5
        pipeline = self._generated(config, store, evaluator=evaluator)

        async def scenario():
            await pipeline.evaluate()
            return await pipeline.wait_for_evaluation()

        assert asyncio.run(scenario()) == PipelineState.GENERATED
        assert pipeline.evaluation_error.message == Messages.EVALUATION_FAILED
        assert store.get(StoreKeys.METRICS) is None

    def test_duplicate_evaluate_is_ignored(self, config, store):
        evaluator = ScriptedEvaluator()
        release = evaluator.release = threading.Event()
        pipeline = self._generated(config, store, evaluator=evaluator)

        async def scenario():
            first = await pipeline.evaluate()
            second = await pipeline.evaluate()
            release.set()
            await pipeline.wait_for_evaluation()
            return first, second

        assert asyncio.run(scenario()) == (True, False)
        assert evaluator.calls == 1

    def test_reference_is_locked_while_in_flight(self, config, store):
        generator = FakeGenerator()
        release = generator.hold()
        pipeline = _pipeline(config, store, generator)

        async def scenario():
            await pipeline.upload(SAMPLE_TRANSCRIPT, OPENAI_MODEL)
            try:
                with pytest.raises(InputValidationError, match="cannot be changed"):
                    pipeline.update_reference(SAMPLE_REFERENCE)
            finally:
                release.set()
            await pipeline.wait_for_generation()

        asyncio.run(scenario())
        assert store.get(StoreKeys.REFERENCE) is None

    def test_empty_reference_is_rejected(self, config, store):
        pipeline = self._generated(config, store, reference=None)
        with pytest.raises(InputValidationError):
            pipeline.update_reference("   ")


# ===========================================================================
# Storage degradation
# ===========================================================================

class TestStorageDegradation:

    def test_results_write_failure_keeps_results_in_memory(self, config, backend, store):
        generator = FakeGenerator()
        release = generator.hold()
        pipeline = _pipeline(config, store, generator)

        async def scenario():
            await pipeline.upload(SAMPLE_TRANSCRIPT, OPENAI_MODEL)
            backend.fail_writes = True
            backend.fail_keys = {StoreKeys.RESULTS}
            release.set()
            await pipeline.wait_for_generation()

        asyncio.run(scenario())
        assert pipeline.state == PipelineState.GENERATED
        assert pipeline.outcomes[0].note_text == SAMPLE_NOTE
        assert pipeline.storage_degraded
        assert pipeline.storage_error.category == ErrorCategory.STORAGE
        assert store.get(StoreKeys.RESULTS) is None

    def test_reference_write_failure_raises(self, config, backend, store):
        pipeline = _pipeline(config, store)
        backend.fail_writes = True
        with pytest.raises(StorageError):
            pipeline.update_reference(SAMPLE_REFERENCE)


# ===========================================================================
# Cancellation
# ===========================================================================

class TestCancellation:

    def test_close_discards_in_flight_generation(self, config, store):
        generator = FakeGenerator()
        release = generator.hold()
        pipeline = _pipeline(config, store, generator)

        async def scenario():
            await pipeline.upload(SAMPLE_TRANSCRIPT, OPENAI_MODEL)
            await _wait_started(generator.started)
            epoch = pipeline.epoch
            await pipeline.close()
            release.set()
            return epoch

        epoch = asyncio.run(scenario())
        assert pipeline.epoch == epoch + 1
        assert pipeline.state == PipelineState.IDLE
        assert store.get(StoreKeys.RESULTS) is None
        # the flag stays set so the next resume() regenerates
        assert store.snapshot().needs_generation

    def test_reupload_discards_previous_session_result(self, config, store):
        generator = EchoGenerator()
        release = generator.hold()
        pipeline = _pipeline(config, store, generator)

        async def scenario():
            await pipeline.upload("First transcript", OPENAI_MODEL)
            await _wait_started(generator.started)
            await pipeline.upload("Second transcript", OPENAI_MODEL)
            release.set()
            await pipeline.wait_for_generation()

        asyncio.run(scenario())
        assert generator.call_count == 2
        outcomes = store.snapshot().outcomes
        assert len(outcomes) == 1
        assert outcomes[0].note_text == "Second transcript"


# ===========================================================================
# Analysis handoff
# ===========================================================================

class TestAnalysisReport:

    def test_no_report_before_evaluation(self, config, store, tmp_path):
        pipeline = _pipeline(config, store)
        assert pipeline.build_report() is None
        assert pipeline.export_report(str(tmp_path / "out.json")) is None

    def test_primary_outcome_prefers_usable(self, config):
        quota = GenerationOutcome.quota_exceeded("gpt-4o", Provider.OPENAI, "quota")
        usable = GenerationOutcome.success(OPENAI_MODEL, Provider.OPENAI, OPENAI_MODEL, SAMPLE_NOTE)
        results = json.dumps([quota.to_dict(), usable.to_dict()])
        pipeline = _pipeline(config, _stored_session(**{StoreKeys.RESULTS: results}))

        asyncio.run(pipeline.resume())
        assert pipeline.primary_outcome().outcome_id == OPENAI_MODEL

    def test_export_writes_download_payload(self, config, store, tmp_path):
        pipeline = _pipeline(config, store)

        async def scenario():
            await pipeline.upload(SAMPLE_TRANSCRIPT, OPENAI_MODEL, SAMPLE_REFERENCE)
            await pipeline.wait_for_generation()
            await pipeline.evaluate()
            await pipeline.wait_for_evaluation()

        asyncio.run(scenario())
        path = pipeline.export_report(str(tmp_path / "exports" / "soap_evaluation_results.json"))
        payload = json.loads(open(path, encoding="utf-8").read())

        assert set(payload) == {"generatedAt", "model", "provider", "transcript", "reference", "soapNote", "metrics"}
        assert payload["model"] == OPENAI_MODEL
        assert payload["provider"] == "openai"
        assert payload["soapNote"] == SAMPLE_NOTE
        assert payload["metrics"]["rouge1"] == pytest.approx(0.75)

        series = pipeline.build_report().metric_series()
        assert [row["metric"] for row in series] == ["ROUGE-1", "BLEU-1", "Combined"]
