"""
SOAP Note Pipeline - Workflow Orchestrator

This is the PUBLIC API entry point of the evaluator. It drives one session
through upload → generate → evaluate → analyze and keeps the result store
in step with every transition, so a reload can pick up where it left off.

Architecture Diagram:
    ┌─────────────────────────────────────────────────────────────────────┐
    │                          SoapNotePipeline                           │
    │                         (This Orchestrator)                         │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                     │
    │   ┌───────────┐    ┌───────────────┐    ┌───────────────┐           │
    │   │  Upload   │ →  │ NoteGenerator │ →  │ NoteEvaluator │ → Report  │
    │   └───────────┘    └───────────────┘    └───────────────┘           │
    │         │                  │                    │                   │
    │         └──────────────────┴────────────────────┘                   │
    │                            ResultStore                              │
    └─────────────────────────────────────────────────────────────────────┘

State Machine:
    IDLE ──upload/resume──→ GENERATION_IN_FLIGHT ──success/quota──→ GENERATED
                                     │
                                     └──hard failure/timeout──→ IDLE

    GENERATED ──evaluate()──→ EVALUATION_IN_FLIGHT ──success──→ EVALUATED
                                     │
                                     └──failure──→ GENERATED (metrics kept)

Concurrency:
    Provider and scoring calls run in worker threads via asyncio.to_thread,
    bounded by asyncio.wait_for. Each upload and close() bumps an epoch;
    a completion whose epoch is no longer current is discarded unwritten.

Usage:
    import asyncio
    from soap_evaluator import SoapNotePipeline

    async def main():
        pipeline = SoapNotePipeline.from_environment()
        await pipeline.upload(transcript, "gpt-4o-mini", reference)
        await pipeline.wait_for_generation()
        await pipeline.evaluate()
        await pipeline.wait_for_evaluation()
        print(pipeline.build_report().to_dict())

    asyncio.run(main())
"""

import asyncio
import json
from pathlib import Path
from typing import Callable, List, Optional

from loguru import logger

from soap_evaluator.core.config import PipelineConfiguration
from soap_evaluator.core.constants import ALLOWED_UPLOAD_SUFFIXES, Messages, StoreKeys
from soap_evaluator.core.enums import ErrorCategory, PipelineState
from soap_evaluator.core.exceptions import (
    InputValidationError,
    LLMTimeoutError,
    SoapEvaluatorError,
    StorageError,
)
from soap_evaluator.core.models import (
    AnalysisReport,
    ErrorReport,
    GenerationOutcome,
    GenerationRequest,
    MetricResult,
    SessionSnapshot,
    new_request_token,
)
from soap_evaluator.evaluation import NoteEvaluator
from soap_evaluator.generation import NoteGenerator
from soap_evaluator.repository import JsonFileBackend, ResultStore, StorageWriteResult


AnalysisHandler = Callable[[AnalysisReport], None]


def read_text_upload(path: str) -> str:
    """
    Read an uploaded text file.

    Raises:
        InputValidationError: Not a .txt file, or unreadable
    """
    file_path = Path(path)
    if file_path.suffix.lower() not in ALLOWED_UPLOAD_SUFFIXES:
        raise InputValidationError(Messages.TXT_ONLY, context={"path": str(file_path)})
    try:
        return file_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise InputValidationError(f"Could not read {file_path.name}: {e}", context={"path": str(file_path)})


# =============================================================================
# STAGE 1: PIPELINE CLASS
# =============================================================================


class SoapNotePipeline:
    """
    Resumable orchestrator for SOAP note generation and evaluation.

    What it does:
        Owns the session state machine. Generation starts on upload (or on
        resume when the store holds inputs but no outcome); evaluation only
        starts on an explicit evaluate() call.

    Invariants:
        - Never regenerates once an outcome is recorded for the session
        - Never drops stored metrics unless a new evaluation succeeds
        - At most one generation and one evaluation in flight
        - Hard failures are reported, never persisted

    Example:
        >>> pipeline = SoapNotePipeline(config, store=ResultStore())
        >>> await pipeline.resume()
        <PipelineState.IDLE: 'idle'>
    """

    def __init__(
        self,
        config: PipelineConfiguration,
        store: Optional[ResultStore] = None,
        generator: Optional[NoteGenerator] = None,
        evaluator: Optional[NoteEvaluator] = None,
        on_evaluated: Optional[AnalysisHandler] = None,
    ):
        """
        Initialize pipeline with configuration and optional component overrides.

        Args:
            config: Pipeline configuration
            store: Result store (defaults to the JSON file at config.store_path)
            generator: Optional generator override (for testing)
            evaluator: Optional evaluator override (for testing)
            on_evaluated: Called with the analysis report after a scoring
                pass that produced at least one metric
        """
        self._config = config
        self._store = store if store is not None else ResultStore(JsonFileBackend(config.store_path))
        self._generator = generator or NoteGenerator(config)
        self._evaluator = evaluator or NoteEvaluator()
        self._on_evaluated = on_evaluated

        self._snapshot = SessionSnapshot()
        self._state = PipelineState.IDLE
        self._epoch = 0

        self._generation_task: Optional[asyncio.Task] = None
        self._evaluation_task: Optional[asyncio.Task] = None

        self._generation_error: Optional[ErrorReport] = None
        self._evaluation_error: Optional[ErrorReport] = None
        self._storage_error: Optional[ErrorReport] = None

    # =========================================================================
    # STAGE 2: SESSION ENTRY POINTS
    # =========================================================================

    async def resume(self) -> PipelineState:
        """
        Rehydrate from the result store and continue the session.

        Starts exactly one generation when inputs are stored without an
        outcome. Calling it again while that generation runs is a no-op.

        Returns:
            The state entered

        Raises:
            StorageError: Store unreadable or written by a newer schema
        """
        if self._state.is_in_flight:
            logger.warning(f"resume() ignored | State: {self._state.value}")
            return self._state

        self._store.ensure_schema()
        snapshot = self._store.snapshot()

        if snapshot.evaluation_in_progress:
            logger.warning("Clearing evaluation flag left by an interrupted session")
            self._check_write(self._store.set_flag(StoreKeys.EVALUATION_IN_PROGRESS, False))
            snapshot.evaluation_in_progress = False

        self._snapshot = snapshot

        if snapshot.needs_generation:
            logger.info(f"Resuming session without outcome | Model: {snapshot.model}")
            self._mark_generation_in_progress()
            self._start_generation()
        elif snapshot.results_stored:
            if snapshot.generation_in_progress:
                self._check_write(self._store.set_flag(StoreKeys.GENERATION_IN_PROGRESS, False))
                snapshot.generation_in_progress = False
            self._state = PipelineState.EVALUATED if snapshot.metrics else PipelineState.GENERATED
        else:
            self._state = PipelineState.IDLE

        logger.info(
            f"Session resumed | "
            f"State: {self._state.value} | "
            f"Outcomes: {len(snapshot.outcomes)} | "
            f"Metrics: {len(snapshot.metrics)}"
        )
        return self._state

    async def upload(
        self, transcript: str, model: Optional[str] = None, reference: Optional[str] = None
    ) -> PipelineState:
        """
        Start a new session and begin generation.

        Raises:
            InputValidationError: Transcript or model missing (state unchanged)
            StorageError: The upload could not be persisted (state unchanged)
        """
        model = model or self._config.default_model
        reference = reference or None
        GenerationRequest(transcript=transcript, model=model, reference=reference).validate()

        result = self._store.begin_session(transcript, model, reference)
        if not result:
            raise StorageError(f"Upload could not be persisted: {result.error}", context={"keys": list(result.keys)})

        await self._cancel_in_flight()

        self._snapshot = SessionSnapshot(
            transcript=transcript,
            reference=reference or "",
            has_reference=bool(reference),
            model=model,
            generation_in_progress=True,
        )
        self._generation_error = None
        self._evaluation_error = None
        self._storage_error = None

        logger.info(
            f"Transcript uploaded | "
            f"Model: {model} | "
            f"Transcript: {len(transcript)} chars | "
            f"Reference: {'yes' if reference else 'no'}"
        )
        self._start_generation()
        return self._state

    async def upload_files(
        self, transcript_path: str, model: Optional[str] = None, reference_path: Optional[str] = None
    ) -> PipelineState:
        """Upload from .txt files; see upload()."""
        transcript = read_text_upload(transcript_path)
        reference = read_text_upload(reference_path) if reference_path else None
        return await self.upload(transcript, model, reference)

    def update_reference(self, reference: str) -> None:
        """
        Attach or replace the reference note.

        Raises:
            InputValidationError: Empty text, or a request is in flight
            StorageError: The reference could not be persisted
        """
        if self._state.is_in_flight:
            raise InputValidationError(Messages.REFERENCE_LOCKED, context={"state": self._state.value})
        if not reference or not reference.strip():
            raise InputValidationError(Messages.REFERENCE_REQUIRED, context={"field": "reference"})

        result = self._store.save_reference(reference)
        if not result:
            raise StorageError(f"Reference could not be persisted: {result.error}", context={"keys": list(result.keys)})

        self._snapshot.reference = reference
        self._snapshot.has_reference = True
        self._evaluation_error = None
        logger.info(f"Reference updated | {len(reference)} chars")

    def update_reference_file(self, path: str) -> None:
        self.update_reference(read_text_upload(path))

    # =========================================================================
    # STAGE 3: GENERATION
    # =========================================================================

    async def generate(self) -> bool:
        """
        Start generation for the current session if it has no outcome yet.

        Returns:
            True if a generation was started
        """
        if self._state.is_in_flight:
            logger.warning(f"generate() ignored, request already in flight | State: {self._state.value}")
            return False
        if not self._snapshot.transcript or not self._snapshot.model:
            logger.warning("generate() ignored, no transcript uploaded")
            return False
        if self._snapshot.results_stored:
            logger.info("generate() ignored, outcome already recorded for this session")
            return False

        self._mark_generation_in_progress()
        return self._start_generation()

    def _mark_generation_in_progress(self) -> None:
        self._check_write(self._store.set_flag(StoreKeys.GENERATION_IN_PROGRESS, True))
        self._snapshot.generation_in_progress = True

    def _start_generation(self) -> bool:
        if self._generation_task is not None and not self._generation_task.done():
            logger.warning("Generation already in flight, duplicate request ignored")
            return False

        request = GenerationRequest(
            transcript=self._snapshot.transcript,
            model=self._snapshot.model,
            reference=self._snapshot.reference or None,
        )
        self._generation_error = None
        self._state = PipelineState.GENERATION_IN_FLIGHT
        self._generation_task = asyncio.get_running_loop().create_task(
            self._run_generation(self._epoch, request, new_request_token())
        )
        return True

    async def _run_generation(self, epoch: int, request: GenerationRequest, token: str) -> None:
        timeout = self._config.request_timeout
        logger.info(f"Generation started | Request: {token} | Model: {request.model}")

        try:
            outcome = await asyncio.wait_for(
                asyncio.to_thread(self._generator.generate, request), timeout=timeout
            )
        except asyncio.TimeoutError as e:
            error = LLMTimeoutError(request.provider.value, timeout, original_error=e)
            logger.error(f"Generation timed out | Request: {token} | After: {timeout}s")
            self._fail_generation(epoch, error)
        except SoapEvaluatorError as e:
            logger.error(f"Generation failed | Request: {token} | {e}")
            self._fail_generation(epoch, e)
        except Exception as e:
            logger.exception(f"Unexpected generation error | Request: {token}")
            self._fail_generation(epoch, e)
        else:
            self._complete_generation(epoch, outcome, token)

    def _complete_generation(self, epoch: int, outcome: GenerationOutcome, token: str) -> None:
        if epoch != self._epoch:
            logger.warning(f"Discarding stale generation result | Request: {token}")
            return

        self._snapshot.outcomes = [outcome]
        self._snapshot.results_stored = True
        self._snapshot.generation_in_progress = False
        self._check_write(self._store.save_outcomes([outcome]))
        self._state = PipelineState.GENERATED

        logger.info(
            f"Generation finished | "
            f"Request: {token} | "
            f"Status: {outcome.status.value} | "
            f"Model: {outcome.model_used}"
        )

    def _fail_generation(self, epoch: int, error: BaseException) -> None:
        if epoch != self._epoch:
            logger.warning("Discarding stale generation failure")
            return

        self._snapshot.generation_in_progress = False
        self._check_write(self._store.set_flag(StoreKeys.GENERATION_IN_PROGRESS, False))
        self._generation_error = ErrorReport.from_exception(error, Messages.GENERATION_FAILED)
        self._state = PipelineState.IDLE

    # =========================================================================
    # STAGE 4: EVALUATION
    # =========================================================================

    async def evaluate(self) -> bool:
        """
        Score the session's usable outcomes against the reference.

        Missing reference or usable outcome is reported through
        `evaluation_error` without starting a request.

        Returns:
            True if an evaluation was started
        """
        if self._state.is_in_flight:
            logger.warning(f"evaluate() ignored, request already in flight | State: {self._state.value}")
            return False
        if self._evaluation_task is not None and not self._evaluation_task.done():
            logger.warning("Evaluation already in flight, duplicate request ignored")
            return False

        reference = self._snapshot.reference
        if not reference:
            self._evaluation_error = ErrorReport(ErrorCategory.SCORING_INPUT, Messages.UPLOAD_REFERENCE)
            logger.warning("Evaluation refused | No reference uploaded")
            return False

        outcomes = list(self._snapshot.outcomes)
        if not any(outcome.is_usable for outcome in outcomes):
            self._evaluation_error = ErrorReport(ErrorCategory.SCORING_INPUT, Messages.NO_VALID_CANDIDATES)
            logger.warning(f"Evaluation refused | No usable outcome among {len(outcomes)}")
            return False

        self._check_write(self._store.set_flag(StoreKeys.EVALUATION_IN_PROGRESS, True))
        self._snapshot.evaluation_in_progress = True
        self._evaluation_error = None
        self._state = PipelineState.EVALUATION_IN_FLIGHT

        self._evaluation_task = asyncio.get_running_loop().create_task(
            self._run_evaluation(self._epoch, reference, outcomes, new_request_token())
        )
        return True

    async def _run_evaluation(
        self, epoch: int, reference: str, outcomes: List[GenerationOutcome], token: str
    ) -> None:
        timeout = self._config.evaluation_timeout
        logger.info(f"Evaluation started | Request: {token} | Candidates: {len(outcomes)}")

        try:
            metrics = await asyncio.wait_for(
                asyncio.to_thread(self._evaluator.evaluate_outcomes, reference, outcomes),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error(f"Evaluation timed out | Request: {token} | After: {timeout}s")
            self._fail_evaluation(epoch, e)
        except SoapEvaluatorError as e:
            logger.error(f"Evaluation failed | Request: {token} | {e}")
            self._fail_evaluation(epoch, e)
        except Exception as e:
            logger.exception(f"Unexpected evaluation error | Request: {token}")
            self._fail_evaluation(epoch, e)
        else:
            self._complete_evaluation(epoch, metrics, token)

    def _complete_evaluation(self, epoch: int, metrics: List[MetricResult], token: str) -> None:
        if epoch != self._epoch:
            logger.warning(f"Discarding stale evaluation result | Request: {token}")
            return

        self._snapshot.metrics = list(metrics)
        self._snapshot.evaluation_in_progress = False
        self._check_write(self._store.save_metrics(metrics))
        self._state = PipelineState.EVALUATED

        logger.info(f"Evaluation finished | Request: {token} | Metrics: {len(metrics)}")

        if metrics and self._on_evaluated is not None:
            report = self.build_report()
            if report is not None:
                try:
                    self._on_evaluated(report)
                except Exception:
                    logger.exception("Analysis handler raised")

    def _fail_evaluation(self, epoch: int, error: BaseException) -> None:
        if epoch != self._epoch:
            logger.warning("Discarding stale evaluation failure")
            return

        self._snapshot.evaluation_in_progress = False
        self._check_write(self._store.set_flag(StoreKeys.EVALUATION_IN_PROGRESS, False))
        self._evaluation_error = ErrorReport.from_exception(error, Messages.EVALUATION_FAILED)
        self._state = PipelineState.GENERATED

    # =========================================================================
    # STAGE 5: CANCELLATION AND WAITING
    # =========================================================================

    async def close(self) -> None:
        """Cancel in-flight work; later completions are discarded."""
        await self._cancel_in_flight()
        logger.info(f"Pipeline closed | Epoch: {self._epoch}")

    async def _cancel_in_flight(self) -> None:
        self._epoch += 1
        pending = [
            task
            for task in (self._generation_task, self._evaluation_task)
            if task is not None and not task.done()
        ]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.wait(pending)
            logger.warning(f"Cancelled {len(pending)} in-flight request(s)")

        self._generation_task = None
        self._evaluation_task = None

        if self._state == PipelineState.GENERATION_IN_FLIGHT:
            self._state = PipelineState.IDLE
        elif self._state == PipelineState.EVALUATION_IN_FLIGHT:
            self._state = PipelineState.GENERATED

    async def wait_for_generation(self) -> PipelineState:
        task = self._generation_task
        if task is not None and not task.done():
            await asyncio.wait([task])
        return self._state

    async def wait_for_evaluation(self) -> PipelineState:
        task = self._evaluation_task
        if task is not None and not task.done():
            await asyncio.wait([task])
        return self._state

    async def join(self) -> PipelineState:
        """Wait for whatever is in flight."""
        await self.wait_for_generation()
        return await self.wait_for_evaluation()

    # =========================================================================
    # STAGE 6: ANALYSIS HANDOFF
    # =========================================================================

    def primary_outcome(self) -> Optional[GenerationOutcome]:
        """First usable outcome, else the first outcome, else None."""
        outcomes = self._snapshot.outcomes
        for outcome in outcomes:
            if outcome.is_usable:
                return outcome
        return outcomes[0] if outcomes else None

    def build_report(self) -> Optional[AnalysisReport]:
        """Analysis payload for the primary outcome; None before evaluation."""
        outcome = self.primary_outcome()
        metrics = self._snapshot.metrics
        if outcome is None or not metrics:
            return None

        metric = next((m for m in metrics if m.metric_id == outcome.outcome_id), metrics[0])
        return AnalysisReport(
            model=outcome.model,
            provider=outcome.provider,
            transcript=self._snapshot.transcript,
            reference=self._snapshot.reference,
            soap_note=outcome.note_text,
            metric=metric,
        )

    def export_report(self, path: str) -> Optional[str]:
        """
        Write the analysis payload as JSON.

        Returns:
            Path written, or None when there is nothing to export
        """
        report = self.build_report()
        if report is None:
            logger.warning("Nothing to export, session has not been evaluated")
            return None

        output = Path(path)
        output.parent.mkdir(parents=True, exist_ok=True)
        with open(output, "w", encoding="utf-8") as f:
            json.dump(report.to_dict(), f, indent=2, ensure_ascii=False)

        logger.info(f"Saved evaluation report to {output}")
        return str(output)

    # =========================================================================
    # STAGE 7: FACTORY METHODS
    # =========================================================================

    @classmethod
    def from_environment(
        cls, env_file: Optional[str] = None, on_evaluated: Optional[AnalysisHandler] = None
    ) -> "SoapNotePipeline":
        """
        Create a pipeline backed by the JSON file store.

        Raises:
            ConfigurationError: If a setting is invalid
        """
        config = PipelineConfiguration.from_environment(env_file=env_file, validate_on_load=True)
        store = ResultStore(JsonFileBackend(config.store_path))
        return cls(config, store=store, on_evaluated=on_evaluated)

    # =========================================================================
    # STAGE 8: PRIVATE HELPERS
    # =========================================================================

    def _check_write(self, result: StorageWriteResult) -> None:
        """Mark the session degraded when a write did not land."""
        if result:
            return
        self._storage_error = ErrorReport(ErrorCategory.STORAGE, Messages.STORAGE_DEGRADED)
        logger.error(f"Session degraded, results kept in memory only | Keys: {list(result.keys)}")

    # =========================================================================
    # STAGE 9: PROPERTIES
    # =========================================================================

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def is_generating(self) -> bool:
        return self._state == PipelineState.GENERATION_IN_FLIGHT

    @property
    def is_evaluating(self) -> bool:
        return self._state == PipelineState.EVALUATION_IN_FLIGHT

    @property
    def snapshot(self) -> SessionSnapshot:
        """In-memory view of the session (write-through cache of the store)."""
        return self._snapshot

    @property
    def outcomes(self) -> List[GenerationOutcome]:
        return list(self._snapshot.outcomes)

    @property
    def metrics(self) -> List[MetricResult]:
        return list(self._snapshot.metrics)

    @property
    def generation_error(self) -> Optional[ErrorReport]:
        return self._generation_error

    @property
    def evaluation_error(self) -> Optional[ErrorReport]:
        return self._evaluation_error

    @property
    def storage_error(self) -> Optional[ErrorReport]:
        return self._storage_error

    @property
    def storage_degraded(self) -> bool:
        return self._storage_error is not None

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def config(self) -> PipelineConfiguration:
        return self._config

    @property
    def store(self) -> ResultStore:
        return self._store
