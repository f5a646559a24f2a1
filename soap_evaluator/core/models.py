"""
Domain Models for SOAP Note Evaluation

This module defines the core data structures used throughout the pipeline.
All models are dataclasses designed for:
    1. Type safety and IDE support
    2. Serialization to/from the persisted JSON lists
    3. Clear domain semantics

Model Hierarchy:
    GenerationRequest  → Input of one generation run
    GenerationOutcome  → Tagged result of one run (success / quota / hard failure)
    Candidate          → A note submitted for scoring
    MetricResult       → ROUGE-1 / BLEU-1 / combined scores for one candidate
    SessionSnapshot    → Everything the result store holds for a session
    ErrorReport        → User-facing error bucketed by category
    AnalysisReport     → Export payload handed to analysis consumers
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from soap_evaluator.core.constants import (
    Messages,
    QUOTA_DEFAULT_ERROR,
    QUOTA_DEFAULT_ID,
    QUOTA_DEFAULT_LABEL,
    QUOTA_DEFAULT_MODEL,
    QUOTA_EXCEEDED_NOTE,
)
from soap_evaluator.core.enums import ErrorCategory, OutcomeStatus, Provider
from soap_evaluator.core.exceptions import InputValidationError, SoapEvaluatorError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# STAGE 1: GENERATION REQUEST
# =============================================================================


@dataclass(frozen=True)
class GenerationRequest:
    """
    Input of a single generation run.

    Attributes:
        transcript: Clinical conversation text (required, non-empty)
        model: Logical model selector (required)
        reference: Optional reference note; stylistic guidance only
    """

    transcript: str
    model: str
    reference: Optional[str] = None

    def validate(self) -> None:
        """
        Reject requests that must never reach the network.

        Raises:
            InputValidationError: If transcript or model is missing
        """
        if not self.transcript or not self.transcript.strip():
            raise InputValidationError(Messages.TRANSCRIPT_REQUIRED, context={"field": "transcript"})
        if not self.model or not self.model.strip():
            raise InputValidationError(Messages.MODEL_REQUIRED, context={"field": "model"})

    @property
    def provider(self) -> Provider:
        return Provider.for_model(self.model)


# =============================================================================
# STAGE 2: GENERATION OUTCOME (TAGGED UNION)
# =============================================================================
# Success | QuotaExceeded | HardFailure, distinguished by `status`.


@dataclass(frozen=True)
class GenerationOutcome:
    """
    Normalized result of one generation run.

    What it does:
        Gives the orchestrator a single shape for both providers, whatever
        their raw response looked like. Provider-specific parsing stops at
        the adapter boundary.

    Invariants:
        SUCCESS:        note_text set, error_detail None
        QUOTA_EXCEEDED: note_text is the fixed user-facing explanation AND
                        error_detail carries the raw upstream text, so
                        consumers can display it without special-casing
        HARD_FAILURE:   note_text None, error_detail set; never persisted

    Attributes:
        outcome_id: Identifier (the model selector for single-model runs)
        provider: Provider the selector routed to
        model: Model selector as chosen by the user
        label: Model name actually used upstream (display label)
        note_text: Generated note, or the synthesized quota message
        error_detail: Raw upstream error text
        status: Union tag
        generated_at: When the outcome was produced
    """

    outcome_id: str
    provider: Provider
    model: str
    label: str
    note_text: Optional[str]
    error_detail: Optional[str] = None
    status: OutcomeStatus = OutcomeStatus.SUCCESS
    generated_at: datetime = field(default_factory=_utcnow)

    # -------------------------------------------------------------------------
    # 2.1 Variant Constructors
    # -------------------------------------------------------------------------

    @classmethod
    def success(cls, model: str, provider: Provider, model_used: str, note_text: str) -> "GenerationOutcome":
        return cls(
            outcome_id=model,
            provider=provider,
            model=model,
            label=model_used or model,
            note_text=note_text,
        )

    @classmethod
    def quota_exceeded(cls, model: str, provider: Provider, error_body: Optional[str]) -> "GenerationOutcome":
        return cls(
            outcome_id=model or QUOTA_DEFAULT_ID,
            provider=provider,
            model=model or QUOTA_DEFAULT_MODEL,
            label=model or QUOTA_DEFAULT_LABEL,
            note_text=QUOTA_EXCEEDED_NOTE,
            error_detail=error_body or QUOTA_DEFAULT_ERROR,
            status=OutcomeStatus.QUOTA_EXCEEDED,
        )

    @classmethod
    def hard_failure(
        cls, model: str, provider: Provider, model_used: str, error_detail: str
    ) -> "GenerationOutcome":
        return cls(
            outcome_id=model,
            provider=provider,
            model=model,
            label=model_used or model,
            note_text=None,
            error_detail=error_detail or "Unknown error",
            status=OutcomeStatus.HARD_FAILURE,
        )

    # -------------------------------------------------------------------------
    # 2.2 Computed Properties
    # -------------------------------------------------------------------------

    @property
    def model_used(self) -> str:
        return self.label

    @property
    def is_usable(self) -> bool:
        """True when the note can be scored (has text and no error)."""
        return bool(self.note_text) and not self.error_detail

    @property
    def is_quota_exceeded(self) -> bool:
        return self.status == OutcomeStatus.QUOTA_EXCEEDED

    @property
    def is_hard_failure(self) -> bool:
        return self.status == OutcomeStatus.HARD_FAILURE

    def to_candidate(self) -> "Candidate":
        return Candidate(candidate_id=self.outcome_id, label=self.label, text=self.note_text or "")

    # -------------------------------------------------------------------------
    # 2.3 Serialization
    # -------------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data: Dict[str, Any] = {
            "id": self.outcome_id,
            "provider": self.provider.value,
            "model": self.model,
            "label": self.label,
            "note": self.note_text,
            "status": self.status.value,
            "generated_at": self.generated_at.isoformat(),
        }
        if self.error_detail is not None:
            data["error"] = self.error_detail
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GenerationOutcome":
        """Create from dictionary (JSON deserialization)."""
        model = data.get("model") or data.get("id") or ""
        error = data.get("error")
        note = data.get("note")

        status_raw = data.get("status")
        if status_raw:
            status = OutcomeStatus(status_raw)
        elif error and note:
            status = OutcomeStatus.QUOTA_EXCEEDED
        elif error:
            status = OutcomeStatus.HARD_FAILURE
        else:
            status = OutcomeStatus.SUCCESS

        generated_at_raw = data.get("generated_at")
        generated_at = datetime.fromisoformat(generated_at_raw) if generated_at_raw else _utcnow()

        return cls(
            outcome_id=data.get("id") or model,
            provider=Provider(data.get("provider") or Provider.for_model(model).value),
            model=model,
            label=data.get("label") or model,
            note_text=note,
            error_detail=error,
            status=status,
            generated_at=generated_at,
        )


# =============================================================================
# STAGE 3: SCORING MODELS
# =============================================================================


@dataclass(frozen=True)
class Candidate:
    """A generated note submitted to the scorer."""

    candidate_id: str
    label: str
    text: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Candidate":
        return cls(
            candidate_id=str(data.get("id", "")),
            label=str(data.get("label", "")),
            text=data.get("text") or "",
        )


@dataclass(frozen=True)
class MetricResult:
    """
    Lexical-overlap scores for one candidate against the reference.

    Attributes:
        metric_id: Candidate identifier
        label: Candidate display label
        rouge1: Unigram F1 in [0, 1]
        bleu1: Clipped unigram precision times brevity penalty, in [0, 1]
        combined: Arithmetic mean of rouge1 and bleu1
    """

    metric_id: str
    label: str
    rouge1: float
    bleu1: float
    combined: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.metric_id,
            "label": self.label,
            "rouge1": self.rouge1,
            "bleu1": self.bleu1,
            "combined": self.combined,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MetricResult":
        return cls(
            metric_id=str(data.get("id", "")),
            label=str(data.get("label", "")),
            rouge1=float(data.get("rouge1", 0.0)),
            bleu1=float(data.get("bleu1", 0.0)),
            combined=float(data.get("combined", 0.0)),
        )


# =============================================================================
# STAGE 4: SESSION SNAPSHOT
# =============================================================================


@dataclass
class SessionSnapshot:
    """
    Typed view of everything the result store holds for one session.

    Absent keys come back as empty strings, empty lists or False; an unset
    value is never an error.
    """

    transcript: str = ""
    reference: str = ""
    has_reference: bool = False
    model: str = ""
    outcomes: List[GenerationOutcome] = field(default_factory=list)
    metrics: List[MetricResult] = field(default_factory=list)
    generation_in_progress: bool = False
    evaluation_in_progress: bool = False
    results_stored: bool = False

    @property
    def needs_generation(self) -> bool:
        """Transcript and model persisted but no outcome recorded yet."""
        return bool(self.transcript) and bool(self.model) and not self.results_stored

    @property
    def usable_outcomes(self) -> List[GenerationOutcome]:
        return [outcome for outcome in self.outcomes if outcome.is_usable]


# =============================================================================
# STAGE 5: ERROR REPORT
# =============================================================================


@dataclass(frozen=True)
class ErrorReport:
    """
    User-facing failure, bucketed by the error taxonomy.

    Never carries a stack trace; operators get the full detail in the logs.
    """

    category: ErrorCategory
    message: str

    @classmethod
    def from_exception(cls, error: BaseException, fallback: str) -> "ErrorReport":
        if isinstance(error, SoapEvaluatorError):
            return cls(category=error.category, message=error.user_message)
        return cls(category=ErrorCategory.UPSTREAM_FAILURE, message=fallback)

    def to_dict(self) -> Dict[str, str]:
        return {"category": self.category.value, "message": self.message}


# =============================================================================
# STAGE 6: ANALYSIS REPORT
# =============================================================================


@dataclass(frozen=True)
class AnalysisReport:
    """
    Result bundle handed to the analysis consumer after evaluation.

    `to_dict()` produces the downloadable JSON payload; `metric_series()`
    gives (metric, value) rows for chart rendering.
    """

    model: str
    provider: Provider
    transcript: str
    reference: str
    soap_note: Optional[str]
    metric: MetricResult
    generated_at: datetime = field(default_factory=_utcnow)

    def metric_series(self) -> List[Dict[str, Any]]:
        return [
            {"metric": "ROUGE-1", "value": self.metric.rouge1},
            {"metric": "BLEU-1", "value": self.metric.bleu1},
            {"metric": "Combined", "value": self.metric.combined},
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "generatedAt": self.generated_at.isoformat(),
            "model": self.model,
            "provider": self.provider.value,
            "transcript": self.transcript,
            "reference": self.reference,
            "soapNote": self.soap_note,
            "metrics": {
                "rouge1": self.metric.rouge1,
                "bleu1": self.metric.bleu1,
                "combined": self.metric.combined,
            },
        }


def new_request_token() -> str:
    """Opaque identifier attached to in-flight requests in the logs."""
    return uuid.uuid4().hex[:8]
