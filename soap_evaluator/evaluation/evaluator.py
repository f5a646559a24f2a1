"""
Note Evaluator - Evaluation Request Boundary

This module exposes scoring as a request/response boundary:

    {reference, candidates: [{id, label, text}]} → {metrics: [MetricResult]}

Rules:
    1. A missing or non-string reference is rejected (400-equivalent)
    2. Candidates that are not objects or carry no text are dropped silently
    3. Every surviving candidate gets rouge1, bleu1 and combined scores

Pipeline Position:
    Orchestrator → [NoteEvaluator] → similarity functions
                    ^^^^^^^^^^^^^
                    You are here
"""

from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from loguru import logger

from soap_evaluator.core.constants import Messages
from soap_evaluator.core.exceptions import EvaluationError, EvaluationRequestError
from soap_evaluator.core.models import Candidate, GenerationOutcome, MetricResult
from soap_evaluator.evaluation.similarity import score_pair


CandidateInput = Union[Candidate, Dict[str, Any], None]


class NoteEvaluator:
    """
    Scores generated SOAP notes against a reference note.

    Example:
        >>> evaluator = NoteEvaluator()
        >>> metrics = evaluator.evaluate(
        ...     "Patient reports headache and nausea.",
        ...     [Candidate("gpt-4o-mini", "gpt-4o-mini", "Patient reports headache.")],
        ... )
        >>> round(metrics[0].rouge1, 2)
        0.75
    """

    def __init__(self):
        self._evaluation_count = 0

    def evaluate(self, reference: Any, candidates: Iterable[CandidateInput]) -> List[MetricResult]:
        """
        Score every usable candidate.

        Raises:
            EvaluationRequestError: If the reference is missing or not a string
        """
        if not isinstance(reference, str) or not reference:
            raise EvaluationRequestError(
                Messages.REFERENCE_REQUIRED,
                context={"reference_type": type(reference).__name__},
            )

        usable = [c for c in (self._coerce(item) for item in candidates) if c is not None]

        metrics = []
        for candidate in usable:
            r1, b1, score = score_pair(reference, candidate.text)
            metrics.append(
                MetricResult(
                    metric_id=candidate.candidate_id,
                    label=candidate.label,
                    rouge1=r1,
                    bleu1=b1,
                    combined=score,
                )
            )

        self._evaluation_count += 1
        logger.info(f"Evaluated {len(metrics)} candidate(s) against reference")
        return metrics

    def evaluate_outcomes(
        self, reference: Optional[str], outcomes: Sequence[GenerationOutcome]
    ) -> List[MetricResult]:
        """
        Score the usable generation outcomes of a session.

        Raises:
            EvaluationError: No reference, or no outcome with a note and no error
        """
        if not reference:
            raise EvaluationError(Messages.UPLOAD_REFERENCE, context={"reason": "no_reference"})

        usable = [outcome.to_candidate() for outcome in outcomes if outcome.is_usable]
        if not usable:
            raise EvaluationError(
                Messages.NO_VALID_CANDIDATES,
                context={"reason": "no_valid_candidates", "outcomes": len(outcomes)},
            )

        return self.evaluate(reference, usable)

    def handle_request(self, payload: Any) -> Dict[str, List[Dict[str, Any]]]:
        """
        Evaluate a JSON-style request body.

        Raises:
            EvaluationRequestError: If the payload or its reference is invalid
        """
        if not isinstance(payload, dict):
            raise EvaluationRequestError("Invalid request", context={"payload_type": type(payload).__name__})

        raw_candidates = payload.get("candidates")
        candidates = raw_candidates if isinstance(raw_candidates, list) else []
        metrics = self.evaluate(payload.get("reference"), candidates)
        return {"metrics": [metric.to_dict() for metric in metrics]}

    @staticmethod
    def _coerce(item: CandidateInput) -> Optional[Candidate]:
        if isinstance(item, Candidate):
            candidate = item
        elif isinstance(item, dict):
            candidate = Candidate.from_dict(item)
        else:
            return None
        if not isinstance(candidate.text, str) or not candidate.text:
            return None
        return candidate

    @property
    def evaluation_count(self) -> int:
        return self._evaluation_count
