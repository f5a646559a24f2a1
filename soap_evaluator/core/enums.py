"""
Enumerations for SOAP Note Evaluation

This module defines all enumeration types used throughout the SOAP note
generation and evaluation pipeline.

Enumeration Categories:
    Provider        → Upstream LLM providers
    OutcomeStatus   → Tag of the GenerationOutcome union
    PipelineState   → Workflow state machine states
    ErrorCategory   → User-facing error taxonomy
"""

from enum import Enum


# =============================================================================
# STAGE 1: PROVIDER ENUMERATION
# =============================================================================


class Provider(str, Enum):
    """
    Upstream LLM providers a model selector can route to.

    Routing rule:
        Any model identifier containing "gemini" (case-insensitive) goes to
        Gemini; every other identifier goes to OpenAI. The rule is pure and
        deterministic so the same selector always maps to the same provider.
    """

    OPENAI = "openai"
    GEMINI = "gemini"

    @classmethod
    def for_model(cls, model: str) -> "Provider":
        """Map a logical model identifier to its provider."""
        if "gemini" in (model or "").lower():
            return cls.GEMINI
        return cls.OPENAI


# =============================================================================
# STAGE 2: OUTCOME STATUS ENUMERATION
# =============================================================================
# Tag for the GenerationOutcome union (Success | QuotaExceeded | HardFailure).


class OutcomeStatus(str, Enum):
    """
    Classification of a single generation run.

    SUCCESS:        Provider returned a note (or a placeholder for empty output)
    QUOTA_EXCEEDED: Provider refused for rate/usage limits; a synthesized
                    user-facing note is attached alongside the raw error
    HARD_FAILURE:   Any other failure; never persisted, surfaced as an error
    """

    SUCCESS = "success"
    QUOTA_EXCEEDED = "quota_exceeded"
    HARD_FAILURE = "hard_failure"


# =============================================================================
# STAGE 3: PIPELINE STATE ENUMERATION
# =============================================================================


class PipelineState(str, Enum):
    """
    States of the upload → generate → evaluate workflow.

    Transitions:
        IDLE                 → GENERATION_IN_FLIGHT  (upload / resume)
        GENERATION_IN_FLIGHT → GENERATED             (success or quota)
        GENERATION_IN_FLIGHT → IDLE                  (hard failure)
        GENERATED            → EVALUATION_IN_FLIGHT  (explicit evaluate)
        EVALUATION_IN_FLIGHT → EVALUATED             (metrics computed)
        EVALUATION_IN_FLIGHT → GENERATED             (evaluation failed)
    """

    IDLE = "idle"
    GENERATION_IN_FLIGHT = "generation_in_flight"
    GENERATED = "generated"
    EVALUATION_IN_FLIGHT = "evaluation_in_flight"
    EVALUATED = "evaluated"

    @property
    def is_in_flight(self) -> bool:
        return self in (PipelineState.GENERATION_IN_FLIGHT, PipelineState.EVALUATION_IN_FLIGHT)


# =============================================================================
# STAGE 4: ERROR CATEGORY ENUMERATION
# =============================================================================


class ErrorCategory(str, Enum):
    """
    Buckets for every failure the end user can see.

    Presentation layers pick wording and styling by category; operators
    read the full detail from the logs.
    """

    INPUT_VALIDATION = "input_validation"
    CONFIGURATION = "configuration"
    UPSTREAM_FAILURE = "upstream_failure"
    SCORING_INPUT = "scoring_input"
    STORAGE = "storage"
