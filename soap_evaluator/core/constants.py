"""
Constants for SOAP Note Evaluation

This module defines constant values used throughout the pipeline.

Constant Categories:
    MODEL_OPTIONS        → Selectable models shown to users
    QUOTA_*              → Quota classification markers and fallback note
    EMPTY_NOTE_*         → Placeholders for empty provider output
    MESSAGES             → User-facing error strings
    STORE_KEYS           → Persisted key names and schema version
"""

from typing import Dict, List, Tuple

from soap_evaluator.core.enums import Provider


# =============================================================================
# STAGE 1: MODEL CATALOGUE
# =============================================================================
# (model selector, display label). The selector is what gets persisted and
# routed; "models/" prefixed Gemini ids are accepted as-is.

MODEL_OPTIONS: List[Tuple[str, str]] = [
    ("gpt-4o-mini", "GPT · 4o mini"),
    ("gpt-4o", "GPT · 4o"),
    ("gpt-4.1-mini", "GPT · 4.1 mini"),
    ("models/gemini-2.5-flash", "Gemini · 2.5 Flash"),
]

DEFAULT_MODEL = MODEL_OPTIONS[0][0]

GEMINI_MODEL_PREFIX = "models/"


# =============================================================================
# STAGE 2: QUOTA CLASSIFICATION
# =============================================================================

QUOTA_STATUS_CODE = 429

# Matched case-insensitively against the raw upstream error body.
QUOTA_MARKERS: Tuple[str, ...] = ("insufficient_quota", "rate limit", "quota")

QUOTA_EXCEEDED_NOTE = (
    "SOAP generation is currently unavailable because your model quota has been "
    "exhausted. You are not subscribed to a paid user plan. Buy a SOAP paid "
    "subscription to access unlimited quota."
)

QUOTA_DEFAULT_ERROR = "Quota exceeded"
QUOTA_DEFAULT_ID = "quota-exceeded"
QUOTA_DEFAULT_LABEL = "Model"
QUOTA_DEFAULT_MODEL = "unknown-model"


# =============================================================================
# STAGE 3: EMPTY OUTPUT PLACEHOLDERS
# =============================================================================

EMPTY_NOTE_PLACEHOLDERS: Dict[Provider, str] = {
    Provider.OPENAI: "OpenAI returned no content.",
    Provider.GEMINI: "Gemini returned no content.",
}


# =============================================================================
# STAGE 4: USER-FACING MESSAGES
# =============================================================================


class Messages:
    """User-facing strings, grouped by workflow step."""

    TRANSCRIPT_REQUIRED = "Transcript is required."
    MODEL_REQUIRED = "Model is required."
    TXT_ONLY = "Only .txt files are supported right now."
    REFERENCE_LOCKED = "The reference cannot be changed while a request is in progress."

    GENERATION_FAILED = "Failed to generate SOAP notes."

    REFERENCE_REQUIRED = "Reference text is required."
    UPLOAD_REFERENCE = "Upload a reference SOAP note to evaluate."
    NO_VALID_CANDIDATES = "No valid model outputs to evaluate."
    EVALUATION_FAILED = "Failed to evaluate SOAP notes."

    STORAGE_DEGRADED = "Results could not be saved and will be lost if you reload."


# =============================================================================
# STAGE 5: RESULT STORE KEYS
# =============================================================================


class StoreKeys:
    """Logical keys of the persisted session."""

    TRANSCRIPT = "soap_transcript"
    REFERENCE = "soap_reference"
    HAS_REFERENCE = "soap_has_reference"
    MODEL = "soap_model"
    RESULTS = "soap_results"
    METRICS = "soap_metrics"
    GENERATION_IN_PROGRESS = "soap_generation_in_progress"
    EVALUATION_IN_PROGRESS = "soap_evaluation_in_progress"
    SCHEMA_VERSION = "soap_schema_version"


STORE_SCHEMA_VERSION = 1

ALLOWED_UPLOAD_SUFFIXES: Tuple[str, ...] = (".txt",)

REPORT_FILENAME = "soap_evaluation_results.json"
