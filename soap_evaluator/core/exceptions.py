"""
Domain Exceptions for SOAP Note Evaluation

This module defines all custom exceptions used throughout the SOAP note
generation and evaluation pipeline. Every exception carries:
    1. A developer-facing message with structured context (for logs)
    2. An ErrorCategory bucket (input, configuration, upstream, ...)
    3. A short user-facing message that never contains a stack trace

Exception Hierarchy:
    SoapEvaluatorError (base)
    ├── InputValidationError        → Missing/invalid transcript, reference, model
    ├── ConfigurationError          → Missing provider credentials, bad settings
    ├── GenerationError             → Note generation failures
    │   ├── LLMError                → Upstream provider call failed
    │   │   ├── LLMTimeoutError
    │   │   └── LLMContentFilteredError
    │   └── GenerationFailedError   → Hard failure classified by the adapter
    ├── EvaluationError             → Scoring could not run
    │   └── EvaluationRequestError  → Malformed evaluation request (400)
    └── RepositoryError
        └── StorageError            → Result store read/write failure

Usage:
    from soap_evaluator.core.exceptions import ConfigurationError

    try:
        config.require_api_key(Provider.OPENAI)
    except ConfigurationError as e:
        logger.error(f"Deployment misconfigured: {e}")
"""

from typing import Optional, TYPE_CHECKING

from soap_evaluator.core.enums import ErrorCategory

if TYPE_CHECKING:
    from soap_evaluator.core.models import GenerationOutcome


# =============================================================================
# STAGE 1: BASE EXCEPTION
# =============================================================================
# All domain exceptions inherit from this base class.


class SoapEvaluatorError(Exception):
    """
    Base exception for all SOAP evaluator errors.

    What it does:
        Provides a common base class for all domain-specific exceptions,
        enabling catch-all handling while preserving specific error types.

    Attributes:
        message: Developer-facing error description
        context: Dictionary of additional context for debugging
        category: Error taxonomy bucket used by the orchestrator
        user_message: Human-readable text safe to show to end users
    """

    category: ErrorCategory = ErrorCategory.UPSTREAM_FAILURE
    default_user_message: str = "Something went wrong. Please try again."

    def __init__(
        self,
        message: str,
        context: Optional[dict] = None,
        user_message: Optional[str] = None,
    ):
        self.message = message
        self.context = context or {}
        self.user_message = user_message or self.default_user_message
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format message with context for display."""
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} [{context_str}]"
        return self.message


# =============================================================================
# STAGE 2: INPUT AND CONFIGURATION ERRORS
# =============================================================================
# Detected before any network call is made.


class InputValidationError(SoapEvaluatorError):
    """
    A required input is missing or malformed.

    When raised:
        - Empty transcript or missing model selector
        - Non-.txt upload
        - Reference change while a request is in flight

    The pipeline state is left unchanged when this is raised.
    """

    category = ErrorCategory.INPUT_VALIDATION

    def __init__(self, message: str, context: Optional[dict] = None):
        super().__init__(message, context=context, user_message=message)


class ConfigurationError(SoapEvaluatorError):
    """
    Error in deployment configuration.

    What it does:
        Indicates that the evaluator configuration is invalid or incomplete,
        most commonly a missing provider API key. Kept distinct from upstream
        errors so operators can tell a misconfigured deployment apart from a
        transient provider issue.

    Example:
        >>> raise ConfigurationError(
        ...     "Missing OPENAI_API_KEY",
        ...     context={"setting": "OPENAI_API_KEY", "provider": "openai"}
        ... )
    """

    category = ErrorCategory.CONFIGURATION

    def __init__(self, message: str, context: Optional[dict] = None):
        super().__init__(message, context=context, user_message=message)


# =============================================================================
# STAGE 3: GENERATION ERRORS
# =============================================================================


class GenerationError(SoapEvaluatorError):
    """Base exception for SOAP note generation errors."""

    category = ErrorCategory.UPSTREAM_FAILURE
    default_user_message = "Failed to generate SOAP notes."


class LLMError(GenerationError):
    """
    Error from an upstream LLM API call.

    What it does:
        Wraps errors from the provider SDK (OpenAI, Gemini) and keeps the
        pieces the adapter needs for classification: the HTTP status code
        (when the provider answered) and the raw error body.

    Attributes:
        provider: The LLM provider (gemini, openai)
        status_code: HTTP status returned upstream, None for network errors
        error_body: Raw upstream error text
        original_error: The wrapped SDK exception
    """

    def __init__(
        self,
        message: str,
        provider: str,
        status_code: Optional[int] = None,
        error_body: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        self.provider = provider
        self.status_code = status_code
        self.error_body = error_body
        self.original_error = original_error
        super().__init__(
            message,
            context={
                "provider": provider,
                "status_code": status_code,
            },
        )


class LLMTimeoutError(LLMError):
    """
    Upstream call exceeded the configured timeout.

    Always a hard failure, never quota exhaustion.
    """

    def __init__(
        self,
        provider: str,
        timeout_seconds: float,
        original_error: Optional[Exception] = None,
    ):
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"{provider} request timed out after {timeout_seconds}s",
            provider=provider,
            original_error=original_error,
        )
        self.context["timeout_seconds"] = timeout_seconds
        self.user_message = "The model took too long to respond. Please try again."


class LLMContentFilteredError(LLMError):
    """Provider refused to produce content because of its safety settings."""

    def __init__(self, provider: str, reason: Optional[str] = None):
        super().__init__(
            f"Content filtered by {provider} safety settings: {reason or 'unknown reason'}",
            provider=provider,
            error_body=reason,
        )
        self.reason = reason


class GenerationFailedError(GenerationError):
    """
    Hard failure classified by the provider adapter.

    Carries the HARD_FAILURE GenerationOutcome so callers can inspect the
    provider, model and raw error detail without re-parsing anything.
    """

    def __init__(self, outcome: "GenerationOutcome", original_error: Optional[Exception] = None):
        self.outcome = outcome
        self.original_error = original_error
        super().__init__(
            f"{outcome.provider.value} generation failed: {outcome.error_detail}",
            context={"model": outcome.model, "provider": outcome.provider.value},
        )
        if isinstance(original_error, SoapEvaluatorError):
            self.user_message = original_error.user_message


# =============================================================================
# STAGE 4: EVALUATION ERRORS
# =============================================================================


class EvaluationError(SoapEvaluatorError):
    """Scoring could not be performed (no reference, no usable candidates)."""

    category = ErrorCategory.SCORING_INPUT
    default_user_message = "Failed to evaluate SOAP notes."

    def __init__(self, message: str, context: Optional[dict] = None, user_message: Optional[str] = None):
        super().__init__(message, context=context, user_message=user_message or message)


class EvaluationRequestError(EvaluationError):
    """
    Malformed evaluation request.

    The 400-equivalent of the evaluation boundary: raised when the reference is
    missing or not a string. Invalid candidates are filtered, never rejected.
    """

    status_code = 400


# =============================================================================
# STAGE 5: REPOSITORY ERRORS
# =============================================================================


class RepositoryError(SoapEvaluatorError):
    """Error accessing the persisted result store."""

    category = ErrorCategory.STORAGE
    default_user_message = "Your session could not be saved."


class StorageError(RepositoryError):
    """
    Result store read/write failure.

    When raised:
        - Store file cannot be written or parsed
        - Stored schema version is newer than this release understands
        - An upload could not be persisted (the upload is aborted)
    """

    pass
