"""
Core Layer - Domain Models, Enums, Constants, Configuration

This layer contains the side-effect-free building blocks of the evaluator.

Submodules:
    models.py     → Data structures (GenerationOutcome, MetricResult, ...)
    enums.py      → Enumerations (Provider, PipelineState, ...)
    constants.py  → Store keys, messages, model catalogue
    config.py     → Configuration dataclass
    exceptions.py → Domain-specific exceptions

Dependency Rule:
    This layer depends on NOTHING else in the package.
    All other layers may depend on this layer.
"""

from soap_evaluator.core.models import (
    AnalysisReport,
    Candidate,
    ErrorReport,
    GenerationOutcome,
    GenerationRequest,
    MetricResult,
    SessionSnapshot,
)
from soap_evaluator.core.enums import (
    ErrorCategory,
    OutcomeStatus,
    PipelineState,
    Provider,
)
from soap_evaluator.core.config import PipelineConfiguration
from soap_evaluator.core.exceptions import (
    ConfigurationError,
    EvaluationError,
    EvaluationRequestError,
    GenerationError,
    GenerationFailedError,
    InputValidationError,
    LLMError,
    SoapEvaluatorError,
    StorageError,
)

__all__ = [
    # Models
    "AnalysisReport",
    "Candidate",
    "ErrorReport",
    "GenerationOutcome",
    "GenerationRequest",
    "MetricResult",
    "SessionSnapshot",
    # Enums
    "ErrorCategory",
    "OutcomeStatus",
    "PipelineState",
    "Provider",
    # Configuration
    "PipelineConfiguration",
    # Exceptions
    "ConfigurationError",
    "EvaluationError",
    "EvaluationRequestError",
    "GenerationError",
    "GenerationFailedError",
    "InputValidationError",
    "LLMError",
    "SoapEvaluatorError",
    "StorageError",
]
