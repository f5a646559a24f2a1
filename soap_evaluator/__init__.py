"""
SOAP Note Evaluator

Generates a SOAP note from a clinical conversation transcript with OpenAI
or Google Gemini, then scores it against a clinician-written reference
note with ROUGE-1, BLEU-1 and their mean.

Architecture Overview:
    soap_evaluator/
    ├── core/           → Domain models, enums, configuration (Layer 0 - Pure)
    ├── evaluation/     → Tokenizer, similarity metrics (Layer 1 - Pure)
    ├── repository/     → Persisted session store (Layer 1 - Infrastructure)
    ├── clients/        → LLM client abstractions (Layer 2 - Infrastructure)
    ├── generation/     → Prompt + provider adapter (Layer 3 - Business Logic)
    ├── pipeline.py     → Resumable orchestrator (Layer 4 - Public API)
    └── __main__.py     → Command line host

Quick Start:
    import asyncio
    from soap_evaluator import SoapNotePipeline

    async def main():
        pipeline = SoapNotePipeline.from_environment()
        await pipeline.upload(transcript, "gpt-4o-mini", reference)
        await pipeline.wait_for_generation()
        await pipeline.evaluate()
        await pipeline.wait_for_evaluation()

    asyncio.run(main())
"""

__version__ = "1.0.0"

# =============================================================================
# PUBLIC API EXPORTS
# =============================================================================

# Main Entry Point
from soap_evaluator.pipeline import SoapNotePipeline

# Core Models
from soap_evaluator.core.models import (
    AnalysisReport,
    Candidate,
    ErrorReport,
    GenerationOutcome,
    GenerationRequest,
    MetricResult,
    SessionSnapshot,
)

# Enums
from soap_evaluator.core.enums import ErrorCategory, OutcomeStatus, PipelineState, Provider

# Configuration
from soap_evaluator.core.config import PipelineConfiguration

# Components
from soap_evaluator.evaluation import NoteEvaluator, bleu1, combined, rouge1, tokenize
from soap_evaluator.generation import NoteGenerator
from soap_evaluator.repository import InMemoryBackend, JsonFileBackend, ResultStore

__all__ = [
    # Main Entry Point (use this!)
    "SoapNotePipeline",
    # Core Models
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
    # Components
    "NoteEvaluator",
    "NoteGenerator",
    "ResultStore",
    "InMemoryBackend",
    "JsonFileBackend",
    "bleu1",
    "combined",
    "rouge1",
    "tokenize",
]
