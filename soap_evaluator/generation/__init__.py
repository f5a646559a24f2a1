"""
Generation Layer - SOAP Note Generation

This layer turns a transcript into a SOAP note through one of the two
upstream providers.

Submodules:
    note_generator.py → Provider adapter (routing, call, classification)
    prompt_builder.py → Prompt template

Dependency Rule:
    This layer depends on: core, clients
    This layer is used by: pipeline (orchestrator)
"""

from soap_evaluator.generation.note_generator import (
    NoteGenerator,
    is_quota_exhausted,
    normalize_model_name,
    resolve_provider,
)
from soap_evaluator.generation.prompt_builder import PromptBuilder

__all__ = [
    "NoteGenerator",
    "PromptBuilder",
    "is_quota_exhausted",
    "normalize_model_name",
    "resolve_provider",
]
