"""
Clients Layer - LLM API Client Abstractions

This layer provides thin wrappers over the two upstream providers (OpenAI,
Gemini) so the provider adapter can treat them interchangeably.

Submodules:
    llm_client.py    → Protocol and base implementation
    openai_client.py → OpenAI implementation
    gemini_client.py → Google Gemini implementation
"""

from soap_evaluator.clients.llm_client import (
    LLMClientProtocol,
    BaseLLMClient,
)
from soap_evaluator.clients.gemini_client import GeminiClient
from soap_evaluator.clients.openai_client import OpenAIClient

__all__ = [
    "LLMClientProtocol",
    "BaseLLMClient",
    "GeminiClient",
    "OpenAIClient",
]
