"""
Repository Layer - Session Persistence

Submodules:
    result_store.py → Backend protocol, in-memory and JSON file backends,
                      typed ResultStore

Dependency Rule:
    This layer depends on: core (models, constants, exceptions)
    This layer is used by: pipeline (orchestrator)
"""

from soap_evaluator.repository.result_store import (
    InMemoryBackend,
    JsonFileBackend,
    KeyValueBackend,
    ResultStore,
    StorageWriteResult,
)

__all__ = [
    "InMemoryBackend",
    "JsonFileBackend",
    "KeyValueBackend",
    "ResultStore",
    "StorageWriteResult",
]
