"""
Shared test fixtures for the SOAP note evaluator.

Provides fakes for the provider clients and the adapter, so no test ever
reaches OpenAI or Gemini, plus an in-memory result store.
"""

import threading
import time
from typing import Dict, List, Optional

import pytest

from soap_evaluator.core.config import PipelineConfiguration
from soap_evaluator.core.enums import Provider
from soap_evaluator.core.exceptions import GenerationFailedError, LLMError, StorageError
from soap_evaluator.core.models import GenerationOutcome, GenerationRequest
from soap_evaluator.repository import InMemoryBackend, ResultStore


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
SAMPLE_TRANSCRIPT = (
    "Doctor: What brings you in today?\n"
    "Patient: I have had a headache and some nausea since Monday.\n"
    "Doctor: Any fever or vision changes?\n"
    "Patient: No fever. The light bothers me a little.\n"
    "Doctor: Blood pressure is 128 over 82. Neuro exam is normal."
)

SAMPLE_REFERENCE = "Patient reports headache and nausea."

SAMPLE_NOTE = "Patient reports headache."

OPENAI_MODEL = "gpt-4o-mini"
GEMINI_MODEL = "models/gemini-2.5-flash"


# ---------------------------------------------------------------------------
# Fake provider client
# ---------------------------------------------------------------------------
class FakeLLMClient:
    """Stands in for OpenAIClient / GeminiClient."""

    def __init__(self, provider: Provider, model_name: str, response: str = SAMPLE_NOTE, error=None):
        self._provider = provider
        self._model_name = model_name
        self.response = response
        self.error = error
        self.calls: List[Dict[str, Optional[str]]] = []

    def generate(self, prompt: str, system_instruction: Optional[str] = None) -> str:
        self.calls.append({"prompt": prompt, "system_instruction": system_instruction})
        if self.error is not None:
            raise self.error
        return self.response

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def provider_name(self) -> str:
        return self._provider.value


class FakeClientFactory:
    """Client factory recording every client it builds."""

    def __init__(self, response: str = SAMPLE_NOTE, error=None):
        self.response = response
        self.error = error
        self.clients: List[FakeLLMClient] = []
        self.requests: List[tuple] = []

    def __call__(self, provider, model_name, api_key, config):
        self.requests.append((provider, model_name, api_key))
        client = FakeLLMClient(provider, model_name, response=self.response, error=self.error)
        self.clients.append(client)
        return client

    @property
    def call_count(self) -> int:
        return sum(len(client.calls) for client in self.clients)


# ---------------------------------------------------------------------------
# Fake adapter
# ---------------------------------------------------------------------------
class FakeGenerator:
    """
    Stands in for NoteGenerator inside the pipeline.

    `release` lets a test hold a generation in flight; `delay` makes it slow.
    """

    def __init__(self, note: str = SAMPLE_NOTE, error: Optional[Exception] = None, delay: float = 0.0):
        self.note = note
        self.error = error
        self.delay = delay
        self.release: Optional[threading.Event] = None
        self.started = threading.Event()
        self.requests: List[GenerationRequest] = []

    def hold(self) -> threading.Event:
        self.release = threading.Event()
        return self.release

    def generate(self, request: GenerationRequest) -> GenerationOutcome:
        self.requests.append(request)
        self.started.set()
        if self.release is not None:
            self.release.wait(timeout=5)
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return GenerationOutcome.success(
            model=request.model,
            provider=request.provider,
            model_used=request.model,
            note_text=self.note,
        )

    @property
    def call_count(self) -> int:
        return len(self.requests)


def quota_outcome(model: str = OPENAI_MODEL) -> GenerationOutcome:
    return GenerationOutcome.quota_exceeded(model=model, provider=Provider.OPENAI, error_body="insufficient_quota")


def hard_failure(model: str = OPENAI_MODEL) -> GenerationFailedError:
    outcome = GenerationOutcome.hard_failure(
        model=model, provider=Provider.OPENAI, model_used=model, error_detail="Internal server error"
    )
    return GenerationFailedError(outcome, original_error=LLMError("boom", provider="openai", status_code=500))


class QuotaGenerator(FakeGenerator):
    def generate(self, request: GenerationRequest) -> GenerationOutcome:
        self.requests.append(request)
        return quota_outcome(request.model)


# ---------------------------------------------------------------------------
# Failing store backend
# ---------------------------------------------------------------------------
class FlakyBackend(InMemoryBackend):
    """In-memory backend whose writes fail once `fail_writes` is set."""

    def __init__(self, initial=None):
        super().__init__(initial)
        self.fail_writes = False
        self.fail_keys: Optional[set] = None

    def write(self, changes):
        if self.fail_writes and (self.fail_keys is None or self.fail_keys & set(changes)):
            raise StorageError("disk full")
        super().write(changes)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def config(tmp_path):
    return PipelineConfiguration(
        openai_api_key="sk-test",
        gemini_api_key="gemini-test",
        request_timeout=2.0,
        evaluation_timeout=2.0,
        store_path=str(tmp_path / "session.json"),
    )


@pytest.fixture
def backend():
    return FlakyBackend()


@pytest.fixture
def store(backend):
    return ResultStore(backend)


@pytest.fixture
def fake_generator():
    return FakeGenerator()
