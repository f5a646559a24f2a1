"""
LLM Client Protocol and Base Implementation

This module defines the interface for LLM clients and provides a base
class with common functionality (rate limiting, error translation, call
accounting).

Protocol Pattern:
    - LLMClientProtocol defines the interface
    - BaseLLMClient provides common implementation
    - Concrete clients (GeminiClient, OpenAIClient) extend base

Each call is a single outbound request: clients never retry on their own,
because a retried quota error would hide the condition the adapter has to
classify and report.
"""

import time
from abc import ABC, abstractmethod
from typing import Optional, Protocol, runtime_checkable

from loguru import logger

from soap_evaluator.core.exceptions import LLMError


# =============================================================================
# STAGE 1: LLM CLIENT PROTOCOL
# =============================================================================


@runtime_checkable
class LLMClientProtocol(Protocol):
    """
    Protocol defining the interface for LLM clients.

    Required Methods:
        generate(prompt, system_instruction) → Generated text ("" when empty)

    Properties:
        model_name → Name of the model being used
        provider_name → Name of the provider (gemini, openai)
    """

    def generate(self, prompt: str, system_instruction: Optional[str] = None) -> str:
        """
        Generate text from a prompt.

        Returns:
            Generated text, stripped; may be empty

        Raises:
            LLMError: If the upstream call fails
        """
        ...

    @property
    def model_name(self) -> str:
        ...

    @property
    def provider_name(self) -> str:
        ...


# =============================================================================
# STAGE 2: BASE LLM CLIENT (ABSTRACT)
# =============================================================================


class BaseLLMClient(ABC):
    """
    Abstract base class for LLM clients with common functionality.

    What subclasses must implement:
        - _call_api(prompt, system_instruction): Actual API call
        - provider_name: Property returning provider name

    What base class provides:
        - Rate limiting between calls
        - Wrapping of unexpected SDK exceptions into LLMError
        - Logging and call counters
    """

    def __init__(
        self,
        api_key: str,
        model_name: str,
        request_timeout: float = 45.0,
        rate_limit_delay: float = 0.0,
    ):
        """
        Initialize base LLM client.

        Args:
            api_key: API key for the provider
            model_name: Name of model to use
            request_timeout: Seconds before an upstream call is abandoned
            rate_limit_delay: Seconds to wait between API calls
        """
        # =====================================================================
        # STAGE 2.1: STORE CONFIGURATION
        # =====================================================================
        self._api_key = api_key
        self._model_name = model_name
        self._request_timeout = request_timeout
        self._rate_limit_delay = rate_limit_delay

        # =====================================================================
        # STAGE 2.2: TRACKING STATE
        # =====================================================================
        self._last_call_time: Optional[float] = None
        self._total_calls = 0
        self._failed_calls = 0

    # =========================================================================
    # STAGE 3: PUBLIC API
    # =========================================================================

    def generate(self, prompt: str, system_instruction: Optional[str] = None) -> str:
        """
        Generate text from prompt with rate limiting.

        Algorithm:
            1. Apply rate limiting (wait if needed)
            2. Make exactly one API call
            3. Track metrics
            4. Return result

        Raises:
            LLMError: If the call fails (subclasses carry status and body)
        """
        self._apply_rate_limit()
        started = time.perf_counter()

        try:
            result = self._call_api(prompt, system_instruction)

        except LLMError as e:
            self._failed_calls += 1
            logger.warning(f"{self.provider_name} call failed | Model: {self._model_name} | {e}")
            raise

        except Exception as e:
            self._failed_calls += 1
            logger.error(f"Unexpected error in {self.provider_name} call: {e}")
            raise LLMError(
                f"Unexpected {self.provider_name} error: {e}",
                provider=self.provider_name,
                error_body=str(e),
                original_error=e,
            ) from e

        self._total_calls += 1
        logger.debug(
            f"{self.provider_name} call succeeded | "
            f"Model: {self._model_name} | "
            f"Elapsed: {time.perf_counter() - started:.2f}s | "
            f"Chars: {len(result)}"
        )
        return result

    # =========================================================================
    # STAGE 4: ABSTRACT METHODS
    # =========================================================================

    @abstractmethod
    def _call_api(self, prompt: str, system_instruction: Optional[str]) -> str:
        """
        Make the actual API call. Must be implemented by subclasses.

        Returns:
            Plain text extracted from the provider response, stripped

        Raises:
            LLMError: If API call fails
        """
        ...

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name (e.g., 'gemini', 'openai')."""
        ...

    # =========================================================================
    # STAGE 5: COMMON IMPLEMENTATION
    # =========================================================================

    @property
    def model_name(self) -> str:
        """Return the model name."""
        return self._model_name

    def _apply_rate_limit(self) -> None:
        """Apply rate limiting between API calls."""
        if self._last_call_time is not None and self._rate_limit_delay > 0:
            elapsed = time.time() - self._last_call_time
            if elapsed < self._rate_limit_delay:
                time.sleep(self._rate_limit_delay - elapsed)

        self._last_call_time = time.time()

    # =========================================================================
    # STAGE 6: METRICS
    # =========================================================================

    @property
    def total_calls(self) -> int:
        """Total number of successful API calls."""
        return self._total_calls

    @property
    def failed_calls(self) -> int:
        """Number of failed API calls."""
        return self._failed_calls
