"""
OpenAI Client - OpenAI Chat Completions Implementation

This module provides the concrete implementation of LLMClient for
OpenAI's chat completions API (gpt-4o-mini, gpt-4o, gpt-4.1-mini, ...).

Response shape consumed:
    choices[0].message.content → note text

Error translation:
    APITimeoutError    → LLMTimeoutError
    APIStatusError     → LLMError(status_code, error_body=raw response text)
    APIConnectionError → LLMError(no status)
"""

from typing import List, Optional

import openai
from loguru import logger

from soap_evaluator.clients.llm_client import BaseLLMClient
from soap_evaluator.core.exceptions import (
    LLMContentFilteredError,
    LLMError,
    LLMTimeoutError,
)


# =============================================================================
# STAGE 1: OPENAI CLIENT IMPLEMENTATION
# =============================================================================


class OpenAIClient(BaseLLMClient):
    """
    OpenAI API client for SOAP note generation.

    What it does:
        Sends the SOAP prompt as a user message (with an optional system
        message) and returns the trimmed content of the first choice.

    Example:
        >>> client = OpenAIClient(api_key="...", model_name="gpt-4o-mini")
        >>> text = client.generate("Generate a SOAP note...", system_instruction="...")
    """

    def __init__(
        self,
        api_key: str,
        model_name: str = "gpt-4o-mini",
        temperature: float = 0.2,
        request_timeout: float = 45.0,
        rate_limit_delay: float = 0.0,
    ):
        """
        Initialize OpenAI client.

        Args:
            api_key: OpenAI API key
            model_name: Model to use (default: gpt-4o-mini)
            temperature: Sampling temperature
            request_timeout: Seconds before the SDK abandons the call
            rate_limit_delay: Seconds between API calls
        """
        super().__init__(
            api_key=api_key,
            model_name=model_name,
            request_timeout=request_timeout,
            rate_limit_delay=rate_limit_delay,
        )
        self._temperature = temperature

        # The SDK's own retry loop is disabled; one request per generation.
        self._client = openai.OpenAI(
            api_key=self._api_key,
            timeout=request_timeout,
            max_retries=0,
        )

        logger.info(f"OpenAIClient initialized | Model: {model_name}")

    # =========================================================================
    # STAGE 2: API CALL IMPLEMENTATION
    # =========================================================================

    def _call_api(self, prompt: str, system_instruction: Optional[str]) -> str:
        messages: List[dict] = []
        if system_instruction:
            messages.append({"role": "system", "content": system_instruction})
        messages.append({"role": "user", "content": prompt})

        try:
            response = self._client.chat.completions.create(
                model=self._model_name,
                messages=messages,
                temperature=self._temperature,
            )

        except openai.APITimeoutError as e:
            raise LLMTimeoutError(
                provider="openai", timeout_seconds=self._request_timeout, original_error=e
            ) from e

        except openai.APIStatusError as e:
            raise LLMError(
                f"OpenAI request failed with status {e.status_code}",
                provider="openai",
                status_code=e.status_code,
                error_body=_error_text(e),
                original_error=e,
            ) from e

        except openai.APIConnectionError as e:
            raise LLMError(
                f"OpenAI connection error: {e}",
                provider="openai",
                error_body=str(e),
                original_error=e,
            ) from e

        return self._extract_text(response)

    def _extract_text(self, response) -> str:
        """Pull the note text out of a chat completion ("" when absent)."""
        choices = getattr(response, "choices", None) or []
        if not choices:
            return ""

        first = choices[0]
        content = (first.message.content or "").strip() if first.message else ""

        if not content and getattr(first, "finish_reason", None) == "content_filter":
            raise LLMContentFilteredError(provider="openai", reason="content_filter")

        return content

    # =========================================================================
    # STAGE 3: PROPERTIES
    # =========================================================================

    @property
    def provider_name(self) -> str:
        """Return provider name."""
        return "openai"


def _error_text(error: "openai.APIStatusError") -> str:
    """Raw upstream body of a failed request, falling back to the message."""
    response = getattr(error, "response", None)
    text = getattr(response, "text", None)
    return text or str(error)
