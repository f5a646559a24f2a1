"""
Gemini Client - Google Gemini API Implementation

This module provides the concrete implementation of LLMClient for
Google's Gemini API (gemini-2.5-flash, gemini-1.5-pro, ...).

Response shape consumed:
    candidates[0].content.parts[*].text → joined and trimmed note text

Error translation:
    DeadlineExceeded   → LLMTimeoutError
    GoogleAPICallError → LLMError(status_code=e.code, error_body=e.message)
    blocked prompt     → LLMContentFilteredError
"""

from typing import Optional

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions
from loguru import logger

from soap_evaluator.clients.llm_client import BaseLLMClient
from soap_evaluator.core.exceptions import (
    LLMContentFilteredError,
    LLMError,
    LLMTimeoutError,
)


# =============================================================================
# STAGE 1: GEMINI CLIENT IMPLEMENTATION
# =============================================================================


class GeminiClient(BaseLLMClient):
    """
    Google Gemini API client for SOAP note generation.

    What it does:
        Sends the SOAP prompt as a single content part and joins every text
        part of the first candidate.

    Note:
        Gemini receives the prompt only; the system instruction used for
        OpenAI is not forwarded.

    Example:
        >>> client = GeminiClient(api_key="...", model_name="gemini-2.5-flash")
        >>> text = client.generate("Generate a SOAP note...")
    """

    def __init__(
        self,
        api_key: str,
        model_name: str = "gemini-2.5-flash",
        request_timeout: float = 45.0,
        rate_limit_delay: float = 0.0,
    ):
        """
        Initialize Gemini client.

        STAGE 1.1: Initialize base class
        STAGE 1.2: Configure Gemini SDK and model

        Args:
            api_key: Google API key (Gemini)
            model_name: Model to use, without the "models/" prefix
            request_timeout: Seconds before the call is abandoned
            rate_limit_delay: Seconds between API calls
        """
        # =====================================================================
        # STAGE 1.1: INITIALIZE BASE CLASS
        # =====================================================================
        super().__init__(
            api_key=api_key,
            model_name=model_name,
            request_timeout=request_timeout,
            rate_limit_delay=rate_limit_delay,
        )

        # =====================================================================
        # STAGE 1.2: CONFIGURE GEMINI SDK
        # =====================================================================
        genai.configure(api_key=self._api_key)
        self._model = genai.GenerativeModel(model_name=self._model_name)

        logger.info(f"GeminiClient initialized | Model: {model_name}")

    # =========================================================================
    # STAGE 2: API CALL IMPLEMENTATION
    # =========================================================================

    def _call_api(self, prompt: str, system_instruction: Optional[str]) -> str:
        try:
            response = self._model.generate_content(
                prompt,
                request_options={"timeout": self._request_timeout},
            )

        except google_exceptions.DeadlineExceeded as e:
            raise LLMTimeoutError(
                provider="gemini", timeout_seconds=self._request_timeout, original_error=e
            ) from e

        except google_exceptions.GoogleAPICallError as e:
            status_code = int(e.code) if e.code is not None else None
            raise LLMError(
                f"Gemini request failed with status {status_code}",
                provider="gemini",
                status_code=status_code,
                error_body=e.message or str(e),
                original_error=e,
            ) from e

        return self._extract_text(response)

    def _extract_text(self, response) -> str:
        """Join the text parts of the first candidate ("" when absent)."""
        feedback = getattr(response, "prompt_feedback", None)
        block_reason = getattr(feedback, "block_reason", None) if feedback else None
        if block_reason:
            raise LLMContentFilteredError(provider="gemini", reason=str(block_reason))

        candidates = getattr(response, "candidates", None) or []
        if not candidates:
            return ""

        content = getattr(candidates[0], "content", None)
        parts = getattr(content, "parts", None) or []
        return "".join(getattr(part, "text", "") or "" for part in parts).strip()

    # =========================================================================
    # STAGE 3: PROPERTIES
    # =========================================================================

    @property
    def provider_name(self) -> str:
        """Return provider name."""
        return "gemini"
