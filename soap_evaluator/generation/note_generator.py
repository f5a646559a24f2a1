"""
Note Generator - Provider Adapter for SOAP Note Generation

This module is the single boundary between the pipeline and the two
upstream providers. It:
    1. Routes a model selector to OpenAI or Gemini (pure substring rule)
    2. Checks the provider credential before any network call
    3. Builds the shared SOAP prompt and issues one outbound call
    4. Normalizes the result into the GenerationOutcome union

Classification:
    Success        → note text (placeholder if the provider sent nothing)
    Quota exceeded → HTTP 429, or body mentions insufficient_quota /
                     rate limit / quota; returned as a synthesized outcome
    Hard failure   → anything else; raised as GenerationFailedError

Pipeline Position:
    Orchestrator → [NoteGenerator] → PromptBuilder + Provider client
                    ^^^^^^^^^^^^^
                    You are here
"""

from typing import Callable, Dict, Optional, Tuple

from loguru import logger

from soap_evaluator.clients.gemini_client import GeminiClient
from soap_evaluator.clients.llm_client import LLMClientProtocol
from soap_evaluator.clients.openai_client import OpenAIClient
from soap_evaluator.core.config import PipelineConfiguration
from soap_evaluator.core.constants import (
    EMPTY_NOTE_PLACEHOLDERS,
    GEMINI_MODEL_PREFIX,
    QUOTA_MARKERS,
    QUOTA_STATUS_CODE,
)
from soap_evaluator.core.enums import Provider
from soap_evaluator.core.exceptions import (
    GenerationFailedError,
    LLMError,
    LLMTimeoutError,
)
from soap_evaluator.core.models import GenerationOutcome, GenerationRequest
from soap_evaluator.generation.prompt_builder import PromptBuilder


ClientFactory = Callable[[Provider, str, str, PipelineConfiguration], LLMClientProtocol]


# =============================================================================
# STAGE 1: ROUTING AND CLASSIFICATION RULES
# =============================================================================


def resolve_provider(model: str) -> Provider:
    """Route a model selector to its provider."""
    return Provider.for_model(model)


def normalize_model_name(model: str, provider: Provider) -> str:
    """Strip the "models/" prefix Gemini selectors may carry."""
    if provider == Provider.GEMINI and model.startswith(GEMINI_MODEL_PREFIX):
        return model[len(GEMINI_MODEL_PREFIX):]
    return model


def is_quota_exhausted(status_code: Optional[int], error_body: Optional[str]) -> bool:
    """
    Decide whether an upstream failure is quota exhaustion.

    True when the status is 429 or the raw body contains any quota marker,
    compared case-insensitively.
    """
    if status_code == QUOTA_STATUS_CODE:
        return True
    lowered = (error_body or "").lower()
    return any(marker in lowered for marker in QUOTA_MARKERS)


def default_client_factory(
    provider: Provider, model_name: str, api_key: str, config: PipelineConfiguration
) -> LLMClientProtocol:
    """Build the SDK-backed client for `provider`."""
    if provider == Provider.GEMINI:
        return GeminiClient(
            api_key=api_key,
            model_name=model_name,
            request_timeout=config.request_timeout,
            rate_limit_delay=config.rate_limit_delay,
        )
    return OpenAIClient(
        api_key=api_key,
        model_name=model_name,
        temperature=config.temperature,
        request_timeout=config.request_timeout,
        rate_limit_delay=config.rate_limit_delay,
    )


# =============================================================================
# STAGE 2: NOTE GENERATOR CLASS
# =============================================================================


class NoteGenerator:
    """
    Generates SOAP notes through whichever provider the model selects.

    What it does:
        Turns a GenerationRequest into a GenerationOutcome, hiding both
        providers' request and response shapes from the orchestrator.

    How it works:
        STAGE 2.1: Validate the request (no network call on bad input)
        STAGE 2.2: Resolve provider and require its API key
        STAGE 2.3: Build prompt and call the provider client once
        STAGE 2.4: Classify the result into the outcome union

    Example:
        >>> generator = NoteGenerator(config)
        >>> outcome = generator.generate(
        ...     GenerationRequest(transcript="...", model="gpt-4o-mini")
        ... )
        >>> outcome.status
        <OutcomeStatus.SUCCESS: 'success'>
    """

    def __init__(
        self,
        config: PipelineConfiguration,
        client_factory: Optional[ClientFactory] = None,
        prompt_builder: Optional[PromptBuilder] = None,
    ):
        """
        Initialize the note generator.

        Args:
            config: Pipeline configuration (credentials, timeouts)
            client_factory: Optional client factory override (for testing)
            prompt_builder: Optional prompt builder override
        """
        self._config = config
        self._client_factory = client_factory or default_client_factory
        self._prompt_builder = prompt_builder or PromptBuilder()
        self._clients: Dict[Tuple[Provider, str], LLMClientProtocol] = {}

        self._generation_count = 0
        self._quota_count = 0

    # =========================================================================
    # STAGE 3: MAIN GENERATION API
    # =========================================================================

    def generate(self, request: GenerationRequest) -> GenerationOutcome:
        """
        Generate one SOAP note.

        Returns:
            SUCCESS or QUOTA_EXCEEDED outcome

        Raises:
            InputValidationError: Transcript or model missing
            ConfigurationError: Selected provider has no API key
            GenerationFailedError: Hard upstream failure (carries the outcome)
        """
        # =====================================================================
        # STAGE 3.1: VALIDATE AND ROUTE
        # =====================================================================
        request.validate()

        provider = resolve_provider(request.model)
        model_used = normalize_model_name(request.model, provider)
        api_key = self._config.require_api_key(provider)

        logger.info(
            f"Generating SOAP note | "
            f"Provider: {provider.value} | "
            f"Model: {model_used} | "
            f"Transcript: {len(request.transcript)} chars"
        )

        # =====================================================================
        # STAGE 3.2: CALL PROVIDER
        # =====================================================================
        prompt = self._prompt_builder.build_generation_prompt(request.transcript, request.reference)
        system_instruction = (
            self._prompt_builder.system_instruction if provider == Provider.OPENAI else None
        )

        try:
            client = self._get_client(provider, model_used, api_key)
            raw_text = client.generate(prompt, system_instruction=system_instruction)

        except LLMError as e:
            return self._handle_failure(request, provider, model_used, e)

        # =====================================================================
        # STAGE 3.3: NORMALIZE SUCCESS
        # =====================================================================
        note_text = (raw_text or "").strip()
        if not note_text:
            note_text = EMPTY_NOTE_PLACEHOLDERS[provider]
            logger.warning(f"{provider.value} returned no content | Model: {model_used}")

        self._generation_count += 1
        logger.info(f"SOAP note generated | Model: {model_used} | Length: {len(note_text)} chars")

        return GenerationOutcome.success(
            model=request.model,
            provider=provider,
            model_used=model_used,
            note_text=note_text,
        )

    # =========================================================================
    # STAGE 4: FAILURE CLASSIFICATION
    # =========================================================================

    def classify_failure(
        self, model: str, provider: Provider, model_used: str, error: LLMError
    ) -> GenerationOutcome:
        """Map an upstream error onto the QUOTA_EXCEEDED or HARD_FAILURE variant."""
        detail = error.error_body or error.message

        if not isinstance(error, LLMTimeoutError) and is_quota_exhausted(
            error.status_code, error.error_body
        ):
            return GenerationOutcome.quota_exceeded(model=model, provider=provider, error_body=detail)

        return GenerationOutcome.hard_failure(
            model=model, provider=provider, model_used=model_used, error_detail=detail
        )

    def _handle_failure(
        self, request: GenerationRequest, provider: Provider, model_used: str, error: LLMError
    ) -> GenerationOutcome:
        outcome = self.classify_failure(request.model, provider, model_used, error)

        if outcome.is_quota_exceeded:
            self._quota_count += 1
            logger.warning(
                f"{provider.value} quota exhausted | "
                f"Model: {model_used} | "
                f"Status: {error.status_code} | "
                f"Details: {outcome.error_detail}"
            )
            return outcome

        logger.error(
            f"{provider.value} generation failed | "
            f"Model: {model_used} | "
            f"Status: {error.status_code} | "
            f"Details: {outcome.error_detail}"
        )
        raise GenerationFailedError(outcome, original_error=error) from error

    # =========================================================================
    # STAGE 5: CLIENT MANAGEMENT
    # =========================================================================

    def _get_client(self, provider: Provider, model_used: str, api_key: str) -> LLMClientProtocol:
        key = (provider, model_used)
        if key not in self._clients:
            try:
                self._clients[key] = self._client_factory(provider, model_used, api_key, self._config)
            except LLMError:
                raise
            except Exception as e:
                raise LLMError(
                    f"Failed to initialize {provider.value} client: {e}",
                    provider=provider.value,
                    error_body=str(e),
                    original_error=e,
                ) from e
        return self._clients[key]

    # =========================================================================
    # STAGE 6: STATISTICS
    # =========================================================================

    @property
    def generation_count(self) -> int:
        """Number of notes generated successfully."""
        return self._generation_count

    @property
    def quota_count(self) -> int:
        """Number of runs classified as quota exhaustion."""
        return self._quota_count
