"""
Configuration for the SOAP Note Evaluator

This module defines the configuration dataclass used to initialize the
generation-and-evaluation pipeline. Configuration is:
    1. Loaded from environment variables (with .env support)
    2. Validated at startup to fail fast on misconfiguration
    3. Checked per request for the credential the selected provider needs

Configuration Hierarchy:
    PipelineConfiguration
    ├── Provider Settings (API keys, temperature, timeouts)
    ├── Workflow Settings (default model, evaluation timeout)
    └── Storage & Logging (store path, log level)

Usage:
    from soap_evaluator.core.config import PipelineConfiguration

    config = PipelineConfiguration.from_environment()
    config.require_api_key(Provider.GEMINI)
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from soap_evaluator.core.constants import DEFAULT_MODEL
from soap_evaluator.core.enums import Provider
from soap_evaluator.core.exceptions import ConfigurationError


# =============================================================================
# STAGE 1: DEFAULT VALUES
# =============================================================================


class ConfigDefaults:
    """Default configuration values."""

    # -------------------------------------------------------------------------
    # 1.1 Provider Defaults
    # -------------------------------------------------------------------------
    DEFAULT_MODEL = DEFAULT_MODEL
    DEFAULT_TEMPERATURE = 0.2
    DEFAULT_REQUEST_TIMEOUT = 45.0  # seconds per upstream call
    DEFAULT_RATE_LIMIT_DELAY = 0.0  # seconds between API calls

    # -------------------------------------------------------------------------
    # 1.2 Workflow Defaults
    # -------------------------------------------------------------------------
    DEFAULT_EVALUATION_TIMEOUT = 30.0  # seconds

    # -------------------------------------------------------------------------
    # 1.3 Storage & Logging Defaults
    # -------------------------------------------------------------------------
    DEFAULT_STORE_PATH = ".soap_evaluator/session.json"
    DEFAULT_LOG_LEVEL = "INFO"


# Environment variable that holds each provider's credential.
API_KEY_SETTINGS = {
    Provider.OPENAI: "OPENAI_API_KEY",
    Provider.GEMINI: "GOOGLE_API_KEY",
}


# =============================================================================
# STAGE 2: CONFIGURATION DATACLASS
# =============================================================================


@dataclass
class PipelineConfiguration:
    """
    Configuration for the SOAP note evaluator.

    What it does:
        Encapsulates provider credentials, request limits and the location
        of the persisted session.

    Why credentials are optional here:
        Only the provider the user selects needs a key. A missing key is
        reported by `require_api_key()` for that request, before any network
        call, instead of failing the whole process at startup.

    Example:
        >>> config = PipelineConfiguration(openai_api_key="sk-...")
        >>> config.validate()
        >>> config.api_key_for(Provider.OPENAI)
        'sk-...'
    """

    # -------------------------------------------------------------------------
    # 2.1 Provider Configuration
    # -------------------------------------------------------------------------
    openai_api_key: Optional[str] = None
    """OpenAI API key. Required when the selected model routes to OpenAI."""

    gemini_api_key: Optional[str] = None
    """Google API key. Required when the selected model routes to Gemini."""

    temperature: float = ConfigDefaults.DEFAULT_TEMPERATURE
    """Sampling temperature sent to OpenAI."""

    request_timeout: float = ConfigDefaults.DEFAULT_REQUEST_TIMEOUT
    """Upper bound for one generation round-trip, in seconds."""

    rate_limit_delay: float = ConfigDefaults.DEFAULT_RATE_LIMIT_DELAY
    """Minimum delay between two calls made by the same client, in seconds."""

    # -------------------------------------------------------------------------
    # 2.2 Workflow Configuration
    # -------------------------------------------------------------------------
    default_model: str = ConfigDefaults.DEFAULT_MODEL
    """Model selector used when the caller does not choose one."""

    evaluation_timeout: float = ConfigDefaults.DEFAULT_EVALUATION_TIMEOUT
    """Upper bound for one evaluation pass, in seconds."""

    # -------------------------------------------------------------------------
    # 2.3 Storage & Logging Configuration
    # -------------------------------------------------------------------------
    store_path: str = ConfigDefaults.DEFAULT_STORE_PATH
    """JSON file backing the result store for the command line host."""

    log_level: str = ConfigDefaults.DEFAULT_LOG_LEVEL
    """Minimum level written to stderr by the command line host."""

    # -------------------------------------------------------------------------
    # 2.4 Validation Methods
    # -------------------------------------------------------------------------

    def validate(self) -> None:
        """
        Validate numeric settings.

        Raises:
            ConfigurationError: If a setting is out of range
        """
        if self.request_timeout <= 0:
            raise ConfigurationError(
                f"Request timeout must be positive, got {self.request_timeout}",
                context={"setting": "SOAP_REQUEST_TIMEOUT"},
            )

        if self.evaluation_timeout <= 0:
            raise ConfigurationError(
                f"Evaluation timeout must be positive, got {self.evaluation_timeout}",
                context={"setting": "SOAP_EVALUATION_TIMEOUT"},
            )

        if not (0.0 <= self.temperature <= 2.0):
            raise ConfigurationError(
                f"Temperature must be between 0 and 2, got {self.temperature}",
                context={"setting": "SOAP_TEMPERATURE"},
            )

        if self.rate_limit_delay < 0:
            raise ConfigurationError(
                f"Rate limit delay cannot be negative, got {self.rate_limit_delay}",
                context={"setting": "SOAP_RATE_LIMIT_DELAY"},
            )

    def api_key_for(self, provider: Provider) -> Optional[str]:
        if provider == Provider.GEMINI:
            return self.gemini_api_key
        return self.openai_api_key

    def require_api_key(self, provider: Provider) -> str:
        """
        Return the credential for `provider` or fail immediately.

        Raises:
            ConfigurationError: If the provider's key is not configured
        """
        api_key = self.api_key_for(provider)
        if not api_key:
            setting = API_KEY_SETTINGS[provider]
            raise ConfigurationError(
                f"Missing {setting}",
                context={"setting": setting, "provider": provider.value},
            )
        return api_key

    # -------------------------------------------------------------------------
    # 2.5 Factory Methods
    # -------------------------------------------------------------------------

    @classmethod
    def from_environment(
        cls, env_file: Optional[str] = None, validate_on_load: bool = True
    ) -> "PipelineConfiguration":
        """
        Load configuration from environment variables.

        STAGE 1: Load .env file (if specified or found)
        STAGE 2: Read environment variables
        STAGE 3: Validate configuration (optional)

        Args:
            env_file: Path to .env file (optional, auto-detected if not provided)
            validate_on_load: Whether to validate after loading

        Raises:
            ConfigurationError: If a value cannot be parsed or is out of range
        """
        # STAGE 1: Load .env file
        if env_file:
            load_dotenv(env_file)
        else:
            env_path = Path.cwd() / ".env"
            if env_path.exists():
                load_dotenv(env_path)

        # STAGE 2: Read environment variables
        try:
            config = cls(
                openai_api_key=os.getenv("OPENAI_API_KEY") or None,
                gemini_api_key=os.getenv("GOOGLE_API_KEY") or os.getenv("GEMINI_API_KEY") or None,
                temperature=float(os.getenv("SOAP_TEMPERATURE", ConfigDefaults.DEFAULT_TEMPERATURE)),
                request_timeout=float(
                    os.getenv("SOAP_REQUEST_TIMEOUT", ConfigDefaults.DEFAULT_REQUEST_TIMEOUT)
                ),
                rate_limit_delay=float(
                    os.getenv("SOAP_RATE_LIMIT_DELAY", ConfigDefaults.DEFAULT_RATE_LIMIT_DELAY)
                ),
                default_model=os.getenv("SOAP_DEFAULT_MODEL", ConfigDefaults.DEFAULT_MODEL),
                evaluation_timeout=float(
                    os.getenv("SOAP_EVALUATION_TIMEOUT", ConfigDefaults.DEFAULT_EVALUATION_TIMEOUT)
                ),
                store_path=os.getenv("SOAP_STORE_PATH", ConfigDefaults.DEFAULT_STORE_PATH),
                log_level=os.getenv("SOAP_LOG_LEVEL", ConfigDefaults.DEFAULT_LOG_LEVEL).upper(),
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid numeric setting: {e}") from e

        # STAGE 3: Validate
        if validate_on_load:
            config.validate()

        return config

    def to_dict(self) -> dict:
        """Convert configuration to dictionary (for logging/debugging)."""
        return {
            "openai_api_key": "***" if self.openai_api_key else None,
            "gemini_api_key": "***" if self.gemini_api_key else None,
            "temperature": self.temperature,
            "request_timeout": self.request_timeout,
            "rate_limit_delay": self.rate_limit_delay,
            "default_model": self.default_model,
            "evaluation_timeout": self.evaluation_timeout,
            "store_path": self.store_path,
            "log_level": self.log_level,
        }
