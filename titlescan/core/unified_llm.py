"""Unified LLM client factory.

Provides a single interface over the supported model providers (Gemini,
OpenRouter) with provider selection based on configuration.
"""

from enum import Enum
from typing import Any, Dict, Optional, Union

from titlescan.core.config import settings
from titlescan.core.exceptions import ConfigurationError, EmptyResponseError
from titlescan.core.llm_client import Contents, GeminiClient, OpenRouterClient
from titlescan.utils.logging import get_logger

LOGGER = get_logger(__name__)

JSON_GENERATION_CONFIG: Dict[str, Any] = {
    "temperature": 0.0,
    "response_mime_type": "application/json",
}


class LLMProvider(str, Enum):
    """Supported LLM providers."""
    GEMINI = "gemini"
    OPENROUTER = "openrouter"


class UnifiedLLMClient:
    """Provider-agnostic model client used by the analysis pipeline.

    Sends a prompt plus ordered image parts and returns the raw text. An
    empty answer is treated as a failure (``EmptyResponseError``).
    """

    def __init__(
        self,
        provider: Union[str, LLMProvider],
        api_key: str,
        model: str,
        base_url: Optional[str] = None,
        timeout: int = 300,
        max_retries: int = 1,
    ):
        self.provider = LLMProvider(provider)
        self.model = model
        self.timeout = timeout
        self.max_retries = max_retries

        if self.provider == LLMProvider.GEMINI:
            self.client = GeminiClient(
                api_key=api_key,
                model=model,
                timeout=timeout,
                max_retries=max_retries,
            )
        else:
            self.client = OpenRouterClient(
                api_key=api_key,
                model=model,
                base_url=base_url or "https://openrouter.ai/api/v1/chat/completions",
                timeout=timeout,
                max_retries=max_retries,
            )

        LOGGER.info(f"Initialized unified LLM with {self.provider.value} provider (model: {model})")

    async def generate_content(
        self,
        contents: Contents,
        system_instruction: Optional[str] = None,
        generation_config: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Generate content using the configured provider.

        Args:
            contents: Prompt text, or prompt text followed by image parts
            system_instruction: Optional system instruction
            generation_config: Optional generation config

        Returns:
            Non-empty generated text

        Raises:
            InferenceProviderError: If the provider call fails
            EmptyResponseError: If the provider returned no text
        """
        text = await self.client.generate_content(
            contents=contents,
            system_instruction=system_instruction,
            generation_config=generation_config,
        )
        if not text or not text.strip():
            raise EmptyResponseError(
                f"Empty response from {self.provider.value} model {self.model}",
                raw_text=text,
            )
        return text


def create_llm_client_from_settings(
    provider: str,
    gemini_api_key: str = "",
    gemini_model: str = "gemini-2.5-pro",
    openrouter_api_key: str = "",
    openrouter_api_url: str = "https://openrouter.ai/api/v1/chat/completions",
    openrouter_model: str = "google/gemini-2.5-pro",
    timeout: int = 300,
    max_retries: int = 1,
) -> UnifiedLLMClient:
    """Create a unified LLM client from configuration settings.

    Selects the API key, model and base URL matching the provider.

    Raises:
        ConfigurationError: If the provider is unknown or its API key is missing
    """
    try:
        provider_enum = LLMProvider(provider.lower())
    except ValueError as e:
        raise ConfigurationError(f"Unsupported LLM provider: {provider}", original_error=e) from e

    if provider_enum == LLMProvider.GEMINI:
        if not gemini_api_key or not gemini_api_key.strip():
            raise ConfigurationError(
                "gemini_api_key required when provider='gemini'. "
                "Please set GEMINI_API_KEY environment variable."
            )
        return UnifiedLLMClient(
            provider=provider_enum,
            api_key=gemini_api_key.strip(),
            model=gemini_model,
            timeout=timeout,
            max_retries=max_retries,
        )

    if not openrouter_api_key or not openrouter_api_key.strip():
        raise ConfigurationError(
            "openrouter_api_key required when provider='openrouter'. "
            "Please set OPENROUTER_API_KEY environment variable."
        )
    return UnifiedLLMClient(
        provider=provider_enum,
        api_key=openrouter_api_key.strip(),
        model=openrouter_model,
        base_url=openrouter_api_url,
        timeout=timeout,
        max_retries=max_retries,
    )


def get_llm_client() -> UnifiedLLMClient:
    """Build the pipeline's LLM client from application settings."""
    return create_llm_client_from_settings(
        provider=settings.llm_provider,
        gemini_api_key=settings.gemini_api_key,
        gemini_model=settings.gemini_model,
        openrouter_api_key=settings.openrouter_api_key,
        openrouter_api_url=settings.openrouter_api_url,
        openrouter_model=settings.openrouter_model,
        timeout=settings.llm.timeout,
        max_retries=settings.llm.max_retries,
    )
