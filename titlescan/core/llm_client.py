import asyncio
from typing import Any, Dict, List, Optional, Union

import httpx
from httpx import HTTPStatusError, TimeoutException
from google import genai
from google.genai import types

from titlescan.core.exceptions import (
    APITimeoutError,
    InferenceProviderError,
    InvalidCredentialsError,
    PayloadTooLargeError,
)
from titlescan.models.page_image import ImagePart
from titlescan.utils.logging import get_logger

LOGGER = get_logger(__name__)

ContentPart = Union[str, ImagePart]
Contents = Union[str, List[ContentPart]]

_CREDENTIAL_MARKERS = ("api key not valid", "api_key_invalid", "invalid api key", "permission denied")
_PAYLOAD_MARKERS = ("request entity too large", "payload size", "payload too large", "request too large")


def classify_provider_error(
    error: Exception,
    status_code: Optional[int] = None,
    body: str = "",
) -> InferenceProviderError:
    """Map a provider failure to the pipeline's error taxonomy.

    Args:
        error: Underlying exception
        status_code: HTTP status if known
        body: Response body or provider message

    Returns:
        InvalidCredentialsError, PayloadTooLargeError, APITimeoutError or a
        plain InferenceProviderError
    """
    # Already classified
    if isinstance(error, InferenceProviderError) and type(error) is not InferenceProviderError:
        return error

    text = f"{body} {error}".lower()

    if isinstance(error, (TimeoutException, asyncio.TimeoutError)):
        return APITimeoutError(f"Model request timed out: {error}", original_error=error)
    if status_code in (401, 403) or any(marker in text for marker in _CREDENTIAL_MARKERS):
        return InvalidCredentialsError(f"Model provider rejected the credentials: {error}", original_error=error)
    if status_code == 413 or any(marker in text for marker in _PAYLOAD_MARKERS):
        return PayloadTooLargeError(f"Model request payload too large: {error}", original_error=error)
    if status_code in (408, 504) or "deadline" in text or "timed out" in text:
        return APITimeoutError(f"Model request timed out: {error}", original_error=error)

    return InferenceProviderError(f"Model generation failed: {error}", original_error=error)


class BaseLLMClient:
    """Base client for LLM HTTP APIs.

    Handles common logic for HTTP requests, retries, timeout management,
    and error logging.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        timeout: int = 60,
        max_retries: int = 1,
        retry_delay: int = 2,
    ):
        """Initialize the LLM client.

        Args:
            api_key: API key for authentication
            base_url: Base URL for the API
            timeout: Request timeout in seconds
            max_retries: Maximum number of attempts
            retry_delay: Base delay for exponential backoff
        """
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.logger = LOGGER

    async def call_api(
        self,
        endpoint: str = "",
        payload: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """POST a JSON payload with retry logic.

        Raises:
            InferenceProviderError: If the API call fails after retries
            APITimeoutError: If the API call times out after retries
        """
        url = f"{self.base_url}{endpoint}" if endpoint else self.base_url

        default_headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if headers:
            default_headers.update(headers)

        self.logger.debug(f"Calling LLM API: {url}", extra={"timeout": self.timeout})

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            for attempt in range(self.max_retries):
                try:
                    response = await client.post(url, headers=default_headers, json=payload)
                    response.raise_for_status()
                    return response.json()

                except HTTPStatusError as e:
                    await self._handle_http_error(e, attempt, url)

                except TimeoutException as e:
                    await self._handle_timeout_error(e, attempt, url)

                except httpx.HTTPError as e:
                    await self._handle_generic_error(e, attempt, url)

        raise InferenceProviderError(f"Failed to call API {url} after {self.max_retries} attempts")

    async def _handle_http_error(self, error: HTTPStatusError, attempt: int, url: str):
        """Handle HTTP status errors."""
        status_code = error.response.status_code
        error_body = error.response.text

        self.logger.warning(
            f"API HTTP error (Attempt {attempt + 1}/{self.max_retries})",
            extra={"url": url, "status_code": status_code, "error_body": error_body[:500]},
        )

        # Don't retry on client errors (4xx) unless it's rate limiting (429)
        if 400 <= status_code < 500 and status_code != 429:
            raise classify_provider_error(error, status_code=status_code, body=error_body) from error

        if attempt < self.max_retries - 1:
            await self._wait_before_retry(attempt)
        else:
            raise classify_provider_error(error, status_code=status_code, body=error_body) from error

    async def _handle_timeout_error(self, error: TimeoutException, attempt: int, url: str):
        """Handle timeout errors."""
        self.logger.warning(f"API Timeout (Attempt {attempt + 1}/{self.max_retries})", extra={"url": url})

        if attempt < self.max_retries - 1:
            await self._wait_before_retry(attempt)
        else:
            raise APITimeoutError(f"API Timeout after {self.max_retries} attempts", original_error=error) from error

    async def _handle_generic_error(self, error: Exception, attempt: int, url: str):
        """Handle transport errors."""
        self.logger.warning(
            f"API Generic Error (Attempt {attempt + 1}/{self.max_retries})",
            extra={"url": url, "error": str(error)},
        )

        if attempt < self.max_retries - 1:
            await self._wait_before_retry(attempt)
        else:
            raise classify_provider_error(error) from error

    async def _wait_before_retry(self, attempt: int):
        """Exponential backoff wait."""
        await asyncio.sleep(self.retry_delay * (2 ** attempt))


class GeminiClient:
    """Wrapper for the Google Gemini API (google-genai SDK)."""

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.5-pro",
        timeout: int = 300,
        max_retries: int = 1,
    ):
        """Initialize Gemini client.

        Args:
            api_key: Gemini API key
            model: Model name to use
            timeout: Request timeout in seconds
            max_retries: Maximum attempts per call
        """
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.max_retries = max(1, max_retries)

        try:
            self.client = genai.Client(
                api_key=self.api_key,
                http_options=types.HttpOptions(timeout=self.timeout * 1000),
            )
            LOGGER.info(f"Initialized Gemini client with model {self.model}")
        except Exception as e:
            LOGGER.error(f"Failed to initialize Gemini client: {e}")
            raise InferenceProviderError(f"Failed to initialize Gemini client: {e}", original_error=e)

    @staticmethod
    def _to_sdk_contents(contents: Contents) -> List[Union[str, types.Part]]:
        if isinstance(contents, str):
            return [contents]
        parts: List[Union[str, types.Part]] = []
        for part in contents:
            if isinstance(part, ImagePart):
                parts.append(types.Part.from_bytes(data=part.data, mime_type=part.mime_type))
            else:
                parts.append(part)
        return parts

    async def generate_content(
        self,
        contents: Contents,
        system_instruction: Optional[str] = None,
        generation_config: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Generate content using Gemini model.

        Args:
            contents: Prompt text, or prompt text followed by image parts
            system_instruction: Optional system instruction
            generation_config: Optional generation config (temperature, response_mime_type, ...)

        Returns:
            Generated text response ("" when the model returned nothing)

        Raises:
            InferenceProviderError: If generation fails
        """
        config = types.GenerateContentConfig(temperature=0.0)

        if generation_config:
            if "temperature" in generation_config:
                config.temperature = generation_config["temperature"]
            if "max_output_tokens" in generation_config:
                config.max_output_tokens = generation_config["max_output_tokens"]
            if "response_mime_type" in generation_config:
                config.response_mime_type = generation_config["response_mime_type"]

        if system_instruction:
            config.system_instruction = system_instruction

        sdk_contents = self._to_sdk_contents(contents)

        for attempt in range(self.max_retries):
            try:
                response = await self.client.aio.models.generate_content(
                    model=self.model,
                    contents=sdk_contents,
                    config=config,
                )

                if not response.text:
                    LOGGER.warning("Empty response from Gemini")
                    return ""

                return response.text

            except Exception as e:
                classified = classify_provider_error(e, status_code=getattr(e, "code", None))
                LOGGER.warning(f"Gemini API error (Attempt {attempt + 1}/{self.max_retries}): {e}")
                if isinstance(classified, (InvalidCredentialsError, PayloadTooLargeError)):
                    raise classified from e
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(2 ** attempt)
                else:
                    LOGGER.error(f"Gemini generation failed after retries: {e}", exc_info=True)
                    raise classified from e

        raise InferenceProviderError("Gemini generation failed")


class OpenRouterClient:
    """Wrapper for the OpenRouter chat completions API.

    Provides the same interface as GeminiClient; images are sent as
    base64 data URLs in OpenAI-style multimodal messages.
    """

    def __init__(
        self,
        api_key: str,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: int = 300,
        max_retries: int = 1,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.timeout = timeout
        self.max_retries = max_retries

        self.client = BaseLLMClient(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=max_retries,
        )

        LOGGER.info(f"Initialized OpenRouter client with model {self.model}")

    @staticmethod
    def _to_message_content(contents: Contents) -> Union[str, List[Dict[str, Any]]]:
        if isinstance(contents, str):
            return contents
        message_parts: List[Dict[str, Any]] = []
        for part in contents:
            if isinstance(part, ImagePart):
                message_parts.append({"type": "image_url", "image_url": {"url": part.to_data_url()}})
            else:
                message_parts.append({"type": "text", "text": part})
        return message_parts

    async def generate_content(
        self,
        contents: Contents,
        system_instruction: Optional[str] = None,
        generation_config: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Generate content using OpenRouter model.

        Raises:
            InferenceProviderError: If generation fails
        """
        messages: List[Dict[str, Any]] = []
        if system_instruction:
            messages.append({"role": "system", "content": system_instruction})
        messages.append({"role": "user", "content": self._to_message_content(contents)})

        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": 0.0,
        }

        if generation_config:
            if "temperature" in generation_config:
                payload["temperature"] = generation_config["temperature"]
            if "max_output_tokens" in generation_config:
                payload["max_tokens"] = generation_config["max_output_tokens"]
            if generation_config.get("response_mime_type") == "application/json":
                payload["response_format"] = {"type": "json_object"}

        response = await self.client.call_api(payload=payload)

        choices = response.get("choices") or []
        if not choices:
            error = response.get("error")
            LOGGER.error(f"Unexpected OpenRouter response format: {str(response)[:500]}")
            if error:
                raise classify_provider_error(
                    InferenceProviderError(str(error)),
                    status_code=error.get("code") if isinstance(error, dict) else None,
                    body=str(error),
                )
            raise InferenceProviderError("Invalid response format from OpenRouter")

        content = choices[0].get("message", {}).get("content") or ""
        if not content:
            LOGGER.warning("Empty response from OpenRouter")
        return content
