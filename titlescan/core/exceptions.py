"""Custom exception hierarchy."""

from typing import Optional


class AppError(Exception):
    """Base exception for application errors."""
    def __init__(self, message: str, original_error: Exception = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class ConfigurationError(AppError):
    """Raised when configuration is invalid or missing."""
    pass


class StorageError(AppError):
    """Raised when a blob storage operation fails."""
    pass


class ObjectNotFoundError(StorageError):
    """Raised when a storage key does not exist."""
    pass


class ReportNotFoundError(ObjectNotFoundError):
    """Raised when no report exists yet for an analysis id."""
    pass


class APIClientError(AppError):
    """Raised when an external API call fails."""
    pass


class InferenceProviderError(APIClientError):
    """Raised when the model provider rejects or fails a generation call."""
    pass


class InvalidCredentialsError(InferenceProviderError):
    """Raised when the provider reports an invalid or missing API key.

    Never retried: the deployment configuration has to be fixed.
    """
    pass


class PayloadTooLargeError(InferenceProviderError):
    """Raised when the request (usually the page images) exceeds provider limits."""
    pass


class APITimeoutError(InferenceProviderError):
    """Raised when an external API call times out."""
    pass


class PipelineError(AppError):
    """Base exception for analysis pipeline errors."""
    pass


class DocumentLoadError(PipelineError):
    """A PDF could not be opened. Fatal for that file."""

    def __init__(self, message: str, file_name: Optional[str] = None, original_error: Exception = None):
        super().__init__(message, original_error=original_error)
        self.file_name = file_name


class SegmentationFailedError(PipelineError):
    """Document identification produced no usable segments. Fatal for the run."""
    pass


class UnparsableResponseError(PipelineError):
    """Model output could not be turned into JSON after lenient extraction."""

    def __init__(self, message: str, raw_text: Optional[str] = None, original_error: Exception = None):
        super().__init__(message, original_error=original_error)
        self.raw_text = raw_text


class EmptyResponseError(UnparsableResponseError):
    """The provider returned no text at all."""
    pass


# User-facing messages; each one implies a different action for the user.
CREDENTIALS_MESSAGE = (
    "The analysis service is not configured correctly: the model API key is missing or invalid. "
    "Please check the server configuration."
)
PAYLOAD_TOO_LARGE_MESSAGE = (
    "The combined document data is too large to be processed. The generated image data exceeded "
    "API request size limits. Please try with smaller documents or fewer pages."
)
GENERIC_FAILURE_MESSAGE = "An error occurred while communicating with the analysis service."


def describe_failure(error: Exception) -> str:
    """Map an exception to a single human-readable error string.

    Args:
        error: The exception raised while running an analysis

    Returns:
        Message distinguishing configuration problems, oversized payloads and
        generic (retryable) failures.
    """
    if isinstance(error, (InvalidCredentialsError, ConfigurationError)):
        return CREDENTIALS_MESSAGE
    if isinstance(error, PayloadTooLargeError):
        return PAYLOAD_TOO_LARGE_MESSAGE

    details = str(error) or type(error).__name__
    return f"{GENERIC_FAILURE_MESSAGE} Details: {details}"
