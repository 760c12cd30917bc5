from typing import Optional

from fastapi.responses import JSONResponse

from titlescan.core.exceptions import PayloadTooLargeError, describe_failure
from titlescan.schemas.api import ErrorResponse


def create_error_response(status_code: int, error: str, details: Optional[str] = None) -> JSONResponse:
    """Build the ``{error, details?}`` body used by the analysis endpoints."""
    body = ErrorResponse(error=error, details=details)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


def status_code_for(error: Exception) -> int:
    # Configuration and generic failures are both server-side errors
    if isinstance(error, PayloadTooLargeError):
        return 413
    return 500


def error_response_for(error: Exception) -> JSONResponse:
    """Map a pipeline failure to its user-facing error response."""
    return create_error_response(
        status_code_for(error),
        describe_failure(error),
        details=getattr(error, "message", None) or str(error),
    )
