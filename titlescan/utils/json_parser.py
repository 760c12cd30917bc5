import json
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from titlescan.core.exceptions import UnparsableResponseError
from titlescan.utils.logging import get_logger

LOGGER = get_logger(__name__)

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL | re.IGNORECASE)


@dataclass(frozen=True)
class ParseResult:
    """Outcome of a lenient JSON extraction.

    Exactly one of ``value`` (when ``ok``) or ``reason`` (when not) is meaningful.
    """

    ok: bool
    value: Union[Dict[str, Any], List[Any], None] = None
    reason: Optional[str] = None

    @classmethod
    def success(cls, value: Union[Dict[str, Any], List[Any]]) -> "ParseResult":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, reason: str) -> "ParseResult":
        return cls(ok=False, reason=reason)


def _strip_fence(text: str) -> Optional[str]:
    match = _FENCE_PATTERN.search(text)
    if match:
        return match.group(1)
    return None


def _brace_substring(text: str) -> Optional[str]:
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end < start:
        return None
    return text[start:end + 1]


def extract_json(text: Optional[str]) -> ParseResult:
    """Extract a JSON payload from raw model output.

    Handles:
    - Bare JSON objects and arrays
    - Markdown code blocks (```json ... ``` or ``` ... ```), anywhere in the text
    - Leading/trailing prose around a bare JSON object

    Fence content that does not parse falls through to the first-``{``
    to last-``}`` substring of the whole text.

    Args:
        text: Raw model response

    Returns:
        ParseResult with the parsed value or the reason extraction failed
    """
    if text is None or not text.strip():
        return ParseResult.failure("empty response")

    # Bare JSON (object or array) needs no cleanup
    try:
        return ParseResult.success(json.loads(text.strip()))
    except json.JSONDecodeError:
        pass

    fenced = _strip_fence(text)
    if fenced is not None:
        try:
            return ParseResult.success(json.loads(fenced))
        except json.JSONDecodeError as e:
            LOGGER.debug(f"Fenced block is not valid JSON: {e}, trying brace substring")

    candidate = _brace_substring(text)
    if candidate is None:
        return ParseResult.failure("no JSON object found in response")

    try:
        return ParseResult.success(json.loads(candidate))
    except json.JSONDecodeError as e:
        return ParseResult.failure(f"invalid JSON: {e}")


def parse_model_json(text: Optional[str]) -> Union[Dict[str, Any], List[Any]]:
    """Parse model output as JSON or raise.

    Args:
        text: Raw model response

    Returns:
        Parsed JSON value

    Raises:
        UnparsableResponseError: If no JSON payload could be extracted
    """
    result = extract_json(text)
    if not result.ok:
        preview = (text or "")[:200]
        LOGGER.error(
            f"Failed to parse model JSON: {result.reason}",
            extra={"response_preview": preview},
        )
        raise UnparsableResponseError(
            f"Model response could not be parsed as JSON: {result.reason}",
            raw_text=text,
        )
    return result.value
