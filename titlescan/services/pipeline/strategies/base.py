"""Base class for pipeline strategies.

A strategy decides the control flow of one analysis run (which prompts are
sent over which pages, and how failures are recorded). Strategies share the
prompt builders, the model client and the JSON extractor.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Union

from pydantic import ValidationError

from titlescan.core.unified_llm import JSON_GENERATION_CONFIG, UnifiedLLMClient
from titlescan.models.page_image import PageImage, to_image_parts
from titlescan.schemas.analysis import DocumentAnalysisOutcome, RedFlagItem
from titlescan.services.pipeline.context import AnalysisRunContext
from titlescan.utils.json_parser import parse_model_json
from titlescan.utils.logging import get_logger

LOGGER = get_logger(__name__)


class AnalysisStrategy(ABC):
    """Interface implemented by every pipeline shape."""

    name: str = "base"

    def __init__(self, llm_client: UnifiedLLMClient):
        self.llm_client = llm_client

    @abstractmethod
    async def analyze(self, context: AnalysisRunContext) -> DocumentAnalysisOutcome:
        """Run the strategy over the pages held by ``context``."""

    async def call_model(
        self,
        prompt: str,
        pages: Sequence[PageImage] = (),
    ) -> Union[Dict[str, Any], List[Any]]:
        """Send a prompt plus page images and return the parsed JSON.

        Raises:
            InferenceProviderError: If the provider call fails
            UnparsableResponseError: If the answer is empty or not JSON
        """
        contents: List[Any] = [prompt, *to_image_parts(list(pages))]
        text = await self.llm_client.generate_content(
            contents=contents,
            generation_config=JSON_GENERATION_CONFIG,
        )
        return parse_model_json(text)


def build_red_flag(raw: Any, red_flag_id: str, related_document_ids: Optional[List[str]]) -> Optional[RedFlagItem]:
    """Validate a raw red flag from the model, or return None if unusable."""
    if not isinstance(raw, dict) or not raw.get("description"):
        LOGGER.warning(f"Skipping red flag without description: {str(raw)[:200]}")
        return None
    try:
        return RedFlagItem(
            red_flag_id=red_flag_id,
            description=str(raw["description"]),
            severity=raw.get("severity") or "Medium",
            suggestion=str(raw.get("suggestion") or ""),
            related_document_ids=related_document_ids or None,
        )
    except ValidationError as e:
        LOGGER.warning(f"Skipping invalid red flag: {e}")
        return None


def text_or(value: Any, default: str) -> str:
    """Return ``value`` as a stripped string, or ``default`` when blank."""
    if value is None:
        return default
    if isinstance(value, list):
        value = ", ".join(str(v) for v in value if v)
    text = str(value).strip()
    return text or default
