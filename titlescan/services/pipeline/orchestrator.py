"""Pipeline controller.

Picks the analysis strategy, runs it over one set of rendered pages and
finalizes the resulting outcome.
"""

import time
from typing import List, Optional

from titlescan.core.config import settings
from titlescan.core.exceptions import ConfigurationError
from titlescan.core.unified_llm import UnifiedLLMClient
from titlescan.models.page_image import PageImage
from titlescan.schemas.analysis import DocumentAnalysisOutcome, InputFile
from titlescan.services.pipeline.context import AnalysisRunContext, AnalysisStage, ProgressCallback
from titlescan.services.pipeline.finalizer import OutcomeFinalizer
from titlescan.services.pipeline.strategies.base import AnalysisStrategy
from titlescan.services.pipeline.strategies.batched import BatchThenSynthesizeStrategy
from titlescan.services.pipeline.strategies.segmented import SegmentThenAnalyzeStrategy
from titlescan.utils.logging import get_logger

LOGGER = get_logger(__name__)

STRATEGIES = {
    SegmentThenAnalyzeStrategy.name: SegmentThenAnalyzeStrategy,
    BatchThenSynthesizeStrategy.name: BatchThenSynthesizeStrategy,
}


def create_strategy(shape: str, llm_client: UnifiedLLMClient) -> AnalysisStrategy:
    """Instantiate the strategy registered under ``shape``.

    Raises:
        ConfigurationError: If the shape is unknown
    """
    strategy_cls = STRATEGIES.get(shape.strip().lower())
    if strategy_cls is None:
        raise ConfigurationError(
            f"Unknown pipeline shape '{shape}'. Expected one of: {', '.join(sorted(STRATEGIES))}"
        )
    return strategy_cls(llm_client)


class StageOrchestrator:
    """Runs one analysis strategy and enforces outcome invariants."""

    def __init__(
        self,
        llm_client: UnifiedLLMClient,
        strategy: Optional[AnalysisStrategy] = None,
        finalizer: Optional[OutcomeFinalizer] = None,
    ):
        self.llm_client = llm_client
        self.strategy = strategy or create_strategy(settings.pipeline.shape, llm_client)
        self.finalizer = finalizer or OutcomeFinalizer(sort_title_chain=settings.pipeline.sort_title_chain)

    async def run(
        self,
        input_files: List[InputFile],
        pages: List[PageImage],
        file_label: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> DocumentAnalysisOutcome:
        """Analyse rendered pages and return the finalized outcome.

        Args:
            input_files: Source files in the order their pages were concatenated
            pages: Global page sequence
            file_label: Name used in batch prompts (defaults to the joined file names)
            on_progress: Optional callback receiving ProgressEvent objects

        Raises:
            SegmentationFailedError: If the segmented shape could not identify documents
            InvalidCredentialsError: If the provider rejected the API key
        """
        context = AnalysisRunContext(
            input_files=list(input_files),
            pages=list(pages),
            file_label=file_label or "",
            on_progress=on_progress,
        )

        start_time = time.time()
        LOGGER.info(
            f"Starting {self.strategy.name} analysis of {len(input_files)} files ({len(pages)} pages)",
            extra={"strategy": self.strategy.name, "file_count": len(input_files), "page_count": len(pages)},
        )

        outcome = await self.strategy.analyze(context)

        await context.report_progress(AnalysisStage.FINALIZING, "Finalizing report")
        outcome = self.finalizer.finalize(outcome)

        elapsed = time.time() - start_time
        await context.report_progress(
            AnalysisStage.DONE,
            f"Analysis complete: {len(outcome.processed_documents)} documents, "
            f"{len(outcome.title_chain_events)} title events, {len(outcome.red_flags)} red flags "
            f"in {elapsed:.1f}s",
        )
        return outcome
