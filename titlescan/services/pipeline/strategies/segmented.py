"""Segment-then-analyze pipeline.

Stage 1 sends every rendered page to the model once to find the logical
documents and their page ranges. Stage 2 analyses each document on its own
pages. A failure in stage 1 fails the run; a failure in stage 2 only marks
that one document as Unsupported.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

from pydantic import ValidationError

from titlescan.core.config import settings
from titlescan.core.exceptions import (
    APITimeoutError,
    DocumentLoadError,
    InferenceProviderError,
    InvalidCredentialsError,
    PayloadTooLargeError,
    SegmentationFailedError,
    UnparsableResponseError,
)
from titlescan.core.unified_llm import UnifiedLLMClient
from titlescan.models.page_image import PageImage
from titlescan.prompts.property_prompts import build_detailed_analysis_prompt, build_identification_prompt
from titlescan.schemas.analysis import (
    DocumentAnalysisOutcome,
    DocumentStatus,
    IdentifiedSegment,
    ProcessedDocument,
    TitleChainEvent,
    UnsupportedPage,
)
from titlescan.services.pipeline.context import AnalysisRunContext, AnalysisStage
from titlescan.services.pipeline.strategies.base import AnalysisStrategy, build_red_flag, text_or
from titlescan.utils.logging import get_logger

LOGGER = get_logger(__name__)

_SEGMENT_LIST_KEYS = ("documents", "segments")


@dataclass(frozen=True)
class ResolvedSegment:
    """An identified segment mapped onto the global page sequence."""

    index: int
    segment: IdentifiedSegment
    pages: List[PageImage]
    original_image_index: int

    @property
    def document_id(self) -> str:
        return f"doc_{self.segment.source_file_name}_idx{self.index}"

    @property
    def page_range(self) -> str:
        if self.segment.start_page == self.segment.end_page:
            return f"Page {self.segment.start_page}"
        return f"Pages {self.segment.start_page}-{self.segment.end_page}"


@dataclass
class SegmentResult:
    payload: Optional[Dict[str, Any]] = None
    failure_reason: Optional[str] = None


def segment_entries(payload: Any) -> Optional[List[Any]]:
    """Pull the segment list out of an identification response.

    Accepts a bare array or an object holding it under ``documents`` or
    ``segments``.
    """
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in _SEGMENT_LIST_KEYS:
            if isinstance(payload.get(key), list):
                return payload[key]
    return None


class SegmentThenAnalyzeStrategy(AnalysisStrategy):
    """Identify documents first, then analyse each one on its own pages."""

    name = "segmented"

    def __init__(self, llm_client: UnifiedLLMClient, max_concurrency: Optional[int] = None):
        super().__init__(llm_client)
        self.max_concurrency = max(1, max_concurrency or settings.pipeline.segment_concurrency)

    async def analyze(self, context: AnalysisRunContext) -> DocumentAnalysisOutcome:
        segments = await self.identify_segments(context)
        resolved = self.resolve_segments(context, segments)

        await context.report_progress(
            AnalysisStage.ANALYZING_SEGMENTS,
            f"Analyzing {len(resolved)} documents",
            completed=0,
            total=len(resolved),
        )
        results = await self._analyze_all(context, resolved)

        # Results come back in segment order, so ids and title chain order are deterministic
        for resolved_segment, result in zip(resolved, results):
            self._record(context, resolved_segment, result)

        self._record_unsupported_pages(context, resolved)
        return context.build_outcome()

    async def identify_segments(self, context: AnalysisRunContext) -> List[IdentifiedSegment]:
        """Run the identification stage.

        Raises:
            SegmentationFailedError: If no usable segment was produced
            InvalidCredentialsError: If the provider rejected the API key
        """
        rendered = context.rendered_pages
        await context.report_progress(
            AnalysisStage.IDENTIFYING,
            f"Identifying documents across {context.total_pages} pages",
        )
        if not rendered:
            raise DocumentLoadError("None of the uploaded pages could be rendered")

        prompt = build_identification_prompt(context.input_files, context.total_pages)
        try:
            payload = await self.call_model(prompt, rendered)
        except (InvalidCredentialsError, PayloadTooLargeError, APITimeoutError):
            raise
        except (InferenceProviderError, UnparsableResponseError) as e:
            LOGGER.error(f"Document identification failed: {e}")
            raise SegmentationFailedError(f"Document identification failed: {e}", original_error=e) from e

        entries = segment_entries(payload)
        if entries is None:
            raise SegmentationFailedError("Document identification did not return a list of documents")

        segments: List[IdentifiedSegment] = []
        for entry in entries:
            try:
                segments.append(IdentifiedSegment.model_validate(entry))
            except ValidationError as e:
                LOGGER.warning(f"Skipping invalid segment {str(entry)[:200]}: {e.error_count()} validation errors")

        if not segments:
            raise SegmentationFailedError("Document identification produced no usable segments")

        LOGGER.info(f"Identified {len(segments)} documents", extra={"segment_count": len(segments)})
        return segments

    def resolve_segments(
        self,
        context: AnalysisRunContext,
        segments: List[IdentifiedSegment],
    ) -> List[ResolvedSegment]:
        """Map local page ranges onto the global page sequence.

        Segments naming an unknown file, with an inverted range or running
        past the end of their file are skipped.
        """
        offsets = context.file_offsets()
        page_counts = context.file_page_counts()
        resolved: List[ResolvedSegment] = []

        for index, segment in enumerate(segments):
            name = segment.source_file_name
            if name not in offsets:
                LOGGER.warning(f"Skipping segment {index}: unknown source file '{name}'")
                continue
            if segment.start_page > segment.end_page:
                LOGGER.warning(
                    f"Skipping segment {index}: startPage {segment.start_page} is after endPage {segment.end_page}"
                )
                continue
            if segment.end_page > page_counts[name]:
                LOGGER.warning(
                    f"Skipping segment {index}: pages {segment.start_page}-{segment.end_page} "
                    f"out of bounds for '{name}' ({page_counts[name]} pages)"
                )
                continue

            start = offsets[name] + segment.start_page - 1
            end = offsets[name] + segment.end_page
            resolved.append(
                ResolvedSegment(
                    index=index,
                    segment=segment,
                    pages=context.pages[start:end],
                    original_image_index=start,
                )
            )

        return resolved

    async def _analyze_all(
        self,
        context: AnalysisRunContext,
        resolved: List[ResolvedSegment],
    ) -> List[SegmentResult]:
        semaphore = asyncio.Semaphore(self.max_concurrency)
        completed = 0

        async def run_one(resolved_segment: ResolvedSegment) -> SegmentResult:
            nonlocal completed
            async with semaphore:
                result = await self.analyze_segment(resolved_segment)
            completed += 1
            await context.report_progress(
                AnalysisStage.ANALYZING_SEGMENTS,
                f"Analyzed {resolved_segment.segment.document_type} "
                f"({resolved_segment.segment.source_file_name}, {resolved_segment.page_range})",
                completed=completed,
                total=len(resolved),
            )
            return result

        tasks = [asyncio.create_task(run_one(r)) for r in resolved]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            # A fatal error in one segment stops the rest before the run is failed
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def analyze_segment(self, resolved_segment: ResolvedSegment) -> SegmentResult:
        """Run detailed analysis for one segment; failures are returned, not raised.

        Raises:
            InvalidCredentialsError: Never recorded inline
        """
        segment = resolved_segment.segment
        rendered = [page for page in resolved_segment.pages if page.is_rendered]
        if not rendered:
            return SegmentResult(failure_reason="None of the pages of this document could be rendered")

        prompt = build_detailed_analysis_prompt(segment.document_type, segment.source_file_name, len(rendered))
        try:
            payload = await self.call_model(prompt, rendered)
        except InvalidCredentialsError:
            raise
        except (InferenceProviderError, UnparsableResponseError) as e:
            LOGGER.warning(
                f"Detailed analysis failed for {resolved_segment.document_id}: {e}",
                extra={"document_id": resolved_segment.document_id},
            )
            return SegmentResult(failure_reason=f"Detailed analysis failed: {e}")

        if not isinstance(payload, dict):
            return SegmentResult(failure_reason="Detailed analysis did not return a JSON object")
        if not text_or(payload.get("summary"), ""):
            return SegmentResult(failure_reason="Detailed analysis returned no summary")
        return SegmentResult(payload=payload)

    def _record(self, context: AnalysisRunContext, resolved_segment: ResolvedSegment, result: SegmentResult) -> None:
        segment = resolved_segment.segment
        document_id = resolved_segment.document_id

        if result.payload is None:
            context.processed_documents.append(
                ProcessedDocument(
                    document_id=document_id,
                    source_file_name=segment.source_file_name,
                    original_image_index=resolved_segment.original_image_index,
                    document_type=segment.document_type,
                    page_range_in_source_file=resolved_segment.page_range,
                    summary="",
                    status=DocumentStatus.UNSUPPORTED,
                    unsupported_reason=result.failure_reason,
                )
            )
            return

        payload = result.payload
        document_date = text_or(payload.get("date"), "") or None
        context.processed_documents.append(
            ProcessedDocument(
                document_id=document_id,
                source_file_name=segment.source_file_name,
                original_image_index=resolved_segment.original_image_index,
                document_type=segment.document_type,
                page_range_in_source_file=resolved_segment.page_range,
                summary=text_or(payload.get("summary"), ""),
                status=DocumentStatus.PROCESSED,
                date=document_date,
                parties_involved=text_or(payload.get("partiesInvolved"), "") or None,
            )
        )

        raw_event = payload.get("titleChainEvent")
        if isinstance(raw_event, dict) and raw_event:
            order = context.next_event_order()
            context.title_chain_events.append(
                TitleChainEvent(
                    event_id=f"tc_event_{order}",
                    order=order,
                    date=text_or(raw_event.get("date"), document_date or "Unknown"),
                    document_type=text_or(raw_event.get("documentType"), segment.document_type),
                    transferor=text_or(raw_event.get("transferor"), "Unknown"),
                    transferee=text_or(raw_event.get("transferee"), "Unknown"),
                    property_description=text_or(raw_event.get("propertyDescription"), "") or None,
                    summary_of_transaction=text_or(raw_event.get("summaryOfTransaction"), ""),
                    related_document_id=document_id,
                )
            )

        raw_flags = payload.get("redFlags")
        if isinstance(raw_flags, list):
            for raw_flag in raw_flags:
                if not isinstance(raw_flag, dict) or not raw_flag.get("description"):
                    continue
                red_flag = build_red_flag(raw_flag, f"rf_{context.next_red_flag_index()}", [document_id])
                if red_flag is not None:
                    context.red_flags.append(red_flag)

    def _record_unsupported_pages(self, context: AnalysisRunContext, resolved: List[ResolvedSegment]) -> None:
        covered: Set[int] = {page.global_index for r in resolved for page in r.pages}
        for page in context.pages:
            if page.render_error:
                reason = page.render_error
            elif page.global_index not in covered:
                reason = "Page was not attributed to any identified document"
            else:
                continue
            context.unsupported_pages.append(
                UnsupportedPage(
                    source_file_name=page.source_file_name,
                    page_number_in_source_file=page.page_number,
                    reason=reason,
                )
            )
