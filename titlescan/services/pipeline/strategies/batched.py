"""Batch-then-synthesize pipeline.

For each analysis task the pages are sent in fixed-size batches; the
per-batch partial results are then merged by a synthesis call. Failed
batches become ``{error, details}`` placeholders and a failed synthesis
becomes a task error, so one bad batch never aborts the run.
"""

from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from titlescan.core.config import settings
from titlescan.core.exceptions import (
    DocumentLoadError,
    InferenceProviderError,
    InvalidCredentialsError,
    UnparsableResponseError,
)
from titlescan.core.unified_llm import UnifiedLLMClient
from titlescan.models.page_image import PageImage
from titlescan.prompts.property_prompts import BATCH_TASKS, build_batch_task_prompt, build_synthesis_prompt
from titlescan.schemas.analysis import (
    DocumentAnalysisOutcome,
    DocumentStatus,
    ProcessedDocument,
    PropertySummary,
    TaskError,
    TitleChainEvent,
)
from titlescan.services.pipeline.batch_planner import plan_batches
from titlescan.services.pipeline.context import AnalysisRunContext, AnalysisStage
from titlescan.services.pipeline.finalizer import DocumentReferenceIndex
from titlescan.services.pipeline.strategies.base import AnalysisStrategy, build_red_flag, text_or
from titlescan.utils.logging import get_logger

LOGGER = get_logger(__name__)

# Top-level keys each task contributes to the merged result
TASK_RESULT_KEYS = {
    "propertySummary": "propertySummary",
    "titleChain": "titleChainEvents",
    "documentDetails": "processedDocuments",
    "redFlags": "redFlags",
}


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


class BatchThenSynthesizeStrategy(AnalysisStrategy):
    """Run each task over page batches, then synthesise the partials."""

    name = "batched"

    def __init__(self, llm_client: UnifiedLLMClient, batch_size: Optional[int] = None):
        super().__init__(llm_client)
        self.batch_size = batch_size or settings.pipeline.batch_size
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {self.batch_size}")

    async def analyze(self, context: AnalysisRunContext) -> DocumentAnalysisOutcome:
        rendered = context.rendered_pages
        if not rendered:
            raise DocumentLoadError("None of the uploaded pages could be rendered")

        merged: Dict[str, Any] = {}
        for task_key, task_description in BATCH_TASKS.items():
            partials = await self.run_task_batches(context, task_key, task_description, rendered)
            synthesized = await self.synthesize_task(context, task_key, task_description, partials)
            if synthesized is not None:
                # Shallow merge by top-level key
                merged.update(synthesized)

        await context.report_progress(AnalysisStage.MERGING, "Merging task results")
        self.merge_into_context(context, merged)
        return context.build_outcome()

    async def run_task_batches(
        self,
        context: AnalysisRunContext,
        task_key: str,
        task_description: str,
        pages: List[PageImage],
    ) -> List[Any]:
        """Collect one partial result (or failure placeholder) per batch."""
        partials: List[Any] = []
        for batch in plan_batches(pages, self.batch_size):
            await context.report_progress(
                AnalysisStage.PROCESSING_BATCHES,
                f"Processing batch {batch.batch_num}/{batch.total_batches} for task {task_key}",
                completed=batch.batch_num - 1,
                total=batch.total_batches,
            )
            prompt = build_batch_task_prompt(
                task_description,
                context.file_label,
                len(pages),
                batch.batch_num,
                batch.total_batches,
            )
            try:
                partials.append(await self.call_model(prompt, batch.pages))
            except InvalidCredentialsError:
                raise
            except (InferenceProviderError, UnparsableResponseError) as e:
                LOGGER.warning(
                    f"Error in batch {batch.batch_num} for task {task_key}: {e}",
                    extra={"task": task_key, "batch_num": batch.batch_num},
                )
                partials.append({"error": f"Failed to process batch {batch.batch_num}", "details": str(e)})
        return partials

    async def synthesize_task(
        self,
        context: AnalysisRunContext,
        task_key: str,
        task_description: str,
        partials: List[Any],
    ) -> Optional[Dict[str, Any]]:
        """Merge the partials of one task; failures are recorded on the context."""
        await context.report_progress(AnalysisStage.SYNTHESIZING, f"Synthesizing results for task {task_key}")
        prompt = build_synthesis_prompt(task_description, context.file_label, partials)
        try:
            result = await self.call_model(prompt)
            if not isinstance(result, dict):
                raise UnparsableResponseError("Synthesis did not return a JSON object", raw_text=str(result)[:500])
        except InvalidCredentialsError:
            raise
        except (InferenceProviderError, UnparsableResponseError) as e:
            LOGGER.error(f"Error during synthesis for task {task_key}: {e}", extra={"task": task_key})
            context.task_errors[task_key] = TaskError(
                error=f"Failed to synthesize results for {task_key}",
                details=str(e),
            )
            return None
        return result

    def merge_into_context(self, context: AnalysisRunContext, merged: Dict[str, Any]) -> None:
        """Validate the merged raw result and build domain entities."""
        raw_summary = merged.get("propertySummary")
        if isinstance(raw_summary, dict):
            context.property_summary = PropertySummary(
                current_owner=text_or(raw_summary.get("currentOwner"), "Unknown"),
                property_brief=text_or(raw_summary.get("propertyBrief"), ""),
            )

        for position, raw_doc in enumerate(self._list(merged, "processedDocuments")):
            document = self._build_document(context, position, raw_doc)
            if document is not None:
                context.processed_documents.append(document)

        index = DocumentReferenceIndex(context.processed_documents)

        for position, raw_event in enumerate(self._list(merged, "titleChainEvents")):
            if not isinstance(raw_event, dict):
                continue
            try:
                event = TitleChainEvent(
                    event_id=text_or(raw_event.get("eventId"), f"tc_event_{position}"),
                    order=max(0, _as_int(raw_event.get("order"), position)),
                    date=text_or(raw_event.get("date"), "Unknown"),
                    document_type=text_or(raw_event.get("documentType"), "Unknown"),
                    transferor=text_or(raw_event.get("transferor"), "Unknown"),
                    transferee=text_or(raw_event.get("transferee"), "Unknown"),
                    property_description=text_or(raw_event.get("propertyDescription"), "") or None,
                    summary_of_transaction=text_or(raw_event.get("summaryOfTransaction"), ""),
                    related_document_id=index.resolve(
                        document_id=raw_event.get("relatedDocumentId"),
                        source_file_name=raw_event.get("sourceFileName"),
                        document_type=raw_event.get("relatedDocumentType") or raw_event.get("documentType"),
                    ),
                )
            except ValidationError as e:
                LOGGER.warning(f"Skipping invalid title chain event: {e}")
                continue
            context.title_chain_events.append(event)

        for position, raw_flag in enumerate(self._list(merged, "redFlags")):
            if not isinstance(raw_flag, dict):
                continue
            red_flag = build_red_flag(
                raw_flag,
                text_or(raw_flag.get("redFlagId"), f"rf_{position}"),
                self._resolve_flag_references(index, raw_flag),
            )
            if red_flag is not None:
                context.red_flags.append(red_flag)

    @staticmethod
    def _list(merged: Dict[str, Any], key: str) -> List[Any]:
        value = merged.get(key)
        return value if isinstance(value, list) else []

    def _build_document(self, context: AnalysisRunContext, position: int, raw_doc: Any) -> Optional[ProcessedDocument]:
        if not isinstance(raw_doc, dict):
            return None
        source_file_name = text_or(raw_doc.get("sourceFileName"), context.file_label)
        status = (
            DocumentStatus.UNSUPPORTED
            if str(raw_doc.get("status", "")).strip().lower() == "unsupported"
            else DocumentStatus.PROCESSED
        )
        try:
            return ProcessedDocument(
                document_id=text_or(raw_doc.get("documentId"), f"doc_{source_file_name}_idx{position}"),
                source_file_name=source_file_name,
                original_image_index=max(0, _as_int(raw_doc.get("originalImageIndex"), 0)),
                document_type=text_or(raw_doc.get("documentType"), "Unknown Document"),
                page_range_in_source_file=text_or(raw_doc.get("pageRangeInSourceFile"), "Unknown"),
                summary=text_or(raw_doc.get("summary"), ""),
                status=status,
                date=text_or(raw_doc.get("date"), "") or None,
                parties_involved=text_or(raw_doc.get("partiesInvolved"), "") or None,
                unsupported_reason=text_or(raw_doc.get("unsupportedReason"), "") or None,
            )
        except ValidationError as e:
            LOGGER.warning(f"Skipping invalid processed document: {e}")
            return None

    @staticmethod
    def _resolve_flag_references(index: DocumentReferenceIndex, raw_flag: Dict[str, Any]) -> List[str]:
        resolved: List[str] = []
        raw_ids = raw_flag.get("relatedDocumentIds")
        if isinstance(raw_ids, list):
            for document_id in raw_ids:
                match = index.resolve(document_id=str(document_id))
                if match and match not in resolved:
                    resolved.append(match)

        raw_refs = raw_flag.get("relatedDocuments")
        if isinstance(raw_refs, list):
            for ref in raw_refs:
                if not isinstance(ref, dict):
                    continue
                match = index.resolve(
                    document_id=ref.get("documentId"),
                    source_file_name=ref.get("sourceFileName"),
                    document_type=ref.get("documentType"),
                )
                if match and match not in resolved:
                    resolved.append(match)
        return resolved
