"""Service layer tying storage, rasterization, the pipeline and Temporal together."""

import asyncio
import uuid
from typing import Callable, Dict, List, Optional, Tuple

from temporalio.client import Client as TemporalClient

from titlescan.core.config import settings
from titlescan.core.exceptions import DocumentLoadError, ObjectNotFoundError
from titlescan.core.temporal_client import get_temporal_client
from titlescan.core.unified_llm import UnifiedLLMClient, get_llm_client
from titlescan.models.page_image import ImagePart, PageImage
from titlescan.schemas.analysis import DocumentAnalysisOutcome, InputFile
from titlescan.services.pipeline.context import ProgressCallback
from titlescan.services.pipeline.orchestrator import StageOrchestrator
from titlescan.services.processed.page_rasterizer import PageRasterizer
from titlescan.services.report_store import ReportStore
from titlescan.services.storage_service import StorageService
from titlescan.temporal.workflows.property_analysis import PropertyAnalysisWorkflow, workflow_id_for
from titlescan.utils.logging import get_logger

LOGGER = get_logger(__name__)


def file_name_from_key(key: str) -> str:
    return key.rstrip("/").split("/")[-1]


def pages_from_image_parts(input_files: List[InputFile], image_parts: List[ImagePart]) -> List[PageImage]:
    """Tag inline images with their source file and page number.

    Images must be ordered file by file, as listed in ``input_files``.

    Raises:
        ValueError: If the image count does not match the declared page counts
    """
    expected = sum(f.total_pages for f in input_files)
    if expected != len(image_parts):
        raise ValueError(
            f"Received {len(image_parts)} images but the input files declare {expected} pages"
        )

    pages: List[PageImage] = []
    for input_file in input_files:
        for page_number in range(1, input_file.total_pages + 1):
            part = image_parts[len(pages)]
            pages.append(
                PageImage(
                    source_file_name=input_file.name,
                    page_number=page_number,
                    global_index=len(pages),
                    image_bytes=part.data,
                    mime_type=part.mime_type,
                )
            )
    return pages


class AnalysisService:
    """Entry points for starting, running and fetching property analyses."""

    def __init__(
        self,
        storage: Optional[StorageService] = None,
        report_store: Optional[ReportStore] = None,
        rasterizer: Optional[PageRasterizer] = None,
        llm_client_factory: Callable[[], UnifiedLLMClient] = get_llm_client,
        orchestrator_factory: Callable[[UnifiedLLMClient], StageOrchestrator] = StageOrchestrator,
    ):
        self.storage = storage or StorageService()
        self.report_store = report_store or ReportStore(storage=self.storage)
        self.rasterizer = rasterizer or PageRasterizer()
        self.llm_client_factory = llm_client_factory
        self.orchestrator_factory = orchestrator_factory

    async def start_analysis(
        self,
        key: str,
        analysis_id: Optional[str] = None,
        file_name: Optional[str] = None,
        temporal_client: Optional[TemporalClient] = None,
    ) -> Dict[str, str]:
        """Start the background analysis workflow for an uploaded PDF (or prefix of PDFs).

        Returns:
            ``{"analysisId", "workflowId", "fileName"}``
        """
        if not key or not key.strip():
            raise ValueError("A storage key is required")

        analysis_id = analysis_id or str(uuid.uuid4())
        file_name = file_name or file_name_from_key(key)
        client = temporal_client or await get_temporal_client()

        payload = {
            "analysisId": analysis_id,
            "key": key,
            "fileName": file_name,
            "timeoutMinutes": settings.temporal.analysis_timeout_minutes,
            "maxAttempts": settings.temporal.analysis_max_attempts,
        }
        workflow_id = workflow_id_for(analysis_id)
        await client.start_workflow(
            PropertyAnalysisWorkflow.run,
            payload,
            id=workflow_id,
            task_queue=settings.temporal_task_queue,
        )

        LOGGER.info(
            f"Started analysis {analysis_id} for {key}",
            extra={"analysis_id": analysis_id, "workflow_id": workflow_id, "key": key},
        )
        return {"analysisId": analysis_id, "workflowId": workflow_id, "fileName": file_name}

    async def get_report(self, analysis_id: str) -> DocumentAnalysisOutcome:
        """Fetch a finished report.

        Raises:
            ReportNotFoundError: While the analysis is still running
        """
        return await self.report_store.load(analysis_id)

    async def analyze_inline(
        self,
        input_files: List[InputFile],
        image_parts: List[ImagePart],
    ) -> DocumentAnalysisOutcome:
        """Run the pipeline synchronously over already-rendered page images."""
        pages = pages_from_image_parts(input_files, image_parts)
        orchestrator = self.orchestrator_factory(self.llm_client_factory())
        return await orchestrator.run(input_files, pages)

    async def analyze_stored_document(
        self,
        analysis_id: str,
        key: str,
        file_name: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Dict[str, object]:
        """Download, rasterize and analyse stored PDFs, then save the report.

        ``key`` is either one PDF or a prefix holding several PDFs.

        Returns:
            ``{"analysisId", "reportKey", "documentCount", "pageCount"}``
        """
        files = await self._download_pdfs(key, file_name)
        input_files, pages = await asyncio.to_thread(self.rasterizer.rasterize_many, files)

        orchestrator = self.orchestrator_factory(self.llm_client_factory())
        label = file_name or ", ".join(f.name for f in input_files)
        outcome = await orchestrator.run(input_files, pages, file_label=label, on_progress=on_progress)

        report_key = await self.report_store.save(analysis_id, outcome)
        return {
            "analysisId": analysis_id,
            "reportKey": report_key,
            "documentCount": len(outcome.processed_documents),
            "pageCount": len(pages),
        }

    async def _download_pdfs(self, key: str, file_name: Optional[str]) -> List[Tuple[str, bytes]]:
        bucket = settings.storage.uploads_bucket
        if key.lower().endswith(".pdf"):
            try:
                content = await self.storage.download_bytes(bucket, key)
            except ObjectNotFoundError as e:
                raise DocumentLoadError(f"Uploaded file not found: {key}", file_name=key, original_error=e) from e
            return [(file_name or file_name_from_key(key), content)]

        keys = [path for path in await self.storage.list_objects(bucket, key) if path.lower().endswith(".pdf")]
        if not keys:
            raise DocumentLoadError(f"No PDF files found under {key}", file_name=key)

        files = []
        for pdf_key in keys:
            files.append((file_name_from_key(pdf_key), await self.storage.download_bytes(bucket, pdf_key)))
        LOGGER.info(f"Downloaded {len(files)} PDFs from {key}", extra={"key": key, "file_count": len(files)})
        return files
