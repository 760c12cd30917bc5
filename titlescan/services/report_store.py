"""Persistence of finished analysis reports, keyed by analysis id."""

import json
from typing import Optional

from titlescan.core.config import settings
from titlescan.core.exceptions import ObjectNotFoundError, ReportNotFoundError, StorageError
from titlescan.schemas.analysis import DocumentAnalysisOutcome
from titlescan.services.storage_service import StorageService
from titlescan.utils.logging import get_logger

LOGGER = get_logger(__name__)


class ReportStore:
    """Writes each report once under ``{prefix}/{analysis_id}.json``.

    Analysis ids must be unique per run; a repeated id overwrites the
    earlier report.
    """

    def __init__(
        self,
        storage: Optional[StorageService] = None,
        bucket: Optional[str] = None,
        prefix: Optional[str] = None,
    ):
        self.storage = storage or StorageService()
        self.bucket = bucket or settings.storage.reports_bucket
        self.prefix = (prefix if prefix is not None else settings.storage.reports_prefix).strip("/")

    def report_key(self, analysis_id: str) -> str:
        if not analysis_id or "/" in analysis_id:
            raise ValueError(f"Invalid analysis id: {analysis_id!r}")
        return f"{self.prefix}/{analysis_id}.json" if self.prefix else f"{analysis_id}.json"

    async def save(self, analysis_id: str, outcome: DocumentAnalysisOutcome) -> str:
        """Persist the report and return its storage key."""
        key = self.report_key(analysis_id)
        body = json.dumps(outcome.to_report(), indent=2, ensure_ascii=False).encode("utf-8")
        await self.storage.upload_bytes(body, self.bucket, key, content_type="application/json")
        LOGGER.info(f"Saved report for analysis {analysis_id}", extra={"analysis_id": analysis_id, "key": key})
        return key

    async def load(self, analysis_id: str) -> DocumentAnalysisOutcome:
        """Load a finished report.

        Raises:
            ReportNotFoundError: If the analysis has not produced a report yet
            StorageError: If the stored report cannot be read
        """
        key = self.report_key(analysis_id)
        try:
            body = await self.storage.download_bytes(self.bucket, key)
        except ObjectNotFoundError as e:
            raise ReportNotFoundError(f"No report for analysis {analysis_id}", original_error=e) from e

        try:
            return DocumentAnalysisOutcome.from_report(json.loads(body))
        except ValueError as e:
            LOGGER.error(f"Stored report for {analysis_id} is not valid: {e}")
            raise StorageError(f"Stored report for analysis {analysis_id} is corrupt", original_error=e) from e

    async def exists(self, analysis_id: str) -> bool:
        try:
            await self.load(analysis_id)
        except ReportNotFoundError:
            return False
        return True

    async def delete(self, analysis_id: str) -> None:
        key = self.report_key(analysis_id)
        try:
            await self.storage.delete_object(self.bucket, key)
        except ObjectNotFoundError as e:
            raise ReportNotFoundError(f"No report for analysis {analysis_id}", original_error=e) from e
