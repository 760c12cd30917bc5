"""Workflow running one property analysis in the background."""

from datetime import timedelta
from typing import Dict, Optional

from temporalio import workflow
from temporalio.common import RetryPolicy

# Failures that retrying cannot fix
NON_RETRYABLE_ERRORS = [
    "InvalidCredentialsError",
    "ConfigurationError",
    "DocumentLoadError",
    "SegmentationFailedError",
    "PayloadTooLargeError",
]

WORKFLOW_ID_PREFIX = "property-analysis"


def workflow_id_for(analysis_id: str) -> str:
    return f"{WORKFLOW_ID_PREFIX}-{analysis_id}"


@workflow.defn
class PropertyAnalysisWorkflow:
    """Runs the analysis activity and records the outcome.

    The report itself is written by the activity; callers poll the report
    store (or the ``get_status`` query) for completion.
    """

    def __init__(self):
        self._status = "initialized"
        self._analysis_id: Optional[str] = None
        self._report_key: Optional[str] = None
        self._error: Optional[str] = None

    @workflow.query
    def get_status(self) -> dict:
        """Query handler for status updates."""
        return {
            "status": self._status,
            "analysis_id": self._analysis_id,
            "report_key": self._report_key,
            "error": self._error,
        }

    @workflow.run
    async def run(self, payload: Dict) -> dict:
        self._analysis_id = payload.get("analysisId")
        self._status = "processing"

        try:
            result = await workflow.execute_activity(
                "run_property_analysis",
                payload,
                start_to_close_timeout=timedelta(minutes=payload.get("timeoutMinutes", 30)),
                retry_policy=RetryPolicy(
                    maximum_attempts=payload.get("maxAttempts", 3),
                    initial_interval=timedelta(seconds=10),
                    maximum_interval=timedelta(minutes=2),
                    backoff_coefficient=2.0,
                    non_retryable_error_types=NON_RETRYABLE_ERRORS,
                ),
            )
        except Exception as e:
            self._status = "failed"
            self._error = str(e.__cause__ or e)
            workflow.logger.error(f"Property analysis {self._analysis_id} failed: {self._error}")
            raise

        self._status = "completed"
        self._report_key = result.get("reportKey")
        return {"status": self._status, **result}
