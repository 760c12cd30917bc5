"""Activities for the property analysis workflow."""

from typing import Dict

from temporalio import activity

from titlescan.core.exceptions import describe_failure
from titlescan.services.analysis_service import AnalysisService
from titlescan.services.pipeline.context import ProgressEvent


def _heartbeat(event: ProgressEvent) -> None:
    activity.heartbeat(event.to_dict())


@activity.defn(name="run_property_analysis")
async def run_property_analysis(payload: Dict) -> Dict:
    """Download the uploaded PDF(s), run the pipeline and store the report."""
    analysis_id = payload["analysisId"]
    key = payload["key"]
    activity.logger.info(
        f"Starting property analysis {analysis_id}",
        extra={"analysis_id": analysis_id, "key": key, "attempt": activity.info().attempt},
    )

    try:
        result = await AnalysisService().analyze_stored_document(
            analysis_id=analysis_id,
            key=key,
            file_name=payload.get("fileName"),
            on_progress=_heartbeat,
        )
    except Exception as e:
        activity.logger.error(f"Property analysis {analysis_id} failed: {describe_failure(e)}", exc_info=True)
        raise

    activity.logger.info(f"Property analysis {analysis_id} complete", extra=result)
    return result
