"""Property analysis API endpoints."""

import binascii
from typing import Annotated, List, Union

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from temporalio.client import Client as TemporalClient

from titlescan.core.exceptions import AppError, ReportNotFoundError, StorageError
from titlescan.core.temporal_client import get_temporal_client
from titlescan.models.page_image import ImagePart
from titlescan.schemas.analysis import DocumentAnalysisOutcome
from titlescan.schemas.api import (
    AnalyzeRequest,
    ErrorResponse,
    ReportRequest,
    ReportResponse,
    ReportStatus,
    StartAnalysisRequest,
    StartAnalysisResponse,
)
from titlescan.services.analysis_service import AnalysisService
from titlescan.utils.logging import get_logger
from titlescan.utils.responses import create_error_response, error_response_for

LOGGER = get_logger(__name__)

router = APIRouter()


def get_analysis_service() -> AnalysisService:
    return AnalysisService()


@router.post(
    "/start",
    response_model=StartAnalysisResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start a background property analysis",
    operation_id="start_property_analysis",
)
async def start_analysis(
    payload: StartAnalysisRequest,
    service: Annotated[AnalysisService, Depends(get_analysis_service)],
    temporal_client: Annotated[TemporalClient, Depends(get_temporal_client)],
) -> StartAnalysisResponse:
    """Start analysing an uploaded PDF; poll the report endpoint for the result."""
    try:
        result = await service.start_analysis(
            key=payload.key,
            analysis_id=payload.analysis_id,
            file_name=payload.file_name,
            temporal_client=temporal_client,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    return StartAnalysisResponse(analysis_id=result["analysisId"], workflow_id=result["workflowId"])


async def _report_response(analysis_id: str, service: AnalysisService) -> Union[ReportResponse, JSONResponse]:
    try:
        report = await service.get_report(analysis_id)
    except ReportNotFoundError:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"status": ReportStatus.PENDING.value})
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except StorageError as e:
        LOGGER.error(f"Failed to load report {analysis_id}: {e}")
        return create_error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to retrieve report.", e.message)

    return ReportResponse(status=ReportStatus.COMPLETE, report=report)


@router.get(
    "/reports/{analysis_id}",
    response_model=ReportResponse,
    response_model_exclude_none=True,
    responses={404: {"description": "Report not ready yet"}},
    summary="Poll for an analysis report",
    operation_id="get_property_analysis_report",
)
async def get_report(
    analysis_id: str,
    service: Annotated[AnalysisService, Depends(get_analysis_service)],
):
    return await _report_response(analysis_id, service)


@router.post(
    "/report",
    response_model=ReportResponse,
    response_model_exclude_none=True,
    responses={404: {"description": "Report not ready yet"}},
    summary="Poll for an analysis report (body form)",
    operation_id="post_property_analysis_report",
)
async def post_report(
    payload: ReportRequest,
    service: Annotated[AnalysisService, Depends(get_analysis_service)],
):
    return await _report_response(payload.analysis_id, service)


@router.post(
    "/analyze",
    response_model=DocumentAnalysisOutcome,
    response_model_exclude_none=True,
    responses={
        400: {"model": ErrorResponse},
        413: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
    summary="Analyse inline page images synchronously",
    operation_id="analyze_property_images",
)
async def analyze(
    payload: AnalyzeRequest,
    service: Annotated[AnalysisService, Depends(get_analysis_service)],
):
    """Run the whole pipeline in the request; suitable for small uploads only."""
    try:
        image_parts: List[ImagePart] = [
            ImagePart.from_base64(part.mime_type, part.data) for part in payload.image_parts
        ]
    except (binascii.Error, ValueError) as e:
        return create_error_response(status.HTTP_400_BAD_REQUEST, "Invalid image data.", str(e))

    try:
        return await service.analyze_inline(payload.input_files, image_parts)
    except ValueError as e:
        return create_error_response(status.HTTP_400_BAD_REQUEST, "Invalid request.", str(e))
    except AppError as e:
        LOGGER.error(f"Synchronous analysis failed: {e}", exc_info=True)
        return error_response_for(e)
