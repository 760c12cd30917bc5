"""Request and response schemas for the analysis API."""

from enum import Enum
from typing import List, Optional

from pydantic import Field

from titlescan.schemas.analysis import CamelModel, DocumentAnalysisOutcome, InputFile


class StartAnalysisRequest(CamelModel):
    key: str = Field(..., min_length=1, description="Storage key of the uploaded PDF, or a prefix holding PDFs")
    analysis_id: Optional[str] = Field(None, description="Caller-generated analysis id (defaults to a UUID)")
    file_name: Optional[str] = Field(None, description="Display name (defaults to the key's last segment)")


class StartAnalysisResponse(CamelModel):
    started: bool = True
    analysis_id: str
    workflow_id: str
    message: str = "Analysis started successfully."


class ReportRequest(CamelModel):
    analysis_id: str = Field(..., min_length=1)


class ReportStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETE = "COMPLETE"


class ReportResponse(CamelModel):
    status: ReportStatus
    report: Optional[DocumentAnalysisOutcome] = None


class ImagePartPayload(CamelModel):
    mime_type: str = Field(..., description="Image MIME type, e.g. image/jpeg")
    data: str = Field(..., description="Base64-encoded image bytes")


class AnalyzeRequest(CamelModel):
    input_files: List[InputFile] = Field(..., min_length=1)
    image_parts: List[ImagePartPayload] = Field(..., min_length=1)


class ErrorResponse(CamelModel):
    error: str
    details: Optional[str] = None


class HealthCheckResponse(CamelModel):
    status: str = Field(..., description="Health check status")
    version: str = Field(..., description="Running application version")
    service: str = Field(..., description="Service name")
    pipeline_shape: str = Field(..., description="Configured pipeline shape")
