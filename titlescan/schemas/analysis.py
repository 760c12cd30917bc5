"""Pydantic schemas for the property analysis report.

Field names serialise in camelCase so persisted reports keep the report
format consumed by the front end; snake_case is accepted on input too.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_serializer
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serialising with camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DocumentStatus(str, Enum):
    """Outcome of analysing one segment."""
    PROCESSED = "Processed"
    UNSUPPORTED = "Unsupported"


class Severity(str, Enum):
    """Red flag severity."""
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


_SEVERITY_SYNONYMS = {
    "critical": "High",
    "severe": "High",
    "moderate": "Medium",
    "minor": "Low",
}


class InputFile(CamelModel):
    """A source PDF and its page count."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    name: str
    total_pages: int = Field(..., ge=0)


class IdentifiedSegment(CamelModel):
    """One logical document found by the identification stage.

    Page numbers are local to ``source_file_name``; range order and the
    upper bound are checked when the segment is resolved.
    """

    document_type: str = Field(..., min_length=1)
    source_file_name: str = Field(..., min_length=1)
    start_page: int = Field(..., ge=1)
    end_page: int = Field(..., ge=1)

    @property
    def page_count(self) -> int:
        return self.end_page - self.start_page + 1


class ProcessedDocument(CamelModel):
    """A segment after detailed analysis."""

    document_id: str
    source_file_name: str
    original_image_index: int
    document_type: str
    page_range_in_source_file: str
    summary: str = ""
    status: DocumentStatus = DocumentStatus.PROCESSED
    date: Optional[str] = None
    parties_involved: Optional[str] = None
    unsupported_reason: Optional[str] = None

    @field_validator("parties_involved", mode="before")
    @classmethod
    def _join_parties(cls, value: Any) -> Any:
        if isinstance(value, list):
            return ", ".join(str(party) for party in value if party)
        return value


class TitleChainEvent(CamelModel):
    """One ownership-transferring event in the title chain."""

    event_id: str
    order: int = Field(..., ge=0)
    date: str = "Unknown"
    document_type: str
    transferor: str = "Unknown"
    transferee: str = "Unknown"
    property_description: Optional[str] = None
    summary_of_transaction: str = ""
    related_document_id: Optional[str] = None


class RedFlagItem(CamelModel):
    """A due-diligence risk surfaced for human review."""

    red_flag_id: str
    description: str
    severity: Severity
    suggestion: str = ""
    related_document_ids: Optional[List[str]] = None

    @field_validator("severity", mode="before")
    @classmethod
    def _normalise_severity(cls, value: Any) -> Any:
        if isinstance(value, str):
            normalised = value.strip().lower()
            return _SEVERITY_SYNONYMS.get(normalised, normalised.capitalize())
        return value


class UnsupportedPage(CamelModel):
    """A page not attributable to any processed document."""

    source_file_name: str
    page_number_in_source_file: int
    reason: str


class PropertySummary(CamelModel):
    """Top-level property summary."""

    current_owner: str = "Unknown"
    property_brief: str = ""


class TaskError(BaseModel):
    """Placeholder for a batched task whose synthesis failed."""

    error: str
    details: Optional[str] = None


class DocumentAnalysisOutcome(CamelModel):
    """Root aggregate written once to the report store."""

    property_summary: Optional[PropertySummary] = None
    input_files: List[InputFile] = Field(default_factory=list)
    processed_documents: List[ProcessedDocument] = Field(default_factory=list)
    title_chain_events: List[TitleChainEvent] = Field(default_factory=list)
    red_flags: List[RedFlagItem] = Field(default_factory=list)
    unsupported_pages: List[UnsupportedPage] = Field(default_factory=list)
    task_errors: Dict[str, TaskError] = Field(default_factory=dict)

    @model_serializer(mode="wrap")
    def _omit_empty_task_errors(self, handler) -> Dict[str, Any]:
        data = handler(self)
        for key in ("taskErrors", "task_errors"):
            if key in data and not data[key]:
                del data[key]
        return data

    def to_report(self) -> Dict[str, Any]:
        """Serialise to the persisted report shape."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)

    @classmethod
    def from_report(cls, data: Dict[str, Any]) -> "DocumentAnalysisOutcome":
        return cls.model_validate(data)

    @property
    def document_ids(self) -> List[str]:
        return [doc.document_id for doc in self.processed_documents]
