"""Per-run pipeline state.

Everything a strategy accumulates while analysing one set of files lives on
an ``AnalysisRunContext`` so concurrent runs in one process never share
counters or progress callbacks.
"""

import inspect
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from titlescan.models.page_image import PageImage
from titlescan.schemas.analysis import (
    DocumentAnalysisOutcome,
    InputFile,
    ProcessedDocument,
    PropertySummary,
    RedFlagItem,
    TaskError,
    TitleChainEvent,
    UnsupportedPage,
)
from titlescan.utils.logging import get_logger

LOGGER = get_logger(__name__)


class AnalysisStage(str, Enum):
    """Pipeline stages reported through progress events."""
    PENDING = "PENDING"
    IDENTIFYING = "IDENTIFYING"
    ANALYZING_SEGMENTS = "ANALYZING_SEGMENTS"
    PROCESSING_BATCHES = "PROCESSING_BATCHES"
    SYNTHESIZING = "SYNTHESIZING"
    MERGING = "MERGING"
    FINALIZING = "FINALIZING"
    DONE = "DONE"


@dataclass(frozen=True)
class ProgressEvent:
    stage: AnalysisStage
    message: str
    completed: Optional[int] = None
    total: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage.value,
            "message": self.message,
            "completed": self.completed,
            "total": self.total,
        }


ProgressCallback = Callable[[ProgressEvent], Union[None, Awaitable[None]]]


@dataclass
class AnalysisRunContext:
    """Mutable state for one analysis run."""

    input_files: List[InputFile]
    pages: List[PageImage]
    file_label: str = ""
    on_progress: Optional[ProgressCallback] = None

    stage: AnalysisStage = AnalysisStage.PENDING
    property_summary: Optional[PropertySummary] = None
    processed_documents: List[ProcessedDocument] = field(default_factory=list)
    title_chain_events: List[TitleChainEvent] = field(default_factory=list)
    red_flags: List[RedFlagItem] = field(default_factory=list)
    unsupported_pages: List[UnsupportedPage] = field(default_factory=list)
    task_errors: Dict[str, TaskError] = field(default_factory=dict)

    _event_counter: int = field(default=0, init=False, repr=False)
    _red_flag_counter: int = field(default=0, init=False, repr=False)

    def __post_init__(self):
        if not self.file_label:
            self.file_label = ", ".join(f.name for f in self.input_files)

    @property
    def total_pages(self) -> int:
        return sum(f.total_pages for f in self.input_files)

    @property
    def rendered_pages(self) -> List[PageImage]:
        return [page for page in self.pages if page.is_rendered]

    def file_offsets(self) -> Dict[str, int]:
        """Global index of each file's first page (cumulative page counts)."""
        offsets: Dict[str, int] = {}
        running = 0
        for input_file in self.input_files:
            offsets.setdefault(input_file.name, running)
            running += input_file.total_pages
        return offsets

    def file_page_counts(self) -> Dict[str, int]:
        return {f.name: f.total_pages for f in self.input_files}

    def next_event_order(self) -> int:
        order = self._event_counter
        self._event_counter += 1
        return order

    def next_red_flag_index(self) -> int:
        index = self._red_flag_counter
        self._red_flag_counter += 1
        return index

    async def report_progress(
        self,
        stage: AnalysisStage,
        message: str,
        completed: Optional[int] = None,
        total: Optional[int] = None,
    ) -> None:
        """Move to ``stage`` and notify the progress callback, if any."""
        self.stage = stage
        event = ProgressEvent(stage=stage, message=message, completed=completed, total=total)
        LOGGER.info(
            f"[{stage.value}] {message}",
            extra={"file_label": self.file_label, "completed": completed, "total": total},
        )
        if self.on_progress is None:
            return
        result = self.on_progress(event)
        if inspect.isawaitable(result):
            await result

    def build_outcome(self) -> DocumentAnalysisOutcome:
        return DocumentAnalysisOutcome(
            property_summary=self.property_summary,
            input_files=list(self.input_files),
            processed_documents=list(self.processed_documents),
            title_chain_events=list(self.title_chain_events),
            red_flags=list(self.red_flags),
            unsupported_pages=list(self.unsupported_pages),
            task_errors=dict(self.task_errors),
        )
