"""Post-processing applied to every outcome before it is stored.

Guarantees unique ids, drops references to documents that do not exist
and (optionally) re-sorts the title chain chronologically.
"""

import re
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Set, Tuple

from titlescan.schemas.analysis import DocumentAnalysisOutcome, ProcessedDocument
from titlescan.utils.logging import get_logger

LOGGER = get_logger(__name__)

DATE_FORMATS = [
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%d-%m-%Y",
    "%d/%m/%Y",
    "%d.%m.%Y",
    "%d %B %Y",
    "%d %b %Y",
    "%B %d, %Y",
    "%b %d, %Y",
    "%B %Y",
    "%Y-%m",
]

_YEAR_PATTERN = re.compile(r"\b(1[6-9]\d{2}|20\d{2})\b")
_GENERATED_EVENT_ID = re.compile(r"tc_event_\d+")


def parse_event_date(value: Optional[str]) -> Optional[date]:
    """Parse a model-written date, returning None when it cannot be read.

    Day-first formats are tried before month-first; a bare year maps to
    1 January of that year.
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text or text.lower() in ("unknown", "n/a", "na", "none", "-"):
        return None

    # ISO timestamps
    candidate = text.split("T")[0] if re.match(r"^\d{4}-\d{2}-\d{2}T", text) else text

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(candidate, fmt).date()
        except ValueError:
            continue

    match = _YEAR_PATTERN.search(text)
    if match:
        return date(int(match.group(1)), 1, 1)

    LOGGER.debug(f"Failed to parse date value: {value}")
    return None


def _unique(value: str, seen: Set[str]) -> str:
    if value not in seen:
        seen.add(value)
        return value
    suffix = 2
    while f"{value}_{suffix}" in seen:
        suffix += 1
    unique_value = f"{value}_{suffix}"
    seen.add(unique_value)
    return unique_value


class DocumentReferenceIndex:
    """Looks up document ids by (source file, document type).

    Used to link title chain events and red flags produced by one batched
    task to the documents produced by another.
    """

    def __init__(self, documents: Iterable[ProcessedDocument]):
        self.ids: Set[str] = set()
        self._by_file_and_type: Dict[Tuple[str, str], List[str]] = {}
        self._by_type: Dict[str, List[str]] = {}
        for doc in documents:
            self.ids.add(doc.document_id)
            key = (doc.source_file_name.strip().lower(), doc.document_type.strip().lower())
            self._by_file_and_type.setdefault(key, []).append(doc.document_id)
            self._by_type.setdefault(doc.document_type.strip().lower(), []).append(doc.document_id)

    def resolve(
        self,
        document_id: Optional[str] = None,
        source_file_name: Optional[str] = None,
        document_type: Optional[str] = None,
    ) -> Optional[str]:
        """Return an existing document id, or None when no unambiguous match exists."""
        if document_id and document_id in self.ids:
            return document_id
        if not document_type:
            return None

        doc_type = str(document_type).strip().lower()
        if source_file_name:
            candidates = self._by_file_and_type.get((str(source_file_name).strip().lower(), doc_type), [])
        else:
            candidates = self._by_type.get(doc_type, [])

        if len(candidates) == 1:
            return candidates[0]
        return None


class OutcomeFinalizer:
    """Enforces id and reference invariants on a finished outcome."""

    def __init__(self, sort_title_chain: bool = True):
        self.sort_title_chain = sort_title_chain

    def finalize(self, outcome: DocumentAnalysisOutcome) -> DocumentAnalysisOutcome:
        self.deduplicate_document_ids(outcome)
        self.drop_dangling_references(outcome)
        if self.sort_title_chain:
            self.sort_events_chronologically(outcome)
        else:
            self.renumber_events(outcome)
        self.deduplicate_event_ids(outcome)
        self.deduplicate_red_flag_ids(outcome)
        return outcome

    def deduplicate_document_ids(self, outcome: DocumentAnalysisOutcome) -> None:
        # First occurrence keeps its id so existing references stay attached to it
        seen: Set[str] = set()
        for doc in outcome.processed_documents:
            unique_id = _unique(doc.document_id, seen)
            if unique_id != doc.document_id:
                LOGGER.warning(f"Duplicate documentId {doc.document_id} renamed to {unique_id}")
                doc.document_id = unique_id

    def drop_dangling_references(self, outcome: DocumentAnalysisOutcome) -> None:
        known = set(outcome.document_ids)

        for event in outcome.title_chain_events:
            if event.related_document_id and event.related_document_id not in known:
                LOGGER.info(f"Dropping dangling relatedDocumentId {event.related_document_id} on {event.event_id}")
                event.related_document_id = None

        for flag in outcome.red_flags:
            if not flag.related_document_ids:
                continue
            kept: List[str] = []
            for document_id in flag.related_document_ids:
                if document_id in known and document_id not in kept:
                    kept.append(document_id)
            if len(kept) != len(flag.related_document_ids):
                LOGGER.info(f"Dropped dangling relatedDocumentIds on {flag.red_flag_id}")
            flag.related_document_ids = kept or None

    def sort_events_chronologically(self, outcome: DocumentAnalysisOutcome) -> None:
        """Stable sort by date; unreadable dates go last in their original order."""
        indexed = list(enumerate(outcome.title_chain_events))

        def sort_key(item):
            position, event = item
            parsed = parse_event_date(event.date)
            return (parsed is None, parsed or date.max, position)

        outcome.title_chain_events = [event for _, event in sorted(indexed, key=sort_key)]
        self.renumber_events(outcome)

    def renumber_events(self, outcome: DocumentAnalysisOutcome) -> None:
        """Set ``order`` to each event's position.

        Generated ``tc_event_N`` ids follow the new order; any other id is kept.
        """
        for order, event in enumerate(outcome.title_chain_events):
            event.order = order
            if _GENERATED_EVENT_ID.fullmatch(event.event_id):
                event.event_id = f"tc_event_{order}"

    def deduplicate_event_ids(self, outcome: DocumentAnalysisOutcome) -> None:
        seen: Set[str] = set()
        for event in outcome.title_chain_events:
            event.event_id = _unique(event.event_id, seen)

    def deduplicate_red_flag_ids(self, outcome: DocumentAnalysisOutcome) -> None:
        seen: Set[str] = set()
        for flag in outcome.red_flags:
            flag.red_flag_id = _unique(flag.red_flag_id, seen)
