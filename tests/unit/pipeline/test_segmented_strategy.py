"""Unit tests for the segment-then-analyze pipeline shape."""

import asyncio
import json
import re
from unittest.mock import AsyncMock, MagicMock

import pytest

from titlescan.core.exceptions import (
    DocumentLoadError,
    InferenceProviderError,
    InvalidCredentialsError,
    SegmentationFailedError,
)
from titlescan.schemas.analysis import DocumentStatus, InputFile, Severity
from titlescan.services.pipeline.context import AnalysisRunContext, AnalysisStage
from titlescan.services.pipeline.strategies.segmented import SegmentThenAnalyzeStrategy, segment_entries

IDENTIFY_MARKER = "Your ONLY task is to identify"

SEGMENTS = [
    {"documentType": "Sale Deed", "sourceFileName": "deeds.pdf", "startPage": 1, "endPage": 6},
    {"documentType": "Gift Deed", "sourceFileName": "deeds.pdf", "startPage": 7, "endPage": 10},
    {"documentType": "Tax Receipt", "sourceFileName": "tax.pdf", "startPage": 1, "endPage": 3},
]

DETAILS = {
    "Sale Deed": {
        "summary": "Sale of the plot by John Doe to Jane Smith.",
        "date": "2015-03-10",
        "partiesInvolved": ["John Doe (Seller)", "Jane Smith (Buyer)"],
        "titleChainEvent": {
            "date": "2015-03-10",
            "documentType": "Sale Deed",
            "transferor": "John Doe",
            "transferee": "Jane Smith",
            "summaryOfTransaction": "Sale for consideration.",
        },
    },
    "Gift Deed": {
        "summary": "Gift of the plot by Jane Smith to Mark Smith.",
        "date": "2020-01-05",
        "titleChainEvent": {
            "date": "2020-01-05",
            "documentType": "Gift Deed",
            "transferor": "Jane Smith",
            "transferee": "Mark Smith",
            "summaryOfTransaction": "Gift to son.",
        },
    },
    "Tax Receipt": {
        "summary": "Property tax paid for 2021.",
        "date": "2021-04-01",
        "redFlags": [
            {"description": "Tax paid in the name of the previous owner.", "severity": "moderate", "suggestion": "Ask for mutation records."},
            {"severity": "High"},
        ],
    },
}


def _document_type(prompt: str) -> str:
    return re.search(r'identified as a "([^"]+)"', prompt).group(1)


def make_responder(segments=None, details=None, fail_types=(), error=None):
    segments = SEGMENTS if segments is None else segments
    details = DETAILS if details is None else details
    calls = []

    def responder(prompt, images):
        if IDENTIFY_MARKER in prompt:
            calls.append(("identify", len(images)))
            return json.dumps({"documents": segments})
        doc_type = _document_type(prompt)
        calls.append((doc_type, len(images)))
        if doc_type in fail_types:
            raise error or InferenceProviderError("model overloaded")
        return "```json\n" + json.dumps(details[doc_type]) + "\n```"

    responder.calls = calls
    return responder


@pytest.fixture
def context(two_file_inputs, make_pages):
    return AnalysisRunContext(input_files=two_file_inputs, pages=make_pages(two_file_inputs))


@pytest.mark.asyncio
async def test_two_files_three_documents(context, scripted_llm):
    responder = make_responder()
    strategy = SegmentThenAnalyzeStrategy(scripted_llm(responder), max_concurrency=1)

    outcome = await strategy.analyze(context)

    docs = outcome.processed_documents
    assert [d.document_id for d in docs] == ["doc_deeds.pdf_idx0", "doc_deeds.pdf_idx1", "doc_tax.pdf_idx2"]
    assert [d.page_range_in_source_file for d in docs] == ["Pages 1-6", "Pages 7-10", "Pages 1-3"]
    assert [d.original_image_index for d in docs] == [0, 6, 10]
    assert all(d.status == DocumentStatus.PROCESSED for d in docs)
    assert docs[0].parties_involved == "John Doe (Seller), Jane Smith (Buyer)"

    # One identification call over all pages, then one call per document over its own pages
    assert responder.calls == [("identify", 13), ("Sale Deed", 6), ("Gift Deed", 4), ("Tax Receipt", 3)]

    events = outcome.title_chain_events
    assert [e.event_id for e in events] == ["tc_event_0", "tc_event_1"]
    assert [e.related_document_id for e in events] == ["doc_deeds.pdf_idx0", "doc_deeds.pdf_idx1"]

    assert len(outcome.red_flags) == 1
    flag = outcome.red_flags[0]
    assert flag.red_flag_id == "rf_0"
    assert flag.severity == Severity.MEDIUM
    assert flag.related_document_ids == ["doc_tax.pdf_idx2"]

    assert outcome.unsupported_pages == []
    assert outcome.task_errors == {}


@pytest.mark.asyncio
async def test_concurrent_analysis_keeps_segment_order(context, scripted_llm):
    strategy = SegmentThenAnalyzeStrategy(scripted_llm(make_responder()), max_concurrency=3)

    outcome = await strategy.analyze(context)

    assert [d.document_type for d in outcome.processed_documents] == ["Sale Deed", "Gift Deed", "Tax Receipt"]
    assert [e.document_type for e in outcome.title_chain_events] == ["Sale Deed", "Gift Deed"]


@pytest.mark.asyncio
async def test_single_page_segment_range(two_file_inputs, make_pages, scripted_llm):
    segments = [{"documentType": "Tax Receipt", "sourceFileName": "tax.pdf", "startPage": 2, "endPage": 2}]
    context = AnalysisRunContext(input_files=two_file_inputs, pages=make_pages(two_file_inputs))
    strategy = SegmentThenAnalyzeStrategy(scripted_llm(make_responder(segments=segments)))

    outcome = await strategy.analyze(context)

    doc = outcome.processed_documents[0]
    assert doc.page_range_in_source_file == "Page 2"
    assert doc.original_image_index == 11
    # Every page outside the segment is reported
    assert len(outcome.unsupported_pages) == 12
    assert all(p.reason == "Page was not attributed to any identified document" for p in outcome.unsupported_pages)


@pytest.mark.asyncio
async def test_segment_failure_becomes_unsupported_document(context, scripted_llm):
    strategy = SegmentThenAnalyzeStrategy(scripted_llm(make_responder(fail_types=("Gift Deed",))))

    outcome = await strategy.analyze(context)

    gift = outcome.processed_documents[1]
    assert gift.status == DocumentStatus.UNSUPPORTED
    assert "Detailed analysis failed" in gift.unsupported_reason
    assert gift.summary == ""
    # The other documents are unaffected
    assert outcome.processed_documents[0].status == DocumentStatus.PROCESSED
    assert outcome.processed_documents[2].status == DocumentStatus.PROCESSED
    assert [e.related_document_id for e in outcome.title_chain_events] == ["doc_deeds.pdf_idx0"]


@pytest.mark.asyncio
async def test_missing_summary_is_unsupported(context, scripted_llm):
    details = {**DETAILS, "Tax Receipt": {"date": "2021-04-01"}}
    strategy = SegmentThenAnalyzeStrategy(scripted_llm(make_responder(details=details)))

    outcome = await strategy.analyze(context)

    tax = outcome.processed_documents[2]
    assert tax.status == DocumentStatus.UNSUPPORTED
    assert tax.unsupported_reason == "Detailed analysis returned no summary"


@pytest.mark.asyncio
async def test_invalid_credentials_abort_the_run(context, scripted_llm):
    responder = make_responder(fail_types=("Sale Deed",), error=InvalidCredentialsError("API key not valid"))
    strategy = SegmentThenAnalyzeStrategy(scripted_llm(responder))

    with pytest.raises(InvalidCredentialsError):
        await strategy.analyze(context)


@pytest.mark.asyncio
async def test_out_of_range_segment_is_skipped(context, scripted_llm):
    segments = SEGMENTS[:2] + [
        {"documentType": "Tax Receipt", "sourceFileName": "tax.pdf", "startPage": 1, "endPage": 5}
    ]
    strategy = SegmentThenAnalyzeStrategy(scripted_llm(make_responder(segments=segments)))

    outcome = await strategy.analyze(context)

    assert [d.document_type for d in outcome.processed_documents] == ["Sale Deed", "Gift Deed"]
    assert [(p.source_file_name, p.page_number_in_source_file) for p in outcome.unsupported_pages] == [
        ("tax.pdf", 1),
        ("tax.pdf", 2),
        ("tax.pdf", 3),
    ]


@pytest.mark.asyncio
async def test_unknown_file_and_inverted_ranges_are_skipped(context, scripted_llm):
    segments = SEGMENTS + [
        {"documentType": "Lease", "sourceFileName": "missing.pdf", "startPage": 1, "endPage": 1},
        {"documentType": "Lease", "sourceFileName": "deeds.pdf", "startPage": 5, "endPage": 2},
    ]
    strategy = SegmentThenAnalyzeStrategy(scripted_llm(make_responder(segments=segments)))

    outcome = await strategy.analyze(context)

    assert len(outcome.processed_documents) == 3


@pytest.mark.asyncio
async def test_only_inverted_segments_leave_every_page_unsupported(context, scripted_llm):
    segments = [{"documentType": "Tax Receipt", "sourceFileName": "tax.pdf", "startPage": 3, "endPage": 2}]
    responder = make_responder(segments=segments)
    strategy = SegmentThenAnalyzeStrategy(scripted_llm(responder))

    outcome = await strategy.analyze(context)

    assert outcome.processed_documents == []
    assert len(outcome.unsupported_pages) == 13
    assert responder.calls == [("identify", 13)]


@pytest.mark.asyncio
async def test_short_first_file_offsets(make_pages, scripted_llm):
    input_files = [InputFile(name="sale.pdf", total_pages=3), InputFile(name="lease.pdf", total_pages=10)]
    segments = [
        {"documentType": "Sale Deed", "sourceFileName": "sale.pdf", "startPage": 1, "endPage": 3},
        {"documentType": "Lease", "sourceFileName": "lease.pdf", "startPage": 1, "endPage": 10},
    ]
    details = {
        "Sale Deed": DETAILS["Sale Deed"],
        "Lease": {"summary": "Ten year lease of the ground floor.", "date": "2019-07-01"},
    }
    responder = make_responder(segments=segments, details=details)
    context = AnalysisRunContext(input_files=input_files, pages=make_pages(input_files))
    strategy = SegmentThenAnalyzeStrategy(scripted_llm(responder), max_concurrency=1)

    outcome = await strategy.analyze(context)

    docs = outcome.processed_documents
    assert [d.original_image_index for d in docs] == [0, 3]
    assert [d.page_range_in_source_file for d in docs] == ["Pages 1-3", "Pages 1-10"]
    assert [d.document_id for d in docs] == ["doc_sale.pdf_idx0", "doc_lease.pdf_idx1"]
    assert responder.calls == [("identify", 13), ("Sale Deed", 3), ("Lease", 10)]
    assert outcome.unsupported_pages == []


@pytest.mark.asyncio
async def test_fatal_segment_error_stops_remaining_segments(two_file_inputs, make_pages):
    segments = [
        {"documentType": f"Notice {n}", "sourceFileName": "deeds.pdf", "startPage": n, "endPage": n}
        for n in range(1, 6)
    ]
    calls = []

    async def generate_content(contents, system_instruction=None, generation_config=None):
        prompt = contents[0]
        calls.append(prompt)
        if IDENTIFY_MARKER in prompt:
            return json.dumps({"documents": segments})
        await asyncio.sleep(0.01)
        raise InvalidCredentialsError("API key not valid")

    llm = MagicMock()
    llm.generate_content = AsyncMock(side_effect=generate_content)
    progress = []
    context = AnalysisRunContext(
        input_files=two_file_inputs,
        pages=make_pages(two_file_inputs),
        on_progress=progress.append,
    )
    strategy = SegmentThenAnalyzeStrategy(llm, max_concurrency=1)

    with pytest.raises(InvalidCredentialsError):
        await strategy.analyze(context)
    calls_when_raised = len(calls)
    progress_when_raised = len(progress)

    await asyncio.sleep(0.2)

    assert calls_when_raised == 2
    assert len(calls) == calls_when_raised
    assert len(progress) == progress_when_raised


@pytest.mark.asyncio
async def test_zero_segments_fails_the_run(context, scripted_llm):
    strategy = SegmentThenAnalyzeStrategy(scripted_llm(make_responder(segments=[])))

    with pytest.raises(SegmentationFailedError):
        await strategy.analyze(context)


@pytest.mark.asyncio
async def test_unparsable_identification_fails_the_run(context, scripted_llm):
    strategy = SegmentThenAnalyzeStrategy(scripted_llm(lambda prompt, images: "I cannot help with that."))

    with pytest.raises(SegmentationFailedError):
        await strategy.analyze(context)


@pytest.mark.asyncio
async def test_render_failures_are_reported_and_not_sent(two_file_inputs, make_pages, scripted_llm):
    responder = make_responder()
    context = AnalysisRunContext(input_files=two_file_inputs, pages=make_pages(two_file_inputs, failed=(4,)))
    strategy = SegmentThenAnalyzeStrategy(scripted_llm(responder))

    outcome = await strategy.analyze(context)

    assert responder.calls[0] == ("identify", 12)
    assert responder.calls[1] == ("Sale Deed", 5)
    assert len(outcome.unsupported_pages) == 1
    page = outcome.unsupported_pages[0]
    assert (page.source_file_name, page.page_number_in_source_file) == ("deeds.pdf", 5)
    assert page.reason.startswith("Page could not be rendered")


@pytest.mark.asyncio
async def test_no_rendered_pages_is_a_load_error(two_file_inputs, make_pages, scripted_llm):
    context = AnalysisRunContext(
        input_files=two_file_inputs,
        pages=make_pages(two_file_inputs, failed=tuple(range(13))),
    )
    llm = scripted_llm(make_responder())
    strategy = SegmentThenAnalyzeStrategy(llm)

    with pytest.raises(DocumentLoadError):
        await strategy.analyze(context)
    llm.generate_content.assert_not_called()


@pytest.mark.asyncio
async def test_progress_events_are_reported(two_file_inputs, make_pages, scripted_llm):
    events = []
    context = AnalysisRunContext(
        input_files=two_file_inputs,
        pages=make_pages(two_file_inputs),
        on_progress=events.append,
    )
    strategy = SegmentThenAnalyzeStrategy(scripted_llm(make_responder()))

    await strategy.analyze(context)

    stages = [e.stage for e in events]
    assert stages[0] == AnalysisStage.IDENTIFYING
    assert stages.count(AnalysisStage.ANALYZING_SEGMENTS) == 4
    assert (events[-1].completed, events[-1].total) == (3, 3)


def test_segment_entries_accepts_list_and_wrapped_forms():
    assert segment_entries([{"a": 1}]) == [{"a": 1}]
    assert segment_entries({"documents": [1]}) == [1]
    assert segment_entries({"segments": [2]}) == [2]
    assert segment_entries({"other": []}) is None
