"""Tests for the pipeline controller."""

import json
import re
from unittest.mock import AsyncMock, MagicMock

import pytest

from titlescan.core.exceptions import ConfigurationError
from titlescan.schemas.analysis import DocumentAnalysisOutcome, TitleChainEvent
from titlescan.services.pipeline.context import AnalysisStage
from titlescan.services.pipeline.orchestrator import StageOrchestrator, create_strategy
from titlescan.services.pipeline.strategies.batched import BatchThenSynthesizeStrategy
from titlescan.services.pipeline.strategies.segmented import SegmentThenAnalyzeStrategy


def test_create_strategy_by_shape():
    llm = MagicMock()
    assert isinstance(create_strategy("segmented", llm), SegmentThenAnalyzeStrategy)
    assert isinstance(create_strategy(" Batched ", llm), BatchThenSynthesizeStrategy)


def test_unknown_shape_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        create_strategy("streaming", MagicMock())


@pytest.mark.asyncio
async def test_run_finalizes_and_reports_completion(two_file_inputs, make_pages):
    strategy = MagicMock()
    strategy.name = "stub"
    strategy.analyze = AsyncMock(
        return_value=DocumentAnalysisOutcome(
            input_files=two_file_inputs,
            title_chain_events=[
                TitleChainEvent(event_id="tc_0", order=0, date="2020-01-05", document_type="Gift Deed"),
                TitleChainEvent(event_id="tc_1", order=1, date="2015-03-10", document_type="Sale Deed"),
            ],
        )
    )
    events = []

    outcome = await StageOrchestrator(MagicMock(), strategy=strategy).run(
        two_file_inputs, make_pages(two_file_inputs), on_progress=events.append
    )

    assert [e.document_type for e in outcome.title_chain_events] == ["Sale Deed", "Gift Deed"]
    assert [e.stage for e in events] == [AnalysisStage.FINALIZING, AnalysisStage.DONE]
    context = strategy.analyze.call_args.args[0]
    assert context.file_label == "deeds.pdf, tax.pdf"
    assert context.total_pages == 13


@pytest.mark.asyncio
async def test_segmented_run_end_to_end(two_file_inputs, make_pages, scripted_llm):
    details = {
        "Gift Deed": {
            "summary": "Gift.",
            "titleChainEvent": {"date": "2020-01-05", "transferor": "Jane", "transferee": "Mark"},
        },
        "Sale Deed": {
            "summary": "Sale.",
            "titleChainEvent": {"date": "2015-03-10", "transferor": "John", "transferee": "Jane"},
        },
    }

    def responder(prompt, images):
        if "Your ONLY task is to identify" in prompt:
            # Identified out of chronological order on purpose
            return json.dumps([
                {"documentType": "Gift Deed", "sourceFileName": "deeds.pdf", "startPage": 1, "endPage": 4},
                {"documentType": "Sale Deed", "sourceFileName": "deeds.pdf", "startPage": 5, "endPage": 10},
            ])
        doc_type = re.search(r'identified as a "([^"]+)"', prompt).group(1)
        return json.dumps(details[doc_type])

    llm = scripted_llm(responder)
    orchestrator = StageOrchestrator(llm, strategy=SegmentThenAnalyzeStrategy(llm))

    outcome = await orchestrator.run(two_file_inputs, make_pages(two_file_inputs))

    events = outcome.title_chain_events
    assert [e.transferor for e in events] == ["John", "Jane"]
    assert [e.order for e in events] == [0, 1]
    assert events[0].related_document_id == "doc_deeds.pdf_idx1"
    # Every event still points at an existing document
    assert {e.related_document_id for e in events} <= set(outcome.document_ids)
    assert len(outcome.unsupported_pages) == 3
