"""Tests for prompt construction."""

import json

from titlescan.prompts.property_prompts import (
    BATCH_TASKS,
    JSON_ONLY_CONTRACT,
    build_batch_task_prompt,
    build_detailed_analysis_prompt,
    build_identification_prompt,
    build_synthesis_prompt,
    format_file_list,
)
from titlescan.schemas.analysis import InputFile

FILES = [InputFile(name="deeds.pdf", total_pages=10), InputFile(name="tax.pdf", total_pages=3)]


def test_file_list_lines():
    assert format_file_list(FILES) == "- deeds.pdf (10 pages)\n- tax.pdf (3 pages)"


def test_identification_prompt_lists_files_and_total():
    prompt = build_identification_prompt(FILES, 13)

    assert "combined, have 13 pages" in prompt
    assert "- deeds.pdf (10 pages)" in prompt
    assert '"documents"' in prompt
    assert "WITHIN its source file" in prompt
    assert prompt.rstrip().endswith(JSON_ONLY_CONTRACT)


def test_detailed_prompt_names_the_document():
    prompt = build_detailed_analysis_prompt("Sale Deed", "deeds.pdf", 6)

    assert 'identified as a "Sale Deed"' in prompt
    assert '"deeds.pdf"' in prompt
    assert "6 page image(s)" in prompt
    assert "`titleChainEvent`" in prompt
    assert "`redFlags`" in prompt


def test_batch_tasks_are_in_execution_order():
    assert list(BATCH_TASKS) == ["propertySummary", "titleChain", "documentDetails", "redFlags"]


def test_batch_prompt_states_position():
    prompt = build_batch_task_prompt(BATCH_TASKS["redFlags"], "bundle", 25, 2, 3)

    assert "This is BATCH 2 of 3" in prompt
    assert 'named "bundle" which has 25 pages' in prompt
    assert "Generate a `redFlags` array" in prompt


def test_synthesis_prompt_embeds_partials():
    partials = [{"redFlags": []}, {"error": "Failed to process batch 2", "details": "timeout"}]

    prompt = build_synthesis_prompt(BATCH_TASKS["redFlags"], "bundle", partials)

    assert json.dumps(partials, indent=2) in prompt
    assert "must be ignored" in prompt
