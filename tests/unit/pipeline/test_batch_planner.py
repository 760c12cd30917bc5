"""Tests for fixed-size page batching."""

import pytest

from titlescan.schemas.analysis import InputFile
from titlescan.services.pipeline.batch_planner import count_batches, plan_batches


def test_25_pages_in_batches_of_10(make_pages):
    pages = make_pages([InputFile(name="bundle.pdf", total_pages=25)])

    batches = list(plan_batches(pages, 10))

    assert [len(b) for b in batches] == [10, 10, 5]
    assert [b.batch_num for b in batches] == [1, 2, 3]
    assert all(b.total_batches == 3 for b in batches)
    assert batches[2].pages[0].global_index == 20


def test_batches_preserve_page_order(make_pages):
    pages = make_pages([InputFile(name="a.pdf", total_pages=4), InputFile(name="b.pdf", total_pages=3)])

    flattened = [page for batch in plan_batches(pages, 3) for page in batch.pages]

    assert flattened == pages


def test_empty_input_yields_no_batches():
    assert list(plan_batches([], 10)) == []
    assert count_batches(0, 10) == 0


def test_exact_multiple(make_pages):
    pages = make_pages([InputFile(name="a.pdf", total_pages=20)])
    assert count_batches(len(pages), 10) == 2


@pytest.mark.parametrize("batch_size", [0, -3])
def test_invalid_batch_size_raises_immediately(make_pages, batch_size):
    pages = make_pages([InputFile(name="a.pdf", total_pages=2)])
    with pytest.raises(ValueError):
        plan_batches(pages, batch_size)


def test_replanning_starts_fresh(make_pages):
    pages = make_pages([InputFile(name="a.pdf", total_pages=5)])
    assert len(list(plan_batches(pages, 2))) == len(list(plan_batches(pages, 2))) == 3
