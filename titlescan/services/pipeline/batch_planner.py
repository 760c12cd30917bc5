"""Fixed-size batching of page images for batched analysis tasks."""

import math
from dataclasses import dataclass
from typing import Iterator, List, Sequence

from titlescan.models.page_image import PageImage

DEFAULT_BATCH_SIZE = 10


@dataclass(frozen=True)
class PageBatch:
    """A slice of pages plus its position among all batches (1-based)."""

    batch_num: int
    total_batches: int
    pages: List[PageImage]

    def __len__(self) -> int:
        return len(self.pages)


def count_batches(page_count: int, batch_size: int = DEFAULT_BATCH_SIZE) -> int:
    if batch_size < 1:
        raise ValueError(f"batch_size must be at least 1, got {batch_size}")
    return math.ceil(page_count / batch_size)


def plan_batches(pages: Sequence[PageImage], batch_size: int = DEFAULT_BATCH_SIZE) -> Iterator[PageBatch]:
    """Lazily split pages into consecutive batches.

    Calling again re-plans from scratch; no state is kept between calls.

    Args:
        pages: Ordered page images
        batch_size: Maximum pages per batch

    Yields:
        PageBatch objects in page order

    Raises:
        ValueError: If batch_size is less than 1
    """
    # Validate eagerly so a bad size fails at the call site, not on first next()
    total_batches = count_batches(len(pages), batch_size)
    return _iter_batches(pages, batch_size, total_batches)


def _iter_batches(pages: Sequence[PageImage], batch_size: int, total_batches: int) -> Iterator[PageBatch]:
    for batch_index in range(total_batches):
        start = batch_index * batch_size
        yield PageBatch(
            batch_num=batch_index + 1,
            total_batches=total_batches,
            pages=list(pages[start:start + batch_size]),
        )
