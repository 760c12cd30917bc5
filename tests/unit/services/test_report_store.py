"""Tests for report persistence."""

import json
from unittest.mock import AsyncMock

import pytest

from titlescan.core.exceptions import ObjectNotFoundError, ReportNotFoundError, StorageError
from titlescan.schemas.analysis import DocumentAnalysisOutcome, InputFile, PropertySummary
from titlescan.services.report_store import ReportStore


@pytest.fixture
def storage() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def store(storage) -> ReportStore:
    return ReportStore(storage=storage, bucket="reports", prefix="reports")


def _outcome() -> DocumentAnalysisOutcome:
    return DocumentAnalysisOutcome(
        property_summary=PropertySummary(current_owner="Mark Smith", property_brief="Plot 12."),
        input_files=[InputFile(name="deeds.pdf", total_pages=10)],
    )


def test_report_key(store):
    assert store.report_key("abc-123") == "reports/abc-123.json"
    assert ReportStore(storage=AsyncMock(), bucket="reports", prefix="").report_key("abc") == "abc.json"


@pytest.mark.parametrize("analysis_id", ["", "../escape", "a/b"])
def test_invalid_ids_are_rejected(store, analysis_id):
    with pytest.raises(ValueError):
        store.report_key(analysis_id)


@pytest.mark.asyncio
async def test_save_uploads_camel_case_json(store, storage):
    key = await store.save("abc", _outcome())

    assert key == "reports/abc.json"
    body, bucket, path = storage.upload_bytes.call_args.args
    assert (bucket, path) == ("reports", "reports/abc.json")
    assert storage.upload_bytes.call_args.kwargs["content_type"] == "application/json"
    assert json.loads(body)["propertySummary"]["currentOwner"] == "Mark Smith"


@pytest.mark.asyncio
async def test_load_round_trip(store, storage):
    storage.download_bytes.return_value = json.dumps(_outcome().to_report()).encode()

    assert await store.load("abc") == _outcome()
    storage.download_bytes.assert_awaited_once_with("reports", "reports/abc.json")


@pytest.mark.asyncio
async def test_missing_report_is_pending(store, storage):
    storage.download_bytes.side_effect = ObjectNotFoundError("Object not found")

    with pytest.raises(ReportNotFoundError):
        await store.load("abc")
    assert await store.exists("abc") is False


@pytest.mark.asyncio
async def test_corrupt_report(store, storage):
    storage.download_bytes.return_value = b"{not json"

    with pytest.raises(StorageError) as exc_info:
        await store.load("abc")
    assert not isinstance(exc_info.value, ReportNotFoundError)
