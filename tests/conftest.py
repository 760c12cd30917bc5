"""Pytest configuration and shared fixtures."""

import os

os.environ.setdefault("GEMINI_API_KEY", "test_gemini_key")
os.environ.setdefault("SUPABASE_URL", "https://storage.example.test")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test_service_role_key")

from typing import Any, Callable, List  # noqa: E402
from unittest.mock import AsyncMock, MagicMock  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from titlescan.main import app  # noqa: E402
from titlescan.models.page_image import PageImage  # noqa: E402
from titlescan.schemas.analysis import InputFile  # noqa: E402


@pytest.fixture
def test_client() -> TestClient:
    """Create FastAPI test client.

    Returns:
        TestClient: FastAPI test client instance
    """
    return TestClient(app)


@pytest.fixture(autouse=True)
def clear_dependency_overrides():
    """Ensure FastAPI dependency overrides are reset between tests."""
    app.dependency_overrides = {}
    yield
    app.dependency_overrides = {}


def build_pages(input_files: List[InputFile], failed: tuple = ()) -> List[PageImage]:
    """Fake rendered pages for ``input_files``; ``failed`` holds global indexes that failed to render."""
    pages: List[PageImage] = []
    for input_file in input_files:
        for page_number in range(1, input_file.total_pages + 1):
            index = len(pages)
            if index in failed:
                pages.append(
                    PageImage(
                        source_file_name=input_file.name,
                        page_number=page_number,
                        global_index=index,
                        image_bytes=b"",
                        render_error="Page could not be rendered: broken stream",
                    )
                )
            else:
                pages.append(
                    PageImage(
                        source_file_name=input_file.name,
                        page_number=page_number,
                        global_index=index,
                        image_bytes=f"{input_file.name}-{page_number}".encode(),
                    )
                )
    return pages


@pytest.fixture
def make_pages() -> Callable[..., List[PageImage]]:
    return build_pages


@pytest.fixture
def two_file_inputs() -> List[InputFile]:
    """A 10-page deed bundle followed by a 3-page tax receipt."""
    return [InputFile(name="deeds.pdf", total_pages=10), InputFile(name="tax.pdf", total_pages=3)]


@pytest.fixture
def scripted_llm() -> Callable[[Callable[[str, List[Any]], str]], MagicMock]:
    """Build a mock LLM client whose answers are computed from the prompt.

    The responder receives the prompt text and the image parts sent with it,
    and returns the raw model text (or raises).
    """

    def factory(responder: Callable[[str, List[Any]], str]) -> MagicMock:
        async def generate_content(contents, system_instruction=None, generation_config=None):
            prompt, *images = contents
            return responder(prompt, images)

        client = MagicMock()
        client.generate_content = AsyncMock(side_effect=generate_content)
        return client

    return factory
