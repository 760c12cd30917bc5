"""In-memory page image types shared by the rasterizer, planner and model clients."""

import base64
from dataclasses import dataclass
from typing import List, Optional


@dataclass(frozen=True)
class ImagePart:
    """One inline image sent to the model alongside the prompt text."""

    mime_type: str
    data: bytes

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def to_data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.to_base64()}"

    @classmethod
    def from_base64(cls, mime_type: str, data: str) -> "ImagePart":
        return cls(mime_type=mime_type, data=base64.b64decode(data))


@dataclass(frozen=True)
class PageImage:
    """A single rendered PDF page.

    Attributes:
        source_file_name: Name of the PDF the page came from
        page_number: 1-based page number within the source file
        global_index: 0-based position across all input files of the run
        image_bytes: Encoded image (empty when rendering failed)
        mime_type: Image MIME type
        render_error: Set when the page could not be rendered
    """

    source_file_name: str
    page_number: int
    global_index: int
    image_bytes: bytes
    mime_type: str = "image/jpeg"
    render_error: Optional[str] = None

    @property
    def is_rendered(self) -> bool:
        return self.render_error is None and bool(self.image_bytes)

    def to_image_part(self) -> ImagePart:
        return ImagePart(mime_type=self.mime_type, data=self.image_bytes)


def to_image_parts(pages: List[PageImage]) -> List[ImagePart]:
    """Convert rendered pages to model image parts, skipping failed renders."""
    return [page.to_image_part() for page in pages if page.is_rendered]
