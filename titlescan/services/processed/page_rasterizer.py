"""PDF page rasterization.

Renders every page of a PDF to an encoded image with pypdfium2 and Pillow.
This is the only component that holds rendering resources; each page's
pdfium page, bitmap and PIL image are released before the next page is
rendered so memory stays flat on long documents.
"""

import io
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import pypdfium2 as pdfium

from titlescan.core.config import settings
from titlescan.core.exceptions import DocumentLoadError
from titlescan.models.page_image import PageImage
from titlescan.schemas.analysis import InputFile
from titlescan.utils.logging import get_logger

LOGGER = get_logger(__name__)

_FORMATS = {
    "jpeg": ("JPEG", "image/jpeg"),
    "jpg": ("JPEG", "image/jpeg"),
    "png": ("PNG", "image/png"),
}


@dataclass
class RasterizedFile:
    """Pages rendered from one PDF."""

    input_file: InputFile
    pages: List[PageImage] = field(default_factory=list)

    @property
    def failed_pages(self) -> List[PageImage]:
        return [page for page in self.pages if page.render_error]


class PageRasterizer:
    """Converts PDFs into ordered page images."""

    def __init__(
        self,
        render_scale: Optional[float] = None,
        image_format: Optional[str] = None,
        jpeg_quality: Optional[int] = None,
        warn_pages_per_file: Optional[int] = None,
        warn_total_pages: Optional[int] = None,
    ):
        self.render_scale = render_scale or settings.pipeline.render_scale
        fmt = (image_format or settings.pipeline.image_format).lower()
        if fmt not in _FORMATS:
            raise ValueError(f"Unsupported image format: {fmt}")
        self.pil_format, self.mime_type = _FORMATS[fmt]
        self.jpeg_quality = jpeg_quality or settings.pipeline.jpeg_quality
        self.warn_pages_per_file = warn_pages_per_file or settings.pipeline.warn_pages_per_file
        self.warn_total_pages = warn_total_pages or settings.pipeline.warn_total_pages

    def _encode(self, image) -> bytes:
        buffer = io.BytesIO()
        if self.pil_format == "JPEG":
            if image.mode not in ("RGB", "L"):
                image = image.convert("RGB")
            image.save(buffer, format="JPEG", quality=self.jpeg_quality)
        else:
            image.save(buffer, format="PNG")
        return buffer.getvalue()

    def _render_page(self, pdf: pdfium.PdfDocument, page_index: int) -> bytes:
        page = pdf[page_index]
        bitmap = None
        image = None
        try:
            bitmap = page.render(scale=self.render_scale)
            image = bitmap.to_pil()
            return self._encode(image)
        finally:
            if image is not None:
                image.close()
            if bitmap is not None:
                bitmap.close()
            page.close()

    def rasterize(self, pdf_bytes: bytes, file_name: str, start_index: int = 0) -> RasterizedFile:
        """Render every page of one PDF.

        Args:
            pdf_bytes: Raw PDF content
            file_name: Name used to tag every page
            start_index: Global index assigned to the first page

        Returns:
            RasterizedFile with one PageImage per page, in page order

        Raises:
            DocumentLoadError: If the PDF cannot be opened
        """
        try:
            pdf = pdfium.PdfDocument(pdf_bytes)
        except pdfium.PdfiumError as e:
            LOGGER.error(f"Could not open PDF {file_name}: {e}")
            raise DocumentLoadError(
                f"Could not read PDF '{file_name}': {e}", file_name=file_name, original_error=e
            ) from e

        try:
            page_count = len(pdf)
            if page_count > self.warn_pages_per_file:
                LOGGER.warning(
                    f"{file_name} has {page_count} pages, processing may take a long time",
                    extra={"file_name": file_name, "page_count": page_count},
                )

            pages: List[PageImage] = []
            for page_index in range(page_count):
                page_number = page_index + 1
                try:
                    image_bytes = self._render_page(pdf, page_index)
                    pages.append(
                        PageImage(
                            source_file_name=file_name,
                            page_number=page_number,
                            global_index=start_index + page_index,
                            image_bytes=image_bytes,
                            mime_type=self.mime_type,
                        )
                    )
                except (pdfium.PdfiumError, OSError, ValueError) as e:
                    LOGGER.warning(f"Failed to render page {page_number} of {file_name}: {e}")
                    pages.append(
                        PageImage(
                            source_file_name=file_name,
                            page_number=page_number,
                            global_index=start_index + page_index,
                            image_bytes=b"",
                            mime_type=self.mime_type,
                            render_error=f"Page could not be rendered: {e}",
                        )
                    )
        finally:
            pdf.close()

        LOGGER.info(
            f"Rasterized {file_name}: {page_count} pages",
            extra={"file_name": file_name, "page_count": page_count},
        )
        return RasterizedFile(input_file=InputFile(name=file_name, total_pages=page_count), pages=pages)

    def rasterize_many(self, files: Sequence[Tuple[str, bytes]]) -> Tuple[List[InputFile], List[PageImage]]:
        """Render several PDFs into one global page sequence.

        Files are concatenated in the given order; global indexes continue
        across file boundaries.
        """
        input_files: List[InputFile] = []
        pages: List[PageImage] = []

        for file_name, pdf_bytes in files:
            rasterized = self.rasterize(pdf_bytes, file_name, start_index=len(pages))
            input_files.append(rasterized.input_file)
            pages.extend(rasterized.pages)

        if len(pages) > self.warn_total_pages:
            LOGGER.warning(
                f"Total of {len(pages)} pages across {len(input_files)} files, processing may take a long time",
                extra={"total_pages": len(pages), "file_count": len(input_files)},
            )

        return input_files, pages
