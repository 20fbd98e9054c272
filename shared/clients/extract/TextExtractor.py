"""Text extraction from uploaded bytes.

PDFs are read page by page with pypdf, every other accepted type is decoded as UTF-8.
"""

import asyncio
import io

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from shared.errors import ExtractionError
from shared.helper.HelperConfig import HelperConfig

PDF_CONTENT_TYPE = "application/pdf"
PAGE_SEPARATOR = "\n"


class TextExtractor:
    def __init__(self, helper_config: HelperConfig) -> None:
        self.logging = helper_config.get_logger()

    def is_paginated(self, content_type: str) -> bool:
        return content_type.split(";")[0].strip().lower() == PDF_CONTENT_TYPE

    async def do_extract_text(self, data: bytes, content_type: str) -> str:
        """Extract the full text of an uploaded file.

        Args:
            data (bytes): Raw file content.
            content_type (str): Declared content type of the upload.

        Returns:
            str: The extracted text, pages of a PDF joined by newlines.

        Raises:
            ExtractionError: If the content cannot be read. No partial text is returned.
        """
        if self.is_paginated(content_type):
            # pypdf is CPU bound and synchronous
            return await asyncio.to_thread(self._extract_pdf, data)
        return self._decode_text(data)

    def _extract_pdf(self, data: bytes) -> str:
        try:
            reader = PdfReader(io.BytesIO(data))
            pages: list[str] = []
            for page in reader.pages:
                pages.append((page.extract_text() or "") + PAGE_SEPARATOR)
        except (PdfReadError, ValueError, TypeError, KeyError, OSError) as e:
            raise ExtractionError(f"Could not read PDF: {e}") from e
        self.logging.debug("Extracted %d pages from PDF (%d bytes).", len(pages), len(data))
        return "".join(pages)

    def _decode_text(self, data: bytes) -> str:
        try:
            return data.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise ExtractionError(f"File is not valid UTF-8 text: {e}") from e
