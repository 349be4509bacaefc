from __future__ import annotations

import logging
from pathlib import Path

import fitz  # PyMuPDF

from cagminutes.core.errors import DocumentDecodeError
from cagminutes.domain.models.document import PageText

logger = logging.getLogger(__name__)


class PdfTextExtractor:
    """Decode a PDF into page-indexed text. Page numbers start at 1."""

    def extract_pages(self, path: Path) -> list[PageText]:
        if not path.exists():
            raise DocumentDecodeError(f"File not found: {path}")
        try:
            doc = fitz.open(str(path), filetype="pdf")
        except Exception as exc:
            raise DocumentDecodeError(f"Cannot open {path.name}: {exc}") from exc

        try:
            if doc.needs_pass:
                raise DocumentDecodeError(f"{path.name} is password protected")
            pages = [
                PageText(number=index, text=page.get_text() or "")
                for index, page in enumerate(doc, start=1)
            ]
        except DocumentDecodeError:
            raise
        except Exception as exc:
            raise DocumentDecodeError(f"Cannot read text from {path.name}: {exc}") from exc
        finally:
            doc.close()

        logger.debug("Decoded %s pages from %s", len(pages), path.name)
        return pages
