"""
Text Source Node - Document Text Extraction Boundary

Turns a document's bytes into one text blob plus a page count. The actual
extraction is delegated to an injected TextExtractor:

- DoclingTextExtractor: converts PDF bytes with Docling (optional dependency)
- StaticTextExtractor: returns text that was extracted elsewhere

When the extractor fails or yields no usable text, the pipeline falls back to
the filename and produces a minimal report instead of failing.
"""

import time
import logging
from io import BytesIO
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from state import ReportState

# Configure logger
logger = logging.getLogger(__name__)

# Docling imports (optional - graceful degradation if not installed)
try:
    from docling.document_converter import DocumentConverter as _DocumentConverter
    from docling.datamodel.base_models import DocumentStream as _DocumentStream
    DOCLING_AVAILABLE = True
    DocumentConverter: Any = _DocumentConverter
    DocumentStream: Any = _DocumentStream
except ImportError:
    DOCLING_AVAILABLE = False
    DocumentConverter = None
    DocumentStream = None


class ExtractionUnavailable(Exception):
    """Text extraction failed or produced no usable text."""
    pass


@dataclass(frozen=True)
class TextExtractionResult:
    """Text recovered from one document."""
    text: str
    page_count: int = 0
    source: str = "unknown"  # Extractor that produced the text
    extraction_time_ms: float = 0.0


class TextExtractor(Protocol):
    """Anything that can turn document bytes into text."""

    def extract(self, content: bytes, filename: str = "") -> TextExtractionResult:
        ...


class StaticTextExtractor:
    """Returns pre-extracted text regardless of the document bytes."""

    def __init__(self, text: str, page_count: int = 1):
        self.text = text
        self.page_count = page_count

    def extract(self, content: bytes, filename: str = "") -> TextExtractionResult:
        return TextExtractionResult(text=self.text, page_count=self.page_count, source="static")


class DoclingTextExtractor:
    """
    PDF text extraction backed by Docling.

    The converter is created lazily on first use and reused by this instance
    only; there is no process-wide converter.
    """

    def __init__(self):
        self._converter: Any = None

    def _get_converter(self) -> Any:
        if not DOCLING_AVAILABLE:
            raise RuntimeError("Docling is not available")
        if self._converter is None:
            self._converter = DocumentConverter()
        return self._converter

    def extract(self, content: bytes, filename: str = "") -> TextExtractionResult:
        """
        Convert PDF bytes to text.

        Raises:
            RuntimeError: If Docling is not installed
        """
        converter = self._get_converter()
        stream = DocumentStream(name=filename or "document.pdf", stream=BytesIO(content))
        result = converter.convert(stream)
        document = result.document
        text = document.export_to_text()
        page_count = len(getattr(document, "pages", {}) or {})
        return TextExtractionResult(text=text, page_count=page_count, source="docling")


def default_extractor() -> TextExtractor:
    """
    Extractor used when none is injected.

    Without Docling installed every extraction fails and documents fall back
    to their filename.
    """
    return DoclingTextExtractor()


def extract_document_text(extractor: TextExtractor, content: bytes,
                          filename: str = "") -> TextExtractionResult:
    """
    Run the extractor once and validate its output.

    Raises:
        ExtractionUnavailable: If the extractor raises or returns blank text
    """
    start_time = time.time()
    try:
        result = extractor.extract(content, filename)
    except Exception as e:
        raise ExtractionUnavailable(f"Text extraction failed for {filename or 'document'}: {e}") from e

    if result is None or not (result.text or "").strip():
        raise ExtractionUnavailable(f"No text extracted from {filename or 'document'}")

    elapsed_ms = (time.time() - start_time) * 1000
    return TextExtractionResult(
        text=result.text,
        page_count=max(0, result.page_count or 0),
        source=result.source,
        extraction_time_ms=elapsed_ms,
    )


# ============================================================================
# LangGraph Node
# ============================================================================

def text_extraction_node(state: ReportState, extractor: Optional[TextExtractor] = None) -> dict:
    """
    Node: Text Extraction

    Extracts the document text once; every later node reads raw_text from
    state. On failure the text is left empty and the status records the
    filename fallback.

    Returns:
        dict with raw_text, page_count, extraction_status, extraction_error
    """
    print("--- NODE: Text Extraction ---")

    filename = state.get("filename", "")
    extractor = extractor or default_extractor()

    try:
        result = extract_document_text(extractor, state.get("file_bytes", b""), filename)
    except ExtractionUnavailable as e:
        logger.warning(f"{e}; falling back to filename")
        return {
            "raw_text": "",
            "page_count": 0,
            "extraction_status": "filename_fallback",
            "extraction_error": str(e),
            "extraction_time_ms": 0.0,
        }

    logger.info(
        f"Extracted {len(result.text)} chars from {result.page_count} page(s) "
        f"of {filename or 'document'} via {result.source}"
    )
    return {
        "raw_text": result.text,
        "page_count": result.page_count,
        "extraction_status": "extracted",
        "extraction_error": None,
        "extraction_time_ms": result.extraction_time_ms,
    }
