"""
Document Processor Service

Extracts text from bid documents (PDF, Excel, Word), with positioned text
blocks for PDFs and an OCR fallback for scanned pages.
"""

import io
import logging
import math
import re
from pathlib import Path
from typing import Optional

import pandas as pd
from pydantic import BaseModel, Field

# PDF Processing
from PyPDF2 import PdfReader

# DOCX Processing
from docx import Document

from services.exceptions import UnsupportedFormat, ExtractionFailed

# OCR Processing
try:
    import pytesseract
    from pdf2image import convert_from_bytes
    OCR_AVAILABLE = True
except ImportError:
    OCR_AVAILABLE = False

logger = logging.getLogger("bidvet.services.document_processor")


SUPPORTED_FORMATS = ("pdf", "xlsx", "xls", "docx", "doc")

MIME_FORMATS = {
    "application/pdf": "pdf",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": "xlsx",
    "application/vnd.ms-excel": "xls",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "docx",
    "application/msword": "doc",
}

# Sheet names that usually hold the pricing
BID_SHEET_TERMS = ("bid", "pricing", "quote", "estimate", "proposal", "summary")
SECONDARY_SHEET_ROW_LIMIT = 50


class ExtractedText(BaseModel):
    """Text pulled out of one document."""
    format: str
    text: str = ""
    blocks: list[dict] = Field(default_factory=list, description="Positioned text blocks (PDF only)")
    page_count: int = 0
    ocr_used: bool = False
    warnings: list[str] = Field(default_factory=list)

    def positions(self) -> Optional[dict]:
        """Position map persisted on the document for viewer highlighting."""
        if self.format != "pdf":
            return None
        return {
            "file_type": "pdf",
            "blocks": self.blocks,
            "page_count": self.page_count,
        }


def detect_format(file_name: str, mime_type: Optional[str] = None) -> str:
    """
    Resolve the document format from its extension, falling back to MIME type.

    Raises:
        UnsupportedFormat: When neither names a supported format
    """
    suffix = Path(file_name or "").suffix.lower().lstrip(".")
    if suffix in SUPPORTED_FORMATS:
        return suffix
    if mime_type and mime_type in MIME_FORMATS:
        return MIME_FORMATS[mime_type]
    raise UnsupportedFormat(f"Unsupported file type: {suffix or mime_type or 'unknown'}")


class DocumentProcessor:
    """
    Processes bid documents and extracts text.

    Features:
    - PDF text and positioned blocks with PyPDF2
    - Excel sheets with pandas, most bid-like sheet first
    - DOCX paragraphs and tables with python-docx
    - OCR fallback for scanned PDFs using Tesseract
    """

    # Minimum chars per page to consider it text-based (not scanned)
    MIN_CHARS_PER_PAGE = 40

    def __init__(self, tesseract_path: Optional[str] = None):
        if tesseract_path and OCR_AVAILABLE:
            pytesseract.pytesseract.tesseract_cmd = tesseract_path

    def process_bytes(
        self,
        file_bytes: bytes,
        filename: str,
        mime_type: Optional[str] = None
    ) -> ExtractedText:
        """
        Process document from bytes.

        Args:
            file_bytes: Document content
            filename: Original filename (for format detection)
            mime_type: Declared MIME type, used when the extension is missing

        Returns:
            ExtractedText with text, blocks and warnings

        Raises:
            UnsupportedFormat: Unknown extension/MIME type
            ExtractionFailed: Corrupt or unreadable content
        """
        fmt = detect_format(filename, mime_type)

        if fmt == "pdf":
            return self._process_pdf_bytes(file_bytes)
        if fmt in ("xlsx", "xls"):
            return self._process_excel_bytes(file_bytes, fmt)
        return self._process_docx_bytes(file_bytes, fmt)

    # =========================================================================
    # PDF
    # =========================================================================

    def _process_pdf_bytes(self, pdf_bytes: bytes) -> ExtractedText:
        result = ExtractedText(format="pdf")

        try:
            reader = PdfReader(io.BytesIO(pdf_bytes))
            pages = list(reader.pages)
        except Exception as e:
            if OCR_AVAILABLE:
                result.warnings.append(f"PDF processing error: {e}")
                return self._ocr_result(pdf_bytes, result, "ocr_fallback")
            raise ExtractionFailed(f"Failed to extract text from PDF: {e}") from e

        result.page_count = len(pages)
        all_text = []
        low_text_pages = 0

        for page_number, page in enumerate(pages, start=1):
            try:
                page_text, blocks = self._extract_page(page, page_number)
            except Exception as e:
                raise ExtractionFailed(f"Failed to extract text from PDF page {page_number}: {e}") from e

            result.blocks.extend(blocks)
            all_text.append(page_text)
            if len(page_text) < self.MIN_CHARS_PER_PAGE:
                low_text_pages += 1

        result.text = "\n\n".join(t for t in all_text if t)

        if result.page_count and low_text_pages > result.page_count / 2:
            if OCR_AVAILABLE:
                result.warnings.append("Low text extraction detected. Attempting OCR...")
                return self._ocr_result(pdf_bytes, result, "ocr")
            result.warnings.append(
                "Low text extraction detected. OCR not available - install pytesseract and pdf2image."
            )

        return result

    def _extract_page(self, page, page_number: int) -> tuple[str, list[dict]]:
        """Extract one page's text and its positioned blocks (top-left origin)."""
        page_height = float(page.mediabox.height)
        blocks = []

        def visitor(text, cm, tm, font_dict, font_size):
            text = text.strip()
            if not text:
                return
            size = font_size or 10.0
            scale = abs(tm[0]) or 1.0
            height = size * scale
            x = float(tm[4]) + float(cm[4])
            y = float(tm[5]) + float(cm[5])
            blocks.append({
                "page": page_number,
                "x": round(x, 2),
                "y": round(page_height - y - height, 2),
                "width": round(len(text) * height * 0.5, 2),
                "height": round(height, 2),
                "text": text,
            })

        raw = page.extract_text(visitor_text=visitor) or ""
        return self._clean_text(raw), blocks

    def _ocr_result(self, pdf_bytes: bytes, result: ExtractedText, method: str) -> ExtractedText:
        try:
            ocr_text = self._ocr_pdf_bytes(pdf_bytes)
        except Exception as e:
            result.warnings.append(f"OCR failed: {e}")
            if not result.text:
                raise ExtractionFailed(f"Failed to extract text from PDF: {e}") from e
            return result

        if len(ocr_text) > len(result.text):
            result.text = ocr_text
            result.ocr_used = True
            logger.info(f"Used {method} text extraction ({len(ocr_text)} chars)")
        return result

    def _ocr_pdf_bytes(self, pdf_bytes: bytes) -> str:
        """Extract text from PDF using OCR."""
        images = convert_from_bytes(pdf_bytes, dpi=300)
        return "\n\n".join(self._clean_text(pytesseract.image_to_string(image)) for image in images)

    # =========================================================================
    # Excel
    # =========================================================================

    def _process_excel_bytes(self, excel_bytes: bytes, fmt: str) -> ExtractedText:
        result = ExtractedText(format=fmt)

        try:
            sheets = pd.read_excel(io.BytesIO(excel_bytes), sheet_name=None, header=None)
        except Exception as e:
            raise ExtractionFailed(f"Failed to extract text from Excel file: {e}") from e

        if not sheets:
            result.warnings.append("Workbook has no sheets")
            return result

        names = list(sheets.keys())
        target = names[0]
        for name in names:
            if any(term in str(name).lower() for term in BID_SHEET_TERMS):
                target = name
                break

        lines = [f"Sheet: {target}", ""]
        lines.extend(self._sheet_rows(sheets[target]))

        others = [name for name in names if name != target]
        if others:
            lines.extend(["", "--- Other Sheets ---"])
            for name in others:
                frame = sheets[name]
                if frame.empty:
                    continue
                lines.append(f"Sheet: {name}")
                lines.extend(self._sheet_rows(frame.head(SECONDARY_SHEET_ROW_LIMIT)))

        result.text = "\n".join(lines).strip()
        result.page_count = len(names)
        return result

    def _sheet_rows(self, frame: pd.DataFrame) -> list[str]:
        rows = []
        for values in frame.itertuples(index=False, name=None):
            cells = [self._cell_text(v) for v in values]
            if any(cells):
                rows.append(" | ".join(cells))
        return rows

    @staticmethod
    def _cell_text(value) -> str:
        if value is None:
            return ""
        if isinstance(value, float):
            if math.isnan(value):
                return ""
            if value.is_integer():
                return str(int(value))
        return str(value).strip()

    # =========================================================================
    # Word
    # =========================================================================

    def _process_docx_bytes(self, docx_bytes: bytes, fmt: str) -> ExtractedText:
        result = ExtractedText(format=fmt)

        try:
            doc = Document(io.BytesIO(docx_bytes))
        except Exception as e:
            raise ExtractionFailed(f"Failed to extract text from Word document: {e}") from e

        paragraphs = [p.text.strip() for p in doc.paragraphs if p.text.strip()]

        table_text = []
        for table in doc.tables:
            for row in table.rows:
                row_text = " | ".join(cell.text.strip() for cell in row.cells)
                if row_text.replace("|", "").strip():
                    table_text.append(row_text)

        result.text = "\n\n".join(paragraphs)
        if table_text:
            result.text += "\n\n[Table Content]\n" + "\n".join(table_text)
        result.text = result.text.strip()
        return result

    def _clean_text(self, text: str) -> str:
        """Collapse runs of spaces while keeping line structure."""
        if not text:
            return ""
        text = re.sub(r"[ \t\f\v]+", " ", text)
        text = re.sub(r"\n{3,}", "\n\n", text)
        return text.strip()


# Module-level instance for convenience
_processor = None


def get_processor() -> DocumentProcessor:
    """Get or create the document processor instance."""
    global _processor
    if _processor is None:
        _processor = DocumentProcessor()
    return _processor


def extract_document_text(
    content: bytes,
    file_name: str,
    mime_type: Optional[str] = None
) -> ExtractedText:
    """
    Extract text (and PDF positions) from document bytes.

    Args:
        content: Document content
        file_name: Original filename
        mime_type: Declared MIME type

    Returns:
        ExtractedText
    """
    return get_processor().process_bytes(content, file_name, mime_type)
