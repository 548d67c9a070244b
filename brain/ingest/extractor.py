"""
Document Extractor

Converts raw file bytes into plain text by declared media type. Tables
(spreadsheets, CSV) are textualized row by row as ``column=value`` pairs,
since the consumers are a search index and a language model.

Unsupported types never raise: they produce a marked placeholder so a batch
can continue. A supported file that fails to parse raises ExtractionFailed.
"""

import csv
import io
import json
import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Sequence

from ..common.errors import ExtractionFailed

logger = logging.getLogger("brain.ingest.extractor")

NO_EXTRACTABLE_CONTENT = "[No extractable content: {name}]"

PDF = "application/pdf"
DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
PPTX = "application/vnd.openxmlformats-officedocument.presentationml.presentation"
CSV = "text/csv"
JSON = "application/json"
OCTET_STREAM = "application/octet-stream"

EXTENSION_TYPES = {
    ".pdf": PDF,
    ".docx": DOCX,
    ".xlsx": XLSX,
    ".pptx": PPTX,
    ".csv": CSV,
    ".json": JSON,
    ".txt": "text/plain",
    ".md": "text/markdown",
    ".markdown": "text/markdown",
}

# Aliases some clients send instead of the canonical type
_TYPE_ALIASES = {
    "application/csv": CSV,
    "application/vnd.ms-excel.sheet.macroenabled.12": XLSX,
    "text/json": JSON,
    "application/x-markdown": "text/markdown",
}


def placeholder_for(file_name: str) -> str:
    return NO_EXTRACTABLE_CONTENT.format(name=file_name or "unnamed file")


def guess_media_type(file_name: str) -> str:
    """Media type implied by the file extension (octet-stream if unknown)"""
    return EXTENSION_TYPES.get(Path(file_name or "").suffix.lower(), OCTET_STREAM)


def resolve_media_type(media_type: Optional[str], file_name: str = "") -> str:
    """Normalize a declared media type, guessing from the name when missing"""
    media_type = (media_type or "").split(";")[0].strip().lower()
    media_type = _TYPE_ALIASES.get(media_type, media_type)
    if not media_type or media_type == OCTET_STREAM:
        return guess_media_type(file_name)
    return media_type


def decode_text(data: bytes) -> str:
    """UTF-8 (BOM tolerant); undecodable bytes are replaced, never raised"""
    return data.decode("utf-8-sig", errors="replace")


@contextmanager
def scoped_temp_file(data: bytes, suffix: str = "") -> Iterator[str]:
    """
    Write bytes to a uniquely named temp file and yield its path.

    The file is removed on every exit path, including converter crashes.
    """
    fd, path = tempfile.mkstemp(prefix="brain-extract-", suffix=suffix)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        yield path
    finally:
        try:
            os.unlink(path)
        except FileNotFoundError:
            pass


def textualize_table(
    headers: Sequence[str],
    rows: List[Sequence],
    max_rows: int,
    title: str = "Table",
) -> str:
    """Header line, then one ``column=value`` line per row, capped at max_rows"""
    headers = [str(h).strip() if h is not None and str(h).strip() else f"column{i + 1}"
               for i, h in enumerate(headers)]
    lines = [f"{title} ({len(rows)} rows)", f"Columns: {', '.join(headers)}", ""]

    for index, row in enumerate(rows[:max_rows], 1):
        pairs = []
        for i, header in enumerate(headers):
            value = row[i] if i < len(row) else None
            pairs.append(f"{header}={'' if value is None else str(value).strip()}")
        lines.append(f"Row {index}: {', '.join(pairs)}")

    if len(rows) > max_rows:
        lines.append(f"... {len(rows) - max_rows} more rows")
    return "\n".join(lines)


def _blank_row(row: Sequence) -> bool:
    return all(v is None or str(v).strip() == "" for v in row)


class Extractor:
    """Plain-text extraction for uploaded and synced documents"""

    def __init__(self, max_table_rows: int = 500):
        self.max_table_rows = max_table_rows
        self._handlers: Dict[str, Callable[[bytes], str]] = {
            PDF: self._extract_pdf,
            DOCX: self._extract_docx,
            XLSX: self._extract_xlsx,
            PPTX: self._extract_pptx,
            CSV: self._extract_csv,
            JSON: self._extract_json,
        }

    def supports(self, media_type: str) -> bool:
        return media_type in self._handlers or media_type.startswith("text/")

    def extract(self, file_bytes: bytes, media_type: Optional[str], file_name: str = "") -> str:
        """
        Extract plain text from a file.

        Args:
            file_bytes: Raw file content
            media_type: Declared media type (may be empty or octet-stream)
            file_name: Display name, used for type guessing and messages

        Returns:
            Extracted text, or the placeholder for unsupported types

        Raises:
            ExtractionFailed: a supported file could not be parsed
        """
        resolved = resolve_media_type(media_type, file_name)
        handler = self._handlers.get(resolved)
        if handler is None and resolved.startswith("text/"):
            handler = self._extract_text
        if handler is None:
            logger.info("No extractor for %s (%s), using placeholder", file_name, resolved)
            return placeholder_for(file_name)

        try:
            text = handler(file_bytes or b"")
        except Exception as e:
            logger.warning("Extraction failed for %s (%s): %s", file_name, resolved, e)
            raise ExtractionFailed(file_name, e) from e

        logger.debug("Extracted %d chars from %s (%s)", len(text), file_name, resolved)
        return text

    def _extract_text(self, data: bytes) -> str:
        return decode_text(data)

    def _extract_json(self, data: bytes) -> str:
        # Pretty-printed so that nested keys read as text
        return json.dumps(json.loads(decode_text(data)), indent=2, ensure_ascii=False)

    def _extract_csv(self, data: bytes) -> str:
        reader = csv.reader(io.StringIO(decode_text(data)))
        records = [row for row in reader if not _blank_row(row)]
        if not records:
            return ""
        headers, rows = records[0], records[1:]
        return textualize_table(headers, rows, self.max_table_rows, title="CSV data")

    def _extract_pdf(self, data: bytes) -> str:
        from pypdf import PdfReader

        reader = PdfReader(io.BytesIO(data))
        pages = []
        for i, page in enumerate(reader.pages, 1):
            text = page.extract_text()
            if text and text.strip():
                pages.append(f"[Page {i}]\n{text.strip()}")
        return "\n\n".join(pages)

    def _extract_docx(self, data: bytes) -> str:
        from docx import Document

        doc = Document(io.BytesIO(data))
        paragraphs = []

        for para in doc.paragraphs:
            text = para.text.strip()
            if not text:
                continue
            style = para.style.name if para.style is not None else ""
            if style.startswith("Heading "):
                try:
                    paragraphs.append(f"{'#' * int(style[len('Heading '):])} {text}")
                    continue
                except ValueError:
                    pass
            paragraphs.append(text)

        for table in doc.tables:
            grid = [[cell.text.strip() for cell in row.cells] for row in table.rows]
            grid = [row for row in grid if not _blank_row(row)]
            if grid:
                paragraphs.append(textualize_table(grid[0], grid[1:], self.max_table_rows))

        return "\n\n".join(paragraphs)

    def _extract_xlsx(self, data: bytes) -> str:
        from openpyxl import load_workbook

        workbook = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
        try:
            sheets = []
            for sheet in workbook.worksheets:
                records = [row for row in sheet.iter_rows(values_only=True) if not _blank_row(row)]
                if not records:
                    continue
                sheets.append(textualize_table(
                    records[0], records[1:], self.max_table_rows, title=f"Sheet {sheet.title}",
                ))
            return "\n\n".join(sheets)
        finally:
            workbook.close()

    def _extract_pptx(self, data: bytes) -> str:
        with scoped_temp_file(data, suffix=".pptx") as path:
            return self._convert_pptx(path)

    def _convert_pptx(self, path: str) -> str:
        from pptx import Presentation

        presentation = Presentation(path)
        slides = []
        for i, slide in enumerate(presentation.slides, 1):
            texts = []
            for shape in slide.shapes:
                if getattr(shape, "has_text_frame", False) and shape.text_frame.text.strip():
                    texts.append(shape.text_frame.text.strip())
                elif getattr(shape, "has_table", False):
                    grid = [[cell.text.strip() for cell in row.cells] for row in shape.table.rows]
                    if grid:
                        texts.append(textualize_table(grid[0], grid[1:], self.max_table_rows))
            if texts:
                slides.append(f"[Slide {i}]\n" + "\n".join(texts))
        return "\n\n".join(slides)
