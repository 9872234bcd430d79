"""
Format detection and parsing for bulk account uploads.

Why:
    Uploads arrive as spreadsheets (xlsx, xls), CSV, JSON or PDF. Each format
    gets a small adapter behind one `Parser` protocol so the validator only
    ever sees `RawRecord` values and never a format-specific structure.

Behavior:
    - `parser_for(ext)` selects the adapter or raises `UnsupportedFormat`.
    - `parse(data)` returns a fresh lazy iterator on every call; it can be
      restarted from scratch but not resumed mid-stream.
    - Container failures (unreadable workbook, undecodable bytes, broken PDF)
      raise `MalformedPayload`. Individual rows never raise here.

PDF text grammar (best-effort, not a reconstruction guarantee):
    Lines are split into five ordered fields
    `name, user_id, roll_number, password, role`.
    Rule A treats runs of two or more whitespace characters as delimiters
    (column-aligned layout). If that yields fewer than four commas, rule B
    treats every whitespace run as a delimiter (single-space layout). Lines
    that fit neither rule, header lines (containing "name") and lines with a
    role other than student/faculty are dropped with a warning.
"""
from __future__ import annotations

from typing import Any, Dict, Iterable, Iterator, List, Optional, Protocol, Sequence
from xml.etree.ElementTree import ParseError
from zipfile import BadZipFile
import csv
import io
import json
import logging
import re

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException
import pypdfium2 as pdfium
import xlrd
from xlrd.compdoc import CompDocError

from identity_access.domain import CREATABLE_ROLES
from identity_access.errors import MalformedPayload, UnsupportedFormat

from .records import SOURCES, RawRecord

logger = logging.getLogger("roster.provisioning")

TEXT_FIELDS = ("name", "user_id", "roll_number", "password", "role")

_WIDE_GAP = re.compile(r"\s{2,}")
_ANY_GAP = re.compile(r"\s+")


class Parser(Protocol):
    extension: str

    def parse(self, data: bytes) -> Iterator[RawRecord]:
        ...


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    return False


def _rows_to_records(rows: Iterable[Sequence[Any]], source: str) -> Iterator[RawRecord]:
    """Turn a header row plus data rows into raw records.

    The first row supplies field names (stripped). Blank header cells drop
    their column; blank data cells are omitted; fully blank rows are skipped.
    Positions are 1-based row numbers of the source, header included.
    """
    header: Optional[List[str]] = None
    for index, row in enumerate(rows, start=1):
        if header is None:
            header = ["" if _is_blank(cell) else str(cell).strip() for cell in row]
            continue
        fields: Dict[str, Any] = {}
        for name, cell in zip(header, row):
            if not name or _is_blank(cell):
                continue
            fields[name] = cell.strip() if isinstance(cell, str) else cell
        if fields:
            yield RawRecord(source=source, position=index, fields=fields)


class XlsxParser:
    extension = "xlsx"

    def parse(self, data: bytes) -> Iterator[RawRecord]:
        try:
            workbook = openpyxl.load_workbook(io.BytesIO(data), read_only=True, data_only=True)
        except (InvalidFileException, BadZipFile, ParseError, SyntaxError, KeyError, ValueError, OSError) as exc:
            raise MalformedPayload("Unreadable xlsx workbook") from exc
        try:
            if not workbook.worksheets:
                return
            sheet = workbook.worksheets[0]
            # read-only sheets parse their XML lazily while rows are iterated
            yield from _rows_to_records(sheet.iter_rows(values_only=True), self.extension)
        except (ParseError, SyntaxError, KeyError, ValueError, TypeError) as exc:
            raise MalformedPayload("Unreadable xlsx worksheet") from exc
        finally:
            workbook.close()


class XlsParser:
    extension = "xls"

    def parse(self, data: bytes) -> Iterator[RawRecord]:
        try:
            book = xlrd.open_workbook(file_contents=data)
        except (xlrd.XLRDError, CompDocError, ValueError, IndexError, OSError) as exc:
            raise MalformedPayload("Unreadable xls workbook") from exc
        if book.nsheets == 0:
            return
        try:
            sheet = book.sheet_by_index(0)
            rows = [sheet.row_values(r) for r in range(sheet.nrows)]
        except (xlrd.XLRDError, IndexError, ValueError) as exc:
            raise MalformedPayload("Unreadable xls worksheet") from exc
        yield from _rows_to_records(rows, self.extension)


class CsvParser:
    extension = "csv"

    def parse(self, data: bytes) -> Iterator[RawRecord]:
        try:
            text = data.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise MalformedPayload("CSV is not valid UTF-8") from exc
        try:
            yield from _rows_to_records(csv.reader(io.StringIO(text, newline="")), self.extension)
        except csv.Error as exc:
            raise MalformedPayload("Unreadable CSV") from exc


class JsonParser:
    """Array of objects, or an object exposing a `users` array."""

    extension = "json"

    def parse(self, data: bytes) -> Iterator[RawRecord]:
        try:
            payload = json.loads(data.decode("utf-8-sig"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise MalformedPayload("Invalid JSON") from exc
        if isinstance(payload, dict) and isinstance(payload.get("users"), list):
            items = payload["users"]
        elif isinstance(payload, list):
            items = payload
        else:
            raise MalformedPayload(
                "Invalid JSON format. Expected an array of users or an object with a users array"
            )
        if not all(isinstance(item, dict) for item in items):
            raise MalformedPayload("Invalid JSON format. Every user entry must be an object")
        return self._records(items)

    def _records(self, items: List[dict]) -> Iterator[RawRecord]:
        for index, item in enumerate(items, start=1):
            yield RawRecord(source=self.extension, position=index, fields=dict(item))


class TextParser:
    """Two-rule line grammar for unstructured text (see module docstring)."""

    def __init__(self, source: str = "pdf") -> None:
        self.source = source

    @staticmethod
    def split_line(line: str) -> List[str]:
        cleaned = _WIDE_GAP.sub(",", line)
        if cleaned.count(",") < 4:
            cleaned = _ANY_GAP.sub(",", line)
        return [part.strip() for part in cleaned.split(",")][: len(TEXT_FIELDS)]

    def parse_text(self, text: str, *, start_line: int = 1) -> Iterator[RawRecord]:
        for number, raw_line in enumerate(text.splitlines(), start=start_line):
            line = raw_line.strip()
            if not line or "name" in line.lower():
                continue
            parts = self.split_line(line)
            if len(parts) < len(TEXT_FIELDS) or not all(parts):
                logger.warning("Skipping malformed line %d", number)
                continue
            fields = dict(zip(TEXT_FIELDS, parts))
            role = fields["role"].lower()
            if role not in CREATABLE_ROLES:
                logger.warning("Skipping line %d: invalid role", number)
                continue
            fields["role"] = role
            yield RawRecord(source=self.source, position=number, fields=fields)


def extract_pdf_text(data: bytes) -> List[str]:
    """Return the text of each page, in page order."""
    try:
        document = pdfium.PdfDocument(data)
    except (pdfium.PdfiumError, ValueError, OSError) as exc:
        raise MalformedPayload("Unreadable PDF") from exc
    pages: List[str] = []
    try:
        for index in range(len(document)):
            page = document[index]
            textpage = page.get_textpage()
            try:
                pages.append(textpage.get_text_range())
            finally:
                textpage.close()
                page.close()
    except pdfium.PdfiumError as exc:
        raise MalformedPayload("Unreadable PDF") from exc
    finally:
        document.close()
    return pages


class PdfParser:
    extension = "pdf"

    def __init__(self) -> None:
        self._text = TextParser(source=self.extension)

    def parse(self, data: bytes) -> Iterator[RawRecord]:
        pages = extract_pdf_text(data)
        # Line numbers continue across pages so positions stay unique.
        return self._records(pages)

    def _records(self, pages: List[str]) -> Iterator[RawRecord]:
        line = 1
        for text in pages:
            yield from self._text.parse_text(text, start_line=line)
            line += len(text.splitlines())


_PARSERS = {
    "xlsx": XlsxParser,
    "xls": XlsParser,
    "csv": CsvParser,
    "json": JsonParser,
    "pdf": PdfParser,
}


def normalize_extension(extension: str | None) -> str:
    return (extension or "").strip().lower().lstrip(".")


def extension_of(filename: str | None) -> str:
    """Return the lowercase extension of an uploaded file name ('' if none)."""
    name = (filename or "").strip()
    if "." not in name:
        return ""
    return name.rsplit(".", 1)[-1].lower()


def parser_for(extension: str | None) -> Parser:
    ext = normalize_extension(extension)
    if ext not in SOURCES:
        raise UnsupportedFormat("Unsupported file format")
    return _PARSERS[ext]()


def parse_upload(data: bytes, extension: str | None) -> Iterator[RawRecord]:
    """Detect the format by extension and return the raw record stream."""
    return parser_for(extension).parse(data)
