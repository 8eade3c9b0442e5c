"""Bulk patent ID extraction from uploaded files.

Text-like files (.txt, .docx) are scanned with a patent-number regex.
Spreadsheets (.xlsx, .xls, .csv) are read column-wise: a header row names the
publication-number column and, optionally, a kind-code column, and the two
are joined per publication number.
"""
from docx import Document
from docx.opc.exceptions import PackageNotFoundError
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from xlrd import XLRDError
from xlrd.compdoc import CompDocError
from utils.patent_numbers import standardize_patent_number
from patentsbrowser.services.errors import ServiceError
from typing import Dict, Any, List, Optional, Sequence, Tuple
from zipfile import BadZipFile
import xlrd
import csv
import io
import os
import re
import logging

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 5 * 1024 * 1024

TEXT_EXTENSIONS = {".txt", ".docx"}
SHEET_EXTENSIONS = {".xlsx", ".xls", ".csv"}
ALLOWED_EXTENSIONS = TEXT_EXTENSIONS | SHEET_EXTENSIONS

TEXT_PATENT_PATTERN = re.compile(r"(?:US|EP|WO|JP|CN|KR|DE|FR|GB|CA)[\s-]?\d{5,10}[\s-]?[A-Z]\d?")
MULTI_KIND_PATTERN = re.compile(r"[A-Z\d][,;\s|][A-Z\d]")
KIND_SPLIT_PATTERN = re.compile(r"[\s,;|]+")
PRIORITY_KIND_CODES = ["A1", "B1", "B2", "A", "B"]

MULTI_KIND_NOTE = (
    "Some kind codes contained multiple values. The first one or a priority "
    "code (A1, B1, B2, A, B) was selected and combined without spaces."
)


class ExtractionError(ServiceError):
    pass


def _dedupe(values: Sequence[str]) -> List[str]:
    seen = set()
    result = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result


# ============================================================================
# Text sources
# ============================================================================

def extract_from_text(text: str) -> List[str]:
    """Patent numbers found in free text, standardized, first-seen order."""
    return _dedupe([standardize_patent_number(m) for m in TEXT_PATENT_PATTERN.findall(text or "")])


def read_docx_text(content: bytes) -> str:
    """Paragraph and table-cell text of a Word document."""
    try:
        document = Document(io.BytesIO(content))
    except (PackageNotFoundError, BadZipFile, KeyError, ValueError) as e:
        logger.warning(f"Unreadable Word document: {e}")
        raise ExtractionError("Could not read the Word document. Please upload a .docx file.")

    parts = [p.text for p in document.paragraphs]
    for table in document.tables:
        for row in table.rows:
            parts.extend(cell.text for cell in row.cells)
    return "\n".join(parts)


# ============================================================================
# Spreadsheet sources
# ============================================================================

def find_columns(header: Sequence[Any]) -> Tuple[int, Optional[int]]:
    """
    Locate (publication number column, kind code column) in a header row.

    Falls back to the first column for publication numbers; the kind code
    column is optional.
    """
    labels = [str(h or "").lower() for h in header]
    pub_index = None
    kind_index = None

    for i, label in enumerate(labels):
        if "earliest" in label and "publication" in label and "number" in label:
            pub_index = i
        if "publication" in label and "kind" in label and "code" in label:
            kind_index = i

    if pub_index is None:
        for i, label in enumerate(labels):
            if ("publication" in label and "number" in label) or "patent" in label or "pub" in label:
                pub_index = i
                break

    if kind_index is None:
        for i, label in enumerate(labels):
            if ("kind" in label and "code" in label) or ("pub" in label and "kind" in label):
                kind_index = i
                break

    return (pub_index if pub_index is not None else 0), kind_index


def select_kind_code(raw: str) -> str:
    parts = [p for p in KIND_SPLIT_PATTERN.split(raw or "") if p]
    for code in PRIORITY_KIND_CODES:
        if code in parts:
            return code
    return parts[0] if parts else ""


def _cell(row: Sequence[Any], index: Optional[int]) -> str:
    if index is None or index >= len(row) or row[index] is None:
        return ""
    return str(row[index]).strip()


def _sheet_rows_xlsx(content: bytes) -> List[List[Sequence[Any]]]:
    try:
        workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except (InvalidFileException, BadZipFile, KeyError) as e:
        logger.warning(f"Unreadable workbook: {e}")
        raise ExtractionError("Could not read the spreadsheet")
    try:
        return [list(sheet.iter_rows(values_only=True)) for sheet in workbook.worksheets]
    finally:
        workbook.close()


def _xls_value(value: Any) -> Any:
    # BIFF stores every number as a float
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _sheet_rows_xls(content: bytes) -> List[List[Sequence[Any]]]:
    # Many ".xls" exports are really OOXML workbooks
    if content[:2] == b"PK":
        return _sheet_rows_xlsx(content)
    try:
        book = xlrd.open_workbook(file_contents=content, on_demand=True)
    except (XLRDError, CompDocError, ValueError) as e:
        logger.warning(f"Unreadable legacy workbook: {e}")
        raise ExtractionError("Could not read the spreadsheet")
    try:
        sheets = []
        for index in range(book.nsheets):
            sheet = book.sheet_by_index(index)
            sheets.append([
                [_xls_value(v) for v in sheet.row_values(r)] for r in range(sheet.nrows)
            ])
        return sheets
    finally:
        book.release_resources()


def _sheet_rows_csv(content: bytes) -> List[List[Sequence[Any]]]:
    text = content.decode("utf-8-sig", errors="replace")
    return [list(csv.reader(io.StringIO(text)))]


def extract_from_sheets(sheets: List[List[Sequence[Any]]]) -> Dict[str, Any]:
    publication_numbers: List[str] = []
    kind_codes: List[str] = []
    first_kind: Dict[str, str] = {}

    for rows in sheets:
        if not rows:
            continue
        pub_index, kind_index = find_columns(rows[0])
        for row in rows[1:]:
            if not row:
                continue
            number = _cell(row, pub_index)
            kind = _cell(row, kind_index)
            if kind:
                kind_codes.append(kind)
            if not number:
                continue
            publication_numbers.append(number)
            if number not in first_kind:
                first_kind[number] = kind

    patent_ids = []
    for number in _dedupe(publication_numbers):
        combined = f"{number}{select_kind_code(first_kind.get(number, ''))}"
        patent_ids.append(standardize_patent_number(combined))

    note = MULTI_KIND_NOTE if any(MULTI_KIND_PATTERN.search(k) for k in kind_codes) else None
    return {
        "patent_ids": _dedupe(patent_ids),
        "publication_numbers": publication_numbers,
        "kind_codes": kind_codes,
        "note": note,
    }


# ============================================================================
# Entry point
# ============================================================================

def extract_patent_ids(filename: str, content: bytes) -> Dict[str, Any]:
    """Extract patent IDs from an uploaded file's bytes."""
    extension = os.path.splitext(filename or "")[1].lower()
    if extension not in ALLOWED_EXTENSIONS:
        raise ExtractionError(
            "Unsupported file type. Allowed: " + ", ".join(sorted(ALLOWED_EXTENSIONS))
        )
    if len(content) > MAX_UPLOAD_BYTES:
        raise ExtractionError("File exceeds the 5MB upload limit", status_code=413)

    if extension in TEXT_EXTENSIONS:
        if extension == ".txt":
            text = content.decode("utf-8", errors="replace")
        else:
            text = read_docx_text(content)
        patent_ids = extract_from_text(text)
        result = {"patent_ids": patent_ids, "publication_numbers": [], "kind_codes": [], "note": None}
    else:
        if extension == ".csv":
            sheets = _sheet_rows_csv(content)
        elif extension == ".xls":
            sheets = _sheet_rows_xls(content)
        else:
            sheets = _sheet_rows_xlsx(content)
        result = extract_from_sheets(sheets)

    result["count"] = len(result["patent_ids"])
    logger.info(f"Extracted {result['count']} patent IDs from {filename}")
    return result
