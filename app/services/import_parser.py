"""Structural parsing of uploaded CSV/Excel files into positional row records."""
import csv
import logging
from datetime import date, datetime
from io import BytesIO, StringIO
from pathlib import PurePath
from typing import Dict, Iterable, List, Sequence, Union
from zipfile import BadZipFile

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from app.schemas.imports import TemplateColumn, TemplateFormat
from app.services.import_errors import ParseError, UnsupportedFormatError
from app.services.import_template import COMMENT_MARKER, resolve_format

CellValue = Union[str, int, float, bool, date, datetime, None]
Row = Dict[str, CellValue]

EXTENSION_FORMATS = {
    ".csv": TemplateFormat.CSV,
    ".xlsx": TemplateFormat.EXCEL,
    ".xlsm": TemplateFormat.EXCEL,
}

logger = logging.getLogger(__name__)


def detect_file_type(file_name: str) -> TemplateFormat:
    """Map an upload's file extension to the parser that handles it."""
    suffix = PurePath(file_name or "").suffix.lower()
    if suffix not in EXTENSION_FORMATS:
        raise UnsupportedFormatError(
            f"Unsupported file type '{suffix or file_name}'. Upload a .csv or .xlsx file.",
            details={"file_name": file_name},
        )
    return EXTENSION_FORMATS[suffix]


def parse_file(
    content: bytes,
    file_type: Union[str, TemplateFormat],
    columns: Sequence[TemplateColumn],
) -> List[Row]:
    """
    Convert an uploaded buffer into ordered row records.

    The first row is the header and is ignored; column N of every data row
    is assigned to the Nth column definition regardless of header text.

    Args:
        content: Raw file content
        file_type: "csv" or "excel"
        columns: Column definitions of the import module

    Returns:
        Rows in file order

    Raises:
        ParseError: If the buffer cannot be read as the requested type
    """
    if resolve_format(file_type) == TemplateFormat.EXCEL:
        rows = _parse_excel(content, columns)
    else:
        rows = _parse_csv(content, columns)
    logger.info(f"Parsed {len(rows)} data rows ({file_type}, {len(content)} bytes)")
    return rows


def _normalize(value: CellValue) -> CellValue:
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _is_blank(values: Iterable[CellValue]) -> bool:
    return all(_normalize(value) is None for value in values)


def _is_comment(record: Sequence[str]) -> bool:
    """A note line: one non-empty cell, the first, starting with the comment marker."""
    return record[0].lstrip().startswith(COMMENT_MARKER) and _is_blank(record[1:])


def _map_positionally(values: Sequence[CellValue], columns: Sequence[TemplateColumn]) -> Row:
    return {
        column.name: _normalize(values[index]) if index < len(values) else None
        for index, column in enumerate(columns)
    }


def _parse_csv(content: bytes, columns: Sequence[TemplateColumn]) -> List[Row]:
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise ParseError(f"CSV parsing error: file is not valid UTF-8 ({e.reason})") from e

    rows: List[Row] = []
    header_seen = False
    try:
        for record in csv.reader(StringIO(text)):
            if _is_blank(record):
                continue
            if _is_comment(record):
                continue
            if not header_seen:
                header_seen = True
                continue
            rows.append(_map_positionally(record, columns))
    except csv.Error as e:
        raise ParseError(f"CSV parsing error: {e}") from e

    return rows


def _parse_excel(content: bytes, columns: Sequence[TemplateColumn]) -> List[Row]:
    try:
        workbook = load_workbook(BytesIO(content), read_only=True, data_only=True)
    except (BadZipFile, InvalidFileException, KeyError, ValueError, OSError) as e:
        raise ParseError(f"Excel parsing error: {e}") from e

    try:
        if not workbook.worksheets:
            raise ParseError("Excel file is empty")
        worksheet = workbook.worksheets[0]

        rows: List[Row] = []
        for values in worksheet.iter_rows(min_row=2, values_only=True):
            if _is_blank(values):
                continue
            rows.append(_map_positionally(values, columns))
        return rows
    finally:
        workbook.close()
