"""Import template generation (CSV and Excel) from module column definitions."""
import csv
from datetime import date
from io import BytesIO, StringIO
from typing import List, Optional, Sequence, Union

from openpyxl import Workbook
from openpyxl.comments import Comment
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.datavalidation import DataValidation

from app.schemas.imports import ColumnType, TemplateColumn, TemplateFormat
from app.services.import_errors import UnsupportedFormatError

COMMENT_MARKER = "#"

# Enum dropdowns cover the header row plus this many data rows
VALIDATION_LAST_ROW = 1000

FORMAT_ALIASES = {"xlsx": TemplateFormat.EXCEL}

MEDIA_TYPES = {
    TemplateFormat.CSV: "text/csv",
    TemplateFormat.EXCEL: "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}

FILE_EXTENSIONS = {
    TemplateFormat.CSV: "csv",
    TemplateFormat.EXCEL: "xlsx",
}


def resolve_format(value: Union[str, TemplateFormat]) -> TemplateFormat:
    """Normalise a user supplied format name ("csv", "excel" or "xlsx")."""
    if isinstance(value, TemplateFormat):
        return value
    normalized = str(value or "").strip().lower()
    if normalized in FORMAT_ALIASES:
        return FORMAT_ALIASES[normalized]
    try:
        return TemplateFormat(normalized)
    except ValueError:
        raise UnsupportedFormatError(
            f"Unsupported format '{value}'. Expected 'csv' or 'excel'.",
            details={"format": value},
        ) from None


def example_value(column: TemplateColumn, today: Optional[date] = None) -> str:
    """Explicit example of a column, or a placeholder derived from its type."""
    if column.example:
        return column.example

    if column.type == ColumnType.STRING:
        return f"Example {column.label}"
    if column.type == ColumnType.NUMBER:
        return "100"
    if column.type == ColumnType.BOOLEAN:
        return "true"
    if column.type == ColumnType.DATE:
        return (today or date.today()).isoformat()
    return ""


def _format_bound(value: float) -> str:
    return f"{value:g}"


def constraint_hints(column: TemplateColumn) -> List[str]:
    hints = []
    if column.required:
        hints.append("Required")
    if column.max_length:
        hints.append(f"Max length: {column.max_length}")
    if column.min_value is not None:
        hints.append(f"Min: {_format_bound(column.min_value)}")
    if column.max_value is not None:
        hints.append(f"Max: {_format_bound(column.max_value)}")
    if column.enum_values:
        hints.append(f"Values: {', '.join(column.enum_values)}")
    if column.pattern:
        hints.append(f"Pattern: {column.pattern}")
    return hints


def generate_template(
    columns: Sequence[TemplateColumn],
    fmt: Union[str, TemplateFormat],
    today: Optional[date] = None,
) -> bytes:
    """
    Build a downloadable template for the given columns.

    Args:
        columns: Column definitions of the import module
        fmt: "csv" or "excel"
        today: Date used for date placeholders (defaults to today)

    Returns:
        File content as bytes
    """
    template_format = resolve_format(fmt)
    if template_format == TemplateFormat.EXCEL:
        return _generate_excel(columns, today)
    return _generate_csv(columns, today)


def _generate_csv(columns: Sequence[TemplateColumn], today: Optional[date]) -> bytes:
    buffer = StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow([column.label for column in columns])
    writer.writerow([example_value(column, today) for column in columns])

    writer.writerow([])
    # hints are single-cell records so the parser can tell them from data
    legend = f"{COMMENT_MARKER} Lines with only a {COMMENT_MARKER} note are ignored. Required fields marked with *"
    writer.writerow([legend])
    for column in columns:
        hints = constraint_hints(column)
        if not hints:
            continue
        marker = " *" if column.required else ""
        writer.writerow([f"{COMMENT_MARKER} {column.label}{marker}: {'; '.join(hints)}"])

    return buffer.getvalue().encode("utf-8")


def _generate_excel(columns: Sequence[TemplateColumn], today: Optional[date]) -> bytes:
    workbook = Workbook()
    worksheet = workbook.active
    worksheet.title = "Template"

    header_font = Font(bold=True, color="FFFFFFFF")
    header_fill = PatternFill(fill_type="solid", fgColor="FF4472C4")
    header_alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)
    example_font = Font(italic=True, color="FF808080")
    example_fill = PatternFill(fill_type="solid", fgColor="FFF2F2F2")

    for index, column in enumerate(columns, start=1):
        letter = get_column_letter(index)

        header = worksheet.cell(row=1, column=index, value=column.label)
        header.font = header_font
        header.fill = header_fill
        header.alignment = header_alignment

        hints = constraint_hints(column)
        if hints:
            header.comment = Comment("\n".join(hints), "Template")

        example = worksheet.cell(row=2, column=index, value=example_value(column, today))
        example.font = example_font
        example.fill = example_fill

        worksheet.column_dimensions[letter].width = max(15, len(column.label) + 2)

        if column.enum_values:
            validation = DataValidation(
                type="list",
                formula1=f'"{",".join(column.enum_values)}"',
                allow_blank=not column.required,
                showErrorMessage=True,
                errorTitle="Invalid Value",
                error=f"Must be one of: {', '.join(column.enum_values)}",
            )
            worksheet.add_data_validation(validation)
            validation.add(f"{letter}2:{letter}{VALIDATION_LAST_ROW}")

    worksheet.freeze_panes = "A2"

    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()
