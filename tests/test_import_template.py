"""Tests for import template generation."""
from datetime import date
from io import BytesIO

import pytest
from openpyxl import load_workbook

from app.schemas.imports import ColumnType, TemplateColumn, TemplateFormat
from app.services.department_import import COLUMNS
from app.services.import_errors import UnsupportedFormatError
from app.services.import_parser import parse_file
from app.services.import_template import (
    constraint_hints,
    example_value,
    generate_template,
    resolve_format,
)

STATUS = TemplateColumn(
    name="status",
    display_name="Status",
    required=True,
    enum_values=["ACTIVE", "INACTIVE"],
)


def test_resolve_format_aliases():
    assert resolve_format("csv") == TemplateFormat.CSV
    assert resolve_format("Excel") == TemplateFormat.EXCEL
    assert resolve_format("xlsx") == TemplateFormat.EXCEL


def test_resolve_format_rejects_unknown():
    """Test that only csv and excel templates are offered."""
    with pytest.raises(UnsupportedFormatError):
        resolve_format("pdf")


def test_example_values_by_type():
    """Test placeholder examples for columns without an explicit example."""
    today = date(2024, 3, 1)
    assert example_value(TemplateColumn(name="qty", type=ColumnType.NUMBER), today) == "100"
    assert example_value(TemplateColumn(name="flag", type=ColumnType.BOOLEAN), today) == "true"
    assert example_value(TemplateColumn(name="due", type=ColumnType.DATE), today) == "2024-03-01"
    assert example_value(TemplateColumn(name="note", display_name="Note"), today) == "Example Note"
    assert example_value(TemplateColumn(name="code", example="ICU-01"), today) == "ICU-01"


def test_constraint_hints():
    column = TemplateColumn(name="qty", type=ColumnType.NUMBER, required=True, min_value=1, max_value=99.5)
    assert constraint_hints(column) == ["Required", "Min: 1", "Max: 99.5"]
    assert constraint_hints(STATUS) == ["Required", "Values: ACTIVE, INACTIVE"]


def test_csv_template():
    """Test CSV template layout: header, example row, then comment hints."""
    text = generate_template(COLUMNS, "csv").decode("utf-8")
    lines = text.split("\n")

    assert lines[0] == "Department Code,Department Name,Hospital ID,Description,Is Active"
    assert lines[1].startswith("ICU-01,Intensive Care Unit,1,")
    assert lines[2] == ""
    comments = [line for line in lines[3:] if line]
    assert all(line.startswith("#") for line in comments)
    assert [row["code"] for row in parse_file(text.encode("utf-8"), "csv", COLUMNS)] == ["ICU-01"]
    assert "# Department Code *: Required; Max length: 50; Pattern: ^[A-Z0-9_-]+$" in comments


def test_csv_hint_with_commas_stays_one_cell():
    content = generate_template([STATUS], "csv")

    assert '"# Status *: Required; Values: ACTIVE, INACTIVE"' in content.decode("utf-8")
    assert len(parse_file(content, "csv", [STATUS])) == 1


def test_excel_template():
    """Test Excel template header styling, example row and hints."""
    content = generate_template(COLUMNS, TemplateFormat.EXCEL)
    worksheet = load_workbook(BytesIO(content)).active

    headers = [cell.value for cell in worksheet[1]]
    assert headers == [column.label for column in COLUMNS]
    assert worksheet["A1"].font.bold is True
    assert worksheet["A1"].fill.fgColor.rgb == "FF4472C4"
    assert worksheet["A2"].value == "ICU-01"
    assert "Required" in worksheet["A1"].comment.text
    assert worksheet.freeze_panes == "A2"
    assert worksheet.column_dimensions["A"].width == 17


def test_excel_template_enum_dropdown():
    """Test that enum columns carry a list validation over the data rows."""
    content = generate_template([TemplateColumn(name="code"), STATUS], "excel")
    worksheet = load_workbook(BytesIO(content)).active

    validations = worksheet.data_validations.dataValidation
    assert len(validations) == 1
    assert validations[0].type == "list"
    assert validations[0].formula1 == '"ACTIVE,INACTIVE"'
    assert str(validations[0].sqref) == "B2:B1000"
