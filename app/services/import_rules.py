"""Checks derived from template column definitions, shared by import policies."""
import math
import re
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence

from app.schemas.imports import ColumnType, Severity, TemplateColumn, ValidationIssue

TRUE_VALUES = {"true", "yes", "1"}
FALSE_VALUES = {"false", "no", "0"}


def as_text(value: Any) -> Optional[str]:
    """Cell value as stripped text; None for empty cells."""
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None


def parse_number(value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError(f"{value!r} is not a number")
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        number = float(str(value).strip())
    if not math.isfinite(number):
        raise ValueError(f"{value!r} is not a finite number")
    return number


def parse_integer(value: Any) -> int:
    number = parse_number(value)
    if not number.is_integer():
        raise ValueError(f"{value!r} is not a whole number")
    return int(number)


def parse_boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = (as_text(value) or "").lower()
    if text in TRUE_VALUES:
        return True
    if text in FALSE_VALUES:
        return False
    raise ValueError(f"{value!r} is not a boolean")


def parse_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip())


def issue(row_number: int, field: str, message: str, code: str,
          severity: Severity = Severity.ERROR) -> ValidationIssue:
    return ValidationIssue(row=row_number, field=field, message=message, severity=severity, code=code)


def _check_value(column: TemplateColumn, value: Any, row_number: int) -> Optional[ValidationIssue]:
    label = column.label

    if column.type == ColumnType.NUMBER:
        try:
            number = parse_number(value)
        except ValueError:
            return issue(row_number, column.name, f"{label} must be a valid number", "INVALID_TYPE")
        if column.min_value is not None and number < column.min_value:
            return issue(row_number, column.name, f"{label} must be at least {column.min_value:g}", "OUT_OF_RANGE")
        if column.max_value is not None and number > column.max_value:
            return issue(row_number, column.name, f"{label} must be at most {column.max_value:g}", "OUT_OF_RANGE")
        return None

    if column.type == ColumnType.BOOLEAN:
        try:
            parse_boolean(value)
        except ValueError:
            return issue(row_number, column.name,
                         f"{label} must be true, false, yes, no, 1, or 0", "INVALID_FORMAT")
        return None

    if column.type == ColumnType.DATE:
        try:
            parse_date(value)
        except ValueError:
            return issue(row_number, column.name, f"{label} must be a date (YYYY-MM-DD)", "INVALID_FORMAT")
        return None

    text = as_text(value)
    if column.max_length and len(text) > column.max_length:
        return issue(row_number, column.name,
                     f"{label} must be at most {column.max_length} characters", "MAX_LENGTH")
    if column.pattern and not re.search(column.pattern, text):
        return issue(row_number, column.name,
                     f"{label} does not match the required format {column.pattern}", "INVALID_FORMAT")
    return None


def check_columns(
    columns: Sequence[TemplateColumn], row: Dict[str, Any], row_number: int
) -> List[ValidationIssue]:
    """
    Apply the required/type/length/range/enum/pattern rules each column declares.

    At most one issue is reported per column.
    """
    issues = []
    for column in columns:
        value = row.get(column.name)
        if as_text(value) is None:
            if column.required:
                issues.append(issue(row_number, column.name, f"{column.label} is required", "REQUIRED_FIELD"))
            continue

        found = _check_value(column, value, row_number)
        if found is None and column.enum_values and as_text(value) not in column.enum_values:
            found = issue(row_number, column.name,
                          f"{column.label} must be one of: {', '.join(column.enum_values)}", "INVALID_VALUE")
        if found is not None:
            issues.append(found)
    return issues
