"""Bulk import of hospital departments."""
import logging
from typing import Any, Dict, List, Sequence

from sqlalchemy.orm import Session

from app.models.department import Department, Hospital
from app.models.import_history import ImportHistory
from app.schemas.imports import (
    ColumnType,
    ConflictPolicy,
    ImportOptions,
    ImportServiceMetadata,
    Severity,
    TemplateColumn,
    ValidationIssue,
)
from app.services.import_policy import ImportPolicy, register_import_policy
from app.services.import_rules import as_text, check_columns, issue, parse_boolean, parse_integer

logger = logging.getLogger(__name__)

COLUMNS = [
    TemplateColumn(
        name="code",
        display_name="Department Code",
        type=ColumnType.STRING,
        required=True,
        max_length=50,
        pattern="^[A-Z0-9_-]+$",
        description="Unique code for the department (e.g., ICU, ED, OPD)",
        example="ICU-01",
    ),
    TemplateColumn(
        name="name",
        display_name="Department Name",
        type=ColumnType.STRING,
        required=True,
        max_length=255,
        description="Full name of the department in Thai or English",
        example="Intensive Care Unit",
    ),
    TemplateColumn(
        name="hospital_id",
        display_name="Hospital ID",
        type=ColumnType.NUMBER,
        min_value=1,
        description="Hospital ID assignment (if provided, must exist in database)",
        example="1",
    ),
    TemplateColumn(
        name="description",
        display_name="Description",
        type=ColumnType.STRING,
        max_length=500,
        description="Additional description or notes about the department",
        example="High-dependency unit for critical patients",
    ),
    TemplateColumn(
        name="is_active",
        display_name="Is Active",
        type=ColumnType.BOOLEAN,
        description="Whether this department is currently active",
        example="true",
    ),
]


@register_import_policy
class DepartmentImportPolicy(ImportPolicy):
    """
    Departments master data.

    Codes must be unique across the database, hospital ids must reference an
    existing hospital. Imported rows carry the job's batch id so a rollback
    removes exactly the departments that job created.
    """

    metadata = ImportServiceMetadata(
        module="departments",
        domain="inventory",
        subdomain="master-data",
        display_name="Departments",
        description="Master list of hospital departments",
        dependencies=[],
        priority=1,
        tags=["master-data", "required", "inventory"],
        supports_rollback=True,
        version="1.0.0",
    )

    def get_template_columns(self) -> List[TemplateColumn]:
        return list(COLUMNS)

    def validate_row(self, db: Session, row: Dict[str, Any], row_number: int) -> List[ValidationIssue]:
        issues = check_columns(COLUMNS, row, row_number)
        failed = {found.field for found in issues}

        code = as_text(row.get("code"))
        if code and "code" not in failed:
            existing = db.query(Department.id).filter(Department.dept_code == code).first()
            if existing:
                issues.append(issue(row_number, "code",
                                    f"Department code '{code}' already exists in database", "DUPLICATE_CODE"))

        if as_text(row.get("hospital_id")) and "hospital_id" not in failed:
            try:
                hospital_id = parse_integer(row["hospital_id"])
            except ValueError:
                issues.append(issue(row_number, "hospital_id", "Hospital ID must be a whole number", "INVALID_TYPE"))
            else:
                if db.get(Hospital, hospital_id) is None:
                    issues.append(issue(row_number, "hospital_id",
                                        f"Hospital with ID {hospital_id} does not exist", "INVALID_REFERENCE"))

        if as_text(row.get("is_active")) is None:
            issues.append(issue(row_number, "is_active", "Is Active not provided, defaulting to true",
                                "DEFAULT_APPLIED", severity=Severity.WARNING))

        return issues

    def validate_dataset(self, rows: Sequence[Dict[str, Any]]) -> List[ValidationIssue]:
        issues: List[ValidationIssue] = []
        first_seen: Dict[str, int] = {}
        for row_number, row in enumerate(rows, start=1):
            code = as_text(row.get("code"))
            if not code:
                continue
            if code in first_seen:
                issues.append(issue(
                    row_number, "code",
                    f"Department code '{code}' appears more than once in the file (first on row {first_seen[code]})",
                    "DUPLICATE_CODE",
                ))
            else:
                first_seen[code] = row_number
        return issues

    def insert_batch(
        self,
        db: Session,
        rows: Sequence[Dict[str, Any]],
        options: ImportOptions,
        batch_id: str,
    ) -> int:
        records = [self._to_record(row) for row in rows]

        existing: Dict[str, Department] = {}
        if options.on_conflict == ConflictPolicy.UPDATE:
            codes = [record["dept_code"] for record in records]
            existing = {
                department.dept_code: department
                for department in db.query(Department).filter(Department.dept_code.in_(codes)).all()
            }

        updated = 0
        for record in records:
            department = existing.get(record["dept_code"])
            if department is not None:
                for key, value in record.items():
                    setattr(department, key, value)
                updated += 1
                continue
            department = Department(import_batch_id=batch_id, **record)
            db.add(department)
            if options.on_conflict == ConflictPolicy.UPDATE:
                existing[record["dept_code"]] = department

        db.flush()
        if updated:
            logger.info(f"Updated {updated} existing departments (batch {batch_id})")
        return len(records)

    def perform_rollback(self, db: Session, job: ImportHistory) -> int:
        deleted = (
            db.query(Department)
            .filter(Department.import_batch_id == job.batch_id)
            .delete(synchronize_session=False)
        )
        logger.info(f"Deleted {deleted} departments imported by job {job.job_id}")
        return deleted

    @staticmethod
    def _to_record(row: Dict[str, Any]) -> Dict[str, Any]:
        hospital_id = row.get("hospital_id")
        is_active = row.get("is_active")
        return {
            "dept_code": as_text(row.get("code")),
            "dept_name": as_text(row.get("name")),
            "hospital_id": parse_integer(hospital_id) if as_text(hospital_id) else None,
            "description": as_text(row.get("description")),
            "is_active": parse_boolean(is_active) if as_text(is_active) else True,
        }
