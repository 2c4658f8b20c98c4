"""Import pipeline request, response and value schemas."""
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base schema serialised with camelCase keys, accepting either form on input."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class ColumnType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"


class Severity(str, Enum):
    ERROR = "ERROR"
    WARNING = "WARNING"


class ConflictPolicy(str, Enum):
    SKIP = "skip"
    UPDATE = "update"
    ERROR = "error"


class TemplateFormat(str, Enum):
    CSV = "csv"
    EXCEL = "excel"


class TemplateColumn(CamelModel):
    """One importable field of a module's template."""

    name: str
    display_name: Optional[str] = None
    type: ColumnType = ColumnType.STRING
    required: bool = False
    max_length: Optional[int] = None
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    enum_values: Optional[List[str]] = None
    pattern: Optional[str] = None
    description: Optional[str] = None
    example: Optional[str] = None

    class Config:
        frozen = True

    @property
    def label(self) -> str:
        return self.display_name or self.name


class ValidationIssue(CamelModel):
    """A row/field addressable validation error or warning."""

    row: int = Field(..., ge=1, description="1-indexed data row number")
    field: str
    message: str
    severity: Severity = Severity.ERROR
    code: str

    class Config:
        frozen = True


class ValidationStats(CamelModel):
    total_rows: int
    valid_rows: int
    error_rows: int


class ValidationResult(CamelModel):
    """Outcome of validating an uploaded file, keyed by its session."""

    session_id: str
    is_valid: bool
    errors: List[ValidationIssue]
    warnings: List[ValidationIssue]
    stats: ValidationStats
    expires_at: datetime
    can_proceed: bool


class ImportOptions(CamelModel):
    """Caller options fixed for the lifetime of one import job."""

    skip_warnings: bool = False
    batch_size: int = Field(100, gt=0)
    on_conflict: ConflictPolicy = ConflictPolicy.SKIP

    class Config:
        frozen = True


class ImportRequest(CamelModel):
    session_id: str = Field(..., min_length=1)
    options: Optional[ImportOptions] = None


class ImportJobAccepted(CamelModel):
    job_id: str
    status: str = "queued"


class ImportProgress(CamelModel):
    total_rows: int
    imported_rows: int
    error_rows: int
    current_row: int
    percent_complete: int


class ImportStatusResponse(CamelModel):
    """Point-in-time snapshot of an import job."""

    job_id: str
    module: str
    status: str
    progress: ImportProgress
    started_at: Optional[datetime] = None
    estimated_completion: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None


class RollbackResponse(CamelModel):
    job_id: str
    status: str


class ImportedBy(CamelModel):
    id: str
    name: str


class ImportHistoryRecord(CamelModel):
    job_id: str
    module: str
    status: str
    records_imported: int
    completed_at: Optional[datetime] = None
    imported_by: ImportedBy


class ImportServiceMetadata(CamelModel):
    """Static description of an importable module."""

    module: str
    domain: str
    subdomain: Optional[str] = None
    display_name: str
    description: str = ""
    dependencies: List[str] = []
    priority: int = 100
    tags: List[str] = []
    supports_rollback: bool = False
    version: str = "1.0.0"

    class Config:
        frozen = True


class ImportUser(BaseModel):
    """Identity and request context of whoever drives an import."""

    id: str = "system"
    name: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
