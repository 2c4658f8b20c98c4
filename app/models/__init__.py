"""Database models."""
from app.models.department import Department, Hospital
from app.models.import_history import ImportHistory, ImportJobStatus

__all__ = ["Department", "Hospital", "ImportHistory", "ImportJobStatus"]
