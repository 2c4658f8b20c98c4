"""Exceptions raised by the import pipeline."""
from typing import Any, Dict, Optional


class ImportServiceError(Exception):
    """Base error carrying an error code and the HTTP status it maps to."""

    code = "IMPORT_ERROR"
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ParseError(ImportServiceError):
    """Upload could not be decoded as the requested file type."""

    code = "PARSE_ERROR"


class UnsupportedFormatError(ImportServiceError):
    code = "UNSUPPORTED_FORMAT"


class ValidationBlockedError(ImportServiceError):
    """Session still has validation errors and the caller did not override them."""

    code = "VALIDATION_BLOCKED"
    status_code = 422


class NotFoundError(ImportServiceError):
    code = "NOT_FOUND"
    status_code = 404


class InvalidStateError(ImportServiceError):
    code = "INVALID_STATE"
    status_code = 409


class RollbackUnsupportedError(ImportServiceError):
    code = "ROLLBACK_UNSUPPORTED"


class RollbackFailedError(ImportServiceError):
    code = "ROLLBACK_FAILED"
    status_code = 500


class HistoryReadError(ImportServiceError):
    code = "HISTORY_READ_FAILED"
    status_code = 500


class BatchInsertError(ImportServiceError):
    """A batch failed to persist; wraps the database error that caused it."""

    code = "BATCH_INSERT_FAILED"
    status_code = 500

    def __init__(self, batch_number: int, first_row: int, last_row: int, cause: Exception):
        self.batch_number = batch_number
        self.first_row = first_row
        self.last_row = last_row
        self.cause = cause
        super().__init__(
            f"Batch {batch_number} (rows {first_row}-{last_row}) failed: {cause}",
            details={
                "batch": batch_number,
                "first_row": first_row,
                "last_row": last_row,
                "cause": type(cause).__name__,
            },
        )
