"""Session-based import pipeline: validate, import in batches, track, roll back."""
import logging
import math
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from sqlalchemy.exc import SQLAlchemyError, UnboundExecutionError
from sqlalchemy.orm import Session, sessionmaker

from app.config import Settings, get_settings
from app.database import SessionLocal, utcnow
from app.models.import_history import ImportHistory, ImportJobStatus
from app.schemas.imports import (
    ConflictPolicy,
    ImportedBy,
    ImportHistoryRecord,
    ImportJobAccepted,
    ImportOptions,
    ImportProgress,
    ImportStatusResponse,
    ImportUser,
    Severity,
    TemplateColumn,
    TemplateFormat,
    ValidationIssue,
    ValidationResult,
    ValidationStats,
)
from app.services.import_dispatch import ImportTaskExecutor
from app.services.import_errors import (
    BatchInsertError,
    HistoryReadError,
    ImportServiceError,
    InvalidStateError,
    NotFoundError,
    RollbackFailedError,
    RollbackUnsupportedError,
    ValidationBlockedError,
)
from app.services.import_events import ImportEventPublisher
from app.services.import_parser import Row, parse_file
from app.services.import_policy import ImportPolicy
from app.services.import_sessions import ImportSession, SessionResult, SessionStore
from app.services.import_template import generate_template

logger = logging.getLogger(__name__)

SESSION_NOT_FOUND = "Validation session not found or expired"


def percent_complete(job: ImportHistory) -> int:
    """Imported share of the job's rows, rounded half up."""
    if job.total_rows:
        return int(math.floor(job.imported_rows * 100 / job.total_rows + 0.5))
    return 100 if job.status == ImportJobStatus.COMPLETED else 0


def estimate_completion(job: ImportHistory, now: datetime) -> Optional[datetime]:
    """Linear extrapolation of a running job's finish time from its progress so far."""
    if job.status != ImportJobStatus.RUNNING or not job.imported_rows or job.started_at is None:
        return None
    elapsed = now - job.started_at
    return job.started_at + elapsed * job.total_rows / job.imported_rows


def job_event(job: ImportHistory) -> Dict[str, Any]:
    return {
        "job_id": job.job_id,
        "module": job.module_name,
        "status": job.status,
        "total_rows": job.total_rows,
        "imported_rows": job.imported_rows,
        "error_rows": job.error_rows,
        "error": job.error_message,
    }


class ImportPipeline:
    """
    Generic import workflow driven by one module's ImportPolicy.

    Template download, file validation into a TTL-bound session, batched
    transactional import as a background job, status snapshots, rollback and
    history are implemented here once; the policy only supplies columns,
    row validation, batch persistence and rollback of its own rows.

    Job records are written through ``session_factory``; business rows are
    written through ``data_session_factory`` in a single transaction per job,
    so progress stays visible while the data transaction is still open.
    When both live in one SQLite database, progress is committed together
    with the data instead.
    """

    def __init__(
        self,
        policy: ImportPolicy,
        session_store: SessionStore,
        session_factory: sessionmaker = SessionLocal,
        data_session_factory: Optional[sessionmaker] = None,
        settings: Optional[Settings] = None,
        events: Optional[ImportEventPublisher] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.policy = policy
        self.sessions = session_store
        self._session_factory = session_factory
        self._data_session_factory = data_session_factory or session_factory
        self._settings = settings or get_settings()
        self._events = events
        self._clock = clock

    @property
    def module_name(self) -> str:
        return self.policy.metadata.module

    def get_template_columns(self) -> List[TemplateColumn]:
        return self.policy.get_template_columns()

    def generate_template(self, fmt: Union[str, TemplateFormat]) -> bytes:
        return generate_template(self.get_template_columns(), fmt, today=self._clock().date())

    def validate_file(
        self,
        db: Session,
        content: bytes,
        file_name: str,
        file_type: Union[str, TemplateFormat],
        user: Optional[ImportUser] = None,
    ) -> ValidationResult:
        """
        Parse and validate an upload, then open a session holding its rows.

        Args:
            db: Session used by the policy for lookups during validation
            content: Uploaded file content
            file_name: Original file name
            file_type: "csv" or "excel"
            user: Uploading user

        Returns:
            Validation result carrying the new session id

        Raises:
            ParseError: If the file cannot be parsed (no session is created)
        """
        user = user or ImportUser()
        rows = parse_file(content, file_type, self.get_template_columns())

        found: List[ValidationIssue] = []
        for row_number, row in enumerate(rows, start=1):
            for issue in self.policy.validate_row(db, row, row_number):
                if issue.row != row_number:
                    issue = issue.model_copy(update={"row": row_number})
                found.append(issue)
        # one issue per field and row: file-wide checks only report on fields that passed
        flagged = {(issue.row, issue.field) for issue in found if issue.severity == Severity.ERROR}
        found.extend(
            issue for issue in self.policy.validate_dataset(rows)
            if 1 <= issue.row <= len(rows) and (issue.row, issue.field) not in flagged
        )
        found.sort(key=lambda issue: issue.row)

        errors = [issue for issue in found if issue.severity == Severity.ERROR]
        warnings = [issue for issue in found if issue.severity != Severity.ERROR]
        valid_rows = len(rows) - len({issue.row for issue in errors})

        is_valid = not errors
        stats = ValidationStats(
            total_rows=len(rows),
            valid_rows=valid_rows,
            error_rows=len(rows) - valid_rows,
        )
        uploaded_at = self._clock()
        session = ImportSession(
            session_id=str(uuid.uuid4()),
            module_name=self.module_name,
            file_name=file_name,
            file_type=str(getattr(file_type, "value", file_type)),
            file_size=len(content),
            uploaded_at=uploaded_at,
            expires_at=uploaded_at + timedelta(minutes=self._settings.import_session_ttl_minutes),
            rows=rows,
            result=SessionResult(is_valid=is_valid, errors=errors, warnings=warnings, stats=stats),
            can_proceed=is_valid,
            created_by=user.id,
            created_by_name=user.name,
        )
        self.sessions.save(session)

        logger.info(
            f"Validated {file_name} for {self.module_name}: session={session.session_id}, "
            f"rows={stats.total_rows}, valid={stats.valid_rows}, errors={len(errors)}, warnings={len(warnings)}"
        )
        return ValidationResult(
            session_id=session.session_id,
            is_valid=is_valid,
            errors=errors,
            warnings=warnings,
            stats=stats,
            expires_at=session.expires_at,
            can_proceed=session.can_proceed,
        )

    def import_data(
        self,
        db: Session,
        session_id: str,
        options: ImportOptions,
        executor: ImportTaskExecutor,
        user: Optional[ImportUser] = None,
    ) -> ImportJobAccepted:
        """
        Create a pending job for a validated session and hand it to the executor.

        Sessions are single use: the first call claims the session for its job.

        Raises:
            NotFoundError: If the session is unknown, expired or already imported
            ValidationBlockedError: If the session has errors and skip_warnings is off
        """
        user = user or ImportUser()
        session = self.sessions.get(session_id)
        if session is None or session.module_name != self.module_name or session.consumed_by_job:
            raise NotFoundError(SESSION_NOT_FOUND, details={"session_id": session_id})

        if not session.can_proceed and not options.skip_warnings:
            raise ValidationBlockedError(
                "Cannot proceed with import due to validation errors",
                details={"session_id": session_id, "errors": len(session.result.errors)},
            )

        job_id = str(uuid.uuid4())
        session = self.sessions.claim(session_id, job_id)
        if session is None:
            raise NotFoundError(SESSION_NOT_FOUND, details={"session_id": session_id})

        now = self._clock()
        job = ImportHistory(
            job_id=job_id,
            session_id=session_id,
            batch_id=job_id,
            module_name=self.module_name,
            status=ImportJobStatus.PENDING,
            total_rows=session.result.stats.total_rows,
            imported_rows=0,
            error_rows=0,
            warning_count=len(session.result.warnings),
            can_rollback=self.policy.metadata.supports_rollback,
            imported_by=user.id,
            imported_by_name=user.name,
            ip_address=user.ip_address,
            user_agent=user.user_agent,
            file_name=session.file_name,
            file_size_bytes=session.file_size,
            created_at=now,
            updated_at=now,
        )
        db.add(job)
        db.commit()
        logger.info(
            f"Queued import job {job_id} for {self.module_name} "
            f"(session {session_id}, {session.result.stats.total_rows} rows)"
        )

        executor.submit(self, job_id, options)
        return ImportJobAccepted(job_id=job_id, status="queued")

    def execute_job(self, job_id: str, options: ImportOptions) -> None:
        """
        Run a pending job to completion or failure.

        Intended for background execution: failures are recorded on the job
        and logged, never raised. The session is discarded once the job ends.
        """
        history_db = self._session_factory()
        # job attributes stay readable after commits without opening a read transaction
        history_db.expire_on_commit = False
        try:
            job = history_db.query(ImportHistory).filter(ImportHistory.job_id == job_id).first()
            if job is None:
                logger.error(f"Import job not found: {job_id}")
                return
            if job.status != ImportJobStatus.PENDING:
                logger.warning(f"Import job {job_id} is {job.status}, not starting it again")
                return

            session = self.sessions.get(job.session_id)
            if session is None or session.consumed_by_job != job_id:
                self._fail(history_db, job, NotFoundError(SESSION_NOT_FOUND))
                return

            try:
                self._run(history_db, job, session, options)
            finally:
                self.sessions.delete(session.session_id)
        except SQLAlchemyError:
            logger.exception(f"Import job {job_id} could not record its outcome")
        finally:
            history_db.close()

    @staticmethod
    def _shares_sqlite_database(history_db: Session, data_db: Session) -> bool:
        """True when job records and business rows live in one SQLite database."""
        history_engine = history_db.get_bind(ImportHistory)
        if history_engine.dialect.name != "sqlite":
            return False
        try:
            data_engine = data_db.get_bind()
        except UnboundExecutionError:
            return False
        if data_engine is history_engine:
            return True
        database = history_engine.url.database
        return bool(database) and database != ":memory:" and database == data_engine.url.database

    def _importable_rows(self, session: ImportSession) -> Tuple[List[Tuple[int, Row]], int]:
        """Numbered rows to insert and the count of invalid rows left out."""
        numbered = list(enumerate(session.rows, start=1))
        if session.can_proceed:
            return numbered, 0
        invalid = session.error_row_numbers()
        importable = [(number, row) for number, row in numbered if number not in invalid]
        return importable, len(numbered) - len(importable)

    def _run(
        self,
        history_db: Session,
        job: ImportHistory,
        session: ImportSession,
        options: ImportOptions,
    ) -> None:
        rows, skipped = self._importable_rows(session)

        job.status = ImportJobStatus.RUNNING
        job.started_at = self._clock()
        job.error_rows = skipped
        self._persist(history_db, job, "import.started")
        logger.info(
            f"Import job {job.job_id} running: {len(rows)} rows in batches of {options.batch_size}, "
            f"on_conflict={options.on_conflict.value}, skipped_invalid={skipped}"
        )

        data_db = self._data_session_factory()
        # one SQLite database allows a single writer: progress is committed with the data
        live_progress = not self._shares_sqlite_database(history_db, data_db)
        try:
            for batch_number, start in enumerate(range(0, len(rows), options.batch_size), start=1):
                batch = rows[start:start + options.batch_size]
                try:
                    with data_db.begin_nested():
                        written = self.policy.insert_batch(
                            data_db, [row for _, row in batch], options, job.batch_id
                        )
                except Exception as e:
                    error = BatchInsertError(batch_number, batch[0][0], batch[-1][0], e)
                    job.error_rows += len(batch)
                    logger.warning(f"Import job {job.job_id}: {error.message}")
                    if options.on_conflict == ConflictPolicy.ERROR:
                        raise error from e
                else:
                    job.imported_rows += len(batch)
                    logger.debug(f"Import job {job.job_id}: batch {batch_number} wrote {written} rows")

                self._persist(history_db, job, "import.progress", commit=live_progress)

            data_db.commit()
        except Exception as e:
            data_db.rollback()
            self._fail(history_db, job, e)
            return
        finally:
            data_db.close()

        job.status = ImportJobStatus.COMPLETED
        self._finish(job)
        self._persist(history_db, job, "import.completed")
        logger.info(
            f"Import job {job.job_id} completed: imported={job.imported_rows}, "
            f"errors={job.error_rows}, duration={job.duration_ms}ms"
        )

    def _finish(self, job: ImportHistory) -> None:
        job.completed_at = self._clock()
        if job.started_at is not None:
            job.duration_ms = int((job.completed_at - job.started_at).total_seconds() * 1000)

    def _fail(self, history_db: Session, job: ImportHistory, error: Exception) -> None:
        logger.error(f"Import job {job.job_id} failed: {error}", exc_info=error)
        imported_rows, error_rows = job.imported_rows, job.error_rows
        # the failure may have come from a history commit; start a clean transaction
        history_db.rollback()
        job.imported_rows, job.error_rows = imported_rows, error_rows
        job.status = ImportJobStatus.FAILED
        job.error_message = getattr(error, "message", None) or str(error)
        job.error_details = getattr(error, "details", None) or {"type": type(error).__name__}
        self._finish(job)
        self._persist(history_db, job, "import.failed")

    def _persist(self, db: Session, job: ImportHistory, event_type: str, commit: bool = True) -> None:
        job.updated_at = self._clock()
        if commit:
            db.commit()
        if self._events is not None:
            self._events.publish(event_type, job_event(job))

    def _get_job(self, db: Session, job_id: str) -> ImportHistory:
        job = (
            db.query(ImportHistory)
            .filter(ImportHistory.job_id == job_id, ImportHistory.module_name == self.module_name)
            .first()
        )
        if job is None:
            raise NotFoundError("Import job not found", details={"job_id": job_id})
        return job

    def get_import_status(self, db: Session, job_id: str) -> ImportStatusResponse:
        """Snapshot of a job's progress. Read only."""
        job = self._get_job(db, job_id)
        return ImportStatusResponse(
            job_id=job.job_id,
            module=job.module_name,
            status=job.status,
            progress=ImportProgress(
                total_rows=job.total_rows,
                imported_rows=job.imported_rows,
                error_rows=job.error_rows,
                current_row=job.imported_rows,
                percent_complete=percent_complete(job),
            ),
            started_at=job.started_at,
            estimated_completion=estimate_completion(job, self._clock()),
            completed_at=job.completed_at,
            error=job.error_message,
        )

    def can_rollback(self, db: Session, job_id: str) -> bool:
        try:
            job = self._get_job(db, job_id)
        except NotFoundError:
            return False
        return (
            self.policy.metadata.supports_rollback
            and job.can_rollback
            and job.status == ImportJobStatus.COMPLETED
        )

    def rollback(self, db: Session, job_id: str, user: Optional[ImportUser] = None) -> ImportHistory:
        """
        Undo a completed job through the module's rollback routine.

        Raises:
            NotFoundError: If the job is unknown
            InvalidStateError: If the job is not completed
            RollbackUnsupportedError: If the module cannot roll back
            RollbackFailedError: If the module's rollback routine fails
        """
        user = user or ImportUser()
        job = self._get_job(db, job_id)
        if job.status != ImportJobStatus.COMPLETED:
            raise InvalidStateError(
                "Can only rollback completed imports",
                details={"job_id": job_id, "status": job.status},
            )
        if not self.policy.metadata.supports_rollback or not job.can_rollback:
            raise RollbackUnsupportedError(
                f"Rollback is not supported for module '{self.module_name}'",
                details={"job_id": job_id},
            )

        # end the read transaction before the data session takes the write lock
        db.expunge(job)
        db.commit()
        data_db = self._data_session_factory()
        try:
            removed = self.policy.perform_rollback(data_db, job)
            data_db.commit()
        except ImportServiceError:
            data_db.rollback()
            raise
        except Exception as e:
            data_db.rollback()
            raise RollbackFailedError(f"Rollback failed: {e}", details={"job_id": job_id}) from e
        finally:
            data_db.close()

        job = db.merge(job)
        job.status = ImportJobStatus.ROLLED_BACK
        job.rolled_back_at = self._clock()
        job.rolled_back_by = user.id
        self._persist(db, job, "import.rolled_back")
        logger.info(f"Import job {job_id} rolled back by {user.id}: {removed} rows removed")
        return job

    def _read_history(self, db: Session, limit: int) -> List[ImportHistory]:
        try:
            return (
                db.query(ImportHistory)
                .filter(ImportHistory.module_name == self.module_name)
                .order_by(ImportHistory.created_at.desc(), ImportHistory.id.desc())
                .limit(limit)
                .all()
            )
        except SQLAlchemyError as e:
            raise HistoryReadError(f"Failed to retrieve import history: {e}") from e

    def get_import_history(self, db: Session, limit: int = 10) -> List[ImportHistoryRecord]:
        """Most recent jobs of this module first. Read failures yield an empty list."""
        try:
            records = self._read_history(db, limit)
        except HistoryReadError as e:
            logger.error(e.message, exc_info=True)
            return []

        return [
            ImportHistoryRecord(
                job_id=record.job_id,
                module=record.module_name,
                status=record.status,
                records_imported=record.imported_rows,
                completed_at=record.completed_at,
                imported_by=ImportedBy(id=record.imported_by, name=record.imported_by_name or "Unknown"),
            )
            for record in records
        ]
