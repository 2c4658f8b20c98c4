"""Import history model for tracking import job lifecycle."""
from sqlalchemy import JSON, Boolean, Column, DateTime, Index, Integer, String, Text

from app.database import Base, utcnow


class ImportJobStatus:
    """Job states. PENDING -> RUNNING -> COMPLETED | FAILED, COMPLETED -> ROLLED_BACK."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"

    TERMINAL = (COMPLETED, FAILED, ROLLED_BACK)


class ImportHistory(Base):
    """One row per import job: progress, outcome and audit context."""

    __tablename__ = "import_history"

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(String(36), nullable=False, unique=True)
    session_id = Column(String(36), nullable=True)
    batch_id = Column(String(100), nullable=False, unique=True)
    module_name = Column(String(100), nullable=False)
    status = Column(String(20), nullable=False, default=ImportJobStatus.PENDING)

    total_rows = Column(Integer, default=0, nullable=False)
    imported_rows = Column(Integer, default=0, nullable=False)
    error_rows = Column(Integer, default=0, nullable=False)
    warning_count = Column(Integer, default=0, nullable=False)

    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    duration_ms = Column(Integer, nullable=True)

    error_message = Column(Text, nullable=True)
    error_details = Column(JSON, nullable=True)

    can_rollback = Column(Boolean, default=True, nullable=False)
    rolled_back_at = Column(DateTime, nullable=True)
    rolled_back_by = Column(String(100), nullable=True)

    imported_by = Column(String(100), nullable=False)
    imported_by_name = Column(String(255), nullable=True)
    ip_address = Column(String(50), nullable=True)
    user_agent = Column(Text, nullable=True)

    file_name = Column(String(255), nullable=True)
    file_size_bytes = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_ih_module_created", "module_name", "created_at"),
        Index("idx_ih_status", "status"),
    )

    def __repr__(self):
        return f"<ImportHistory(job_id='{self.job_id}', module='{self.module_name}', status='{self.status}')>"
