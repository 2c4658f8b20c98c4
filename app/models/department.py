"""Hospital and department master data models."""
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text

from app.database import Base, utcnow


class Hospital(Base):
    """Hospital reference data that departments are assigned to."""

    __tablename__ = "hospitals"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(50), nullable=False, unique=True)
    name = Column(String(255), nullable=False)


class Department(Base):
    """Hospital department, importable in bulk."""

    __tablename__ = "departments"

    id = Column(Integer, primary_key=True, index=True)
    dept_code = Column(String(50), nullable=False, unique=True)
    dept_name = Column(String(255), nullable=False)
    hospital_id = Column(Integer, ForeignKey("hospitals.id"), nullable=True)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    # import_history.batch_id of the job that created this row
    import_batch_id = Column(String(100), nullable=True, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<Department(id={self.id}, dept_code='{self.dept_code}')>"
