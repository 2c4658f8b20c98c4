"""Celery tasks for import job execution."""
import logging

from app.database import SessionLocal
from app.models.import_history import ImportHistory, ImportJobStatus
from app.schemas.imports import ImportOptions
from app.services.import_modules import build_pipeline
from app.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(bind=True)
def run_import_job(self, module: str, job_id: str, options: dict) -> dict:
    """
    Execute a queued import job in a Celery worker.

    Args:
        self: Celery task instance
        module: Import module name
        job_id: Job created by the API's import call
        options: Serialised ImportOptions

    Returns:
        Dict with final job status and counts
    """
    logger.info(f"Starting import task: module={module}, job_id={job_id}")
    pipeline = build_pipeline(module)
    pipeline.execute_job(job_id, ImportOptions(**options))

    db = SessionLocal()
    try:
        job = db.query(ImportHistory).filter(ImportHistory.job_id == job_id).first()
        result = {
            "job_id": job_id,
            "status": job.status if job else None,
            "imported_rows": job.imported_rows if job else 0,
            "error_rows": job.error_rows if job else 0,
        }
    finally:
        db.close()

    if result["status"] == ImportJobStatus.FAILED:
        logger.error(f"Import task finished with a failed job: {result}")
    else:
        logger.info(f"Import task finished: {result}")
    return result
