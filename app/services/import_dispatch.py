"""Executors that run import jobs outside the request that started them."""
import logging
from typing import TYPE_CHECKING, Protocol

from fastapi import BackgroundTasks

from app.config import Settings
from app.schemas.imports import ImportOptions

if TYPE_CHECKING:
    from app.services.import_pipeline import ImportPipeline

logger = logging.getLogger(__name__)


class ImportTaskExecutor(Protocol):
    def submit(self, pipeline: "ImportPipeline", job_id: str, options: ImportOptions) -> None:
        ...


class BackgroundTaskExecutor:
    """Run the job in this process after the response has been sent."""

    def __init__(self, background_tasks: BackgroundTasks):
        self._background_tasks = background_tasks

    def submit(self, pipeline: "ImportPipeline", job_id: str, options: ImportOptions) -> None:
        self._background_tasks.add_task(pipeline.execute_job, job_id, options)


class CeleryTaskExecutor:
    """Send the job to a Celery worker; requires a session store the worker can read."""

    def submit(self, pipeline: "ImportPipeline", job_id: str, options: ImportOptions) -> None:
        from app.tasks.import_tasks import run_import_job

        run_import_job.delay(pipeline.module_name, job_id, options.model_dump(mode="json"))
        logger.info(f"Celery task queued for import job {job_id}")


def create_executor(settings: Settings, background_tasks: BackgroundTasks) -> ImportTaskExecutor:
    """Executor selected by IMPORT_EXECUTOR."""
    if settings.import_executor == "celery":
        return CeleryTaskExecutor()
    return BackgroundTaskExecutor(background_tasks)
