"""Import workflow API endpoints: template, validate, import, status, rollback, history."""
import asyncio
import json
import logging
from typing import List

import redis.asyncio as aioredis
from redis.exceptions import RedisError
from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from fastapi.responses import Response, StreamingResponse
from sqlalchemy.orm import Session

from app.api.dependencies import get_import_pipeline, get_import_user, get_task_executor
from app.config import get_settings
from app.database import get_db
from app.models.import_history import ImportJobStatus
from app.schemas.imports import (
    ImportHistoryRecord,
    ImportJobAccepted,
    ImportOptions,
    ImportRequest,
    ImportServiceMetadata,
    ImportStatusResponse,
    ImportUser,
    RollbackResponse,
    ValidationResult,
)
from app.services.import_dispatch import ImportTaskExecutor
from app.services.import_events import progress_channel
from app.services.import_parser import detect_file_type
from app.services.import_pipeline import ImportPipeline
from app.services.import_policy import registry
from app.services.import_template import FILE_EXTENSIONS, MEDIA_TYPES, resolve_format

router = APIRouter(prefix="/api/imports", tags=["imports"])

settings = get_settings()
logger = logging.getLogger(__name__)


@router.get("", response_model=List[ImportServiceMetadata])
def list_import_modules():
    """Importable modules, ordered so that dependencies come first."""
    return registry.import_order()


@router.get("/{module}/template")
def download_template(
    module: str,
    format: str = Query("excel", description="csv, excel or xlsx"),
    pipeline: ImportPipeline = Depends(get_import_pipeline),
):
    """Download an import template with headers, an example row and constraint hints."""
    template_format = resolve_format(format)
    content = pipeline.generate_template(template_format)
    filename = f"{module}-import-template.{FILE_EXTENSIONS[template_format]}"
    logger.info(f"Generated {template_format.value} template for {module} ({len(content)} bytes)")

    return Response(
        content=content,
        media_type=MEDIA_TYPES[template_format],
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/{module}/validate", response_model=ValidationResult)
def validate_import_file(
    file: UploadFile = File(...),
    pipeline: ImportPipeline = Depends(get_import_pipeline),
    user: ImportUser = Depends(get_import_user),
    db: Session = Depends(get_db),
):
    """
    Validate an uploaded CSV/Excel file and open an import session.

    The response lists every row/field error and warning; its sessionId is
    valid for the configured session TTL.
    """
    file_type = detect_file_type(file.filename)

    max_bytes = settings.import_max_file_size_mb * 1024 * 1024
    content = file.file.read(max_bytes + 1)
    if len(content) > max_bytes:
        logger.warning(f"Upload too large: {file.filename}")
        raise HTTPException(
            status_code=413,
            detail=f"File too large (max {settings.import_max_file_size_mb}MB)",
        )

    logger.info(f"Validating {file.filename} ({len(content)} bytes) for {pipeline.module_name}")
    return pipeline.validate_file(db, content, file.filename, file_type, user)


@router.post("/{module}/import", response_model=ImportJobAccepted, status_code=202)
def start_import(
    payload: ImportRequest,
    pipeline: ImportPipeline = Depends(get_import_pipeline),
    executor: ImportTaskExecutor = Depends(get_task_executor),
    user: ImportUser = Depends(get_import_user),
    db: Session = Depends(get_db),
):
    """Start importing a validated session. Poll the status endpoint for progress."""
    options = payload.options or ImportOptions(batch_size=settings.import_default_batch_size)
    return pipeline.import_data(db, payload.session_id, options, executor, user)


@router.get("/{module}/import/{job_id}/status", response_model=ImportStatusResponse)
def get_import_status(
    job_id: str,
    pipeline: ImportPipeline = Depends(get_import_pipeline),
    db: Session = Depends(get_db),
):
    return pipeline.get_import_status(db, job_id)


@router.get("/{module}/import/{job_id}/can-rollback")
def can_rollback(
    job_id: str,
    pipeline: ImportPipeline = Depends(get_import_pipeline),
    db: Session = Depends(get_db),
):
    return {"jobId": job_id, "canRollback": pipeline.can_rollback(db, job_id)}


@router.post("/{module}/import/{job_id}/rollback", response_model=RollbackResponse)
def rollback_import(
    job_id: str,
    pipeline: ImportPipeline = Depends(get_import_pipeline),
    user: ImportUser = Depends(get_import_user),
    db: Session = Depends(get_db),
):
    """Remove the rows a completed job imported and mark it rolled back."""
    job = pipeline.rollback(db, job_id, user)
    return RollbackResponse(job_id=job.job_id, status=job.status)


@router.get("/{module}/history", response_model=List[ImportHistoryRecord])
def get_import_history(
    limit: int = Query(10, ge=1, le=100, description="Maximum records to return"),
    pipeline: ImportPipeline = Depends(get_import_pipeline),
    db: Session = Depends(get_db),
):
    return pipeline.get_import_history(db, limit)


@router.get("/{module}/import/{job_id}/stream")
async def stream_progress(
    job_id: str,
    pipeline: ImportPipeline = Depends(get_import_pipeline),
    db: Session = Depends(get_db),
):
    """
    Server-Sent Events (SSE) endpoint for real-time progress streaming.

    Sends the current snapshot, then relays the job's Redis progress channel
    until the job reaches a terminal status. Requires IMPORT_EVENTS_ENABLED.
    """
    snapshot = pipeline.get_import_status(db, job_id)

    async def event_generator():
        yield f"data: {snapshot.model_dump_json(by_alias=True)}\n\n"
        if snapshot.status in ImportJobStatus.TERMINAL:
            return

        client = aioredis.Redis.from_url(settings.redis_url, decode_responses=True)
        pubsub = client.pubsub()
        await pubsub.subscribe(progress_channel(job_id))
        try:
            while True:
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if message and message["type"] == "message":
                    yield f"data: {message['data']}\n\n"
                    if json.loads(message["data"]).get("status") in ImportJobStatus.TERMINAL:
                        break
                await asyncio.sleep(0.1)
        except RedisError as e:
            logger.warning(f"SSE stream error for job {job_id}: {e}")
            yield f"data: {json.dumps({'status': 'error', 'error': 'Stream error'})}\n\n"
        finally:
            await pubsub.unsubscribe(progress_channel(job_id))
            await client.aclose()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
    )
