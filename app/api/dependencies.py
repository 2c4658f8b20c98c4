"""FastAPI dependencies for the import endpoints."""
from typing import Optional

from fastapi import BackgroundTasks, Header, Request

from app.config import get_settings
from app.schemas.imports import ImportUser
from app.services.import_dispatch import ImportTaskExecutor, create_executor
from app.services.import_modules import build_pipeline
from app.services.import_pipeline import ImportPipeline


def get_import_pipeline(module: str) -> ImportPipeline:
    """Pipeline of the module named in the request path."""
    return build_pipeline(module)


def get_task_executor(background_tasks: BackgroundTasks) -> ImportTaskExecutor:
    return create_executor(get_settings(), background_tasks)


def get_import_user(
    request: Request,
    x_user_id: Optional[str] = Header(None),
    x_user_name: Optional[str] = Header(None),
) -> ImportUser:
    """
    Caller identity and request context.

    Authentication happens upstream; the gateway forwards the user in
    X-User-Id / X-User-Name headers.
    """
    return ImportUser(
        id=x_user_id or "system",
        name=x_user_name,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
