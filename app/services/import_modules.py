"""Registered import modules and pipeline construction."""
from functools import lru_cache
from typing import Optional

from app.config import Settings, get_settings
from app.services import department_import  # noqa: F401 - Import to register policies
from app.services.import_events import create_event_publisher
from app.services.import_pipeline import ImportPipeline
from app.services.import_policy import registry
from app.services.import_sessions import SessionStore, create_session_store


@lru_cache
def get_session_store() -> SessionStore:
    """Process-wide session store."""
    return create_session_store(get_settings())


def build_pipeline(
    module: str,
    session_store: Optional[SessionStore] = None,
    settings: Optional[Settings] = None,
) -> ImportPipeline:
    """
    Pipeline for a registered module.

    Raises:
        NotFoundError: If no policy is registered under ``module``
    """
    settings = settings or get_settings()
    return ImportPipeline(
        registry.get(module),
        session_store or get_session_store(),
        settings=settings,
        events=create_event_publisher(settings),
    )
