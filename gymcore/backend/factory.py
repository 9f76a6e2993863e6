"""Factory helpers for choosing a backend at startup."""

from __future__ import annotations

from gymcore import config
from gymcore.backend.base import Backend
from gymcore.backend.memory import InMemoryBackend
from utils.logging_utils import get_tagged_logger, mask_db_url

logger = get_tagged_logger(__name__, tag="backend/factory")


DEFAULT_SOURCE_NAME = "sql"


def build_backend(settings: config.Settings | None = None) -> Backend:
    """Instantiate the configured backend."""
    settings = settings or config.settings
    source = (settings.backend_source or DEFAULT_SOURCE_NAME).lower()

    if source == "memory":
        logger.info("Using in-memory backend")
        return InMemoryBackend({settings.profiles_table: [], settings.plans_table: []})

    if source == "sql":
        from .sql import SqlBackend

        db_url = settings.database_url
        if not db_url:
            raise ValueError("database_url must be set for the sql backend")
        logger.info("Using SQL backend", extra={"db_url": mask_db_url(db_url)})
        return SqlBackend.from_url(db_url)

    raise ValueError(f"Unknown backend source '{source}'")
