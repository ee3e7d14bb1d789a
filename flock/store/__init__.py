"""Record store abstraction.

Components depend on the TableService interface only. The backend is
picked from settings: the in-memory fake for development and tests, or a
Google spreadsheet in production.
"""

from functools import lru_cache

from .base import Row, Table, TableService, TABLE_COLUMNS, new_id, utc_now_iso
from .memory import InMemoryTableService
from .retry import call_with_retry


def get_table_service(settings=None) -> TableService:
    """Create the configured TableService.

    Args:
        settings: Optional Settings; defaults to get_settings()

    Returns:
        TableService instance
    """
    if settings is None:
        from flock.core.config import get_settings

        settings = get_settings()

    backend = settings.store_backend.lower()
    if backend == "memory":
        return InMemoryTableService()
    if backend == "sheets":
        from .sheets import SheetsTableService

        return SheetsTableService.from_settings(settings)
    raise ValueError(f"Unknown store backend: {settings.store_backend}")


@lru_cache
def get_shared_table_service() -> TableService:
    """Process-wide TableService shared by the API, CLI and workers."""
    return get_table_service()


__all__ = [
    "Row",
    "Table",
    "TableService",
    "TABLE_COLUMNS",
    "InMemoryTableService",
    "call_with_retry",
    "get_shared_table_service",
    "get_table_service",
    "new_id",
    "utc_now_iso",
]
