"""Persistence: PersistencePort interface, Postgres and in-memory implementations."""

from docflow.persistence.interface import PersistencePort
from docflow.persistence.memory import MemoryPersistence
from docflow.persistence.postgres import PostgresPersistence

__all__ = ["PersistencePort", "PostgresPersistence", "MemoryPersistence", "get_persistence"]


def get_persistence(database_url: str | None = None) -> PersistencePort:
    """Postgres when a database URL is configured, else in-memory."""
    if database_url is None:
        from docflow.config import get_settings
        database_url = get_settings().database_url
    if (database_url or "").strip():
        return PostgresPersistence(database_url.strip())
    return MemoryPersistence()
