import logging

from skillshare.config import Settings
from skillshare.database import create_db_engine
from skillshare.storage.base import IStorage
from skillshare.storage.memory import MemoryStorage
from skillshare.storage.sql import SqlStorage

logger = logging.getLogger(__name__)

__all__ = ["IStorage", "MemoryStorage", "SqlStorage", "build_storage"]


def build_storage(settings: Settings) -> IStorage:
    """Pick the backend named by settings.storage_backend."""
    if settings.storage_backend == "memory":
        logger.info("Using in-memory storage; data is lost on restart")
        return MemoryStorage()

    engine = create_db_engine(settings.database_url, echo=settings.debug)
    logger.info("Using database storage (%s)", engine.url.render_as_string(hide_password=True))
    return SqlStorage(engine)
