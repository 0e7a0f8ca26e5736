import logging

from proposal_engine.checkpoint.base import CheckpointRecord, CheckpointStore
from proposal_engine.checkpoint.memory import MemoryCheckpointStore
from proposal_engine.checkpoint.saver import SaverCheckpointStore

logger = logging.getLogger(__name__)


async def build_checkpoint_store(settings) -> CheckpointStore:
    """
    Open the configured checkpoint store.

    PostgreSQL URLs use LangGraph's AsyncPostgresSaver, other SQLAlchemy URLs
    the SQLModel table store; without DATABASE_URL the store is in memory.
    """
    if settings.DATABASE_URL:
        from proposal_engine.checkpoint.postgres import PostgresCheckpointStore, is_postgres_url

        if is_postgres_url(settings.DATABASE_URL):
            logger.info("Initializing PostgreSQL checkpointer...")
            store = PostgresCheckpointStore(settings.DATABASE_URL, max_versions=settings.CHECKPOINT_MAX_VERSIONS)
        else:
            from proposal_engine.checkpoint.sql import SqlCheckpointStore

            logger.info("Initializing SQL checkpoint store...")
            store = SqlCheckpointStore(settings.DATABASE_URL, echo=settings.DEBUG)
        await store.setup()
        logger.info("Checkpoint store ready")
        return store

    logger.warning("No DATABASE_URL - using in-memory checkpoint store (state lost on restart)")
    return MemoryCheckpointStore(max_versions=settings.CHECKPOINT_MAX_VERSIONS)


__all__ = [
    "CheckpointRecord",
    "CheckpointStore",
    "MemoryCheckpointStore",
    "SaverCheckpointStore",
    "build_checkpoint_store",
]
