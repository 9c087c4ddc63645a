import asyncio

from loguru import logger
from sqlalchemy import inspect, text
from sqlalchemy.ext.asyncio import AsyncEngine

# Import models at module level to register them with Base metadata
import glimpse.db.models  # noqa: F401
from glimpse.db.base import Base, get_engine
from glimpse.db.utils.session_management import TRANSIENT_ERRORS


async def init_db(engine: AsyncEngine | None = None, max_retries: int = 5, retry_delay: float = 2) -> None:
    """Initialize the database and create missing tables.

    Args:
        engine: Engine to use, the process-wide engine by default
        max_retries: Maximum number of connection retries
        retry_delay: Delay between retries in seconds
    """
    engine = engine or get_engine()
    logger.info(f"Initializing database with driver: {engine.url.drivername}")

    for attempt in range(max_retries):
        try:
            async with engine.begin() as conn:
                await conn.execute(text("SELECT 1"))
                logger.info("Database connection successful")

                tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
                missing = [name for name in Base.metadata.tables if name not in tables]
                if missing:
                    logger.info(f"Creating missing tables: {missing}")
                    await conn.run_sync(Base.metadata.create_all)
                else:
                    logger.info(f"Found existing tables: {tables}")
            break
        except (OSError, *TRANSIENT_ERRORS) as e:
            # Connection refused while the database container is still starting
            logger.error(f"Database connection error (attempt {attempt + 1}/{max_retries}): {e}")
            if attempt >= max_retries - 1:
                logger.error(f"Failed to connect to database after {max_retries} attempts")
                raise
            delay = retry_delay * (2 ** attempt)
            logger.info(f"Retrying in {delay} seconds...")
            await asyncio.sleep(delay)

    logger.info("Database initialization complete.")

