import logging

from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from channelflow.config import Settings
from channelflow.db.documents import DOCUMENT_MODELS

logger = logging.getLogger(__name__)


async def init_db(settings: Settings) -> AsyncIOMotorClient:
    try:
        logger.info("Initializing database connection...")
        client = AsyncIOMotorClient(settings.MONGO_URI)

        # Test the connection
        await client.admin.command("ping")
        logger.info("MongoDB connection test successful.")

        await init_beanie(database=client[settings.DB_NAME], document_models=DOCUMENT_MODELS)
        logger.info("MongoDB connection established and Beanie initialized.")
        return client
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)
        raise
