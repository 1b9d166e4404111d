"""
ASGI entry point: `uvicorn nutritionist.main:app`.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from redis.exceptions import RedisError

from nutritionist.config import get_settings
from nutritionist.config.logging import configure_logging
from nutritionist.database.connection import close_database, init_database
from nutritionist.serving.api.main import create_api_app
from nutritionist.serving.cache import close_redis, init_redis

settings = get_settings()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings=settings)
    logger.info("Starting AI Nutritionist API", environment=settings.app_env, version=settings.version)

    settings.storage.temp_dir.mkdir(parents=True, exist_ok=True)
    await init_database(settings)

    try:
        await init_redis(settings)
    except (RedisError, OSError) as e:
        logger.warning("Redis unavailable, serving without cache", error=str(e))

    yield

    await close_redis()
    await close_database()
    logger.info("AI Nutritionist API stopped")


app = create_api_app(settings, lifespan=lifespan)
