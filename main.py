from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from loguru import logger

from telemetry_kit.api.routers import main_router
from telemetry_kit.core.config import settings
from telemetry_kit.core.loguru_logger import setup_logging
from telemetry_kit.db.db_helper import db_helper as db_lifespan
from telemetry_kit.utils.redis_client import create_redis_client


@asynccontextmanager
async def lifespan(app: FastAPI):
    # startup
    setup_logging(settings.log.level, settings.log.file)
    app.state.redis = create_redis_client()
    await db_lifespan.create_all()

    yield

    # shutdown
    logger.info("close redis client")
    await app.state.redis.aclose()
    logger.info("dispose db engine")
    await db_lifespan.dispose()

main_app = FastAPI(title="telemetry-kit ingestion", lifespan=lifespan)
main_app.include_router(
    main_router,
    responses={404: {"description": "Not found"}},
)


if __name__ == "__main__":
    uvicorn.run("main:main_app",
                host=settings.run.host,
                port=settings.run.port,
                reload=True
    )
