from fastapi import APIRouter

from telemetry_kit.schemas.events import SDK_VERSION

health_router = APIRouter()


@health_router.get("/health")
async def health():
    return {"status": "healthy", "version": SDK_VERSION}
