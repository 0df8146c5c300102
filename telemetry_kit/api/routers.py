from fastapi import APIRouter

from telemetry_kit.api.urls_health import health_router
from telemetry_kit.api.urls_ingest import ingest_router

main_router = APIRouter()

# Register API routers ---------------------------------------
main_router.include_router(health_router)
main_router.include_router(ingest_router)
