from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI
from starlette.requests import Request

from linkboard.api.router import api_router
from linkboard.core.config import get_settings
from linkboard.core.telemetry import configure_api_logging, setup_api_telemetry
from linkboard.services.repository import get_repository
from linkboard.services.scanning import get_scan_dispatcher

settings = get_settings()
logger = logging.getLogger("linkboard.access")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "starting %s environment=%s storage=%s",
        settings.app_name,
        settings.environment,
        settings.storage_backend,
    )
    try:
        yield
    finally:
        # In-flight scan dispatches are best-effort; drop them on shutdown.
        await get_scan_dispatcher().aclose()
        get_scan_dispatcher.cache_clear()
        telemetry.shutdown(app)
        await get_repository().close()
        get_repository.cache_clear()


configure_api_logging(settings)
app = FastAPI(title=settings.app_name, lifespan=lifespan)
telemetry = setup_api_telemetry(app, settings)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started_at = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "%s %s -> %s in %.1fms",
        request.method,
        request.url.path,
        response.status_code,
        (time.perf_counter() - started_at) * 1000.0,
    )
    return response


app.include_router(api_router)
