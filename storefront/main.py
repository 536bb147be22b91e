import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from storefront.config import settings
from storefront.db import close_pool, get_pool, init_schema
from storefront.errors import ApiError, InternalError
from storefront.metrics import get_metrics_bytes, get_metrics_content_type, requests_rejected_total
from storefront.redis_client import close_redis, get_redis
from storefront.routes import users

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    pool = await get_pool()
    await init_schema(pool, reset=settings.reset_schema_on_startup)
    await get_redis()
    logger.info("Schema ready. Serving storefront API ...")
    yield
    await close_redis()
    await close_pool()


app = FastAPI(title="Storefront Orders", lifespan=lifespan)
app.include_router(users.router)


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    requests_rejected_total.labels(kind=exc.kind).inc()
    if exc.status_code < 500:
        logger.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.kind, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    err = InternalError("An unexpected error occurred")
    requests_rejected_total.labels(kind=err.kind).inc()
    return JSONResponse(status_code=err.status_code, content=err.to_dict())


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@app.get("/metrics")
async def metrics() -> Response:
    """Prometheus scrape endpoint: order lifecycle counters and rejected requests."""
    return Response(
        content=get_metrics_bytes(),
        media_type=get_metrics_content_type(),
    )
