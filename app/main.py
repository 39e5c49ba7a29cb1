"""FastAPI app: booking API, provider webhooks, cron triggers and ops endpoints."""

from contextlib import asynccontextmanager
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from app.config import config
from app.database import init_db
from app.logging_config import logger
from app.metrics import api_requests_total, api_request_duration


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("application_starting", version="1.0.0")
    init_db()
    logger.info(
        "integrations_configured",
        stripe=config.has_stripe_config(),
        elevenlabs=config.has_elevenlabs_config(),
        storage=config.has_storage_config(),
        email=config.has_email_config(),
        openai=config.has_openai_key(),
    )

    yield

    logger.info("application_stopped")


app = FastAPI(
    title="Call Santa API",
    description="Bookings, payments, outbound Santa calls and keepsake videos",
    version="1.0.0",
    lifespan=lifespan
)

# The booking UI is served from a different origin.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def record_request_metrics(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)
    api_requests_total.labels(method=request.method, endpoint=endpoint, status=response.status_code).inc()
    api_request_duration.observe(time.perf_counter() - start)
    return response


# GET /metrics
# Gets: nothing
# Returns: Prometheus text exposition
# Example:
#   curl http://localhost:8000/metrics
@app.get("/metrics")
async def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


from app.health import router as health_router
from app.routers.core import router as core_router
from app.routers.calls import router as calls_router
from app.routers.webhooks import router as webhooks_router
from app.routers.cron import router as cron_router
from app.routers.videos import router as videos_router
from app.routers.affiliates import router as affiliates_router

app.include_router(health_router)
app.include_router(core_router)
app.include_router(calls_router)
app.include_router(webhooks_router)
app.include_router(cron_router)
app.include_router(videos_router)
app.include_router(affiliates_router)
