"""
LendTrust — Social Scoring Service

Reputation and social-proximity scoring for uncollateralized P2P loans.

Start with:
    uvicorn lendtrust.main:app --host 0.0.0.0 --port 8000
"""
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import structlog

from lendtrust import __version__
from lendtrust.api.scoring import router as scoring_router

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
)
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("service_starting", version=__version__)

    try:
        from lendtrust.compute.pipeline import get_service
        service = get_service()
        logger.info("scoring_pipeline_initialized", cache=service.cache.stats().get("backend"))
    except Exception as e:
        logger.warning("scoring_pipeline_init_failed", error=str(e))

    yield

    from lendtrust.compute.pipeline import shutdown
    await shutdown()
    logger.info("service_stopped")


app = FastAPI(
    title="LendTrust — Social Scoring",
    description="Social-proximity and reputation scoring for peer-to-peer lending.",
    version=__version__,
    lifespan=lifespan,
)


@app.middleware("http")
async def request_middleware(request: Request, call_next):
    request_id = uuid.uuid4().hex[:12]
    request.state.request_id = request_id
    # every scoring log line emitted while serving this request carries its id
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, path=request.url.path)

    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = round((time.perf_counter() - start) * 1000, 2)

    response.headers["X-Request-Id"] = request_id
    response.headers["X-Response-Time"] = f"{duration_ms}ms"
    if request.url.path.startswith("/v1/social"):
        logger.info("scoring_request", method=request.method, status=response.status_code, duration_ms=duration_ms)
    return response


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("scoring_request_crashed", error=str(exc), type=type(exc).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": "scoring_unavailable",
            "message": "Score could not be computed; treat the counterparty as HIGH risk.",
            "request_id": getattr(request.state, "request_id", "unknown"),
        },
    )


app.include_router(scoring_router)


@app.get("/health")
async def health():
    return {
        "status": "healthy",
        "service": "lendtrust",
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
