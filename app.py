import logging
import os
import uuid

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import LOG_LEVEL
from core.startup import get_runtime, initialize_runtime, shutdown_runtime
from db import db_manager
from sync.api import router as sync_router
from tracking.api import router as tracking_router
from trips.api import router as trips_router

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

DEV_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]


def _cors_origins() -> list[str]:
    configured = [
        origin.strip()
        for origin in os.getenv("CORS_ALLOWED_ORIGINS", "").split(",")
        if origin.strip()
    ]
    if configured:
        return configured
    logger.warning("CORS_ALLOWED_ORIGINS not set, allowing %s", DEV_ORIGINS)
    return DEV_ORIGINS


app = FastAPI(title="Mileage Tracker")
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(tracking_router)
app.include_router(trips_router)
app.include_router(sync_router)


@app.on_event("startup")
async def startup_event():
    """Connect the stores, recover an interrupted trip and start consumers."""
    try:
        runtime = await initialize_runtime()
    except Exception:
        logger.critical("Startup failed", exc_info=True)
        raise
    report = runtime.recovery
    if report is not None and report.trip is not None:
        logger.info(
            "Recovered trip %s on startup (%s, needs_attention=%s)",
            report.trip_id,
            report.state,
            report.needs_attention,
        )
    logger.info("Mileage tracker started")


@app.on_event("shutdown")
async def shutdown_event():
    await shutdown_runtime()
    logger.info("Mileage tracker stopped")


@app.get("/api/health")
async def health():
    runtime = get_runtime()
    database_ok = await db_manager.ping()
    body = {
        "status": "ok" if database_ok else "degraded",
        "database": database_ok,
        "sample_feed": runtime.channel.running,
        "sync_scheduler": runtime.scheduler.running,
        "tracking": runtime.detector.active_trip is not None,
    }
    code = status.HTTP_200_OK if database_ok else status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(status_code=code, content=body)


@app.exception_handler(404)
async def not_found_handler(request: Request, exc: HTTPException):
    logger.warning("404 Not Found: %s. Detail: %s", request.url, exc.detail)
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"error": "Not found", "detail": exc.detail},
    )


@app.exception_handler(500)
async def internal_error_handler(request: Request, exc: Exception):
    error_id = str(uuid.uuid4())
    logger.error(
        "Unhandled error %s on %s %s: %s",
        error_id,
        request.method,
        request.url,
        exc,
        exc_info=True,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error", "error_id": error_id},
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app:app",
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8080")),
        log_level=LOG_LEVEL.lower(),
    )
