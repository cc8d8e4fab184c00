"""
Time Blocker API Server - REST API for scheduling and calendar sync.
"""
# ruff: noqa: S104
# S104: Server binding is configurable via HOST

import logging
import os
from datetime import datetime

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.response_models import HealthResponse
from api.schedule_router import router as schedule_router
from timeblocker import config
from timeblocker import db as db_module
from timeblocker.observability import (
    CorrelationIdMiddleware,
    configure_log_rotation,
    configure_logging,
)

logger = logging.getLogger(__name__)

# FastAPI app initialization
app = FastAPI(
    title="Time Blocker API",
    description="Priority-first time blocking with calendar sync",
    version="0.1.0",
)

# CORS middleware - configurable via CORS_ORIGINS env var
cors_origins_env = os.getenv("CORS_ORIGINS", "*")
cors_origins = (
    ["*"] if cors_origins_env == "*" else [o.strip() for o in cors_origins_env.split(",")]
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(CorrelationIdMiddleware)

app.include_router(schedule_router, prefix="/api")


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies are client errors: 400 with the first offending field."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = [str(part) for part in first.get("loc", ()) if part not in ("body", "query")]
    return JSONResponse(
        status_code=400,
        content={
            "detail": {
                "field": ".".join(location) or "body",
                "message": first.get("msg", "invalid request"),
            }
        },
    )


# ==== DB Startup ====
@app.on_event("startup")
async def ensure_schema_on_startup():
    """Converge the DB schema and log DB info at startup."""
    db_path = db_module.get_db_path()
    logger.info("=== Time Blocker Startup ===")
    logger.info(f"DB path: {db_path}")
    result = db_module.ensure_schema(db_path)
    logger.info(f"DB schema ready: {result}")


@app.get("/api/health", response_model=HealthResponse)
def health():
    """Liveness plus schema version."""
    try:
        with db_module.get_connection() as conn:
            version = db_module.get_schema_version(conn)
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        raise HTTPException(status_code=500, detail="Internal server error") from e
    return HealthResponse(
        status="healthy", schema_version=version, timestamp=datetime.now().isoformat()
    )


def main():
    """Run the server."""
    configure_logging(config.LOG_LEVEL)
    configure_log_rotation(config.LOG_FILE)

    host = os.environ.get("HOST", "127.0.0.1")
    port = int(os.environ.get("PORT", 8420))
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    main()
