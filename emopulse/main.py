from fastapi import FastAPI, Depends
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from sqlalchemy import text

from emopulse.db.base import get_db
from emopulse.core.config import get_settings
from emopulse.core.logging import configure_logging
from emopulse.routers import slack as slack_router
from emopulse.routers import events as events_router
from emopulse.routers import queue as queue_router
from emopulse.routers import exports as exports_router
from emopulse.core.errors import (
    EmoPulseException,
    emopulse_exception_handler,
    validation_exception_handler,
    unhandled_exception_handler,
)

settings = get_settings()
configure_logging(settings.LOG_LEVEL)

app = FastAPI(
    title="emopulse API",
    description=(
        "**Chat emotion pipeline**\n\n"
        "Receives Slack message events, queues them per conversation for "
        "emotion scoring, and exposes the scored event store.\n\n"
        "All error responses follow the `{code, message, details}` envelope."
    ),
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Exception handlers (most specific first) ---
app.add_exception_handler(EmoPulseException, emopulse_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

# --- Routers ---
app.include_router(slack_router.router)
app.include_router(events_router.router)
app.include_router(queue_router.router)
app.include_router(exports_router.router)


@app.get("/health", tags=["health"], summary="Health check")
def health(db: Session = Depends(get_db)):
    """
    Returns `{"status": "ok", "db": "ok"}` when both the API and the database
    are reachable. Returns HTTP 503 if the DB is down.
    """
    try:
        db.execute(text("SELECT 1"))
        db_status = "ok"
    except Exception:
        db_status = "unreachable"

    if db_status != "ok":
        return JSONResponse(
            status_code=503,
            content={"status": "error", "db": db_status},
        )
    return {"status": "ok", "db": "ok", "env": settings.APP_ENV}
