# app/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.exceptions import BookingError, LockTimeoutError
from app.core.middleware import RequestTimingMiddleware
from app.db.sql import init_db
from app.routers import (
    appointments,
    audit,
    doctors,
    health,
    notifications,
    payments,
    reports,
    time_slots,
    users,
)

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Seconds a client should wait before retrying a contended booking
RETRY_AFTER_SECONDS = 1


# Define lifespan event
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    The lifespan function is used to manage the FastAPI application lifecycle.
    """
    # Initialize database (create tables if they don't exist)
    logger.info("Starting eChanneling agent API (%s)", settings.APP_ENV)
    await init_db()
    yield
    logger.info("Shutting down eChanneling agent API")


app = FastAPI(
    title="eChanneling Agent Booking API",
    lifespan=lifespan,
)

app.add_middleware(RequestTimingMiddleware)


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    if exc.status_code >= 500 and not exc.retryable:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    headers = {"Retry-After": str(RETRY_AFTER_SECONDS)} if isinstance(exc, LockTimeoutError) else None
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.code,
            "message": exc.user_message or exc.message,
            "status": exc.status_code,
            "retryable": exc.retryable,
        },
        headers=headers,
    )


# Routing
app.include_router(health.router, prefix=settings.API_PREFIX, tags=["health"])
app.include_router(users.router, prefix=settings.API_PREFIX, tags=["users"])
app.include_router(doctors.router, prefix=settings.API_PREFIX, tags=["doctors"])
app.include_router(time_slots.router, prefix=settings.API_PREFIX, tags=["time-slots"])
app.include_router(appointments.router, prefix=settings.API_PREFIX, tags=["appointments"])
app.include_router(payments.router, prefix=settings.API_PREFIX, tags=["payments"])
app.include_router(notifications.router, prefix=settings.API_PREFIX, tags=["notifications"])
app.include_router(reports.router, prefix=settings.API_PREFIX, tags=["reports"])
app.include_router(audit.router, prefix=settings.API_PREFIX, tags=["audit"])
app.include_router(notifications.ws_router)


@app.get("/")
def root():
    return {"message": "eChanneling agent API running"}
