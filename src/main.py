import logging
import os
import time

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError

from src.api.routes.routes import router
from src.infrastructure.db.session import engine
from src.infrastructure.db.models import Base

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Game Rental Booking Engine")
app.include_router(router)


@app.exception_handler(IntegrityError)
def handle_integrity_error(request: Request, exc: IntegrityError) -> JSONResponse:
    # One payment and one review per booking are enforced by unique keys too.
    logger.warning(
        "Constraint violation on %s %s: %s",
        request.method,
        request.url.path,
        exc.orig,
    )
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"detail": "Conflicting write for this booking"},
    )


def _wait_for_db() -> None:
    max_retries = int(os.getenv("DB_CONNECT_MAX_RETRIES", "30"))
    retry_delay_seconds = float(os.getenv("DB_CONNECT_RETRY_DELAY", "1.5"))

    for attempt in range(1, max_retries + 1):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info("Database is reachable at %s", engine.url.render_as_string(hide_password=True))
            return
        except OperationalError:
            if attempt == max_retries:
                logger.exception(
                    "Database not reachable after %s attempts. Check DATABASE_URL.",
                    max_retries,
                )
                raise
            logger.warning(
                "Database not ready (attempt %s/%s). Retrying in %.1f seconds...",
                attempt,
                max_retries,
                retry_delay_seconds,
            )
            time.sleep(retry_delay_seconds)


def _check_config() -> None:
    if os.getenv("JWT_SECRET", "CHANGE_ME") == "CHANGE_ME":
        logger.warning("JWT_SECRET is not set; bearer tokens are checked against a placeholder")
    if not os.getenv("RAZORPAY_WEBHOOK_SECRET"):
        logger.warning("RAZORPAY_WEBHOOK_SECRET is not set; payment webhooks will be rejected")
    logger.info(
        "Payments in %s; pending bookings expire after %s minutes when the sweep runs",
        os.getenv("PAYMENT_CURRENCY", "INR"),
        os.getenv("PENDING_BOOKING_TTL_MINUTES", "60"),
    )


@app.on_event("startup")
def on_startup() -> None:
    _check_config()
    _wait_for_db()
    Base.metadata.create_all(bind=engine)
