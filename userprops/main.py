import logging
import os
import time
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException

# Load env from the working directory before settings are read
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from userprops.core.config import settings, validate_config
from userprops.core.database import check_connection, create_all_tables
from userprops.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from userprops.core.logging import LOGGER_NAME, configure_logging
from userprops.core.middleware.metrics import MetricsMiddleware
from userprops.core.middleware.request_id import RequestIdMiddleware
from userprops.core.validation import validate_env
from userprops.api import health, metrics, user_properties

configure_logging(settings.ENV, settings.LOG_LEVEL)
validate_env()
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger(LOGGER_NAME)
    logger.info("Starting user properties service...")
    app.state.startup_time = time.time()
    if not check_connection():
        logger.warning("Database unreachable at startup")
    try:
        create_all_tables()
    except Exception as e:
        # Readiness reports the problem; liveness stays up
        logger.error(f"Table creation failed at startup: {e}")
    try:
        yield
    finally:
        logger.info("Stopping user properties service...")


app = FastAPI(title="User Properties API", lifespan=lifespan)

# Middlewares
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.include_router(user_properties.router)
app.include_router(health.router)
app.include_router(metrics.router)
