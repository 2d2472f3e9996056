import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

# Load env from the working directory's .env (skipped under pytest)
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from companion.core.config import settings, validate_config
from companion.core.database import ensure_schema
from companion.core.logging import LOGGER_NAME, configure_logging
from companion.core.middleware.request_id import RequestIdMiddleware
from companion.core.validation import validate_env
from companion.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from companion.api import health, journal, subscriptions, usage, users

configure_logging(settings.ENV)
validate_env()
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger(LOGGER_NAME)
    logger.info("Starting companion backend...")
    import time
    app.state.startup_time = time.time()
    # /readyz checks for the documents table
    ensure_schema()
    try:
        yield
    finally:
        logging.getLogger(LOGGER_NAME).info("Stopping companion backend...")


app = FastAPI(title="Companion - Journal backend", lifespan=lifespan)

app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(journal.router)
app.include_router(users.router)
app.include_router(users.hooks_router)
app.include_router(subscriptions.router)
app.include_router(usage.router)
app.include_router(health.router)
app.include_router(health.root_router)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
