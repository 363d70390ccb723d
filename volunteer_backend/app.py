"""
FastAPI application entry point for the volunteer hub backend.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import FastAPI, Request

from volunteer_backend.config import get_settings
from volunteer_backend.errors import install_exception_handlers
from volunteer_backend.routes import router

logger = logging.getLogger(__name__)


async def log_requests(request: Request, call_next):
    """Log method, path, status and processing time for every request."""
    start_time = datetime.now(timezone.utc)
    response = await call_next(request)
    process_time = (datetime.now(timezone.utc) - start_time).total_seconds()
    logger.info(
        "%s %s - %s - %.4fs",
        request.method,
        request.url.path,
        response.status_code,
        process_time,
    )
    return response


def create_app() -> FastAPI:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = FastAPI(title="Volunteer Hub Backend (FastAPI)", version="0.1.0")
    app.middleware("http")(log_requests)
    install_exception_handlers(app)
    app.include_router(router, prefix=settings.api_prefix)
    return app


app = create_app()
