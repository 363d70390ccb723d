"""
Backend selection and database health.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, Response

from volunteer_backend.dependencies import (
    DB_TYPE_COOKIE,
    repository_for_request,
    resolve_backend,
)
from volunteer_backend.errors import error_response
from volunteer_backend.repository import Repository
from volunteer_backend.schemas import DatabaseSelection, success

logger = logging.getLogger(__name__)

router = APIRouter(tags=["database"])

DB_TYPE_COOKIE_MAX_AGE = 60 * 60 * 24 * 365


@router.get("/database")
def current_database(request: Request):
    backend = resolve_backend(request)
    return success({"db_type": backend.value, "display_name": backend.display_name})


@router.post("/database")
def select_database(payload: DatabaseSelection, response: Response):
    backend = payload.db_type
    response.set_cookie(
        DB_TYPE_COOKIE,
        backend.value,
        max_age=DB_TYPE_COOKIE_MAX_AGE,
        path="/",
        samesite="lax",
    )
    logger.info("Client switched backend to %s", backend.value)
    return success(
        {"db_type": backend.value, "display_name": backend.display_name},
        f"Switched to {backend.display_name}",
    )


@router.get("/health/db")
def database_health(
    request: Request, repo: Repository = Depends(repository_for_request)
):
    backend = resolve_backend(request)
    try:
        repo.ping()
        volunteers = repo.count_volunteers_by_status()
        projects = repo.count_projects_by_status()
        events = repo.count_events()
    except Exception as exc:
        logger.exception("Health check failed for %s", backend.value)
        return error_response(
            503, f"{backend.display_name} connection failed", str(exc)
        )
    return success(
        {
            "db_type": backend.value,
            "display_name": backend.display_name,
            "connected": True,
            "counts": {
                "volunteers": volunteers.total,
                "projects": projects.total,
                "events": events.total,
            },
        },
        f"{backend.display_name} connection successful",
    )
