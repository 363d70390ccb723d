"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

import logging

from fastapi import Request

from volunteer_backend.config import get_settings
from volunteer_backend.repository import MongoRepository, Repository, SqlRepository
from volunteer_backend.types import BackendType

logger = logging.getLogger(__name__)

DB_TYPE_COOKIE = "db_type"

_sql_repository: SqlRepository | None = None
_mongo_repository: MongoRepository | None = None


def get_sql_repository() -> SqlRepository:
    """
    Return a singleton SQL repository so the engine and its pool are shared.
    """
    global _sql_repository
    if _sql_repository:
        return _sql_repository

    settings = get_settings()
    _sql_repository = SqlRepository(
        settings.database_url,
        pool_min=settings.db_pool_min,
        pool_max=settings.db_pool_max,
        pool_timeout=settings.db_pool_timeout_seconds,
    )
    return _sql_repository


def get_mongo_repository() -> MongoRepository:
    """
    Return a singleton MongoDB repository backed by one MongoClient.
    """
    global _mongo_repository
    if _mongo_repository:
        return _mongo_repository

    settings = get_settings()
    _mongo_repository = MongoRepository.from_uri(
        settings.mongodb_uri, settings.mongodb_db_name
    )
    return _mongo_repository


def set_repositories(
    sql: SqlRepository | None = None, mongo: MongoRepository | None = None
) -> None:
    """Install repositories built elsewhere (tests, scripts)."""
    global _sql_repository, _mongo_repository
    _sql_repository = sql
    _mongo_repository = mongo


def get_repository(backend: BackendType) -> Repository:
    if backend is BackendType.MONGODB:
        return get_mongo_repository()
    return get_sql_repository()


def parse_backend(value: str | None) -> BackendType:
    """Map a ``db_type`` cookie value to a backend, falling back to the default."""
    default = get_settings().default_backend
    if not value:
        return default
    try:
        return BackendType(value.strip().lower())
    except ValueError:
        logger.warning("Unknown db_type %r, using %s", value, default.value)
        return default


def resolve_backend(request: Request) -> BackendType:
    return parse_backend(request.cookies.get(DB_TYPE_COOKIE))


def repository_for_request(request: Request) -> Repository:
    """
    FastAPI dependency: the repository for the backend this request selected.
    """
    return get_repository(resolve_backend(request))
