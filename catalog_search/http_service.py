#!/usr/bin/env python3
"""
HTTP search service for WinCatalog catalogs.

This FastAPI service exposes the query engine (search, random pick, status)
and keeps the search index fresh for as long as the process runs.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

import uvicorn
from uvicorn.config import LOGGING_CONFIG
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from catalog_search.config import get_config, validate_config
from catalog_search.logger import (
    CatalogSearchError,
    ConfigurationError,
    IndexNotReadyError,
    NoItemsError,
    configure_logging,
    get_logger,
)
from catalog_search.refresh_core.coordinator import (
    RefreshCoordinator,
    close_coordinator,
    get_coordinator,
    init_coordinator,
)
from catalog_search.search import execute_random, execute_search, get_db_status

logger = get_logger(__name__)

VERSION = "0.1.0"

_ERROR_TITLES = {
    400: "Bad Request",
    404: "Not Found",
    500: "Internal Server Error",
    503: "Service Unavailable",
}


class ApiError(Exception):
    """Error carrying the HTTP status it should be reported with."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class DatabaseHealth(BaseModel):
    connected: bool
    path: str


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    database: DatabaseHealth


class SearchResultModel(BaseModel):
    id: int
    name: str
    path: str
    size: int
    dateModified: Optional[str] = None
    dateCreated: Optional[str] = None
    type: str
    volumeLabel: Optional[str] = None
    volumePath: Optional[str] = None


class SearchResponseModel(BaseModel):
    query: str
    results: List[SearchResultModel]
    totalResultsOnThisPage: int
    executionTimeMs: int


class StatisticsModel(BaseModel):
    totalItems: int
    totalFiles: int
    totalFolders: int
    totalVolumes: int
    totalSizeBytes: int


class DbStatusResponse(BaseModel):
    connected: bool
    path: str
    fileSizeBytes: int
    lastModifiedISO: str
    lastLoadedISO: Optional[str] = None
    statistics: StatisticsModel


def error_body(status_code: int, message: str) -> dict:
    return {
        "error": _ERROR_TITLES.get(status_code, "Error"),
        "message": message,
        "statusCode": status_code,
    }


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=error_body(status_code, message))


def _parse_non_negative(name: str, raw: Optional[str]) -> Optional[int]:
    if raw is None or raw == "":
        return None
    try:
        value = int(raw.strip())
    except ValueError:
        raise ApiError(f'Query parameter "{name}" must be a positive number', 400)
    if value < 0:
        raise ApiError(f'Query parameter "{name}" must be a positive number', 400)
    return value


def create_app(coordinator: Optional[RefreshCoordinator] = None) -> FastAPI:
    """Build the application.

    With an injected ``coordinator`` the caller owns its lifecycle; otherwise
    the lifespan builds the index from the environment configuration, starts
    the watcher and schedule, and tears everything down on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.coordinator is None
        if owned:
            settings = get_config()
            problems = validate_config(settings)
            if problems:
                raise ConfigurationError("; ".join(problems))
            logger.info(f"Loading catalog from {settings.db_path}")
            app.state.coordinator = init_coordinator(settings, start_background=True)
        try:
            yield
        finally:
            if owned:
                close_coordinator()
                app.state.coordinator = None

    app = FastAPI(
        title="Catalog Search Service",
        description="Text search over WinCatalog catalogs",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.coordinator = coordinator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    def _coordinator(request: Request) -> RefreshCoordinator:
        return request.app.state.coordinator or get_coordinator()

    @app.get("/api/health", response_model=HealthResponse)
    def health(request: Request):
        """Health check endpoint."""
        coord = request.app.state.coordinator
        return HealthResponse(
            status="ok",
            timestamp=datetime.now(timezone.utc).isoformat(),
            database=DatabaseHealth(
                connected=bool(coord is not None and coord.current is not None),
                path=coord.source_path if coord is not None else get_config().db_path,
            ),
        )

    @app.get("/api/search", response_model=SearchResponseModel)
    def search(
        request: Request,
        q: Optional[str] = None,
        limit: Optional[str] = None,
        offset: Optional[str] = None,
    ):
        if q is None or not q.strip():
            raise ApiError('Query parameter "q" is required and must be a non-empty string', 400)
        parsed_limit = _parse_non_negative("limit", limit)
        parsed_offset = _parse_non_negative("offset", offset)
        response = execute_search(
            q.strip(), parsed_limit, parsed_offset, coordinator=_coordinator(request)
        )
        return response.to_dict()

    @app.get("/api/random", response_model=SearchResultModel)
    def random_item(request: Request):
        try:
            return execute_random(coordinator=_coordinator(request)).to_dict()
        except NoItemsError as exc:
            raise ApiError(str(exc), 404)

    @app.get("/api/db-status", response_model=DbStatusResponse)
    def db_status(request: Request):
        try:
            return get_db_status(coordinator=_coordinator(request)).to_dict()
        except (OSError, CatalogSearchError) as exc:
            logger.error(f"Database status error: {exc}")
            raise ApiError(str(exc) or "Failed to retrieve database status", 500)

    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError):
        return _error_response(exc.status_code, exc.message)

    @app.exception_handler(IndexNotReadyError)
    async def not_ready_handler(request: Request, exc: IndexNotReadyError):
        return _error_response(503, str(exc))

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            message = f"Route {request.method} {request.url.path} not found"
        else:
            message = str(exc.detail)
        return _error_response(exc.status_code, message)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return _error_response(400, "Invalid request parameters")

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler."""
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return _error_response(500, str(exc) or "An unexpected error occurred")

    return app


def main(host: Optional[str] = None, port: Optional[int] = None) -> None:
    """Main entry point for the search service."""
    settings = get_config()
    configure_logging(settings.log_level, settings.log_format)
    host = host or settings.host
    port = port or settings.port

    logger.info(f"Starting catalog search service on {host}:{port}")
    logger.info(f"Catalog: {settings.db_path}")
    if settings.exclude_patterns:
        logger.info(f"Exclude patterns: {', '.join(settings.exclude_patterns)}")

    uvicorn.run(
        create_app(),
        host=host,
        port=port,
        log_level=settings.log_level.lower(),
        access_log=True,
        # JSON mode: uvicorn records propagate to the root handler
        log_config=None if settings.log_format == "json" else LOGGING_CONFIG,
    )


if __name__ == "__main__":
    main()
