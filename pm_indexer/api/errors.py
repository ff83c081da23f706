"""API error bodies and exception handlers."""

from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from starlette.responses import JSONResponse
import structlog

from pm_indexer.search.pagination import InvalidCursorError
from pm_indexer.sync.orchestrator import SyncInProgressError
from pm_indexer.watchlists.store import ConflictError, InvalidAlertError, NotFoundError

logger = structlog.get_logger()


def error_response(
    status_code: int,
    code: str,
    message: str,
    details: Optional[Any] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    """JSON error body shared by every route and middleware."""
    error = {"code": code, "message": message}
    if details is not None:
        error["details"] = details
    return JSONResponse(status_code=status_code, content={"error": error}, headers=headers)


class ApiError(Exception):
    """Raised by routes and dependencies to return a specific error body."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details
        self.headers = headers
        super().__init__(message)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError):
        return error_response(exc.status_code, exc.code, exc.message, exc.details, exc.headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        details = [
            {"field": ".".join(str(p) for p in err.get("loc", ())), "message": err.get("msg")}
            for err in exc.errors()
        ]
        return error_response(status.HTTP_400_BAD_REQUEST, "INVALID_REQUEST", "Invalid request parameters", details)

    @app.exception_handler(InvalidCursorError)
    async def invalid_cursor_handler(request: Request, exc: InvalidCursorError):
        return error_response(status.HTTP_400_BAD_REQUEST, "INVALID_CURSOR", str(exc))

    @app.exception_handler(SyncInProgressError)
    async def sync_in_progress_handler(request: Request, exc: SyncInProgressError):
        return error_response(status.HTTP_409_CONFLICT, "SYNC_IN_PROGRESS", str(exc))

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return error_response(status.HTTP_404_NOT_FOUND, "NOT_FOUND", str(exc))

    @app.exception_handler(ConflictError)
    async def conflict_handler(request: Request, exc: ConflictError):
        return error_response(status.HTTP_409_CONFLICT, "CONFLICT", str(exc))

    @app.exception_handler(InvalidAlertError)
    async def invalid_alert_handler(request: Request, exc: InvalidAlertError):
        return error_response(status.HTTP_400_BAD_REQUEST, "INVALID_REQUEST", str(exc))
