# clubspace/api/dependencies.py
"""FastAPI dependencies and result unwrapping for the routes."""

from typing import Any

from fastapi import HTTPException, Request, status

from ..schemas.client import ActionResult
from ..services.diagnostics_service import DiagnosticsService
from ..services.messaging_client import MessagingClient
from ..services.social_service import SocialService
from .runtime import ClientRuntime


def get_runtime(request: Request) -> ClientRuntime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"message": "Client is not running", "code": "NOT_STARTED", "details": {}},
        )
    return runtime


def get_client(request: Request) -> MessagingClient:
    return get_runtime(request).client


def get_social_service(request: Request) -> SocialService:
    return get_runtime(request).social


def get_diagnostics_service(request: Request) -> DiagnosticsService:
    return get_runtime(request).diagnostics


def unwrap(result: ActionResult) -> Any:
    """Return the action's value, or raise its notice as an HTTP error."""
    if result.notice is not None:
        notice = result.notice
        raise HTTPException(
            status_code=notice.status_code,
            detail={"message": notice.message, "code": notice.code, "details": notice.details},
        )
    if result.stale:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": "Superseded by a newer request", "code": "STALE", "details": {}},
        )
    return result.value
