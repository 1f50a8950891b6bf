# clubspace/api/routes/session.py
"""
Session and profile provisioning routes.

Endpoints:
    GET /session       -> Current session
    POST /session      -> Sign in as a user
    DELETE /session    -> Sign out
    POST /profiles     -> Provision a profile on the backend platform
"""

import logging

from fastapi import APIRouter, Depends, status

from ...core.session import AuthSession
from ...schemas.profile import Profile
from ...schemas.requests import CreateProfileRequest, SignInRequest
from ...schemas.responses import SessionResponse
from ..dependencies import get_runtime
from ..runtime import ClientRuntime

logger = logging.getLogger(__name__)

router = APIRouter(tags=["session"])


def _session_response(runtime: ClientRuntime) -> SessionResponse:
    return SessionResponse(
        authenticated=runtime.session.is_authenticated, user_id=runtime.session.user_id
    )


@router.get("/session", response_model=SessionResponse)
async def get_session(runtime: ClientRuntime = Depends(get_runtime)) -> SessionResponse:
    return _session_response(runtime)


@router.post("/session", response_model=SessionResponse)
async def sign_in(
    request: SignInRequest, runtime: ClientRuntime = Depends(get_runtime)
) -> SessionResponse:
    """Sign in; subscriptions for the previous user, if any, are torn down first."""
    await runtime.client.sign_in(AuthSession(user_id=request.user_id, email=request.email))
    return _session_response(runtime)


@router.delete("/session", response_model=SessionResponse)
async def sign_out(runtime: ClientRuntime = Depends(get_runtime)) -> SessionResponse:
    await runtime.client.sign_out()
    return _session_response(runtime)


@router.post("/profiles", response_model=Profile, status_code=status.HTTP_201_CREATED)
async def create_profile(
    request: CreateProfileRequest, runtime: ClientRuntime = Depends(get_runtime)
) -> Profile:
    return await runtime.platform.create_profile(
        request.email,
        request.full_name,
        is_private=request.is_private,
        role=request.role,
        department=request.department,
        avatar_url=request.avatar_url,
        profile_id=request.id,
    )
