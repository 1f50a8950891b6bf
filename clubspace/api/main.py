# clubspace/api/main.py
"""
FastAPI app for driving the messaging client over HTTP.

Usage:
    uvicorn clubspace.api.main:app

or, in tests:
    app = create_app(Settings(...), platform=platform)
    with TestClient(app) as http:
        http.post("/session", json={"user_id": ...})
"""

from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..core.config import Settings, settings as default_settings
from ..core.exceptions import DomainException
from ..gateway.sql_gateway import BackendPlatform
from .middleware import PrometheusMiddleware
from .routes import conversations, diagnostics, inbox, metrics, notifications, session
from .runtime import ClientRuntime

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None, platform: Optional[BackendPlatform] = None
) -> FastAPI:
    """
    Build the app.

    When ``platform`` is given the app shares it and leaves closing it to the
    caller; otherwise the app builds one from ``settings`` and owns it.
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info(f"ClubSpace messaging API starting up (environment: {settings.environment})")
        backend = platform or BackendPlatform.from_settings(settings)
        runtime = ClientRuntime(backend, settings)
        await runtime.start()
        app.state.runtime = runtime
        try:
            yield
        finally:
            app.state.runtime = None
            await runtime.close()
            if platform is None:
                await backend.close()
            logger.info("ClubSpace messaging API shut down")

    app = FastAPI(title="ClubSpace Messaging", version="0.1.0", lifespan=lifespan)
    app.add_middleware(PrometheusMiddleware)

    @app.exception_handler(DomainException)
    async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_dict()})

    app.include_router(session.router)
    app.include_router(inbox.router)
    app.include_router(conversations.router)
    app.include_router(notifications.router)
    app.include_router(diagnostics.router)
    app.include_router(metrics.router)
    return app


app = create_app()
