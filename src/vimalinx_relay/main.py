# src/vimalinx_relay/main.py
"""Main entry point for the relay server."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from vimalinx_relay import __version__
from vimalinx_relay.api import auth_router, messages_router, stream_router, system_router
from vimalinx_relay.core.errors import RelayError
from vimalinx_relay.core.settings import Settings, get_settings
from vimalinx_relay.services.state import RelayState

logger = logging.getLogger(__name__)


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _install_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(RelayError)
    async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return _error_response(exc.status_code, exc.message)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return _error_response(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error_response(400, "invalid request")

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error_response(500, "internal error")


def create_app(settings: Settings | None = None, state: RelayState | None = None) -> FastAPI:
    """Build the relay application.

    Args:
        settings: Settings to run with; read from the environment when omitted
        state: Prebuilt relay state, mainly for tests injecting a gateway transport

    Returns:
        Configured FastAPI application
    """
    if state is None:
        state = RelayState.from_settings(settings or get_settings())
    settings = state.settings

    app = FastAPI(
        title="Vimalinx Relay",
        description="Relay between mobile chat clients and agent gateways",
        version=__version__,
    )
    app.state.relay = state

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    _install_exception_handlers(app)

    app.include_router(system_router)
    app.include_router(auth_router)
    app.include_router(stream_router)
    app.include_router(messages_router)

    @app.on_event("startup")
    async def on_startup() -> None:
        await state.startup()

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        await state.shutdown()

    return app


def run() -> None:
    """Console entry point: serve the relay with uvicorn."""
    import uvicorn

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(create_app(settings), host=settings.bind_host, port=settings.port)


if __name__ == "__main__":
    run()
