from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse

from marketplace.core.config import Settings, settings as default_settings
from marketplace.core.deps import RequestAuthenticator
from marketplace.core.exceptions import MarketplaceException
from marketplace.core.logging import setup_logging
from marketplace.core.security import TokenCodec
from marketplace.core.security_headers import install_security_headers_middleware
from marketplace.routers import auth, health
from marketplace.services.session_cleanup import start_session_cleanup, stop_session_cleanup


def create_app(settings: Settings | None = None, *, token_codec: TokenCodec | None = None) -> FastAPI:
    settings = settings or default_settings
    setup_logging(settings.LOG_LEVEL)
    settings.validate_runtime_security()
    # Built once at startup so missing secrets fail here, not per request.
    codec = token_codec or TokenCodec(settings.token_codec_config())

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        await start_session_cleanup()
        try:
            yield
        finally:
            await stop_session_cleanup()

    app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)
    app.state.token_codec = codec
    app.state.request_authenticator = RequestAuthenticator(codec)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=settings.allowed_hosts,
    )
    install_security_headers_middleware(app, settings)

    app.include_router(health.router, tags=["health"])
    app.include_router(auth.router, prefix="/api/auth", tags=["auth"])

    @app.exception_handler(MarketplaceException)
    async def handle_marketplace_exception(_: Request, exc: MarketplaceException) -> JSONResponse:
        headers = exc.headers if getattr(exc, "headers", None) else None
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)

    return app


app = create_app()
