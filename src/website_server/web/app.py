"""FastAPI application assembly: middleware stages, contact routes, static files."""

from datetime import timedelta
from pathlib import Path

import structlog
from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles
from starlette.middleware import Middleware
from starlette.middleware.gzip import GZipMiddleware
from starlette.responses import HTMLResponse

from website_server import __version__
from website_server.config import RootConfig
from website_server.exceptions import ConfigError
from website_server.mail.sender import MailSender, MailSenderConfig
from website_server.web.cache import ResponseCache
from website_server.web.handlers import ContactFormHandler
from website_server.web.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    ResponseCacheMiddleware,
    WeakETagMiddleware,
)

logger = structlog.get_logger()

DEFAULT_CACHE_EXPIRATION = timedelta(minutes=1)
GZIP_BEST_SPEED = 1
GZIP_MINIMUM_SIZE = 500


def build_middleware(config: RootConfig) -> list[Middleware]:
    """Return the request pipeline stages, outermost first.

    Errors are translated outside the logging stage so every request is logged
    with its final status, and caching sits inside logging so cache hits are
    logged too.
    """
    expiration = config.http.cache_expiration or DEFAULT_CACHE_EXPIRATION
    return [
        Middleware(
            ErrorHandlingMiddleware,
            not_found=config.http.not_found,
            route_paths=[route.path for route in config.routes if route.method == "POST"],
        ),
        Middleware(RequestLoggingMiddleware),
        Middleware(
            ResponseCacheMiddleware,
            cache=ResponseCache(ttl=expiration.total_seconds()),
            cache_control=config.http.cache_control,
        ),
        Middleware(WeakETagMiddleware),
        Middleware(GZipMiddleware, minimum_size=GZIP_MINIMUM_SIZE, compresslevel=GZIP_BEST_SPEED),
    ]


def create_app(config: RootConfig, mail_sender: MailSender | None = None) -> FastAPI:
    """Build the website server application from a loaded configuration."""
    if mail_sender is None:
        mail_sender = MailSender(MailSenderConfig.from_settings(config.mail, user_agent=config.host))

    app = FastAPI(
        title=config.host or "website-server",
        version=__version__,
        middleware=build_middleware(config),
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.config = config

    for route in config.routes:
        if route.method != "POST":
            # GET template routes are not implemented.
            logger.warning("Skipping route with unsupported method", path=route.path, method=route.method)
            continue
        handler = ContactFormHandler(route, mail_sender, config.host)
        app.add_api_route(
            route.path,
            handler.handle,
            methods=["POST"],
            response_class=HTMLResponse,
            include_in_schema=False,
        )
        logger.info("Contact route registered", path=route.path)

    # Mounted last so configured routes take precedence.
    if config.static_dir:
        if not Path(config.static_dir).is_dir():
            raise ConfigError(f"Static directory does not exist: {config.static_dir}")
        app.mount("/", StaticFiles(directory=config.static_dir, html=True), name="static")
        logger.info(f"Serving static files from '{config.static_dir}'")

    return app
