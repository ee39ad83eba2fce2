"""HTTP layer: middleware pipeline, contact-form handlers and app assembly."""

from website_server.web.app import build_middleware, create_app

__all__ = ["build_middleware", "create_app"]
