"""A small website server that serves static files and forwards contact forms as email."""

from website_server.config import RootConfig, RouteConfig, apply_overrides, load_config
from website_server.exceptions import ConfigError, HTTPError, MailError
from website_server.mail.sender import MailSender, MailSenderConfig

__version__ = "0.1.0"

__all__ = [
    "ConfigError",
    "HTTPError",
    "MailError",
    "MailSender",
    "MailSenderConfig",
    "RootConfig",
    "RouteConfig",
    "apply_overrides",
    "load_config",
]
