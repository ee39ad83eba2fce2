"""CLI entry point for the website server."""

import argparse
import sys

import structlog
import uvicorn

from website_server import __version__
from website_server.config import EnvSettings, apply_overrides, load_config
from website_server.exceptions import ConfigError
from website_server.logging_config import configure_logging

logger = structlog.get_logger()

DEFAULT_LISTEN_HOST = "0.0.0.0"
DEFAULT_LISTEN_PORT = 8080
KEEP_ALIVE_TIMEOUT = 3  # seconds


def parse_listen_on(listen_on: str) -> tuple[str, int]:
    """Split ``host:port`` (host optional, IPv6 in brackets) into its parts.

    Raises:
        ConfigError: If the port is not a valid number.
    """
    if not listen_on:
        return DEFAULT_LISTEN_HOST, DEFAULT_LISTEN_PORT

    host, sep, port_str = listen_on.rpartition(":")
    if not sep:
        host, port_str = listen_on, ""
    host = host.strip("[]") or DEFAULT_LISTEN_HOST
    if not port_str:
        return host, DEFAULT_LISTEN_PORT
    try:
        port = int(port_str)
    except ValueError as e:
        raise ConfigError(f"Invalid listen address '{listen_on}'") from e
    if not 0 <= port <= 65535:
        raise ConfigError(f"Invalid listen address '{listen_on}': port out of range")
    return host, port


def build_parser(env: EnvSettings | None = None) -> argparse.ArgumentParser:
    """Build the argument parser; defaults come from ``WS_*`` environment variables."""
    env = env or EnvSettings()
    parser = argparse.ArgumentParser(
        prog="ws",
        description="Website Server with basic email client for contact forms",
    )
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument("--config", default=env.config, help="Path to the configuration file")
    parser.add_argument("--mail-url", default=env.mail_url, help="URL for the mail server")
    parser.add_argument("--mail-username", default=env.mail_username, help="Username for the mail server")
    parser.add_argument("--mail-password", default=env.mail_password, help="Password for the mail server")
    parser.add_argument(
        "--log-level",
        default="info",
        choices=["debug", "info", "warning", "error"],
        help="Minimum log level",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    try:
        config = load_config(args.config)
        config = apply_overrides(
            config,
            mail_url=args.mail_url,
            mail_username=args.mail_username,
            mail_password=args.mail_password,
        )
        host, port = parse_listen_on(config.http.listen_on)

        from website_server.web.app import create_app

        app = create_app(config)
    except ConfigError as e:
        logger.error("failed to load config", error=str(e))
        return 1

    logger.info(f"Starting website server '{config.host}' '{__version__}' on '{config.http.listen_on}'")
    uvicorn.run(
        app,
        host=host,
        port=port,
        proxy_headers=config.http.use_proxyproto,
        forwarded_allow_ips=config.http.trusted_proxies if config.http.use_proxyproto else None,
        timeout_keep_alive=KEEP_ALIVE_TIMEOUT,
        access_log=False,
        log_config=None,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
