"""Custom exceptions for website-server."""


class WebsiteServerError(Exception):
    """Base exception for website-server."""


class ConfigError(WebsiteServerError):
    """Raised when the configuration cannot be loaded, with a user-friendly message."""

    def __init__(
        self,
        message: str,
        file_path: str | None = None,
        line: int | None = None,
        col: int | None = None,
    ) -> None:
        self.file_path = file_path
        self.line = line
        self.col = col
        full_message = message
        if file_path:
            location = f" in {file_path}"
            if line is not None:
                location += f" at line {line}"
                if col is not None:
                    location += f", column {col}"
            full_message = f"Configuration error{location}: {message}"
        super().__init__(full_message)


class MailError(WebsiteServerError):
    """Base exception for mail composition and delivery."""


class MailComposeError(MailError):
    """Raised when a message cannot be built (bad address or template)."""


class MailDeliveryError(MailError):
    """Raised when the SMTP server cannot be reached or rejects a message."""


class HTTPError(WebsiteServerError):
    """Request-level error carrying the HTTP status to answer with."""

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(message)
