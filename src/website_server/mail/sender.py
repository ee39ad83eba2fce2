"""SMTP mail sender for contact-form messages using smtplib."""

import logging
import re
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formatdate, make_msgid, parseaddr
from urllib.parse import unquote, urlsplit

from jinja2 import Environment, TemplateError
from pydantic import BaseModel, ConfigDict, SecretStr

from website_server.config import MailConfig
from website_server.exceptions import ConfigError, MailComposeError, MailDeliveryError

logger = logging.getLogger(__name__)

DEFAULT_MAIL_URL = "smtp://localhost:1025"
DEFAULT_MAIL_HOST = "localhost"
DEFAULT_MAIL_PORT = 1025
SMTP_TIMEOUT = 10  # seconds

_HEADER_INJECTION_RE = re.compile(r"[\r\n\0]")

_template_env = Environment(autoescape=True)


def _validate_address(value: str, role: str) -> str:
    """Check that ``value`` is a single, header-safe email address.

    Raises:
        MailComposeError: If the address is empty, malformed or contains
            newline, carriage return, or null characters.
    """
    if _HEADER_INJECTION_RE.search(value):
        # SECURITY: Do not log the value, it may contain injection payloads
        logger.warning("Header injection attempt detected")
        raise MailComposeError(f"Invalid {role} address: contains invalid characters")
    _, address = parseaddr(value)
    local, sep, domain = address.rpartition("@")
    if not sep or not local or not domain or " " in address:
        raise MailComposeError(f"Invalid {role} address: {value!r}")
    return value


class MailSenderConfig(BaseModel):
    """Resolved SMTP settings, shared read-only by every route handler."""

    model_config = ConfigDict(frozen=True)

    host: str = DEFAULT_MAIL_HOST
    port: int = DEFAULT_MAIL_PORT
    user_agent: str = ""
    tls_skip_verify: bool = False
    username: str = ""
    password: SecretStr = SecretStr("")

    @classmethod
    def from_url(
        cls,
        mail_url: str,
        *,
        user_agent: str = "",
        tls_skip_verify: bool = False,
        username: str = "",
        password: str = "",
    ) -> "MailSenderConfig":
        """Build settings from ``scheme://[user[:pass]@]host[:port]``.

        Credentials embedded in the URL are used only when ``username`` or
        ``password`` are not given explicitly.

        Raises:
            ConfigError: If the URL cannot be parsed.
        """
        if not mail_url:
            mail_url = DEFAULT_MAIL_URL

        try:
            url = urlsplit(mail_url)
        except ValueError as e:
            raise ConfigError(f"Invalid mail URL: {e}") from e

        try:
            port = url.port or DEFAULT_MAIL_PORT
        except ValueError:
            port = DEFAULT_MAIL_PORT

        return cls(
            host=url.hostname or DEFAULT_MAIL_HOST,
            port=port,
            user_agent=user_agent,
            tls_skip_verify=tls_skip_verify,
            username=username or unquote(url.username or ""),
            password=SecretStr(password or unquote(url.password or "")),
        )

    @classmethod
    def from_settings(cls, mail: MailConfig, user_agent: str = "") -> "MailSenderConfig":
        """Build settings from the ``mail`` section of the configuration."""
        return cls.from_url(
            mail.mail_url,
            user_agent=user_agent,
            tls_skip_verify=mail.mail_tls_skip_verify,
            username=mail.mail_username,
            password=mail.mail_password.get_secret_value(),
        )


class MailSender:
    """Renders contact messages and delivers them over SMTP.

    Every call to :meth:`send_mail` opens and closes its own connection;
    nothing is pooled between requests.
    """

    def __init__(self, config: MailSenderConfig) -> None:
        """Initialize the mail sender.

        Args:
            config: Resolved SMTP settings.
        """
        self.config = config

    def new_message_from_template(
        self,
        subject: str,
        from_address: str,
        to: list[str],
        template: str,
        data: dict[str, str],
    ) -> MIMEMultipart:
        """Build an HTML message whose body is ``template`` rendered with ``data``.

        Args:
            subject: Email subject line.
            from_address: Sender email address.
            to: List of recipient email addresses.
            template: Jinja2 template source for the HTML body.
            data: Values substituted into the template (autoescaped).

        Returns:
            Composed MIMEMultipart message.

        Raises:
            MailComposeError: If an address is invalid or the template fails to
                parse or render.
        """
        if not to:
            raise MailComposeError("No recipients configured")
        _validate_address(from_address, "from")
        for addr in to:
            _validate_address(addr, "to")
        if _HEADER_INJECTION_RE.search(subject):
            raise MailComposeError("Invalid subject: contains invalid characters")

        try:
            body = _template_env.from_string(template).render(data)
        except TemplateError as e:
            raise MailComposeError(f"Cannot render mail template: {e}") from e

        msg = MIMEMultipart("alternative")
        msg["From"] = from_address
        msg["To"] = ", ".join(to)
        msg["Subject"] = subject
        msg["Date"] = formatdate(localtime=True)
        msg["Message-ID"] = make_msgid()
        if self.config.user_agent:
            msg["User-Agent"] = self.config.user_agent
            msg["X-Mailer"] = self.config.user_agent
        msg.attach(MIMEText(body, "html", "utf-8"))
        return msg

    def _tls_context(self) -> ssl.SSLContext:
        context = ssl.create_default_context()
        if self.config.tls_skip_verify:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context

    def _connect(self) -> smtplib.SMTP:
        """Open a connection, upgrading to TLS when the server offers STARTTLS."""
        logger.debug(
            "Connecting to SMTP server (host=%s, port=%s)",
            self.config.host,
            self.config.port,
        )
        connection = smtplib.SMTP(self.config.host, self.config.port, timeout=SMTP_TIMEOUT)
        try:
            connection.ehlo()
            if connection.has_extn("starttls"):
                connection.starttls(context=self._tls_context())
                connection.ehlo()
            if self.config.username:
                connection.login(
                    self.config.username,
                    self.config.password.get_secret_value(),
                )
        except BaseException:
            connection.close()
            raise
        return connection

    @staticmethod
    def _disconnect(connection: smtplib.SMTP) -> None:
        try:
            connection.quit()
        except (smtplib.SMTPException, OSError):
            connection.close()

    def send_mail(self, *messages: MIMEMultipart) -> None:
        """Send pre-built messages sequentially over a single connection.

        The first failure aborts the remaining messages.

        Raises:
            MailDeliveryError: If the server is unreachable or rejects a message.
        """
        if not messages:
            return

        try:
            connection = self._connect()
        except (smtplib.SMTPException, OSError) as e:
            raise MailDeliveryError(
                f"Cannot connect to SMTP server {self.config.host}:{self.config.port}: {e}"
            ) from e

        try:
            for msg in messages:
                connection.send_message(msg)
                logger.info("Email sent (recipients=%s, subject=%r)", msg["To"], msg["Subject"])
        except (smtplib.SMTPException, OSError) as e:
            raise MailDeliveryError(f"Error sending email: {e}") from e
        finally:
            self._disconnect(connection)
