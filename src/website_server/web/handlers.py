"""Contact-form route handler.

Each configured POST route gets one :class:`ContactFormHandler`, built at
startup. A submission passes through a series of gates (htmx header, field
presence and length, email shape) before the route's mail template is
rendered and sent. The browser always receives an HTML fragment meant to be
swapped into the page by htmx.
"""

import re

import structlog
from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import HTMLResponse

from website_server.config import DEFAULT_RESPONSE_HTML_TAG, RouteConfig
from website_server.exceptions import HTTPError, MailError
from website_server.mail.sender import MailSender

logger = structlog.get_logger()

EMAIL_FIELD = "email"
MAX_FIELD_LEN = 254
EMAIL_RE = re.compile(r"^[a-zA-Z0-9]+[._%+\-]*[^.]*@[a-z0-9.\-]+\.[a-z]{2,}$")
_EMAIL_TAG_RE = re.compile(r"\+[^@]*")

HTMX_HEADER = "HX-Request"


def fragment_response(status_code: int, message: str, html_tag: str = "") -> HTMLResponse:
    """Wrap ``message`` in the route's HTML tag, a ``%``-format string with one ``%s``.

    ``%%`` in the tag renders as a literal ``%``.
    """
    html_tag = html_tag or DEFAULT_RESPONSE_HTML_TAG
    return HTMLResponse(html_tag % (message,), status_code=status_code)


def canonicalize_email(value: str) -> str:
    """Drop any ``+tag`` suffix from the local part (``a+b@c.d`` -> ``a@c.d``)."""
    return _EMAIL_TAG_RE.sub("", value)


def is_valid_email(value: str) -> bool:
    return EMAIL_RE.match(value) is not None


def require_htmx(request: Request) -> None:
    """Reject requests that were not sent by htmx.

    Raises:
        HTTPError: 400 when the ``HX-Request: true`` header is missing.
    """
    if request.headers.get(HTMX_HEADER) != "true":
        raise HTTPError(400, "non-htmx request")


class ContactFormHandler:
    """Validates a contact form submission and forwards it as email."""

    def __init__(self, route: RouteConfig, mail_sender: MailSender, host: str) -> None:
        self.route = route
        self.mail_sender = mail_sender
        self.host = host

    @property
    def subject(self) -> str:
        return f"{self.route.mail_subject} - {self.host}"

    def _respond(self, status_code: int, message: str) -> HTMLResponse:
        return fragment_response(status_code, message, self.route.response_html_tag)

    async def build_template_map(self, request: Request) -> dict[str, str] | HTMLResponse:
        """Collect and validate the mapped form fields.

        Returns the template data, or the fragment response to send back when
        a field fails validation.
        """
        form = await request.form()
        data = {
            "_SiteURL": request.url.hostname or "",
            "_IP": request.client.host if request.client else "",
        }

        for name, form_field in self.route.form_fields_mapping.items():
            raw = form.get(form_field)
            value = raw.strip() if isinstance(raw, str) else ""
            if not value or len(value) > MAX_FIELD_LEN:
                return self._respond(400, self.route.response.validation)

            if name == EMAIL_FIELD:
                value = canonicalize_email(value)
                if not is_valid_email(value):
                    # Do not give specific feedback on purpose to avoid leaking information.
                    return self._respond(500, self.route.response.failure)

            data[name] = value

        return data

    async def handle(self, request: Request) -> HTMLResponse:
        require_htmx(request)

        data = await self.build_template_map(request)
        if isinstance(data, HTMLResponse):
            return data

        try:
            msg = self.mail_sender.new_message_from_template(
                self.subject,
                self.route.mail_from,
                self.route.mail_to,
                self.route.mail_template,
                data,
            )
            await run_in_threadpool(self.mail_sender.send_mail, msg)
        except MailError as e:
            logger.error(self.route.response.failure, route=self.route.path, error=str(e))
            return self._respond(500, self.route.response.failure)

        return self._respond(200, self.route.response.success)
