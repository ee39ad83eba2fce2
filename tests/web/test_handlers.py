"""Tests for the contact-form handler."""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from website_server.config import RootConfig, RouteConfig
from website_server.mail.sender import MailSender, MailSenderConfig
from website_server.web.app import create_app
from website_server.web.handlers import (
    MAX_FIELD_LEN,
    canonicalize_email,
    fragment_response,
    is_valid_email,
)

HTMX = {"HX-Request": "true"}
VALID_FORM = {"name": "Alice", "email": "alice@example.com", "message": "Hello there"}


def _sent_message(mock_smtp: MagicMock):
    mock_smtp.send_message.assert_called_once()
    return mock_smtp.send_message.call_args[0][0]


def _html_body(msg) -> str:
    return msg.get_payload()[0].get_payload(decode=True).decode()


class TestHelpers:
    def test_fragment_response_default_tag(self) -> None:
        response = fragment_response(200, "Thanks!")

        assert response.status_code == 200
        assert response.body == b'<div id="htmxresponse">Thanks!</div>'
        assert response.media_type == "text/html"

    def test_fragment_response_custom_tag(self) -> None:
        response = fragment_response(400, "Nope", "<p class='error'>%s</p>")

        assert response.status_code == 400
        assert response.body == b"<p class='error'>Nope</p>"

    def test_fragment_response_percent_escape(self) -> None:
        response = fragment_response(200, "50% off", "<p data-w='100%%'>%s</p>")

        assert response.body == b"<p data-w='100%'>50% off</p>"

    def test_canonicalize_email_strips_tag(self) -> None:
        assert canonicalize_email("user+promo@example.com") == "user@example.com"
        assert canonicalize_email("user@example.com") == "user@example.com"

    @pytest.mark.parametrize(
        "value",
        ["user@example.com", "first.last@mail.example.org", "a_b-c@example.co"],
    )
    def test_valid_emails(self, value: str) -> None:
        assert is_valid_email(value)

    @pytest.mark.parametrize(
        "value",
        ["not-an-email", "@example.com", "user@example", "user@EXAMPLE.COM", "user@example.c"],
    )
    def test_invalid_emails(self, value: str) -> None:
        assert not is_valid_email(value)


class TestContactFormHandler:
    def test_missing_htmx_header_rejected(self, client: TestClient, mock_smtp: MagicMock) -> None:
        response = client.post("/contact", data=VALID_FORM)

        assert response.status_code == 400
        assert response.text == "non-htmx request"
        mock_smtp.smtp_cls.assert_not_called()

    def test_wrong_htmx_header_value_rejected(self, client: TestClient, mock_smtp: MagicMock) -> None:
        response = client.post("/contact", data=VALID_FORM, headers={"HX-Request": "false"})

        assert response.status_code == 400
        mock_smtp.smtp_cls.assert_not_called()

    def test_valid_submission_sends_one_message(self, client: TestClient, mock_smtp: MagicMock) -> None:
        response = client.post("/contact", data=VALID_FORM, headers=HTMX)

        assert response.status_code == 200
        assert response.text == '<div id="htmxresponse">Thanks!</div>'

        msg = _sent_message(mock_smtp)
        assert msg["Subject"] == "Contact request - example.com"
        assert msg["From"] == "website@example.com"
        assert msg["To"] == "owner@example.com"
        assert msg["User-Agent"] == "example.com"
        body = _html_body(msg)
        assert "Alice (alice@example.com)" in body
        assert "from testclient on testserver" in body
        assert "Hello there" in body

    def test_values_are_trimmed(self, client: TestClient, mock_smtp: MagicMock) -> None:
        form = dict(VALID_FORM, name="  Alice  ")

        response = client.post("/contact", data=form, headers=HTMX)

        assert response.status_code == 200
        assert "<p>Alice (" in _html_body(_sent_message(mock_smtp))

    @pytest.mark.parametrize("field", ["name", "email", "message"])
    def test_empty_field_yields_validation_message(
        self, client: TestClient, mock_smtp: MagicMock, field: str
    ) -> None:
        form = dict(VALID_FORM, **{field: "   "})

        response = client.post("/contact", data=form, headers=HTMX)

        assert response.status_code == 400
        assert response.text == '<div id="htmxresponse">Please fill in all fields.</div>'
        mock_smtp.smtp_cls.assert_not_called()

    def test_missing_field_yields_validation_message(self, client: TestClient, mock_smtp: MagicMock) -> None:
        form = {"name": "Alice", "email": "alice@example.com"}

        response = client.post("/contact", data=form, headers=HTMX)

        assert response.status_code == 400
        assert "Please fill in all fields." in response.text
        mock_smtp.smtp_cls.assert_not_called()

    def test_too_long_field_yields_validation_message(self, client: TestClient, mock_smtp: MagicMock) -> None:
        form = dict(VALID_FORM, message="x" * (MAX_FIELD_LEN + 1))

        response = client.post("/contact", data=form, headers=HTMX)

        assert response.status_code == 400
        assert "Please fill in all fields." in response.text
        mock_smtp.smtp_cls.assert_not_called()

    def test_max_length_field_accepted(self, client: TestClient, mock_smtp: MagicMock) -> None:
        form = dict(VALID_FORM, message="x" * MAX_FIELD_LEN)

        response = client.post("/contact", data=form, headers=HTMX)

        assert response.status_code == 200

    def test_email_tag_is_stripped(self, client: TestClient, mock_smtp: MagicMock) -> None:
        form = dict(VALID_FORM, email="user+promo@example.com")

        response = client.post("/contact", data=form, headers=HTMX)

        assert response.status_code == 200
        body = _html_body(_sent_message(mock_smtp))
        assert "(user@example.com)" in body
        assert "promo" not in body

    def test_malformed_email_yields_generic_failure(self, client: TestClient, mock_smtp: MagicMock) -> None:
        form = dict(VALID_FORM, email="not-an-email")

        response = client.post("/contact", data=form, headers=HTMX)

        assert response.status_code == 500
        assert response.text == '<div id="htmxresponse">Sorry, something went wrong.</div>'
        assert "Please fill in all fields." not in response.text
        mock_smtp.smtp_cls.assert_not_called()

    def test_unreachable_mail_server(self, client: TestClient, mock_smtp: MagicMock) -> None:
        mock_smtp.smtp_cls.side_effect = ConnectionRefusedError("Connection refused")

        response = client.post("/contact", data=VALID_FORM, headers=HTMX)

        assert response.status_code == 500
        assert response.text == '<div id="htmxresponse">Sorry, something went wrong.</div>'

        # The server keeps serving requests afterwards.
        assert client.get("/index.html").status_code == 200
        mock_smtp.smtp_cls.side_effect = None
        assert client.post("/contact", data=VALID_FORM, headers=HTMX).status_code == 200

    def test_rejected_message_closes_connection(self, client: TestClient, mock_smtp: MagicMock) -> None:
        mock_smtp.send_message.side_effect = OSError("Connection reset")

        response = client.post("/contact", data=VALID_FORM, headers=HTMX)

        assert response.status_code == 500
        mock_smtp.quit.assert_called_once()

    def test_custom_html_tag(self, root_config: RootConfig, contact_route: RouteConfig, mock_smtp: MagicMock) -> None:
        route = contact_route.model_copy(update={"response_html_tag": "<span id='result'>%s</span>"})
        config = root_config.model_copy(update={"routes": [route]})

        with TestClient(create_app(config)) as client:
            response = client.post("/contact", data=VALID_FORM, headers=HTMX)

        assert response.text == "<span id='result'>Thanks!</span>"

    def test_compose_failure_yields_failure_message(
        self, root_config: RootConfig, contact_route: RouteConfig, mock_smtp: MagicMock
    ) -> None:
        route = contact_route.model_copy(update={"mail_from": ""})
        config = root_config.model_copy(update={"routes": [route]})

        with TestClient(create_app(config)) as client:
            response = client.post("/contact", data=VALID_FORM, headers=HTMX)

        assert response.status_code == 500
        assert "Sorry, something went wrong." in response.text
        mock_smtp.smtp_cls.assert_not_called()

    def test_unexpected_error_becomes_server_error(self, root_config: RootConfig) -> None:
        sender = MagicMock(spec=MailSender)
        sender.config = MailSenderConfig()
        sender.new_message_from_template.side_effect = RuntimeError("boom")

        with TestClient(create_app(root_config, mail_sender=sender)) as client:
            response = client.post("/contact", data=VALID_FORM, headers=HTMX)

        assert response.status_code == 500
        assert response.text == "Internal Server Error"
