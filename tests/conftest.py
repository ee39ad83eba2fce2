"""Shared fixtures for website-server tests."""

from collections.abc import Iterator
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from website_server.config import HTTPConfig, ResponseConfig, RootConfig, RouteConfig
from website_server.web.app import create_app

CONTACT_TEMPLATE = "<p>{{ name }} ({{ email }}) from {{ _IP }} on {{ _SiteURL }}</p><p>{{ message }}</p>"


@pytest.fixture
def static_dir(tmp_path: Path) -> Path:
    public = tmp_path / "public"
    public.mkdir()
    (public / "index.html").write_text("<html><body>Home</body></html>")
    (public / "404.html").write_text("<html><body>Not here</body></html>")
    (public / "style.css").write_text("body { color: black; }\n" * 200)
    return public


@pytest.fixture
def contact_route() -> RouteConfig:
    return RouteConfig(
        path="/contact",
        method="POST",
        mail_template=CONTACT_TEMPLATE,
        mail_subject="Contact request",
        mail_to=["owner@example.com"],
        mail_from="website@example.com",
        form_fields_mapping={"name": "name", "email": "email", "message": "message"},
        response=ResponseConfig(
            success="Thanks!",
            failure="Sorry, something went wrong.",
            validation="Please fill in all fields.",
        ),
    )


@pytest.fixture
def root_config(static_dir: Path, contact_route: RouteConfig) -> RootConfig:
    return RootConfig(
        host="example.com",
        static_dir=str(static_dir),
        http=HTTPConfig(not_found="/404.html", cache_control=True),
        routes=[contact_route],
    )


@pytest.fixture
def mock_smtp() -> Iterator[MagicMock]:
    """Patch smtplib.SMTP in the sender module; yields the connection mock."""
    with patch("website_server.mail.sender.smtplib.SMTP") as smtp_cls:
        connection = MagicMock()
        connection.has_extn.return_value = False
        smtp_cls.return_value = connection
        connection.smtp_cls = smtp_cls
        yield connection


@pytest.fixture
def client(root_config: RootConfig, mock_smtp: MagicMock) -> Iterator[TestClient]:
    with TestClient(create_app(root_config)) as test_client:
        yield test_client
