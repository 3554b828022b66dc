import json
import pathlib
import sys

import httpx
import pytest

ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from kapstone_backend.config import ConfigurationError  # noqa: E402
from kapstone_backend.mail import (  # noqa: E402
    DevPrintProvider,
    EmailDeliveryError,
    ResendProvider,
    SMTPProvider,
    create_email_provider,
    load_email_config,
    render_subject_body,
)
from kapstone_backend.mail.renderer import TemplateNotFoundError  # noqa: E402


def test_default_provider_is_resend_and_requires_api_key():
    with pytest.raises(ConfigurationError) as excinfo:
        load_email_config(env={})
    assert excinfo.value.missing == ("RESEND_API_KEY",)

    config = load_email_config(env={"RESEND_API_KEY": "re_test"})
    provider = create_email_provider(config)
    assert isinstance(provider, ResendProvider)
    assert provider.api_key == "re_test"


def test_unknown_provider_is_rejected():
    with pytest.raises(ConfigurationError):
        load_email_config(env={"EMAIL_PROVIDER": "carrier-pigeon"})


def test_dev_provider_collects_outbox():
    config = load_email_config(env={"EMAIL_PROVIDER": "dev", "FROM_EMAIL": "noreply@example.com"})
    provider = create_email_provider(config)
    assert isinstance(provider, DevPrintProvider)

    message_id = provider.send_email("member@example.com", "Hello", "<p>Hi</p>", "Hi")

    assert message_id == "dev-1"
    assert provider.outbox[0]["to"] == "member@example.com"


def test_smtp_provider_configuration():
    config = load_email_config(
        env={
            "EMAIL_PROVIDER": "smtp",
            "SMTP_HOST": "mail.example.com",
            "SMTP_PORT": "2525",
            "SMTP_USER": "mailer",
            "SMTP_PASS": "secret",
            "FROM_EMAIL": "notifications@example.com",
        }
    )
    provider = create_email_provider(config)
    assert isinstance(provider, SMTPProvider)
    assert provider.host == "mail.example.com"
    assert provider.port == 2525
    assert provider.username == "mailer"
    assert provider.from_email == "notifications@example.com"


def test_resend_provider_posts_message_and_returns_id():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["auth"] = request.headers["Authorization"]
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "msg_123"})

    provider = ResendProvider(
        from_email="noreply@example.com",
        api_key="re_test",
        transport=httpx.MockTransport(handler),
    )

    message_id = provider.send_email(
        "member@example.com",
        "Welcome",
        "<p>Welcome</p>",
        "Welcome",
        tags={"template": "membership_welcome"},
    )

    assert message_id == "msg_123"
    assert captured["url"] == "https://api.resend.com/emails"
    assert captured["auth"] == "Bearer re_test"
    assert captured["body"]["to"] == ["member@example.com"]
    assert captured["body"]["tags"] == [{"name": "template", "value": "membership_welcome"}]


def test_resend_provider_raises_on_rejection():
    provider = ResendProvider(
        from_email="noreply@example.com",
        api_key="re_test",
        transport=httpx.MockTransport(lambda request: httpx.Response(422, json={"message": "bad"})),
    )

    with pytest.raises(EmailDeliveryError):
        provider.send_email("member@example.com", "Subject", "<p>x</p>", "x")


def test_resend_provider_raises_on_network_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("unreachable", request=request)

    provider = ResendProvider(
        from_email="noreply@example.com",
        api_key="re_test",
        transport=httpx.MockTransport(handler),
    )

    with pytest.raises(EmailDeliveryError):
        provider.send_email("member@example.com", "Subject", "<p>x</p>", "x")


def test_templates_substitute_metadata_and_escape_html():
    subject, text_body, html_body = render_subject_body(
        "membership_welcome",
        {"name": "Dr. <Lee>", "membershipType": "clinic", "appUrl": "https://kapstone.test"},
    )

    assert subject
    assert "Dr. <Lee>" in text_body
    assert "Dr. &lt;Lee&gt;" in html_body
    assert "{{" not in text_body and "{{" not in html_body


def test_missing_template_raises():
    with pytest.raises(TemplateNotFoundError):
        render_subject_body("does_not_exist", {})
