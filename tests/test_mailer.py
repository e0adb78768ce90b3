# tests/test_mailer.py
from conftest import RecordingTransport

from account_service.config import Settings
from account_service.mailer import (
    OTP_SUBJECT,
    PASSWORD_CHANGED_SUBJECT,
    ConsoleTransport,
    Mailer,
    SendGridTransport,
    SMTPTransport,
)


def _settings(**values):
    return Settings(jwt_secret="a", refresh_token_secret="r", **values)


async def test_otp_email_carries_code_and_expiry(mailer, transport):
    assert await mailer.send_otp_email("ada@example.com", "482913", 10)
    email = transport.sent[0]
    assert email.to == "ada@example.com"
    assert email.subject == OTP_SUBJECT
    assert "482913" in email.html
    assert "Your OTP is: 482913" in email.text
    assert "10 minutes" in email.text
    assert email.sender == "Account Service <no-reply@example.com>"


async def test_password_changed_email_escapes_name(mailer, transport):
    assert await mailer.send_password_changed_email("ada@example.com", "<b>Ada</b>")
    email = transport.sent[0]
    assert email.subject == PASSWORD_CHANGED_SUBJECT
    assert "&lt;b&gt;Ada&lt;/b&gt;" in email.html
    assert "<b>Ada</b>" not in email.html
    assert "Hello <b>Ada</b>," in email.text


async def test_transport_error_is_reported_not_raised(mailer, transport):
    transport.fail = True
    assert await mailer.send_otp_email("ada@example.com", "482913") is False


async def test_transport_returning_false():
    class Refusing(RecordingTransport):
        def send(self, email):
            return False

    assert await Mailer(Refusing()).send("a@example.com", "s", "<p>h</p>", "t") is False


async def test_console_transport_always_succeeds():
    mailer = Mailer(ConsoleTransport(), from_address="no-reply@example.com")
    assert await mailer.send_password_changed_email("ada@example.com", "Ada")


def test_from_settings_picks_transport():
    assert isinstance(Mailer.from_settings(_settings()).transport, ConsoleTransport)

    smtp = Mailer.from_settings(
        _settings(email_host="smtp.example.com", email_user="mailer@example.com",
                  email_password="secret", email_port=465, email_secure=True)
    )
    assert isinstance(smtp.transport, SMTPTransport)
    assert smtp.transport.port == 465
    assert smtp.transport.secure is True
    assert smtp.from_address == "mailer@example.com"

    sendgrid = Mailer.from_settings(
        _settings(sendgrid_api_key="SG.test", email_from="hello@example.com")
    )
    assert isinstance(sendgrid.transport, SendGridTransport)
    assert sendgrid.from_address == "hello@example.com"


def test_smtp_message_has_both_parts():
    from account_service.mailer import OutgoingEmail

    transport = SMTPTransport("smtp.example.com")
    message = transport._build(
        OutgoingEmail("ada@example.com", "Hi", "<p>hi</p>", "hi", "Account Service",
                      "no-reply@example.com")
    )
    assert message["To"] == "ada@example.com"
    assert [part.get_content_type() for part in message.get_payload()] == [
        "text/plain",
        "text/html",
    ]
