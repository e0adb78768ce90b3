# account_service/mailer.py
"""Email notifications.

Sending never raises into the caller: every failure is logged and reported
as ``False``. Blocking transports run in the default executor so the event
loop is not held up.
"""
import asyncio
import html as html_lib
import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from string import Template
from typing import Optional

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail as SendGridMail

log = logging.getLogger(__name__)


@dataclass
class OutgoingEmail:
    to: str
    subject: str
    html: str
    text: str
    from_name: str
    from_address: Optional[str]

    @property
    def sender(self) -> str:
        return formataddr((self.from_name, self.from_address or ""))


# --- Transports ---
class SendGridTransport:
    def __init__(self, api_key: str):
        self.client = SendGridAPIClient(api_key)

    def send(self, email: OutgoingEmail) -> bool:
        message = SendGridMail(
            from_email=(email.from_address, email.from_name),
            to_emails=email.to,
            subject=email.subject,
            html_content=email.html,
            plain_text_content=email.text,
        )
        response = self.client.send(message)
        log.info("SendGrid accepted email to %s, status: %s", email.to, response.status_code)
        return 200 <= int(response.status_code) < 300


class SMTPTransport:
    def __init__(
        self,
        host: str,
        port: int = 587,
        secure: bool = False,
        user: Optional[str] = None,
        password: Optional[str] = None,
        timeout: float = 30.0,
    ):
        self.host = host
        self.port = port
        self.secure = secure
        self.user = user
        self.password = password
        self.timeout = timeout

    def _build(self, email: OutgoingEmail) -> MIMEMultipart:
        message = MIMEMultipart("alternative")
        message["From"] = email.sender
        message["To"] = email.to
        message["Subject"] = email.subject
        message.attach(MIMEText(email.text, "plain"))
        message.attach(MIMEText(email.html, "html"))
        return message

    def send(self, email: OutgoingEmail) -> bool:
        message = self._build(email)
        context = ssl.create_default_context()
        # secure=True is implicit TLS (465), otherwise upgrade with STARTTLS
        if self.secure:
            server = smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout, context=context)
        else:
            server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        with server:
            if not self.secure:
                server.starttls(context=context)
            if self.user and self.password:
                server.login(self.user, self.password)
            server.sendmail(email.from_address or self.user, [email.to], message.as_string())
        log.info("Email sent successfully to %s", email.to)
        return True


class ConsoleTransport:
    """Used when no mail provider is configured (local development)."""

    def send(self, email: OutgoingEmail) -> bool:
        log.warning("Mail transport not configured. Email to %s not delivered: %s",
                    email.to, email.subject)
        log.debug("Undelivered email body for %s:\n%s", email.to, email.text)
        return True


# --- Templates ---
OTP_SUBJECT = "Password Reset OTP"
PASSWORD_CHANGED_SUBJECT = "Password Changed Successfully"

_BASE_STYLE = """
    body { font-family: Arial, sans-serif; line-height: 1.6; color: #333; }
    .container { max-width: 600px; margin: 0 auto; padding: 20px; }
    .header { background-color: $color; color: white; padding: 20px; text-align: center; }
    .content { background-color: #f9f9f9; padding: 30px; border-radius: 5px; margin-top: 20px; }
    .footer { text-align: center; margin-top: 30px; font-size: 12px; color: #666; }
"""

OTP_HTML = Template("""<!DOCTYPE html>
<html>
<head><style>""" + _BASE_STYLE + """
    .otp-box { background-color: #fff; padding: 20px; text-align: center; font-size: 32px;
               font-weight: bold; letter-spacing: 8px; border: 2px dashed #4CAF50;
               margin: 20px 0; border-radius: 5px; }
    .warning { color: #d32f2f; font-size: 14px; margin-top: 20px; }
</style></head>
<body>
  <div class="container">
    <div class="header"><h1>Password Reset Request</h1></div>
    <div class="content">
      <p>You have requested to reset your password. Use the OTP below to continue:</p>
      <div class="otp-box">$otp</div>
      <p>This OTP is valid for <strong>$minutes minutes</strong>.</p>
      <p class="warning">If you did not request a password reset, please ignore this email
         or contact support if you have concerns about your account security.</p>
    </div>
    <div class="footer"><p>This is an automated message, please do not reply.</p></div>
  </div>
</body>
</html>
""")

OTP_TEXT = Template("""Password Reset OTP

You have requested to reset your password. Your OTP is: $otp

This OTP is valid for $minutes minutes.

If you did not request a password reset, please ignore this email.
""")

PASSWORD_CHANGED_HTML = Template("""<!DOCTYPE html>
<html>
<head><style>""" + _BASE_STYLE + """
    .warning { background-color: #fff3cd; border-left: 4px solid #ffc107;
               padding: 15px; margin: 20px 0; }
</style></head>
<body>
  <div class="container">
    <div class="header"><h1>Password Changed</h1></div>
    <div class="content">
      <p>Hello $name,</p>
      <p>Your password has been successfully changed.</p>
      <div class="warning">If you did not make this change, please contact support
         immediately and secure your account.</div>
    </div>
    <div class="footer"><p>This is an automated message, please do not reply.</p></div>
  </div>
</body>
</html>
""")

PASSWORD_CHANGED_TEXT = Template("""Password Changed Successfully

Hello $name,

Your password has been successfully changed.

If you did not make this change, please contact support immediately.
""")


class Mailer:
    def __init__(self, transport, from_name: str = "Account Service",
                 from_address: Optional[str] = None):
        self.transport = transport
        self.from_name = from_name
        self.from_address = from_address

    @classmethod
    def from_settings(cls, settings) -> "Mailer":
        if settings.sendgrid_api_key and settings.mail_from_address:
            transport = SendGridTransport(settings.sendgrid_api_key)
        elif settings.email_host and settings.email_user:
            transport = SMTPTransport(
                settings.email_host,
                settings.email_port,
                settings.email_secure,
                settings.email_user,
                settings.email_password,
            )
        else:
            log.warning("No mail provider configured, emails will only be logged")
            transport = ConsoleTransport()
        return cls(transport, settings.email_from_name, settings.mail_from_address)

    async def send(self, to: str, subject: str, html: str, text: str) -> bool:
        email = OutgoingEmail(
            to=to,
            subject=subject,
            html=html,
            text=text,
            from_name=self.from_name,
            from_address=self.from_address,
        )
        try:
            loop = asyncio.get_running_loop()
            return bool(await loop.run_in_executor(None, self.transport.send, email))
        except Exception as e:
            log.error("Error sending email to %s: %s", to, e)
            return False

    async def send_otp_email(self, email: str, otp: str, expiry_minutes: int = 10) -> bool:
        values = {"otp": otp, "minutes": expiry_minutes}
        return await self.send(
            email,
            OTP_SUBJECT,
            OTP_HTML.substitute(values, color="#4CAF50"),
            OTP_TEXT.substitute(values),
        )

    async def send_password_changed_email(self, email: str, name: str) -> bool:
        return await self.send(
            email,
            PASSWORD_CHANGED_SUBJECT,
            PASSWORD_CHANGED_HTML.substitute(name=html_lib.escape(name), color="#2196F3"),
            PASSWORD_CHANGED_TEXT.substitute(name=name),
        )
