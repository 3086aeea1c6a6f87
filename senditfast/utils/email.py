import html
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from python_http_client.exceptions import HTTPError as SendGridHTTPError
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail
from starlette.concurrency import run_in_threadpool

from senditfast.core.config import Settings
from senditfast.core.exceptions import MailDeliveryError

logger = logging.getLogger("senditfast")


@dataclass
class OutgoingEmail:
    to_email: str
    subject: str
    html_body: str


class Mailer(ABC):
    @abstractmethod
    async def send(self, email: OutgoingEmail) -> Optional[str]:
        """Send one message; returns the provider message id when there is one."""


class SendGridMailer(Mailer):
    def __init__(self, api_key: str, from_email: str, from_name: str):
        self.client = SendGridAPIClient(api_key)
        self.from_email = from_email
        self.from_name = from_name

    def _send_sync(self, email: OutgoingEmail):
        message = Mail(
            from_email=(self.from_email, self.from_name),
            to_emails=email.to_email,
            subject=email.subject,
            html_content=email.html_body,
        )
        return self.client.send(message)

    async def send(self, email: OutgoingEmail) -> Optional[str]:
        try:
            response = await run_in_threadpool(self._send_sync, email)
        except SendGridHTTPError as e:
            raise MailDeliveryError(f"SendGrid API error: {e.status_code}")
        except OSError as e:
            raise MailDeliveryError(f"SendGrid unreachable: {e}")

        # SendGrid answers 202 Accepted for a queued message.
        if response.status_code != 202:
            raise MailDeliveryError(f"SendGrid API error: {response.status_code}")
        return response.headers.get("X-Message-Id")


class ConsoleMailer(Mailer):
    """Logs messages instead of sending them. Used in development and tests."""

    def __init__(self):
        self.outbox: list[OutgoingEmail] = []
        self.reject: set[str] = set()
        self.calls = 0

    async def send(self, email: OutgoingEmail) -> Optional[str]:
        self.calls += 1
        if email.to_email.lower() in self.reject:
            raise MailDeliveryError(f"Recipient {email.to_email} rejected")
        self.outbox.append(email)
        logger.info("[console mail] to=%s subject=%s", email.to_email, email.subject)
        return f"console-{len(self.outbox)}"


def build_mailer(settings: Settings) -> Mailer:
    if settings.EMAIL_BACKEND == "sendgrid":
        return SendGridMailer(settings.SENDGRID_API_KEY, settings.EMAIL_FROM, settings.EMAIL_FROM_NAME)
    if settings.EMAIL_BACKEND == "console":
        return ConsoleMailer()
    raise RuntimeError(f"Unknown EMAIL_BACKEND: {settings.EMAIL_BACKEND!r}")


def transfer_email(
    to_email: str,
    link: str,
    pixel_url: str,
    file_names: list[str],
    expires_at: str,
    message: Optional[str] = None,
    sender_name: Optional[str] = None,
) -> OutgoingEmail:
    sender = html.escape(sender_name or "Someone")
    files = "".join(f"<li>{html.escape(name)}</li>" for name in file_names)
    note = f"<p>{html.escape(message)}</p>" if message else ""
    body = (
        f"<p>{sender} sent you {len(file_names)} file(s).</p>"
        f"{note}"
        f"<ul>{files}</ul>"
        f'<p><a href="{html.escape(link)}">Download your files</a></p>'
        f"<p>The link expires on {html.escape(expires_at)}.</p>"
        f'<img src="{html.escape(pixel_url)}" width="1" height="1" alt="" />'
    )
    return OutgoingEmail(to_email=to_email, subject=f"{sender_name or 'Someone'} sent you files", html_body=body)
