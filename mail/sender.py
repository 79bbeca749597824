"""
mail/sender.py -- Transactional email: welcome and password-reset messages.

Two senders share one interface, ``await sender.send(recipient, kind, context)``:

  SmtpEmailSender    -- aiosmtplib, used when EMAIL_BACKEND=smtp.
  ConsoleEmailSender -- logs the rendered message and keeps it in an
                        in-memory outbox. Default in development and tests.

Bodies are Jinja2 templates in mail/templates/ named <kind>.txt and
<kind>.html. Any delivery failure raises DownstreamUnavailable so callers can
roll back state that only makes sense if the email went out.

Layer rule: no imports from api/, web/, auth/, tours/, or payments/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from email.message import EmailMessage
from pathlib import Path
from typing import Any

import aiosmtplib
from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateError, select_autoescape

from core.errors import DownstreamUnavailable

logger = logging.getLogger("wayfarer.mail")

_TEMPLATE_DIR = Path(__file__).parent / "templates"

# Subjects are Jinja2 strings rendered with the same context as the body.
SUBJECTS: dict[str, str] = {
    "welcome": "Welcome to the Wayfarer family!",
    "password_reset": "Your password reset token (valid for only {{ expires_minutes }} minutes)",
}


@dataclass(frozen=True)
class RenderedEmail:
    recipient: str
    kind: str
    subject: str
    text: str
    html: str


class EmailRenderer:
    """Render <kind>.txt and <kind>.html with the same context."""

    def __init__(self, template_dir: Path = _TEMPLATE_DIR) -> None:
        self.env = Environment(
            loader=FileSystemLoader(str(template_dir)),
            autoescape=select_autoescape(["html"], default_for_string=False),
            undefined=StrictUndefined,
        )

    def render(self, recipient: str, kind: str, context: dict[str, Any]) -> RenderedEmail:
        if kind not in SUBJECTS:
            raise ValueError(f"Unknown email kind: {kind!r}")
        return RenderedEmail(
            recipient=recipient,
            kind=kind,
            subject=self.env.from_string(SUBJECTS[kind]).render(**context),
            text=self.env.get_template(f"{kind}.txt").render(**context),
            html=self.env.get_template(f"{kind}.html").render(**context),
        )


def _build_message(email: RenderedEmail, from_addr: str) -> EmailMessage:
    message = EmailMessage()
    message["To"] = email.recipient
    message["From"] = from_addr
    message["Subject"] = email.subject
    message.set_content(email.text)
    message.add_alternative(email.html, subtype="html")
    return message


class SmtpEmailSender:
    """Async SMTP sender using aiosmtplib."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        timeout: float = 10.0,
        from_email: str = "Wayfarer <hello@wayfarer.local>",
        renderer: EmailRenderer | None = None,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username or None
        self.password = password or None
        self.use_tls = use_tls
        self.timeout = timeout
        self.from_email = from_email
        self.renderer = renderer or EmailRenderer()

    async def send(self, recipient: str, kind: str, context: dict[str, Any]) -> None:
        try:
            email = self.renderer.render(recipient, kind, context)
        except TemplateError as exc:
            raise DownstreamUnavailable(f"Could not render {kind} email.") from exc
        message = _build_message(email, self.from_email)
        try:
            await aiosmtplib.send(
                message,
                hostname=self.host,
                port=self.port,
                username=self.username,
                password=self.password,
                start_tls=self.use_tls,
                timeout=self.timeout,
            )
        except (aiosmtplib.SMTPException, OSError) as exc:
            logger.error("SMTP delivery of %s email to %s failed: %s", kind, recipient, exc)
            raise DownstreamUnavailable("There was an error sending the email. Try again later!") from exc
        logger.info("Sent %s email to %s via SMTP", kind, recipient)


@dataclass
class ConsoleEmailSender:
    """Development sender: logs each message and records it in outbox."""

    renderer: EmailRenderer = field(default_factory=EmailRenderer)
    outbox: list[RenderedEmail] = field(default_factory=list)

    async def send(self, recipient: str, kind: str, context: dict[str, Any]) -> None:
        email = self.renderer.render(recipient, kind, context)
        self.outbox.append(email)
        logger.info("Email to=%s subject=%r\n%s", recipient, email.subject, email.text)


def build_sender(settings) -> SmtpEmailSender | ConsoleEmailSender:
    """Pick the sender named by settings.email_backend."""
    if settings.email_backend == "smtp":
        return SmtpEmailSender(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            from_email=settings.email_from,
        )
    return ConsoleEmailSender()
