"""Transactional email templates rendered with Jinja2.

Every email is rendered twice, as HTML (autoescaped) and as plain text, from
the templates in mailer/templates/. The three OTP emails share one layout and
differ only in subject and intro line.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape

_TEMPLATE_DIR = Path(__file__).parent / "templates"

_env = Environment(
    loader=FileSystemLoader(_TEMPLATE_DIR),
    autoescape=select_autoescape(enabled_extensions=("html",), default_for_string=False),
    undefined=StrictUndefined,
    keep_trailing_newline=True,
)


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    html: str
    text: str


@dataclass(frozen=True)
class _Template:
    subject: str
    intro: str
    base: str = "otp"


_TEMPLATES: dict[str, _Template] = {
    "otp": _Template(
        subject="Your verification code",
        intro="Use the code below to verify your email address.",
    ),
    "resend_otp": _Template(
        subject="Your new verification code",
        intro="You asked for a new code. Use the one below to verify your email address.",
    ),
    "password_reset": _Template(
        subject="Password reset code",
        intro="Use the code below to reset your password. If you did not ask for this, ignore this email.",
    ),
}


def render_template(
    name: str,
    *,
    app_name: str,
    otp: str,
    expires_in_minutes: int,
    recipient_name: str | None = None,
    support_email: str | None = None,
) -> RenderedEmail:
    """Render the named email. Raises KeyError for an unknown template name."""
    template = _TEMPLATES[name]
    context = {
        "app_name": app_name,
        "title": template.subject,
        "intro": template.intro,
        "preheader": f"Your code is {otp}",
        "name": recipient_name or "",
        "otp": otp,
        "expires_in_minutes": expires_in_minutes,
        "support_email": support_email or "",
        "year": datetime.now(timezone.utc).year,
    }
    html = _env.get_template(f"{template.base}.html").render(context)
    text = _env.get_template(f"{template.base}.txt").render(context)
    return RenderedEmail(subject=template.subject, html=html, text=text)
