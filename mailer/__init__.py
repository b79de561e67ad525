"""mailer/ -- Outbound email: SMTP delivery and transactional templates.

Layer rule: mailer/ imports only core/ and third-party libraries.
auth/ depends on the EmailSender protocol, never on SMTP directly.
"""

from mailer.sender import EmailSender, SendResult, SmtpEmailSender
from mailer.render import RenderedEmail, render_template

__all__ = ["EmailSender", "RenderedEmail", "SendResult", "SmtpEmailSender", "render_template"]
