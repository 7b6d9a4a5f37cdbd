"""
Message Builder

Helpers to complete an outgoing message with a text part, an HTML part
or both, for use as input to the server in tests.

Example:
    message = EmailMessage()
    message["From"] = "Friend <friend@example.com>"
    message["To"] = "MySelf <self@example.com>"
    message["Subject"] = "Hello"
    body_text_and_html(message, "Welcome!", "<p>Welcome!</p>")
"""

from email import policy
from email.message import EmailMessage


def body_text(message: EmailMessage, text: str) -> EmailMessage:
    """Add a text part and complete the message."""
    message.set_content(text)
    return message


def body_html(message: EmailMessage, html: str) -> EmailMessage:
    """Add an html part and complete the message."""
    message.set_content(html, subtype="html")
    return message


def body_text_and_html(message: EmailMessage, text: str, html: str) -> EmailMessage:
    """Add both a text and html part and complete the message."""
    message.set_content(text)
    message.add_alternative(html, subtype="html")
    return message


def message_bytes(message: EmailMessage) -> bytes:
    """Serialize a message with CRLF line endings, as sent after `DATA`."""
    return message.as_bytes(policy=policy.SMTP)
