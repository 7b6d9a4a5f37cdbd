"""
smtp-test-server - A simple SMTP server for tests

Receives a single text + HTML email per SMTP session over a fixed command
sequence and returns it as a structured `Email`.

License: MIT
Version: 0.1.0
"""

__version__ = "0.1.0"
__license__ = "MIT"

from smtp_test_server.config import ServerConfig
from smtp_test_server.core.exceptions import (
    AcceptError,
    ConversionError,
    ParseError,
    SmtpError,
    SmtpTestServerError,
)
from smtp_test_server.schemas import AcceptAll, AcceptAnonOnly, Auth, Email, Login
from smtp_test_server.smtp import (
    Server,
    body_html,
    body_text,
    body_text_and_html,
)

__all__ = [
    "__version__",
    "__license__",
    "Server",
    "ServerConfig",
    "Auth",
    "Login",
    "AcceptAnonOnly",
    "AcceptAll",
    "Email",
    "SmtpTestServerError",
    "AcceptError",
    "SmtpError",
    "ParseError",
    "ConversionError",
    "body_text",
    "body_html",
    "body_text_and_html",
]
