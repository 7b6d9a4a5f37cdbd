"""
SMTP Module

SMTP exchange, message conversion and the server that ties them together.
"""

from smtp_test_server.smtp.server import Server, start_smtp_server
from smtp_test_server.smtp.processor import EmailProcessor, parse_email
from smtp_test_server.smtp.builder import body_html, body_text, body_text_and_html

__all__ = [
    "Server",
    "start_smtp_server",
    "EmailProcessor",
    "parse_email",
    "body_text",
    "body_html",
    "body_text_and_html",
]
