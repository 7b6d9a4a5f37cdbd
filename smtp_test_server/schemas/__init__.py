"""
Pydantic Schemas

Authentication policies and the received email model.
"""

from smtp_test_server.schemas.auth import (
    Auth,
    Login,
    AcceptAnonOnly,
    AcceptAll,
)
from smtp_test_server.schemas.email import Email

__all__ = [
    "Auth",
    "Login",
    "AcceptAnonOnly",
    "AcceptAll",
    "Email",
]
