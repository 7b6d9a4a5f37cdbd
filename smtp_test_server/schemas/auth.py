"""
Authentication policy schemas.

`Auth` is a closed union: code that branches on it checks each of the
three models explicitly.
"""

from typing import Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class Login(BaseModel):
    """Require clients to login with the provided credentials."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["login"] = "login"
    username: str = Field(..., description="Accepted username")
    password: str = Field(..., description="Accepted password")


class AcceptAnonOnly(BaseModel):
    """Accept only anonymous clients."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["accept_anon_only"] = "accept_anon_only"


class AcceptAll(BaseModel):
    """Accept any client, even ones that try to login using credentials."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["accept_all"] = "accept_all"


Auth = Union[Login, AcceptAnonOnly, AcceptAll]
