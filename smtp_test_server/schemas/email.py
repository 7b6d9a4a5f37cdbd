"""
Received email schema.
"""

from typing import Dict

from pydantic import BaseModel, ConfigDict, Field


class Email(BaseModel):
    """A parsed email as received by the server."""

    model_config = ConfigDict(frozen=True)

    address_from: str = Field(..., description="Sender address from `MAIL FROM`, without a name")
    address_to: str = Field(..., description="Recipient address from `RCPT TO`, without a name")
    subject: str = Field(..., description="Subject taken from the headers")
    headers: Dict[str, str] = Field(default_factory=dict, description="Header name to last seen value")
    body_text: str = Field(..., description="The text/plain part")
    body_html: str = Field(..., description="The text/html part")

    def get_from(self) -> str:
        """Get the complete `From` header, including the name."""
        return self.headers["From"]

    def get_to(self) -> str:
        """Get the complete `To` header, including the name."""
        return self.headers["To"]
