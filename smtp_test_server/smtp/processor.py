"""
Email Processor

Turns the raw envelope of a finished SMTP transaction into an `Email`:
- Parse the MIME payload
- Check the `From`, `To` and `Subject` headers against the envelope
- Extract the text and HTML parts
"""

import re
from email import errors, policy
from email.header import decode_header, make_header
from email.message import EmailMessage
from email.parser import BytesParser
from typing import Dict, List

from smtp_test_server.core.exceptions import (
    FromAddressMismatchError,
    MailParseError,
    MissingFromAddressError,
    MissingSubjectError,
    MissingToAddressError,
    MultipleFromAddressesError,
    MultipleSubjectsError,
    MultipleToAddressesError,
    ToAddressMismatchError,
    UnexpectedPartCountError,
    UnexpectedPartMimeError,
)
from smtp_test_server.core.logging import get_logger
from smtp_test_server.schemas.email import Email
from smtp_test_server.smtp.protocol import Data

logger = get_logger(__name__)

# Defects that leave the multipart structure unusable.
STRUCTURAL_DEFECTS = (
    errors.NoBoundaryInMultipartDefect,
    errors.StartBoundaryNotFoundDefect,
    errors.MultipartInvariantViolationDefect,
    errors.InvalidMultipartContentTransferEncodingDefect,
)

# Failures raised while building header objects from malformed values.
HEADER_FAILURES = (
    errors.MessageError,
    AttributeError,
    LookupError,
    TypeError,
    UnicodeError,
    ValueError,
)

FOLDING = re.compile(r"\r?\n(?=[ \t])")


class EmailProcessor:
    """
    Validate and convert received messages.

    Every violation raises; there is no partial email.
    """

    def __init__(self):
        self.parser = BytesParser(policy=policy.default)

    def process(self, data: Data) -> Email:
        """
        Parse and convert a raw envelope.

        Args:
            data: Envelope and payload captured by the SMTP exchange

        Returns:
            Email: The converted email

        Raises:
            MailParseError: If the payload is not a valid MIME message
            ConversionError: If the message does not match the envelope
                or does not have exactly a text and an HTML part
        """
        message = self.parse(data.email)
        return self.convert(data.address_from, data.address_to, message)

    def parse(self, raw: bytes) -> EmailMessage:
        try:
            message = self.parser.parsebytes(raw)
        except (errors.MessageError, ValueError) as e:
            raise MailParseError(f"failed to parse message: {e}") from e

        defects = [d for d in message.defects if isinstance(d, STRUCTURAL_DEFECTS)]
        if defects:
            raise MailParseError(
                f"malformed message: {type(defects[0]).__name__}",
                detail=[type(d).__name__ for d in defects],
            )
        return message

    def convert(self, address_from: str, address_to: str, message: EmailMessage) -> Email:
        from_addr = self._single_header(
            message, "From", MissingFromAddressError, MultipleFromAddressesError
        )
        if f"<{address_from}>" not in from_addr:
            raise FromAddressMismatchError(smtp=address_from, email=from_addr)

        to_addr = self._single_header(
            message, "To", MissingToAddressError, MultipleToAddressesError
        )
        if f"<{address_to}>" not in to_addr:
            raise ToAddressMismatchError(smtp=address_to, email=to_addr)

        subject = self._single_header(
            message, "Subject", MissingSubjectError, MultipleSubjectsError
        )
        if subject.endswith("\r\n"):
            subject = subject[:-2]

        parts = self._extract_parts(message)
        if len(parts) != 2:
            raise UnexpectedPartCountError(len(parts))
        body_text = self._extract_body(parts[0], "text/plain")
        body_html = self._extract_body(parts[1], "text/html")

        logger.debug(f"Converted email from {address_from} to {address_to}")
        return Email(
            address_from=address_from,
            address_to=address_to,
            subject=subject,
            headers=self._extract_headers(message),
            body_text=body_text,
            body_html=body_html,
        )

    def _single_header(self, message: EmailMessage, name: str, missing, multiple) -> str:
        """
        Get the value of a header that must occur exactly once.

        Args:
            message: Parsed message
            name: Header name, matched case-insensitively
            missing: Error raised when the header is absent
            multiple: Error raised with all values when it is repeated
        """
        values = [
            decode_header_value(value)
            for key, value in message.raw_items()
            if key.lower() == name.lower()
        ]
        if len(values) > 1:
            raise multiple(values)
        if not values:
            raise missing()
        return values[0]

    def _extract_parts(self, message: EmailMessage) -> List[EmailMessage]:
        if not message.is_multipart():
            return []
        return list(message.get_payload())

    def _extract_body(self, part: EmailMessage, expected: str) -> str:
        try:
            actual = part.get_content_type()
        except HEADER_FAILURES as e:
            raise MailParseError(f"invalid Content-Type header: {e!r}") from e
        if actual != expected:
            raise UnexpectedPartMimeError(actual=actual, expected=expected)
        try:
            return part.get_content()
        except HEADER_FAILURES as e:
            raise MailParseError(f"failed to decode {expected} part: {e!r}") from e

    def _extract_headers(self, message: EmailMessage) -> Dict[str, str]:
        """
        Collect headers as received, keeping the last value of repeated names.
        """
        return {name: decode_header_value(value) for name, value in message.raw_items()}


def decode_header_value(raw: str) -> str:
    """
    Unfold a raw header value and decode RFC 2047 encoded words.

    Values without encoded words are returned as received, apart from
    unfolding and undoing the parser's surrogate escapes for 8-bit bytes.

    Raises:
        MailParseError: If an encoded word cannot be decoded
    """
    value = FOLDING.sub("", raw)
    try:
        value.encode("utf-8")
    except UnicodeEncodeError:
        value = value.encode("ascii", "surrogateescape").decode("utf-8", "replace")
    if "=?" not in value:
        return value
    try:
        return str(make_header(decode_header(value)))
    except HEADER_FAILURES as e:
        raise MailParseError(f"invalid encoded header value {raw!r}: {e!r}") from e


def parse_email(data: Data) -> Email:
    """Convert a raw envelope with a default `EmailProcessor`."""
    return EmailProcessor().process(data)
