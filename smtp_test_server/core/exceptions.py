"""
Custom Exceptions

Errors raised while accepting connections, driving an SMTP exchange,
and converting received messages.
"""

from typing import Any, List, Optional


class SmtpTestServerError(Exception):
    """
    Base exception for all smtp-test-server errors.
    """

    def __init__(
        self,
        message: str,
        error_code: str = "internal_error",
        detail: Optional[Any] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.detail = detail
        super().__init__(self.message)


class ConfigError(SmtpTestServerError, ValueError):
    """
    Raised when an address spec cannot be parsed.
    """

    def __init__(self, message: str, detail: Optional[Any] = None):
        super().__init__(
            message=message,
            error_code="config_error",
            detail=detail,
        )


class AcceptError(SmtpTestServerError):
    """
    Raised when the listener fails to accept a connection.
    """

    def __init__(self, error: OSError):
        self.error = error
        super().__init__(
            message=f"failed to accept connection: {error}",
            error_code="accept_error",
        )


# ===================================
# SMTP Exchange Errors
# ===================================

class SmtpError(SmtpTestServerError):
    """
    An error during an SMTP exchange.
    """


class SmtpIOError(SmtpError):
    """
    Raised when reading from or writing to a connection fails.
    """

    def __init__(self, error: OSError):
        self.error = error
        super().__init__(
            message=str(error),
            error_code="smtp_io_error",
        )


class UnexpectedDataError(SmtpError):
    """
    Raised when a received chunk does not match the required literal.
    """

    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(
            message=f"received unexpected data; expected {expected!r}, actual {actual!r}",
            error_code="unexpected_data",
            detail={"expected": expected, "actual": actual},
        )


class UnexpectedContinuationError(SmtpError):
    """
    Raised when the command after the handshake is not recognised.
    """

    def __init__(self, actual: str):
        self.actual = actual
        super().__init__(
            message=f"received unexpected continuation: {actual!r}",
            error_code="unexpected_continuation",
            detail={"actual": actual},
        )


# ===================================
# Message Errors
# ===================================

class ParseError(SmtpTestServerError):
    """
    An error while turning a received payload into an email.
    """


class MailParseError(ParseError):
    """
    Raised when the payload is not a valid MIME message.
    """

    def __init__(self, message: str, detail: Optional[Any] = None):
        super().__init__(
            message=message,
            error_code="mail_parse_error",
            detail=detail,
        )


class ConversionError(ParseError):
    """
    Raised when a parsed message does not have the expected shape.
    """


class MissingFromAddressError(ConversionError):
    def __init__(self):
        super().__init__("missing `From` address", error_code="missing_from_address")


class MultipleFromAddressesError(ConversionError):
    def __init__(self, values: List[str]):
        self.values = values
        super().__init__(
            "multiple `From` addresses",
            error_code="multiple_from_addresses",
            detail=values,
        )


class FromAddressMismatchError(ConversionError):
    def __init__(self, smtp: str, email: str):
        self.smtp = smtp
        self.email = email
        super().__init__(
            f"mismatch `From` address; smtp: {smtp}, email: {email}",
            error_code="from_address_mismatch",
            detail={"smtp": smtp, "email": email},
        )


class MissingToAddressError(ConversionError):
    def __init__(self):
        super().__init__("missing `To` address", error_code="missing_to_address")


class MultipleToAddressesError(ConversionError):
    def __init__(self, values: List[str]):
        self.values = values
        super().__init__(
            "multiple `To` addresses",
            error_code="multiple_to_addresses",
            detail=values,
        )


class ToAddressMismatchError(ConversionError):
    def __init__(self, smtp: str, email: str):
        self.smtp = smtp
        self.email = email
        super().__init__(
            f"mismatch `To` address; smtp: {smtp}, email: {email}",
            error_code="to_address_mismatch",
            detail={"smtp": smtp, "email": email},
        )


class MissingSubjectError(ConversionError):
    def __init__(self):
        super().__init__("missing `Subject` header", error_code="missing_subject")


class MultipleSubjectsError(ConversionError):
    def __init__(self, values: List[str]):
        self.values = values
        super().__init__(
            "multiple `Subject` headers",
            error_code="multiple_subjects",
            detail=values,
        )


class UnexpectedPartCountError(ConversionError):
    def __init__(self, count: int):
        self.count = count
        super().__init__(
            f"unexpected part count; expected 2, received {count}",
            error_code="unexpected_part_count",
            detail={"count": count},
        )


class UnexpectedPartMimeError(ConversionError):
    def __init__(self, actual: str, expected: str):
        self.actual = actual
        self.expected = expected
        super().__init__(
            f"unexpected part mimetype; expected {expected!r}, received {actual!r}",
            error_code="unexpected_part_mime",
            detail={"actual": actual, "expected": expected},
        )
