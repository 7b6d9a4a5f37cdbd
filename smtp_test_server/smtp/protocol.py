"""
SMTP Protocol

The fixed SMTP exchange driven on every connection:

    220 greeting, EHLO, 250 capabilities, optional AUTH PLAIN,
    then either NOOP/QUIT or MAIL/RCPT/DATA/QUIT.

Each step reads one chunk from the connection and compares it as a whole
to the literal it expects. Clients must therefore send every command, the
message body and the terminating `\\r\\n.\\r\\n` as separate writes.
"""

import asyncio
import base64
import enum
from dataclasses import dataclass
from typing import ClassVar, Optional

from smtp_test_server.core.exceptions import (
    SmtpIOError,
    UnexpectedContinuationError,
    UnexpectedDataError,
)
from smtp_test_server.core.logging import SessionLogger, get_logger
from smtp_test_server.schemas.auth import AcceptAll, AcceptAnonOnly, Auth, Login

logger = get_logger(__name__)

READ_WAIT = 0.01
READ_BUFFER_SIZE = 128 * 1024


class Outcome(str, enum.Enum):
    EMAIL = "email"
    CONTINUE = "continue"
    QUIT = "quit"


@dataclass(frozen=True)
class Data:
    """Raw envelope of a completed transaction."""

    email: bytes
    address_from: str
    address_to: str


@dataclass(frozen=True)
class Response:
    """
    Outcome of one session.

    `EMAIL` carries the transaction payload, `CONTINUE` restarts the
    exchange on the same connection and `QUIT` ends the connection.
    """

    outcome: Outcome
    payload: Optional[Data] = None

    CONTINUE: ClassVar["Response"]
    QUIT: ClassVar["Response"]

    @classmethod
    def email(cls, payload: Data) -> "Response":
        return cls(Outcome.EMAIL, payload)


Response.CONTINUE = Response(Outcome.CONTINUE)
Response.QUIT = Response(Outcome.QUIT)


class SmtpTransport:
    """
    Chunk reader and line writer on top of an asyncio stream pair.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        log: Optional[SessionLogger] = None,
    ):
        self.reader = reader
        self.writer = writer
        self.log = log or SessionLogger(logger)

    async def read(self) -> str:
        """
        Read whatever has arrived, waiting until at least one byte is available.

        Empty reads are treated as transient: the read is retried after
        `READ_WAIT` seconds. Invalid UTF-8 is replaced rather than rejected.
        """
        while True:
            try:
                buffer = await self.reader.read(READ_BUFFER_SIZE)
            except OSError as e:
                raise SmtpIOError(e) from e
            if buffer:
                break
            await asyncio.sleep(READ_WAIT)
        data = buffer.decode("utf-8", errors="replace")
        self.log.recv(data)
        return data

    async def read_body(self) -> bytes:
        """Perform a single read of the message body."""
        try:
            body = await self.reader.read(READ_BUFFER_SIZE)
        except OSError as e:
            raise SmtpIOError(e) from e
        self.log.debug(f"recv body ({len(body)} bytes)", extra={"direction": "recv"})
        return body

    async def read_expect(self, expected: str) -> None:
        data = await self.read()
        if data != expected:
            raise UnexpectedDataError(expected=expected, actual=data)

    async def write(self, data: str) -> None:
        self.log.send(data)
        try:
            self.writer.write(data.encode("utf-8"))
            await self.writer.drain()
        except OSError as e:
            raise SmtpIOError(e) from e


def expect_address(data: str, command: str) -> str:
    """
    Extract the address from `<command>:<address>\\r\\n`.

    Raises:
        UnexpectedDataError: If the line does not have that exact shape
    """
    prefix = f"{command}:<"
    suffix = ">\r\n"
    if data.startswith(prefix) and data.endswith(suffix):
        return data[len(prefix):-len(suffix)]
    raise UnexpectedDataError(expected=f"{command}:<...>\r\n", actual=data)


def encode_password(username: str, password: str) -> str:
    """Encode credentials the way an `AUTH PLAIN` client sends them."""
    data = b"\0" + username.encode("utf-8") + b"\0" + password.encode("utf-8")
    return base64.b64encode(data).decode("ascii")


async def respond_auth_ok(transport: SmtpTransport) -> None:
    await transport.write("235 Authentication successful\r\n")


async def respond_auth_fail(transport: SmtpTransport) -> None:
    await transport.write("535 Authentication failed\r\n")
    await transport.read_expect("QUIT\r\n")
    await transport.write("221 Ok\r\n")


async def receive(
    transport: SmtpTransport,
    server_address: str,
    client_address: str,
    auth: Auth,
) -> Response:
    """
    Drive one SMTP session.

    Args:
        transport: Connection to the client
        server_address: Address announced in the greeting
        client_address: Address the client must announce in `EHLO`
        auth: Authentication policy

    Returns:
        Response: `EMAIL` with a `Data` payload, `CONTINUE` or `QUIT`

    Raises:
        SmtpError: On I/O failure or any deviation from the exchange
    """
    await transport.write(f"220 {server_address}\r\n")
    await transport.read_expect(f"EHLO [{client_address}]\r\n")

    await transport.write(f"250-{server_address}\r\n")
    await transport.write("250 AUTH PLAIN\r\n")

    data = await transport.read()
    if data.startswith("AUTH"):
        if isinstance(auth, Login):
            credentials = encode_password(auth.username, auth.password)
            if data != f"AUTH PLAIN {credentials}\r\n":
                await respond_auth_fail(transport)
                return Response.QUIT
            await respond_auth_ok(transport)
        elif isinstance(auth, AcceptAnonOnly):
            await respond_auth_fail(transport)
            return Response.QUIT
        elif isinstance(auth, AcceptAll):
            await respond_auth_ok(transport)
        else:
            raise TypeError(f"unknown auth policy: {auth!r}")

        data = await transport.read()
    elif isinstance(auth, Login):
        # login is mandatory
        await respond_auth_fail(transport)
        return Response.QUIT

    if data == "NOOP\r\n":
        await transport.write("250 Ok\r\n")

        await transport.read_expect("QUIT\r\n")
        await transport.write("221 Ok\r\n")

        return Response.CONTINUE

    if data.startswith("MAIL"):
        address_from = expect_address(data, "MAIL FROM")
        await transport.write("250 Ok\r\n")

        data = await transport.read()
        address_to = expect_address(data, "RCPT TO")
        await transport.write("250 Ok\r\n")

        await transport.read_expect("DATA\r\n")
        await transport.write("354 Go\r\n")

        email = await transport.read_body()

        await transport.read_expect("\r\n.\r\n")
        await transport.write("250 Ok\r\n")

        await transport.read_expect("QUIT\r\n")
        await transport.write("221 Ok\r\n")

        return Response.email(
            Data(email=email, address_from=address_from, address_to=address_to)
        )

    raise UnexpectedContinuationError(actual=data)
