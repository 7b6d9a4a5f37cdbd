"""
Shared test fixtures and configuration for pytest
"""
import asyncio
from email.message import EmailMessage

import pytest

from smtp_test_server import Server
from smtp_test_server.smtp.builder import body_text_and_html, message_bytes
from smtp_test_server.smtp.protocol import SmtpTransport, encode_password

TIMEOUT = 2.0

# the server reads the body and the terminator separately
BODY_PAUSE = 0.05


class SmtpClient:
    """
    Scripted SMTP client.

    Sends every command, the message body and the `\\r\\n.\\r\\n`
    terminator as separate writes and checks each reply.
    """

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self.reader = reader
        self.writer = writer

    @classmethod
    async def connect(cls, address):
        reader, writer = await asyncio.open_connection(*address)
        return cls(reader, writer)

    async def send(self, data):
        if isinstance(data, str):
            data = data.encode("utf-8")
        self.writer.write(data)
        await self.writer.drain()

    async def reply(self) -> str:
        line = await asyncio.wait_for(self.reader.readline(), TIMEOUT)
        return line.decode("utf-8")

    async def expect(self, expected: str) -> str:
        line = await self.reply()
        assert line.startswith(expected), f"expected {expected!r}, got {line!r}"
        return line

    async def hello(self, client_ip: str = "127.0.0.1"):
        await self.expect("220 ")
        await self.send(f"EHLO [{client_ip}]\r\n")
        await self.expect("250-")
        await self.expect("250 AUTH PLAIN\r\n")

    async def login(self, username: str, password: str) -> str:
        await self.send(f"AUTH PLAIN {encode_password(username, password)}\r\n")
        return await self.reply()

    async def quit(self):
        await self.send("QUIT\r\n")
        await self.expect("221 Ok\r\n")

    async def noop(self):
        await self.send("NOOP\r\n")
        await self.expect("250 Ok\r\n")
        await self.quit()

    async def mail(self, sender: str, recipient: str, payload: bytes):
        await self.send(f"MAIL FROM:<{sender}>\r\n")
        await self.expect("250 Ok\r\n")
        await self.send(f"RCPT TO:<{recipient}>\r\n")
        await self.expect("250 Ok\r\n")
        await self.send("DATA\r\n")
        await self.expect("354 Go\r\n")
        await self.send(payload)
        await asyncio.sleep(BODY_PAUSE)
        await self.send("\r\n.\r\n")
        await self.expect("250 Ok\r\n")
        await self.quit()

    async def close(self):
        self.writer.close()


class ScriptedTransport(SmtpTransport):
    """Transport that replays chunks instead of reading a socket."""

    def __init__(self, chunks):
        super().__init__(reader=None, writer=None)
        self.incoming = list(chunks)
        self.sent = []

    async def read(self) -> str:
        return self.incoming.pop(0)

    async def read_body(self) -> bytes:
        return self.incoming.pop(0).encode("utf-8")

    async def write(self, data: str) -> None:
        self.sent.append(data)


def build_message(
    sender=("Sender", "sender@example.com"),
    recipient=("Recipient", "recipient@example.com"),
    subject="Hello world",
    text="Welcome",
    html="<p>Welcome</p>",
) -> bytes:
    """Build a text + html message as a client would send it."""
    message = EmailMessage()
    message["From"] = f"{sender[0]} <{sender[1]}>"
    message["To"] = f"{recipient[0]} <{recipient[1]}>"
    message["Subject"] = subject
    body_text_and_html(message, text, html)
    return message_bytes(message)


def build_raw(parts, headers=None) -> bytes:
    """
    Build a multipart/alternative payload by hand.

    Args:
        parts: (content type, content) pairs; every content ends up
            followed by a single CRLF once parsed
        headers: (name, value) pairs, defaulting to a matching From/To/Subject
    """
    if headers is None:
        headers = [
            ("From", "Sender <sender@example.com>"),
            ("To", "Recipient <recipient@example.com>"),
            ("Subject", "Hello world"),
        ]
    raw = "".join(f"{name}: {value}\r\n" for name, value in headers)
    raw += "MIME-Version: 1.0\r\n"
    raw += 'Content-Type: multipart/alternative; boundary="BOUNDARY"\r\n'
    raw += "\r\n"
    for content_type, content in parts:
        raw += "--BOUNDARY\r\n"
        raw += f"Content-Type: {content_type}; charset=utf-8\r\n"
        raw += "Content-Transfer-Encoding: 7bit\r\n"
        raw += "\r\n"
        raw += f"{content}\r\n\r\n"
    raw += "--BOUNDARY--\r\n"
    return raw.encode("utf-8")


@pytest.fixture
async def start_server():
    """Start servers on a free local port and close them afterwards."""
    servers = []

    async def start(auth):
        server = await Server.start(("127.0.0.1", 0), auth)
        servers.append(server)
        return server

    yield start

    for server in servers:
        await server.close()


@pytest.fixture
async def connect():
    """Open scripted client connections and close them afterwards."""
    clients = []

    async def open_client(server):
        client = await SmtpClient.connect(server.address())
        clients.append(client)
        return client

    yield open_client

    for client in clients:
        await client.close()


@pytest.fixture
def two_part_message():
    """Sample text + html message."""
    return build_message()
