"""
SMTP Server

Accepts connections, drives the SMTP exchange on each of them in its own
task and hands the results to the caller through a bounded channel.

Run with:
    python -m smtp_test_server
"""

import asyncio
import socket
import sys
from typing import AsyncIterator, Optional, Set, Tuple, Union

from prometheus_client import start_http_server

from smtp_test_server.config import ServerConfig, Settings, get_settings
from smtp_test_server.core.exceptions import (
    AcceptError,
    ConfigError,
    MailParseError,
    ParseError,
    SmtpError,
    SmtpTestServerError,
)
from smtp_test_server.core.logging import SessionLogger, get_logger, setup_logging
from smtp_test_server.core.metrics import (
    record_smtp_connection,
    record_smtp_message,
    record_smtp_rejection,
    record_smtp_session,
)
from smtp_test_server.schemas.auth import AcceptAll, AcceptAnonOnly, Auth, Login
from smtp_test_server.schemas.email import Email
from smtp_test_server.smtp.processor import EmailProcessor
from smtp_test_server.smtp.protocol import Data, Outcome, SmtpTransport, receive

logger = get_logger(__name__)

Result = Union[Email, SmtpTestServerError]


class ChannelClosed(Exception):
    """Raised to a producer when the consumer side has been closed."""


class ResultChannel:
    """
    Bounded channel between session tasks and the server.

    The server owns the channel for its whole lifetime, so the consumer
    never sees it closed. Only producers observe `close()`.
    """

    def __init__(self, capacity: int = 1):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=capacity)
        self._closed = False

    async def send(self, item: Result) -> None:
        if self._closed:
            raise ChannelClosed()
        await self._queue.put(item)

    async def recv(self) -> Result:
        return await self._queue.get()

    def close(self) -> None:
        self._closed = True


class Server:
    """
    An SMTP email server for tests.

    Connections are only accepted while a caller is waiting in
    `try_receive()` (or `receive()`, `stream()`, `try_stream()`).
    """

    def __init__(self, listener: socket.socket, auth: Auth):
        self.auth = auth
        self.listener = listener
        self.channel = ResultChannel(capacity=1)
        self.processor = EmailProcessor()
        self._tasks: Set[asyncio.Task] = set()
        self._accept: Optional[asyncio.Future] = None
        self._result: Optional[asyncio.Future] = None

    @classmethod
    async def start(cls, address: Tuple[str, int], auth: Auth) -> "Server":
        """
        Start a new server instance.

        Args:
            address: Host and port to bind to; port 0 picks a free port
            auth: Authentication policy

        Raises:
            OSError: If the address cannot be bound
        """
        host, port = address
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        listener = socket.create_server((host, port), family=family)
        listener.setblocking(False)
        server = cls(listener, auth)
        bound_host, bound_port = server.address()
        logger.info(f"SMTP server listening on {bound_host}:{bound_port} ({auth.kind})")
        return server

    @classmethod
    async def start_with_config(cls, config: ServerConfig, strict: bool) -> "Server":
        """
        Start a new server instance with the given configuration.

        Args:
            config: Parsed address spec
            strict: Policy when the config has no credentials. If `True`,
                only anonymous clients are allowed. If `False`, all clients
                are allowed, even if they provide login credentials.
        """
        if config.username_password is not None:
            username, password = config.username_password
            auth = Login(username=username, password=password)
        elif strict:
            auth = AcceptAnonOnly()
        else:
            auth = AcceptAll()
        return await cls.start(config.bind_address, auth)

    def address(self) -> Tuple[str, int]:
        """Return the address and port to which this server bound."""
        sockname = self.listener.getsockname()
        return sockname[0], sockname[1]

    async def receive(self) -> Email:
        """
        Receive a single email.

        Errors are logged and discarded.
        """
        while True:
            try:
                return await self.try_receive()
            except SmtpTestServerError as error:
                logger.debug(f"Discarding receive error: {error}")

    async def try_receive(self) -> Email:
        """
        Try to receive a single email.

        Raises:
            AcceptError: If accepting a connection failed
            SmtpError: If a session did not follow the exchange
            ParseError: If a received message was invalid
        """
        loop = asyncio.get_running_loop()
        while True:
            # pending futures survive between calls so that a caller timing
            # out never loses an accepted connection or a queued result
            if self._accept is None:
                self._accept = asyncio.ensure_future(loop.sock_accept(self.listener))
            if self._result is None:
                self._result = asyncio.ensure_future(self.channel.recv())

            accept, result = self._accept, self._result

            done, _ = await asyncio.wait(
                {accept, result}, return_when=asyncio.FIRST_COMPLETED
            )

            if accept in done:
                self._accept = None
                try:
                    conn, peer = accept.result()
                except OSError as e:
                    raise AcceptError(e) from e
                self._spawn(conn, peer[0])
                continue

            self._result = None
            item = result.result()
            if isinstance(item, SmtpTestServerError):
                raise item
            return item

    async def stream(self) -> AsyncIterator[Email]:
        """
        Iterate over received emails.

        Errors are discarded.
        """
        while True:
            yield await self.receive()

    async def try_stream(self) -> AsyncIterator[Result]:
        """
        Iterate over received emails.

        Errors are yielded as values instead of being raised.
        """
        while True:
            try:
                yield await self.try_receive()
            except SmtpTestServerError as error:
                yield error

    async def close(self) -> None:
        """Stop accepting connections and cancel all running sessions."""
        self.channel.close()
        tasks = list(self._tasks)
        for future in (self._accept, self._result):
            if future is not None:
                tasks.append(future)
        self._accept = self._result = None
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self.listener.close()
        logger.info("SMTP server stopped")

    async def __aenter__(self) -> "Server":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _spawn(self, conn: socket.socket, client_address: str) -> None:
        record_smtp_connection()
        logger.info(f"Accepted connection from {client_address}")
        task = asyncio.ensure_future(self._session(conn, client_address))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _session(self, conn: socket.socket, client_address: str) -> None:
        """
        Run SMTP sessions on one connection until it quits or fails.
        """
        server_address = self.address()[0]
        reader, writer = await asyncio.open_connection(sock=conn)
        log = SessionLogger(logger, client_address)
        transport = SmtpTransport(reader, writer, log)
        try:
            while True:
                try:
                    response = await receive(transport, server_address, client_address, self.auth)
                except SmtpError as error:
                    record_smtp_session("error")
                    log.info(f"SMTP session failed: {error}")
                    await self.channel.send(error)
                    return

                record_smtp_session(response.outcome.value)
                if response.outcome is Outcome.QUIT:
                    log.info("SMTP session quit")
                    return
                if response.outcome is Outcome.CONTINUE:
                    continue

                await self.channel.send(self._convert(response.payload, log))
        except ChannelClosed:
            # consumer is gone; drop the connection without an SMTP quit
            return
        finally:
            writer.close()

    def _convert(self, data: Data, log: SessionLogger) -> Result:
        try:
            email = self.processor.process(data)
        except ParseError as error:
            record_smtp_message("rejected")
            record_smtp_rejection(error.error_code)
            log.info(f"Rejected email from {data.address_from}: {error}")
            return error
        except Exception as e:
            error = MailParseError(f"failed to convert message: {e!r}")
            record_smtp_message("rejected")
            record_smtp_rejection(error.error_code)
            log.error(f"Error converting email from {data.address_from}: {e}", exc_info=True)
            return error
        record_smtp_message("accepted")
        log.info(f"Received email from {email.address_from} to {email.address_to}")
        return email


async def start_smtp_server(settings: Settings = None):
    """
    Start the SMTP server and log every received email.
    """
    settings = settings or get_settings()
    config = settings.server_config
    server = await Server.start_with_config(config, strict=settings.SMTP_STRICT)
    async with server:
        logger.info("Ready to receive emails")
        async for item in server.try_stream():
            if isinstance(item, Email):
                logger.info(f"Subject: {item.subject!r}")
            else:
                logger.warning(f"Receive failed: {item}")


def main():
    settings = get_settings()
    setup_logging(settings)

    if settings.ENABLE_METRICS:
        start_http_server(settings.METRICS_PORT)
        logger.info(f"Metrics available on port {settings.METRICS_PORT}")

    try:
        asyncio.run(start_smtp_server(settings))
    except KeyboardInterrupt:
        logger.info("SMTP server stopped by user")
    except ConfigError as e:
        logger.error(f"Invalid SMTP_ADDRESS {settings.SMTP_ADDRESS!r}: {e}")
        sys.exit(1)
    except OSError as e:
        logger.error(f"SMTP server failed to start: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
