"""End-to-end tests: scripted clients against a running server."""

import asyncio

import pytest

from conftest import TIMEOUT, build_message, build_raw
from smtp_test_server import Email, Server, ServerConfig
from smtp_test_server.core.exceptions import (
    MailParseError,
    UnexpectedDataError,
    UnexpectedPartCountError,
)
from smtp_test_server.schemas.auth import AcceptAll, AcceptAnonOnly, Login

NO_EMAIL_WAIT = 0.3


def start_receive(server: Server) -> asyncio.Future:
    return asyncio.ensure_future(server.try_receive())


async def send_email(client, login=None, payload=None):
    await client.hello()
    if login is not None:
        assert await client.login(*login) == "235 Authentication successful\r\n"
    await client.mail(
        "sender@example.com",
        "recipient@example.com",
        payload if payload is not None else build_message(),
    )


def assert_welcome(email: Email):
    assert email.address_from == "sender@example.com"
    assert email.address_to == "recipient@example.com"
    assert email.get_from() == "Sender <sender@example.com>"
    assert email.get_to() == "Recipient <recipient@example.com>"
    assert email.subject == "Hello world"
    assert email.body_text == "Welcome\r\n"
    assert email.body_html == "<p>Welcome</p>\r\n"


async def assert_no_email(receive: asyncio.Future):
    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(receive, NO_EMAIL_WAIT)


@pytest.mark.asyncio
async def test_anon_only_scenario(start_server, connect):
    server = await start_server(AcceptAnonOnly())
    receive = start_receive(server)

    client = await connect(server)
    await client.hello()
    payload = build_message(
        sender=("A", "a@x.com"),
        recipient=("B", "b@x.com"),
    )
    await client.mail("a@x.com", "b@x.com", payload)

    email = await asyncio.wait_for(receive, TIMEOUT)
    assert email.address_from == "a@x.com"
    assert email.address_to == "b@x.com"


@pytest.mark.asyncio
async def test_send_anon_accepted(start_server, connect):
    server = await start_server(AcceptAll())
    receive = start_receive(server)

    await send_email(await connect(server))

    assert_welcome(await asyncio.wait_for(receive, TIMEOUT))


@pytest.mark.asyncio
async def test_send_login_accepted(start_server, connect):
    server = await start_server(AcceptAll())
    receive = start_receive(server)

    await send_email(await connect(server), login=("user", "pwd"))

    assert_welcome(await asyncio.wait_for(receive, TIMEOUT))


@pytest.mark.asyncio
async def test_send_login_ok(start_server, connect):
    server = await start_server(Login(username="user", password="pwd"))
    receive = start_receive(server)

    await send_email(await connect(server), login=("user", "pwd"))

    assert_welcome(await asyncio.wait_for(receive, TIMEOUT))


@pytest.mark.asyncio
async def test_login_fail(start_server, connect):
    server = await start_server(Login(username="user", password="pwd"))
    receive = start_receive(server)

    client = await connect(server)
    await client.hello()
    assert await client.login("user", "xxx") == "535 Authentication failed\r\n"
    await client.quit()

    await assert_no_email(receive)


@pytest.mark.asyncio
async def test_anon_only_auth_fail(start_server, connect):
    server = await start_server(AcceptAnonOnly())
    receive = start_receive(server)

    client = await connect(server)
    await client.hello()
    assert await client.login("user", "pwd") == "535 Authentication failed\r\n"
    await client.quit()

    await assert_no_email(receive)


@pytest.mark.asyncio
async def test_auth_anon_fail(start_server, connect):
    server = await start_server(Login(username="user", password="pwd"))
    receive = start_receive(server)

    client = await connect(server)
    await client.hello()
    await client.send("MAIL FROM:<sender@example.com>\r\n")
    await client.expect("535 Authentication failed\r\n")
    await client.quit()

    await assert_no_email(receive)


@pytest.mark.asyncio
async def test_noop_restarts_session(start_server, connect):
    server = await start_server(AcceptAnonOnly())
    receive = start_receive(server)

    client = await connect(server)
    await client.hello()
    await client.noop()
    # same connection, new session
    await send_email(client)

    assert_welcome(await asyncio.wait_for(receive, TIMEOUT))


@pytest.mark.asyncio
async def test_protocol_error_is_reported(start_server, connect):
    server = await start_server(AcceptAll())
    receive = start_receive(server)

    client = await connect(server)
    await client.expect("220 ")
    await client.send("HELO example.com\r\n")

    with pytest.raises(UnexpectedDataError) as exc_info:
        await asyncio.wait_for(receive, TIMEOUT)
    assert exc_info.value.actual == "HELO example.com\r\n"
    assert exc_info.value.expected == "EHLO [127.0.0.1]\r\n"


@pytest.mark.asyncio
async def test_conversion_error_keeps_connection(start_server, connect):
    server = await start_server(AcceptAll())
    receive = start_receive(server)

    client = await connect(server)
    parts = [("text/plain", "a"), ("text/html", "b"), ("text/plain", "c")]
    await send_email(client, payload=build_raw(parts))

    with pytest.raises(UnexpectedPartCountError):
        await asyncio.wait_for(receive, TIMEOUT)

    # the connection restarts with a new greeting
    receive = start_receive(server)
    await send_email(client)
    assert_welcome(await asyncio.wait_for(receive, TIMEOUT))


@pytest.mark.asyncio
async def test_receive_discards_errors(start_server, connect):
    server = await start_server(AcceptAll())
    receive = asyncio.ensure_future(server.receive())

    bad = await connect(server)
    await bad.expect("220 ")
    await bad.send("HELO example.com\r\n")

    await send_email(await connect(server))

    assert_welcome(await asyncio.wait_for(receive, TIMEOUT))


@pytest.mark.asyncio
async def test_stream_from_several_connections(start_server, connect):
    server = await start_server(AcceptAnonOnly())
    stream = server.stream()
    first = asyncio.ensure_future(stream.__anext__())

    await send_email(await connect(server))
    assert_welcome(await asyncio.wait_for(first, TIMEOUT))

    second = asyncio.ensure_future(stream.__anext__())
    await send_email(await connect(server))
    assert_welcome(await asyncio.wait_for(second, TIMEOUT))


@pytest.mark.asyncio
async def test_try_stream_yields_errors(start_server, connect):
    server = await start_server(AcceptAll())
    stream = server.try_stream()
    item = asyncio.ensure_future(stream.__anext__())

    client = await connect(server)
    await client.expect("220 ")
    await client.send("HELO example.com\r\n")

    assert isinstance(await asyncio.wait_for(item, TIMEOUT), UnexpectedDataError)


@pytest.mark.asyncio
async def test_address_reports_bound_port(start_server):
    server = await start_server(AcceptAll())

    host, port = server.address()
    assert host == "127.0.0.1"
    assert port > 0


@pytest.mark.asyncio
@pytest.mark.parametrize("spec,strict,expected", [
    ("127.0.0.1:0", True, AcceptAnonOnly()),
    ("127.0.0.1:0", False, AcceptAll()),
    ("user:pwd@127.0.0.1:0", True, Login(username="user", password="pwd")),
    ("user:pwd@127.0.0.1:0", False, Login(username="user", password="pwd")),
])
async def test_start_with_config(spec, strict, expected):
    async with await Server.start_with_config(ServerConfig.parse(spec), strict) as server:
        assert server.auth == expected
        assert server.address()[1] > 0


@pytest.mark.asyncio
async def test_close_stops_sessions(connect):
    server = await Server.start(("127.0.0.1", 0), AcceptAll())
    receive = start_receive(server)

    client = await connect(server)
    await client.hello()
    await asyncio.wait_for(server.close(), TIMEOUT)

    assert not server._tasks
    receive.cancel()


@pytest.mark.asyncio
async def test_malformed_message_id_is_received(start_server, connect):
    server = await start_server(AcceptAll())
    receive = start_receive(server)

    headers = [
        ("From", "Sender <sender@example.com>"),
        ("To", "Recipient <recipient@example.com>"),
        ("Subject", "Hello world"),
        ("Message-ID", "<"),
    ]
    parts = [("text/plain", "Welcome"), ("text/html", "<p>Welcome</p>")]
    await send_email(await connect(server), payload=build_raw(parts, headers=headers))

    email = await asyncio.wait_for(receive, TIMEOUT)
    assert_welcome(email)
    assert email.headers["Message-ID"] == "<"


@pytest.mark.asyncio
async def test_conversion_crash_is_reported(start_server, connect, monkeypatch):
    server = await start_server(AcceptAll())

    def crash(data):
        raise RuntimeError("boom")

    monkeypatch.setattr(server.processor, "process", crash)
    receive = start_receive(server)

    client = await connect(server)
    await send_email(client)

    with pytest.raises(MailParseError) as exc_info:
        await asyncio.wait_for(receive, TIMEOUT)
    assert "boom" in str(exc_info.value)

    # the session survives and greets again
    monkeypatch.undo()
    receive = start_receive(server)
    await send_email(client)
    assert_welcome(await asyncio.wait_for(receive, TIMEOUT))
