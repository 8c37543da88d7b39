"""Tests for fchat.py frame handling and ticket login."""

import json
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from tavernbridge.fchat import FChatConnection, FChatError, format_frame, parse_frame


@pytest.fixture
def connection():
    """Connection with a mock websocket attached."""
    conn = FChatConnection(
        account="acct",
        password="pw",
        character="Alice",
        url="wss://chat.example/chat2",
        ticket_url="https://example/getApiTicket.php",
        channels=("Lounge", "Frontpage"),
    )
    conn._ws = MagicMock()
    conn._ws.send_str = AsyncMock()
    return conn


def _sent(connection) -> list[str]:
    return [c.args[0] for c in connection._ws.send_str.call_args_list]


# ── Frame format ─────────────────────────────────────────────────────


class TestFrames:
    def test_parse_with_payload(self):
        assert parse_frame('MSG {"channel": "Lounge", "character": "Bob", "message": "hi"}') == (
            "MSG",
            {"channel": "Lounge", "character": "Bob", "message": "hi"},
        )

    def test_parse_bare_command(self):
        assert parse_frame("PIN") == ("PIN", {})

    def test_parse_rejects_non_object(self):
        with pytest.raises(ValueError):
            parse_frame("MSG [1, 2]")

    def test_format(self):
        assert format_frame("PIN") == "PIN"
        assert json.loads(format_frame("JCH", {"channel": "Lounge"})[4:]) == {"channel": "Lounge"}


# ── Frame handling ───────────────────────────────────────────────────


class TestHandleFrame:
    async def test_ping_answered(self, connection):
        await connection.handle_frame("PIN")
        assert _sent(connection) == ["PIN"]

    async def test_identified_joins_and_fires_connected(self, connection):
        fired = []
        connection.on_event("connected", lambda: fired.append(connection.character))
        await connection.handle_frame('IDN {"character": "Alice"}')
        assert fired == ["Alice"]
        assert [json.loads(f[4:]) for f in _sent(connection)] == [{"channel": "Lounge"}, {"channel": "Frontpage"}]

    async def test_message_dispatched_with_time(self, connection):
        received = []
        connection.on_message("PRI", lambda data, time: received.append((data, time)))
        await connection.handle_frame('PRI {"character": "Jane", "message": "hey"}')
        data, time = received[0]
        assert data == {"character": "Jane", "message": "hey"}
        assert time.tzinfo is not None

    async def test_coroutine_handler_awaited(self, connection):
        handler = AsyncMock()
        connection.on_message("MSG", handler)
        await connection.handle_frame('MSG {"channel": "Lounge", "character": "Bob", "message": "hi"}')
        handler.assert_awaited_once()

    async def test_failing_handler_does_not_stop_others(self, connection):
        second = MagicMock()
        connection.on_message("MSG", MagicMock(side_effect=RuntimeError("boom")))
        connection.on_message("MSG", second)
        await connection.handle_frame('MSG {"channel": "Lounge", "character": "Bob", "message": "hi"}')
        second.assert_called_once()

    async def test_unparseable_frame_ignored(self, connection):
        handler = MagicMock()
        connection.on_message("MSG", handler)
        await connection.handle_frame("MSG {broken")
        handler.assert_not_called()


# ── Ticket ───────────────────────────────────────────────────────────


def _ticket_session(payload):
    mock_response = AsyncMock()
    mock_response.json = AsyncMock(return_value=payload)
    mock_response.__aenter__ = AsyncMock(return_value=mock_response)
    mock_response.__aexit__ = AsyncMock(return_value=False)
    session = MagicMock()
    session.post = MagicMock(return_value=mock_response)
    return session


class TestTicket:
    async def test_ticket_returned(self, connection):
        session = _ticket_session({"ticket": "abc", "error": ""})
        assert await connection.get_ticket(session) == "abc"
        form = session.post.call_args.kwargs["data"]
        assert form["account"] == "acct"
        assert form["password"] == "pw"

    async def test_ticket_error(self, connection):
        session = _ticket_session({"error": "Login failed."})
        with pytest.raises(FChatError, match="Login failed"):
            await connection.get_ticket(session)

    async def test_ticket_transport_error(self, connection):
        session = MagicMock()
        session.post = MagicMock(side_effect=aiohttp.ClientError("refused"))
        with pytest.raises(FChatError, match="Ticket request failed"):
            await connection.get_ticket(session)
