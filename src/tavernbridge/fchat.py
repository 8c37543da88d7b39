"""
Minimal F-Chat websocket connection.

Provides functionality to:
1. Obtain a login ticket from the F-List JSON endpoint
2. Identify on the chat websocket and join configured channels
3. Answer server pings
4. Dispatch server commands to registered handlers with their receipt time

Wire format: every frame is a three-letter command, optionally followed by a
space and a JSON object, e.g.
    IDN {"character": "Alice"}
    MSG {"channel": "Lounge", "character": "Bob", "message": "hi"}
    PRI {"character": "Jane", "message": "hello"}
    PIN

Handlers are registered with on_event("connected", callback()) and
on_message(command, callback(data, time)). Callbacks may be plain functions
or coroutines; an exception in one handler is logged and does not stop the
reader loop.
"""

import inspect
import json
import logging
from collections.abc import Callable
from datetime import UTC, datetime

import aiohttp

log = logging.getLogger(__name__)

CLIENT_NAME = "tavernbridge"
CLIENT_VERSION = "0.1.0"


class FChatError(Exception):
    """Raised when the chat server or ticket endpoint rejects the login."""


def parse_frame(frame: str) -> tuple[str, dict]:
    """
    Split a raw frame into (command, payload).

    Raises:
        ValueError: If the payload is not a JSON object.
    """
    command = frame[:3]
    body = frame[4:].strip()
    if not body:
        return command, {}
    data = json.loads(body)
    if not isinstance(data, dict):
        raise ValueError(f"{command} payload is not an object")
    return command, data


def format_frame(command: str, payload: dict | None = None) -> str:
    if payload is None:
        return command
    return f"{command} {json.dumps(payload, ensure_ascii=False)}"


class FChatConnection:
    """
    One chat session as a single character.

    Args:
        account: F-List account name.
        password: F-List account password.
        character: Character to identify as; exposed as ``character``.
        url: Chat server websocket URL.
        ticket_url: F-List ticket endpoint.
        channels: Channels to join once identified.
    """

    def __init__(
        self,
        *,
        account: str,
        password: str,
        character: str,
        url: str,
        ticket_url: str,
        channels: tuple[str, ...] = (),
    ) -> None:
        self.account = account
        self.password = password
        self.character = character
        self.url = url
        self.ticket_url = ticket_url
        self.channels = channels
        self._event_handlers: dict[str, list[Callable]] = {}
        self._message_handlers: dict[str, list[Callable]] = {}
        self._ws: aiohttp.ClientWebSocketResponse | None = None

    # ── Handler registration ─────────────────────────────────────────

    def on_event(self, name: str, callback: Callable) -> None:
        self._event_handlers.setdefault(name, []).append(callback)

    def on_message(self, command: str, callback: Callable) -> None:
        self._message_handlers.setdefault(command, []).append(callback)

    async def _call(self, label: str, callback: Callable, *args) -> None:
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception:
            log.exception("Handler for %s failed", label)

    async def _emit_event(self, name: str) -> None:
        for callback in self._event_handlers.get(name, []):
            await self._call(name, callback)

    async def _emit_message(self, command: str, data: dict, time: datetime) -> None:
        for callback in self._message_handlers.get(command, []):
            await self._call(command, callback, data, time)

    # ── Session ──────────────────────────────────────────────────────

    async def get_ticket(self, session: aiohttp.ClientSession) -> str:
        """Exchange account credentials for a chat login ticket."""
        form = {
            "account": self.account,
            "password": self.password,
            "no_characters": "true",
            "no_friends": "true",
            "no_bookmarks": "true",
        }
        try:
            async with session.post(self.ticket_url, data=form) as resp:
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, ValueError) as e:
            raise FChatError(f"Ticket request failed: {e}") from e

        if not isinstance(data, dict):
            raise FChatError("Ticket endpoint returned an unexpected response")
        if data.get("error"):
            raise FChatError(f"Ticket rejected: {data['error']}")
        ticket = data.get("ticket")
        if not ticket:
            raise FChatError("Ticket endpoint returned no ticket")
        return ticket

    async def send(self, command: str, payload: dict | None = None) -> None:
        assert self._ws is not None, "Not connected — call run() first"
        await self._ws.send_str(format_frame(command, payload))

    async def handle_frame(self, frame: str) -> None:
        """Process one raw frame from the server."""
        try:
            command, data = parse_frame(frame)
        except ValueError:
            log.warning("Unparseable frame ignored: %.200s", frame)
            return
        received = datetime.now(UTC)

        if command == "PIN":
            await self.send("PIN")
        elif command == "IDN":
            log.info("Identified on chat as %s", data.get("character", self.character))
            for channel in self.channels:
                await self.send("JCH", {"channel": channel})
            await self._emit_event("connected")
        elif command == "ERR":
            log.warning("Chat server error %s: %s", data.get("number"), data.get("message"))

        await self._emit_message(command, data, received)

    async def run(self) -> None:
        """Log in and process frames until the server closes the connection."""
        async with aiohttp.ClientSession() as session:
            ticket = await self.get_ticket(session)
            async with session.ws_connect(self.url) as ws:
                self._ws = ws
                await self.send(
                    "IDN",
                    {
                        "method": "ticket",
                        "account": self.account,
                        "ticket": ticket,
                        "character": self.character,
                        "cname": CLIENT_NAME,
                        "cversion": CLIENT_VERSION,
                    },
                )
                async for msg in ws:
                    if msg.type == aiohttp.WSMsgType.TEXT:
                        await self.handle_frame(msg.data)
                    elif msg.type == aiohttp.WSMsgType.ERROR:
                        log.error("Chat websocket error: %s", ws.exception())
                        break
                self._ws = None
        log.info("Chat connection closed")

    async def close(self) -> None:
        if self._ws is not None:
            await self._ws.close()
