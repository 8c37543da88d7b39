"""
Event adapter between the chat connection and the external chat-log service.

Provides functionality to:
1. Capture the local character's name when the chat session comes up
2. Optionally run the external service's CSRF + login handshake at that moment
3. Turn room and direct messages into chat log records
4. Provision storage once per conversation and hand each record to the synchronizer

The adapter has two states. It starts "uninitialized" and moves to "active"
exactly once, on the first Connected event. Messages are mirrored in both
states, but until the local name is known nothing can be attributed to the
local user, and a brand-new log cannot get its header.

The per-message pipeline:
    1. Derive the conversation identifier (channel name or PM_with_<name>)
    2. Skip it if the conversation filter says so
    3. Sanitize into (character profile, log file) names, or use the
       configured target character as-is in single-target mode
    4. ProvisioningGate.ensure(), abort this message on failure
    5. Build the ChatMessage record
    6. LogSynchronizer.send_message(): fetch, append, save

Each inbound command is handled in its own task so a slow HTTP round trip
never stalls the connection's reader loop.
"""

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from tavernbridge.events import ChannelMessage, Connected, InboundEvent, PrivateMessage
from tavernbridge.filters import ConversationFilter
from tavernbridge.names import conversation_names
from tavernbridge.provision import LocalProvisioner, ProvisioningGate
from tavernbridge.records import ChatMessage, iso_timestamp
from tavernbridge.sync import LogSynchronizer
from tavernbridge.tavern import ChatStoreError, TavernAPIError, TavernClient

log = logging.getLogger(__name__)

UNINITIALIZED = "uninitialized"
ACTIVE = "active"


class Bridge:
    """
    Mirrors chat messages into external-service chat logs.

    Args:
        store: Chat store the synchronizer reads and writes (TavernClient or FileChatStore).
        data_dir: External application's data directory; enables local provisioning.
        conversation_filter: Which conversations to mirror (default: all).
        name_style: "prefix-name", "prefix-body", or "plain" (see build_message()).
        target_character: Log every conversation to this character's most recent chat.
        tavern: HTTP client used for the login handshake.
        login_enabled: Run the handshake when the session connects.
        login_handle: Handshake handle (defaults to the local character name).
        login_password: Handshake password.
    """

    def __init__(
        self,
        store: Any,
        *,
        data_dir: Path | None = None,
        conversation_filter: ConversationFilter | None = None,
        name_style: str = "prefix-name",
        target_character: str = "",
        tavern: TavernClient | None = None,
        login_enabled: bool = False,
        login_handle: str = "",
        login_password: str = "",
    ) -> None:
        self.state = UNINITIALIZED
        self.local_user: str | None = None

        provisioner = LocalProvisioner(data_dir, self._get_local_user) if data_dir is not None else None
        self.gate = ProvisioningGate(provisioner)
        self.synchronizer = LogSynchronizer(store, self._get_local_user)
        self.conversation_filter = conversation_filter or ConversationFilter()
        self.name_style = name_style

        self.target_character = target_character
        self._target_file: str | None = None

        self.tavern = tavern
        self.login_enabled = login_enabled
        self.login_handle = login_handle
        self.login_password = login_password

        # Strong references to in-flight handler tasks
        self._tasks: set[asyncio.Task] = set()

    def _get_local_user(self) -> str | None:
        return self.local_user

    # ── Connection wiring ────────────────────────────────────────────

    def attach(self, connection: Any) -> None:
        """Register handlers on a chat connection (on_event / on_message interface)."""
        connection.on_event("connected", lambda: self._spawn(self.handle(Connected(connection.character))))
        connection.on_message("MSG", lambda data, time: self._dispatch(ChannelMessage, data, time))
        connection.on_message("PRI", lambda data, time: self._dispatch(PrivateMessage, data, time))

    def _dispatch(self, kind: type, data: dict, time: datetime) -> None:
        try:
            event = kind.from_command(data, time)
        except (KeyError, TypeError):
            log.warning("Malformed %s payload ignored: %r", kind.__name__, data)
            return
        self._spawn(self.handle(event))

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            log.error("Bridge handler failed", exc_info=task.exception())

    async def drain(self) -> None:
        """Wait for every in-flight handler task to finish."""
        while self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    # ── Event handling ───────────────────────────────────────────────

    async def handle(self, event: InboundEvent) -> bool:
        """
        Process one inbound event.

        Returns:
            True if a message was saved (or the session became active), False otherwise.
        """
        if isinstance(event, Connected):
            return await self._on_connected(event)
        if isinstance(event, (ChannelMessage, PrivateMessage)):
            return await self._mirror(event)
        log.warning("Unknown event ignored: %r", event)
        return False

    async def _on_connected(self, event: Connected) -> bool:
        if self.state == ACTIVE:
            log.info("Chat session re-identified as %s; keeping %s", event.character, self.local_user)
            return False

        self.local_user = event.character
        self.state = ACTIVE
        log.info("Chat connected as %s", self.local_user)

        if self.login_enabled:
            await self._login()
        return True

    async def _login(self) -> None:
        """Legacy handshake: CSRF token, then handle/password login. Failures are only logged."""
        if self.tavern is None:
            log.error("Login enabled but no external service client is configured")
            return
        handle = self.login_handle or self.local_user
        if not self.login_password:
            log.error("TAVERN_PASSWORD is not set; skipping login")
            return
        try:
            await self.tavern.fetch_csrf_token()
            logged_in = await self.tavern.login(handle, self.login_password)
        except TavernAPIError as e:
            log.error("Login to the external service failed: %s", e.response_data if e.response_data is not None else e)
            return
        log.info("Logged into the external service as %s", logged_in)

    async def _resolve_target_file(self) -> str | None:
        """Most recent chat file of the target character, resolved once per run."""
        if self._target_file is not None:
            return self._target_file
        avatar = f"{self.target_character}.png"
        try:
            chats = await self.synchronizer.store.recent_chats(avatar, 1)
        except ChatStoreError as e:
            log.error("Error fetching recent chats: %s", e.response_data if e.response_data is not None else e)
            return None
        if not chats or not isinstance(chats[0], dict) or not chats[0].get("file_name"):
            return None
        self._target_file = str(chats[0]["file_name"]).removesuffix(".jsonl")
        log.info("Logging every conversation to %s/%s", self.target_character, self._target_file)
        return self._target_file

    async def _mirror(self, event: ChannelMessage | PrivateMessage) -> bool:
        identifier = event.identifier
        if not self.conversation_filter.allows(identifier):
            log.debug("Conversation %s is filtered out", identifier)
            return False

        if self.target_character:
            # An existing profile: its name is used verbatim, not sanitized
            character_name = self.target_character
            file_name = await self._resolve_target_file()
            if file_name is None:
                log.error("Could not determine the current chat file of %s", self.target_character)
                return False
        else:
            character_name, file_name = conversation_names(identifier)

        if not self.gate.ensure(character_name, file_name):
            return False

        message = self.build_message(event.character, event.message, event.time)
        return await self.synchronizer.send_message(character_name, file_name, message)

    def build_message(self, author: str, body: str, time: datetime) -> ChatMessage:
        """
        Build the log record for one chat line.

        The local user's lines always keep their real name and body. Remote
        lines depend on name_style:
            prefix-name  ->  name="<author>: <body>", mes=<body>
            prefix-body  ->  name=<author>, mes="<author>: <body>"
            plain        ->  name=<author>, mes=<body>
        """
        is_user = self.local_user is not None and author == self.local_user
        name, mes = author, body
        if not is_user:
            if self.name_style == "prefix-name":
                name = f"{author}: {body}"
            elif self.name_style == "prefix-body":
                mes = f"{author}: {body}"
        return ChatMessage(name=name, is_user=is_user, send_date=iso_timestamp(time), mes=mes)
