"""
Fetch-append-save synchronization of chat logs.

The external service only supports whole-log reads and writes, so every
mirrored message costs one fetch and one save of the entire log:

    1. get_chat(avatar_url, file_name)        — anything but a list counts as empty
    2. prepend a header if the log lacks one  — needs the local user's name
    3. append the new message
    4. save_chat(..., force=True)             — skip the service's integrity check

Failures are logged and the message is dropped: no retry, no rollback.
Two sends racing on the same log may lose one append (last save wins).
"""

import logging
from collections.abc import Callable
from typing import Any

from tavernbridge.records import ChatHeader, ChatMessage, is_header, iso_timestamp
from tavernbridge.tavern import ChatStoreError

log = logging.getLogger(__name__)


class LogSynchronizer:
    """
    Appends messages to chat logs held by a chat store.

    Store contract: get_chat() returns the decoded log (anything but a list
    counts as empty, and a log that does not exist yet is empty). save_chat()
    returns the service's result dict. Every read, write, or transport failure
    is raised as ChatStoreError (TavernAPIError for the HTTP client); this
    class logs it and drops the message without saving. Any other exception
    is a bug and propagates.

    Args:
        store: TavernClient or FileChatStore (anything with get_chat/save_chat).
        user_name: Callable returning the local user's name, or None while unknown.
    """

    def __init__(self, store: Any, user_name: Callable[[], str | None]) -> None:
        self.store = store
        self._user_name = user_name

    def _with_header(self, chat: list, character_name: str) -> list | None:
        """Return ``chat`` with a header first, or None if one cannot be built."""
        if chat and is_header(chat[0]):
            return list(chat)
        user_name = self._user_name()
        if not user_name:
            log.error("Cannot create a chat header for %s: local user is not known yet", character_name)
            return None
        header = ChatHeader(user_name=user_name, character_name=character_name, create_date=iso_timestamp())
        return [header.to_dict(), *chat]

    async def send_message(self, character_name: str, file_name: str, message: ChatMessage) -> bool:
        """
        Append ``message`` to the log (character_name, file_name).

        Returns:
            True if the service confirmed the save, False otherwise.
        """
        avatar_url = f"{character_name}.png"
        try:
            fetched = await self.store.get_chat(avatar_url, file_name)
            chat = fetched if isinstance(fetched, list) else []

            chat = self._with_header(chat, character_name)
            if chat is None:
                return False
            chat.append(message.to_dict())

            result = await self.store.save_chat(avatar_url, file_name, chat, force=True)
        except ChatStoreError as e:
            log.error(
                "Error sending message to %s/%s: %s",
                character_name,
                file_name,
                e.response_data if e.response_data is not None else e,
            )
            return False

        if isinstance(result, dict) and result.get("result") == "ok":
            log.info("Message saved to %s/%s", character_name, file_name)
            return True
        log.error("Failed to save message to %s/%s: %s", character_name, file_name, result)
        return False
