"""
Chat store that reads and writes JSONL chat logs directly on disk.

Used instead of the HTTP client when SYNC_TARGET=file: it exposes the same
get_chat()/save_chat() coroutines as TavernClient so the synchronizer does
not care which one it talks to. Paths follow the external application's
layout, chats/<character>/<file_name>.jsonl under the data directory.
"""

import asyncio
import json
import logging
from pathlib import Path

from tavernbridge.tavern import ChatStoreError

log = logging.getLogger(__name__)


def _character_name(avatar_url: str) -> str:
    """Strip the avatar extension: "Lounge.png" -> "Lounge"."""
    return avatar_url.removesuffix(".png")


class FileChatStore:
    """JSONL chat logs under ``data_dir``."""

    def __init__(self, data_dir: Path) -> None:
        self.data_dir = data_dir

    def chat_path(self, avatar_url: str, file_name: str) -> Path:
        return self.data_dir / "chats" / _character_name(avatar_url) / f"{file_name}.jsonl"

    def _read(self, path: Path) -> list:
        if not path.exists():
            return []
        records = []
        for line in path.read_text(encoding="utf-8").splitlines():
            if line.strip():
                records.append(json.loads(line))
        return records

    def _write(self, path: Path, chat: list) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".jsonl.tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            for record in chat:
                f.write(json.dumps(record, ensure_ascii=False) + "\n")
        tmp.replace(path)

    async def get_chat(self, avatar_url: str, file_name: str) -> object:
        """
        Read a whole log; a missing file is an empty log.

        Raises:
            ChatStoreError: If an existing file cannot be read or decoded. The
                file is never treated as empty, so it is not overwritten.
        """
        path = self.chat_path(avatar_url, file_name)
        try:
            return await asyncio.to_thread(self._read, path)
        except (OSError, ValueError) as e:
            # JSONDecodeError and UnicodeDecodeError are both ValueError
            raise ChatStoreError(f"Failed to read chat log {path}", response_data=str(e)) from e

    async def save_chat(self, avatar_url: str, file_name: str, chat: list, force: bool = False) -> object:
        """
        Rewrite the whole log; returns a result dict shaped like the HTTP API's.

        Raises:
            ChatStoreError: If the file cannot be written. The old file stays in
                place because the new content goes to a temp file first.
        """
        path = self.chat_path(avatar_url, file_name)
        try:
            await asyncio.to_thread(self._write, path, chat)
        except OSError as e:
            raise ChatStoreError(f"Failed to write chat log {path}", response_data=str(e)) from e
        log.debug("Wrote %d records to %s", len(chat), path)
        return {"result": "ok"}

    def _recent(self, character_name: str, max_chats: int) -> list:
        directory = self.data_dir / "chats" / character_name
        if not directory.is_dir():
            return []
        files = sorted(directory.glob("*.jsonl"), key=lambda p: p.stat().st_mtime, reverse=True)
        return [{"file_name": p.name, "last_mes": p.stat().st_mtime} for p in files[:max_chats]]

    async def recent_chats(self, avatar: str, max_chats: int = 1) -> list:
        """Chat infos for a character, most recently modified first (mirrors the API's recent call)."""
        try:
            return await asyncio.to_thread(self._recent, _character_name(avatar), max_chats)
        except OSError as e:
            raise ChatStoreError(f"Failed to list chats of {avatar}", response_data=str(e)) from e
