"""
Lazy provisioning of the external service's storage for each conversation.

Provides functionality to:
1. Remember which conversations already have backing storage this run
2. Create the character profile and an empty chat log (header only) on disk
   when the bridge has direct access to the external application's data dir

The ensured set lives on the ProvisioningGate instance and is never persisted:
it starts empty on every process start, and the existence checks in
LocalProvisioner make re-provisioning after a restart harmless.

Disk layout under the data directory:
    characters/<name>.json          — {name, description, creator, avatar}
    chats/<name>/<file_name>.jsonl  — first line is the chat header
"""

import json
import logging
from collections.abc import Callable
from pathlib import Path

from tavernbridge.records import ChatHeader, iso_timestamp

log = logging.getLogger(__name__)

# Creator string written into generated character profiles
_CREATOR = "tavernbridge"


class LocalProvisioner:
    """
    Creates character profiles and chat logs directly in the data directory.

    Args:
        data_dir: Root of the external application's data directory.
        user_name: Callable returning the local user's name, or None while unknown.
    """

    def __init__(self, data_dir: Path, user_name: Callable[[], str | None]) -> None:
        self.data_dir = data_dir
        self._user_name = user_name

    def character_path(self, character_name: str) -> Path:
        return self.data_dir / "characters" / f"{character_name}.json"

    def chat_path(self, character_name: str, file_name: str) -> Path:
        return self.data_dir / "chats" / character_name / f"{file_name}.jsonl"

    def provision(self, character_name: str, file_name: str) -> bool:
        """
        Create any missing files for this conversation.

        Returns False (without touching the log) if the chat log still needs a
        header but the local user is not known yet. Raises OSError on
        filesystem failure.
        """
        character_file = self.character_path(character_name)
        if not character_file.exists():
            character_file.parent.mkdir(parents=True, exist_ok=True)
            profile = {
                "name": character_name,
                "description": f"Chat log of {character_name}",
                "creator": _CREATOR,
                "avatar": f"{character_name}.png",
            }
            character_file.write_text(json.dumps(profile, ensure_ascii=False), encoding="utf-8")
            log.info("Created character profile %s", character_file)

        chat_file = self.chat_path(character_name, file_name)
        if chat_file.exists():
            return True

        user_name = self._user_name()
        if not user_name:
            log.warning("Local user unknown, deferring chat log creation for %s", character_name)
            return False

        chat_file.parent.mkdir(parents=True, exist_ok=True)
        header = ChatHeader(user_name=user_name, character_name=character_name, create_date=iso_timestamp())
        chat_file.write_text(json.dumps(header.to_dict(), ensure_ascii=False) + "\n", encoding="utf-8")
        log.info("Created chat log %s", chat_file)
        return True


class ProvisioningGate:
    """
    At-most-once provisioning per character name per process run.

    Without a provisioner (remote variant) the gate only records names: the
    external service creates the log when the synchronizer first saves it.
    """

    def __init__(self, provisioner: LocalProvisioner | None = None) -> None:
        self.provisioner = provisioner
        self._ensured: set[str] = set()

    def is_ensured(self, character_name: str) -> bool:
        return character_name in self._ensured

    def ensure(self, character_name: str, file_name: str) -> bool:
        """
        Make sure storage exists for this conversation.

        Returns True when storage is (or already was) in place. Filesystem
        errors are logged and return False; the name stays unmarked so the
        next message retries.
        """
        if character_name in self._ensured:
            return True

        if self.provisioner is not None:
            try:
                if not self.provisioner.provision(character_name, file_name):
                    return False
            except OSError:
                log.exception("Failed to provision storage for %s", character_name)
                return False

        self._ensured.add(character_name)
        return True
