"""
Record types stored in an external-service chat log.

A chat log is a JSON array (a JSONL file on disk) whose first element is a
header carrying ownership metadata and whose remaining elements are messages:

    {"user_name": "Alice", "character_name": "Lounge", "create_date": "..."}
    {"name": "Bob: hi", "is_user": false, "send_date": "...", "mes": "hi"}

Timestamps use the same shape as JavaScript's Date.toISOString()
(millisecond precision, "Z" suffix) so logs written by the bridge sort and
display like the service's own.
"""

from dataclasses import dataclass
from datetime import UTC, datetime


def iso_timestamp(moment: datetime | None = None) -> str:
    """Format ``moment`` (default: now) as a UTC ISO-8601 string ending in Z."""
    if moment is None:
        moment = datetime.now(UTC)
    elif moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class ChatMessage:
    """
    One chat line as the external service stores it.

    Attributes:
        name: Display name shown as the speaker.
        is_user: True when the local user wrote the message.
        send_date: ISO-8601 timestamp of receipt.
        mes: Message body.
    """

    name: str
    is_user: bool
    send_date: str
    mes: str

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "is_user": self.is_user,
            "send_date": self.send_date,
            "mes": self.mes,
        }


@dataclass(frozen=True)
class ChatHeader:
    """
    First record of every chat log.

    Attributes:
        user_name: Owner of the log (the local chat user).
        character_name: Character profile the log belongs to.
        create_date: ISO-8601 timestamp of log creation.
        integrity: Optional integrity marker checked by the service on save.
    """

    user_name: str
    character_name: str
    create_date: str
    integrity: str | None = None

    def to_dict(self) -> dict:
        record = {
            "user_name": self.user_name,
            "character_name": self.character_name,
            "create_date": self.create_date,
        }
        if self.integrity is not None:
            record["chat_metadata"] = {"integrity": self.integrity}
        return record


def is_header(record: object) -> bool:
    """True if ``record`` has the shape of a chat log header."""
    return isinstance(record, dict) and "user_name" in record
