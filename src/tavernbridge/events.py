"""
Inbound chat events as a small tagged union.

The chat connection delivers raw command payloads (dicts) plus a receipt
time; these classes turn the three commands the bridge cares about into
typed values so the bridge has a single handler that switches on type.

    IDN (session identified)  ->  Connected
    MSG {channel, character, message}  ->  ChannelMessage
    PRI {character, message}           ->  PrivateMessage
"""

from dataclasses import dataclass
from datetime import datetime

from tavernbridge import names


@dataclass(frozen=True)
class Connected:
    """The chat session is up and the local character is known."""

    character: str


@dataclass(frozen=True)
class ChannelMessage:
    channel: str
    character: str
    message: str
    time: datetime

    @property
    def identifier(self) -> str:
        return names.channel_identifier(self.channel)

    @classmethod
    def from_command(cls, data: dict, time: datetime) -> "ChannelMessage":
        return cls(channel=data["channel"], character=data["character"], message=data["message"], time=time)


@dataclass(frozen=True)
class PrivateMessage:
    """A direct message; ``character`` is always the remote participant."""

    character: str
    message: str
    time: datetime

    @property
    def identifier(self) -> str:
        return names.private_identifier(self.character)

    @classmethod
    def from_command(cls, data: dict, time: datetime) -> "PrivateMessage":
        return cls(character=data["character"], message=data["message"], time=time)


InboundEvent = Connected | ChannelMessage | PrivateMessage
