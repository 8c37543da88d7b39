"""
Conversation identifiers and the names derived from them.

A conversation identifier is the chat client's own name for a room (the
channel name) or a direct-message pairing ("PM_with_<remote character>").
The external service stores one character profile and one chat log per
conversation, both named after the sanitized identifier.

Distinct identifiers that sanitize to the same string share storage.
"""

import re

_UNSAFE = re.compile(r"[^A-Za-z0-9_-]")

PRIVATE_PREFIX = "PM_with_"


def sanitize(identifier: str) -> str:
    """Replace every character outside [A-Za-z0-9_-] with an underscore."""
    return _UNSAFE.sub("_", identifier)


def channel_identifier(channel: str) -> str:
    return channel


def private_identifier(character: str) -> str:
    """Identifier for a direct-message conversation with ``character``."""
    return f"{PRIVATE_PREFIX}{character}"


def conversation_names(identifier: str) -> tuple[str, str]:
    """Return the (character profile name, log file name) pair for a conversation."""
    name = sanitize(identifier)
    return name, name
