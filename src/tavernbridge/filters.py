"""
Conversation filter loaded from conversations.yaml.

Decides which conversations are mirrored. The file is optional:

    conversations:
      ignore:            # never mirrored
        - Frontpage
        - PM_with_Spam Bot
      only: []           # when non-empty, nothing outside this list is mirrored

Identifiers are matched before sanitization ("PM_with_Jane Doe", not
"PM_with_Jane_Doe"). A missing file mirrors everything; invalid YAML is a
fatal startup error so a broken filter never silently lets everything through.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

import yaml

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConversationFilter:
    """
    Attributes:
        ignore: Identifiers that are never mirrored.
        only: If non-empty, the only identifiers that are mirrored.
    """

    ignore: frozenset[str] = field(default_factory=frozenset)
    only: frozenset[str] = field(default_factory=frozenset)

    def allows(self, identifier: str) -> bool:
        if identifier in self.ignore:
            return False
        return not self.only or identifier in self.only


def _names(raw: object, key: str) -> frozenset[str]:
    if raw is None:
        return frozenset()
    if not isinstance(raw, list):
        log.warning("'%s' is not a list — ignoring", key)
        return frozenset()
    return frozenset(str(item) for item in raw)


def load_filter(config_path: Path) -> ConversationFilter:
    """
    Parse the filter file.

    Raises:
        SystemExit: If the file exists but contains invalid YAML.
    """
    if not config_path.exists():
        log.info("No conversation filter at %s — mirroring every conversation", config_path)
        return ConversationFilter()

    try:
        raw = yaml.safe_load(config_path.read_text())
    except yaml.YAMLError as e:
        log.critical("Invalid YAML in %s: %s", config_path, e)
        raise SystemExit(1) from e

    if not isinstance(raw, dict):
        log.warning("Conversation filter is not a YAML mapping — ignoring")
        return ConversationFilter()

    section = raw.get("conversations", {})
    if not isinstance(section, dict):
        log.warning("'conversations' key is not a mapping — ignoring")
        return ConversationFilter()

    result = ConversationFilter(
        ignore=_names(section.get("ignore"), "ignore"),
        only=_names(section.get("only"), "only"),
    )
    log.info("Conversation filter loaded (%d ignored, %d allowed-only)", len(result.ignore), len(result.only))
    return result
