"""
Application configuration loaded from environment variables.

Provides functionality to:
1. Define the Config dataclass with all bridge settings
2. Load and validate configuration from the .env file
3. Resolve filesystem paths relative to the project root
4. Fail fast with clear error messages on misconfiguration

The main interface is through load_config(), which returns a frozen Config instance.
Credentials (F-List and external service) are only ever read from the environment,
never embedded in source.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# Derive project root from file location: src/tavernbridge/config.py -> project root
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent

# Accepted values for the enum-like settings
API_STYLES = ("chats", "legacy")
SYNC_TARGETS = ("api", "file")
NAME_STYLES = ("prefix-name", "prefix-body", "plain")

_TRUE_VALUES = ("1", "true", "yes")


@dataclass(frozen=True)
class Config:
    """
    Immutable bridge configuration populated from environment variables.

    Attributes:
        fchat_account: F-List account name used to obtain a chat ticket (required)
        fchat_password: F-List account password (required)
        fchat_character: Character the bridge logs in as (required)
        fchat_channels: Channels joined right after the session is identified
        fchat_url: Websocket endpoint of the chat server
        fchat_ticket_url: HTTP endpoint that issues login tickets
        tavern_api_url: Base URL of the external chat-log service
        tavern_api_style: "chats" (/api/chats/*) or "legacy" (/api/get, /api/save)
        tavern_login_enabled: Run the CSRF + login handshake when the chat connects
        tavern_handle: Login handle for the handshake (defaults to the local character)
        tavern_password: Login password for the handshake
        tavern_target_character: When set, every conversation goes to this one character
        data_dir: External application's data directory (enables local provisioning)
        sync_target: "api" to sync over HTTP, "file" to write data_dir directly
        message_name_style: How remote participants are rendered into log records
        http_timeout_seconds: Total timeout for each HTTP call to the external service
        conversations_path: Path to the optional conversation filter YAML file
    """

    # Required fields: no defaults, must be provided
    fchat_account: str
    fchat_password: str
    fchat_character: str

    # Chat connection
    fchat_channels: tuple[str, ...] = ()
    fchat_url: str = "wss://chat.f-list.net/chat2"
    fchat_ticket_url: str = "https://www.f-list.net/json/getApiTicket.php"

    # External service
    tavern_api_url: str = "http://localhost:8000"
    tavern_api_style: str = "chats"
    tavern_login_enabled: bool = False
    tavern_handle: str = ""
    tavern_password: str = ""
    tavern_target_character: str = ""

    # Storage
    data_dir: Path | None = None
    sync_target: str = "api"

    # Log rendering and transport
    message_name_style: str = "prefix-name"
    http_timeout_seconds: int = 30
    conversations_path: Path = field(default_factory=lambda: PROJECT_ROOT / "conversations.yaml")


def _choice(name: str, default: str, allowed: tuple[str, ...]) -> str:
    """Read an enum-like env var, raising SystemExit if the value is not allowed."""
    value = os.environ.get(name, default).strip().lower() or default
    if value not in allowed:
        raise SystemExit(f"{name} must be one of {', '.join(allowed)} (got {value!r})")
    return value


def load_config() -> Config:
    """
    Load bridge configuration from environment variables.

    Reads from the .env file at the project root via python-dotenv, validates
    required fields, and returns a frozen Config instance. Calls SystemExit
    with descriptive messages on any misconfiguration so the bridge fails fast
    at startup rather than dropping every message later.

    Returns:
        A frozen Config instance with all settings populated.

    Raises:
        SystemExit: If required environment variables are missing or invalid.
    """
    load_dotenv(PROJECT_ROOT / ".env")

    # Validate required: F-List credentials and the character to log in as
    required = {}
    for name in ("FCHAT_ACCOUNT", "FCHAT_PASSWORD", "FCHAT_CHARACTER"):
        value = os.environ.get(name, "").strip()
        if not value:
            raise SystemExit(f"{name} is required in .env")
        required[name] = value

    channels = tuple(c.strip() for c in os.environ.get("FCHAT_CHANNELS", "").split(",") if c.strip())

    try:
        timeout = int(os.environ.get("HTTP_TIMEOUT_SECONDS", "30"))
    except ValueError as e:
        raise SystemExit("HTTP_TIMEOUT_SECONDS must be a whole number of seconds") from e
    if timeout <= 0:
        raise SystemExit("HTTP_TIMEOUT_SECONDS must be positive")

    # Validate optional: data directory (must exist if provided)
    data_dir = None
    raw_dir = os.environ.get("DATA_DIR", "").strip()
    if raw_dir:
        data_dir = Path(raw_dir).expanduser().resolve()
        if not data_dir.is_dir():
            raise SystemExit(f"DATA_DIR is not an existing directory: {data_dir}")

    sync_target = _choice("SYNC_TARGET", "api", SYNC_TARGETS)
    if sync_target == "file" and data_dir is None:
        raise SystemExit("SYNC_TARGET=file requires DATA_DIR")

    conversations_path = PROJECT_ROOT / "conversations.yaml"
    raw_conversations = os.environ.get("CONVERSATIONS_PATH", "").strip()
    if raw_conversations:
        conversations_path = Path(raw_conversations).expanduser()

    return Config(
        fchat_account=required["FCHAT_ACCOUNT"],
        fchat_password=required["FCHAT_PASSWORD"],
        fchat_character=required["FCHAT_CHARACTER"],
        fchat_channels=channels,
        fchat_url=os.environ.get("FCHAT_URL", "wss://chat.f-list.net/chat2"),
        fchat_ticket_url=os.environ.get("FCHAT_TICKET_URL", "https://www.f-list.net/json/getApiTicket.php"),
        tavern_api_url=os.environ.get("TAVERN_API_URL", "http://localhost:8000").rstrip("/"),
        tavern_api_style=_choice("TAVERN_API_STYLE", "chats", API_STYLES),
        tavern_login_enabled=os.environ.get("TAVERN_LOGIN_ENABLED", "").lower() in _TRUE_VALUES,
        tavern_handle=os.environ.get("TAVERN_HANDLE", "").strip(),
        tavern_password=os.environ.get("TAVERN_PASSWORD", ""),
        tavern_target_character=os.environ.get("TAVERN_TARGET_CHARACTER", "").strip(),
        data_dir=data_dir,
        sync_target=sync_target,
        message_name_style=_choice("MESSAGE_NAME_STYLE", "prefix-name", NAME_STYLES),
        http_timeout_seconds=timeout,
        conversations_path=conversations_path,
    )
