"""
HTTP client for the external chat-log service (SillyTavern-style API).

Provides functionality to:
1. Fetch and save whole chat logs (the service has no partial-append endpoint)
2. List a character's most recent chat files
3. Perform the optional CSRF + login handshake and carry its cookies

All calls are JSON POSTs except the CSRF token fetch. One long-lived
aiohttp.ClientSession holds the cookie jar so session cookies from the
handshake are sent on every later request. Once a CSRF token is known it is
attached as X-CSRF-Token to every request.

Two path sets are supported:
    chats   ->  /api/chats/get, /api/chats/save, /api/chats/recent
    legacy  ->  /api/get, /api/save, /api/recent

Every transport failure, timeout, or HTTP status >= 400 raises TavernAPIError
carrying the decoded response body when there is one.
"""

import json
import logging

import aiohttp

log = logging.getLogger(__name__)

_PATHS = {
    "chats": {
        "get": "/api/chats/get",
        "save": "/api/chats/save",
        "recent": "/api/chats/recent",
    },
    "legacy": {
        "get": "/api/get",
        "save": "/api/save",
        "recent": "/api/recent",
    },
}

_CSRF_PATH = "/csrf-token"
_LOGIN_PATH = "/api/users/login"


class ChatStoreError(Exception):
    """
    Raised by a chat store when a log cannot be read, written, or listed.

    Attributes:
        status: HTTP status code, or 0 if no response was received.
        response_data: Decoded response body (JSON value or raw text), if any.
    """

    def __init__(self, message: str, *, status: int = 0, response_data: object = None) -> None:
        super().__init__(message)
        self.status = status
        self.response_data = response_data


class TavernAPIError(ChatStoreError):
    """Raised when a call to the external service fails."""


def _decode(text: str) -> object:
    """Decode a response body as JSON, falling back to the raw text."""
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return text


class TavernClient:
    """
    Async client for one external-service instance.

    Args:
        base_url: Service root, e.g. "http://localhost:8000".
        style: Path set to target, "chats" or "legacy".
        timeout_seconds: Total timeout applied to each request.
    """

    def __init__(self, base_url: str, *, style: str = "chats", timeout_seconds: int = 30) -> None:
        if style not in _PATHS:
            raise ValueError(f"Unknown API style: {style}")
        self.base_url = base_url.rstrip("/")
        self.style = style
        self.timeout_seconds = timeout_seconds
        self.csrf_token: str | None = None
        self._session: aiohttp.ClientSession | None = None

    async def start(self) -> None:
        """Open the shared HTTP session (idempotent)."""
        if self._session is None:
            # unsafe=True keeps cookies for IP hosts such as 127.0.0.1
            self._session = aiohttp.ClientSession(cookie_jar=aiohttp.CookieJar(unsafe=True))

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def _request(self, method: str, path: str, body: dict | None = None) -> object:
        """Send one request and return the decoded body, raising TavernAPIError on failure."""
        await self.start()
        assert self._session is not None

        headers = {}
        if self.csrf_token:
            headers["X-CSRF-Token"] = self.csrf_token

        url = self.base_url + path
        log.debug("Calling external service: %s %s", method, url)

        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
            async with self._session.request(
                method=method,
                url=url,
                headers=headers,
                json=body,
                timeout=timeout,
            ) as resp:
                status = resp.status
                data = _decode(await resp.text())
        except TimeoutError as e:
            raise TavernAPIError(f"{method} {path} timed out ({self.timeout_seconds}s)") from e
        except aiohttp.ClientError as e:
            raise TavernAPIError(f"{method} {path} connection error: {e}") from e

        if status >= 400:
            raise TavernAPIError(f"{method} {path} returned HTTP {status}", status=status, response_data=data)
        return data

    # ── Chat log endpoints ──────────────────────────────────────────

    async def get_chat(self, avatar_url: str, file_name: str) -> object:
        """Fetch a whole chat log. The body is returned as decoded, unvalidated."""
        return await self._request(
            "POST",
            _PATHS[self.style]["get"],
            {"avatar_url": avatar_url, "file_name": file_name},
        )

    async def save_chat(self, avatar_url: str, file_name: str, chat: list, force: bool = False) -> object:
        """
        Replace a whole chat log.

        Args:
            avatar_url: Character avatar file the log belongs to ("<name>.png").
            file_name: Log file name without the .jsonl extension.
            chat: Full log, header first.
            force: Ask the service to skip its integrity check.

        Returns:
            The decoded response body; {"result": "ok"} on success.
        """
        return await self._request(
            "POST",
            _PATHS[self.style]["save"],
            {"avatar_url": avatar_url, "file_name": file_name, "chat": chat, "force": force},
        )

    async def recent_chats(self, avatar: str, max_chats: int = 1) -> list:
        """Return up to ``max_chats`` chat infos for a character, most recent first."""
        data = await self._request(
            "POST",
            _PATHS[self.style]["recent"],
            {"avatar": avatar, "max": max_chats},
        )
        return data if isinstance(data, list) else []

    # ── Handshake ───────────────────────────────────────────────────

    async def fetch_csrf_token(self) -> str:
        """Fetch and remember the CSRF token sent with every later request."""
        data = await self._request("GET", _CSRF_PATH)
        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            raise TavernAPIError("CSRF token not found in response", response_data=data)
        self.csrf_token = token
        log.info("CSRF token fetched")
        return token

    async def login(self, handle: str, password: str) -> str:
        """Log in to the service; the session cookie is kept in the cookie jar."""
        data = await self._request("POST", _LOGIN_PATH, {"handle": handle, "password": password})
        logged_in = data.get("handle") if isinstance(data, dict) else None
        if not logged_in:
            raise TavernAPIError("Login rejected or unexpected response", response_data=data)
        return logged_in
