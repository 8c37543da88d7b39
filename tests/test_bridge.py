"""Tests for bridge.py, the chat event adapter."""

import logging
from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest

from tavernbridge.bridge import ACTIVE, UNINITIALIZED, Bridge
from tavernbridge.events import ChannelMessage, Connected, PrivateMessage
from tavernbridge.filters import ConversationFilter
from tavernbridge.tavern import ChatStoreError, TavernAPIError

T = datetime(2024, 3, 1, 18, 45, 30, 250000, tzinfo=UTC)
T_ISO = "2024-03-01T18:45:30.250Z"


class FakeConnection:
    """Records handlers registered through the on_event / on_message interface."""

    def __init__(self, character: str = "Alice") -> None:
        self.character = character
        self.events: dict[str, list] = {}
        self.messages: dict[str, list] = {}

    def on_event(self, name, callback):
        self.events.setdefault(name, []).append(callback)

    def on_message(self, command, callback):
        self.messages.setdefault(command, []).append(callback)

    def fire_event(self, name):
        for callback in self.events.get(name, []):
            callback()

    def fire_message(self, command, data, time=T):
        for callback in self.messages.get(command, []):
            callback(data, time)


@pytest.fixture
def store():
    """Mock chat store holding an empty log that accepts every save."""
    store = AsyncMock()
    store.get_chat = AsyncMock(return_value=[])
    store.save_chat = AsyncMock(return_value={"result": "ok"})
    store.recent_chats = AsyncMock(return_value=[])
    return store


def _saved_chat(store) -> list:
    return store.save_chat.call_args.args[2]


# ── End to end ───────────────────────────────────────────────────────


class TestEndToEnd:
    async def test_channel_message_mirrored(self, store):
        bridge = Bridge(store)
        connection = FakeConnection("Alice")
        bridge.attach(connection)

        connection.fire_event("connected")
        connection.fire_message("MSG", {"channel": "Lounge", "character": "Bob", "message": "hi"})
        await bridge.drain()

        store.get_chat.assert_awaited_once_with("Lounge.png", "Lounge")
        store.save_chat.assert_awaited_once()
        chat = _saved_chat(store)
        assert chat[0]["user_name"] == "Alice"
        assert chat[0]["character_name"] == "Lounge"
        assert chat[-1] == {"name": "Bob: hi", "is_user": False, "send_date": T_ISO, "mes": "hi"}

    async def test_private_message_identifier(self, store):
        bridge = Bridge(store)
        connection = FakeConnection("Alice")
        bridge.attach(connection)

        connection.fire_event("connected")
        connection.fire_message("PRI", {"character": "Jane Doe", "message": "hello"})
        await bridge.drain()

        store.get_chat.assert_awaited_once_with("PM_with_Jane_Doe.png", "PM_with_Jane_Doe")

    async def test_malformed_payload_ignored(self, store, caplog):
        bridge = Bridge(store)
        connection = FakeConnection()
        bridge.attach(connection)
        with caplog.at_level(logging.WARNING):
            connection.fire_message("MSG", {"channel": "Lounge", "character": "Bob"})
        await bridge.drain()
        store.get_chat.assert_not_awaited()
        assert "Malformed" in caplog.text


# ── State machine ────────────────────────────────────────────────────


class TestStates:
    async def test_connected_activates_once(self, store):
        bridge = Bridge(store)
        assert bridge.state == UNINITIALIZED
        assert await bridge.handle(Connected("Alice")) is True
        assert bridge.state == ACTIVE
        assert await bridge.handle(Connected("Someone Else")) is False
        assert bridge.local_user == "Alice"

    async def test_messages_processed_while_uninitialized(self, store):
        store.get_chat = AsyncMock(return_value=[{"user_name": "Alice", "character_name": "Lounge"}])
        bridge = Bridge(store)
        assert await bridge.handle(ChannelMessage("Lounge", "Alice", "me", T)) is True
        # Local name unknown yet, so the line is attributed to a remote author
        assert _saved_chat(store)[-1]["is_user"] is False

    async def test_new_log_needs_local_user(self, store):
        bridge = Bridge(store)
        assert await bridge.handle(ChannelMessage("Lounge", "Bob", "hi", T)) is False
        store.save_chat.assert_not_awaited()

    async def test_unknown_event(self, store):
        assert await Bridge(store).handle("not an event") is False


# ── Message building ─────────────────────────────────────────────────


class TestBuildMessage:
    async def test_local_user_keeps_name(self, store):
        bridge = Bridge(store)
        await bridge.handle(Connected("Alice"))
        msg = bridge.build_message("Alice", "hello", T)
        assert msg.to_dict() == {"name": "Alice", "is_user": True, "send_date": T_ISO, "mes": "hello"}

    @pytest.mark.parametrize(
        ("style", "name", "mes"),
        [
            ("prefix-name", "Bob: hi", "hi"),
            ("prefix-body", "Bob", "Bob: hi"),
            ("plain", "Bob", "hi"),
        ],
    )
    async def test_remote_name_styles(self, store, style, name, mes):
        bridge = Bridge(store, name_style=style)
        await bridge.handle(Connected("Alice"))
        msg = bridge.build_message("Bob", "hi", T)
        assert (msg.name, msg.mes, msg.is_user) == (name, mes, False)


# ── Filtering and provisioning ───────────────────────────────────────


class TestFilteringAndProvisioning:
    async def test_filtered_conversation_skipped(self, store):
        bridge = Bridge(store, conversation_filter=ConversationFilter(ignore=frozenset({"PM_with_Spam Bot"})))
        await bridge.handle(Connected("Alice"))
        assert await bridge.handle(PrivateMessage("Spam Bot", "buy now", T)) is False
        store.get_chat.assert_not_awaited()

    async def test_local_provisioning(self, store, tmp_path):
        bridge = Bridge(store, data_dir=tmp_path)
        await bridge.handle(Connected("Alice"))
        assert await bridge.handle(ChannelMessage("Lounge", "Bob", "hi", T)) is True
        assert (tmp_path / "characters" / "Lounge.json").exists()
        assert (tmp_path / "chats" / "Lounge" / "Lounge.jsonl").exists()
        assert bridge.gate.is_ensured("Lounge")

    async def test_provisioning_failure_drops_message(self, store, tmp_path):
        (tmp_path / "characters").write_text("not a directory")
        bridge = Bridge(store, data_dir=tmp_path)
        await bridge.handle(Connected("Alice"))
        assert await bridge.handle(ChannelMessage("Lounge", "Bob", "hi", T)) is False
        store.get_chat.assert_not_awaited()


# ── Single-target mode ───────────────────────────────────────────────


class TestSingleTarget:
    async def test_every_conversation_goes_to_recent_chat(self, store):
        store.recent_chats = AsyncMock(return_value=[{"file_name": "Chat 1.jsonl"}])
        bridge = Bridge(store, target_character="F-Chat Logs")
        await bridge.handle(Connected("Alice"))

        await bridge.handle(ChannelMessage("Lounge", "Bob", "hi", T))
        await bridge.handle(PrivateMessage("Jane", "hey", T))

        store.recent_chats.assert_awaited_once_with("F-Chat Logs.png", 1)
        saved = [c.args[:2] for c in store.save_chat.call_args_list]
        assert saved == [("F-Chat Logs.png", "Chat 1"), ("F-Chat Logs.png", "Chat 1")]
        store.get_chat.assert_awaited_with("F-Chat Logs.png", "Chat 1")
        assert _saved_chat(store)[0]["character_name"] == "F-Chat Logs"

    async def test_no_recent_chat_drops_message(self, store, caplog):
        bridge = Bridge(store, target_character="Logs")
        await bridge.handle(Connected("Alice"))
        with caplog.at_level(logging.ERROR):
            assert await bridge.handle(ChannelMessage("Lounge", "Bob", "hi", T)) is False
        store.save_chat.assert_not_awaited()
        assert "Could not determine" in caplog.text

    async def test_recent_chats_error_drops_message(self, store, caplog):
        store.recent_chats = AsyncMock(side_effect=ChatStoreError("Failed to list chats of Logs.png", response_data="denied"))
        bridge = Bridge(store, target_character="Logs")
        await bridge.handle(Connected("Alice"))
        with caplog.at_level(logging.ERROR):
            assert await bridge.handle(ChannelMessage("Lounge", "Bob", "hi", T)) is False
        store.save_chat.assert_not_awaited()
        assert "denied" in caplog.text


# ── Login handshake ──────────────────────────────────────────────────


class TestLogin:
    async def test_login_on_connect(self, store):
        tavern = AsyncMock()
        tavern.login = AsyncMock(return_value="Alice")
        bridge = Bridge(store, tavern=tavern, login_enabled=True, login_password="pw")
        await bridge.handle(Connected("Alice"))
        tavern.fetch_csrf_token.assert_awaited_once()
        tavern.login.assert_awaited_once_with("Alice", "pw")

    async def test_login_handle_override(self, store):
        tavern = AsyncMock()
        bridge = Bridge(store, tavern=tavern, login_enabled=True, login_handle="alice-st", login_password="pw")
        await bridge.handle(Connected("Alice"))
        tavern.login.assert_awaited_once_with("alice-st", "pw")

    async def test_login_disabled_by_default(self, store):
        tavern = AsyncMock()
        await Bridge(store, tavern=tavern, login_password="pw").handle(Connected("Alice"))
        tavern.fetch_csrf_token.assert_not_awaited()
        tavern.login.assert_not_awaited()

    async def test_missing_password_skips_login(self, store, caplog):
        tavern = AsyncMock()
        bridge = Bridge(store, tavern=tavern, login_enabled=True)
        with caplog.at_level(logging.ERROR):
            await bridge.handle(Connected("Alice"))
        tavern.login.assert_not_awaited()
        assert "TAVERN_PASSWORD" in caplog.text

    async def test_login_failure_logged_and_still_active(self, store, caplog):
        tavern = AsyncMock()
        tavern.login = AsyncMock(side_effect=TavernAPIError("rejected", status=401, response_data={"error": "nope"}))
        bridge = Bridge(store, tavern=tavern, login_enabled=True, login_password="pw")
        with caplog.at_level(logging.ERROR):
            await bridge.handle(Connected("Alice"))
        assert bridge.state == ACTIVE
        assert "nope" in caplog.text
