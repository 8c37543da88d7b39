"""
Application entry point: wires the chat connection to the external service.

Provides functionality to:
1. Configure logging
2. Load configuration and the conversation filter
3. Build the chat store (HTTP client or local files) and the bridge
4. Run the chat connection until it closes (or Ctrl+C / SIGTERM)
5. Clean up in the correct order on exit

The startup sequence is:
    1. Load config from .env
    2. Load conversations.yaml
    3. Open the external-service HTTP session
    4. Build the Bridge and attach it to the F-Chat connection
    5. Run the connection's reader loop

The shutdown sequence (in the finally block) reverses this order:
    connection → in-flight handlers → HTTP session
"""

import asyncio
import logging

from tavernbridge.bridge import Bridge
from tavernbridge.config import load_config
from tavernbridge.fchat import FChatConnection, FChatError
from tavernbridge.filestore import FileChatStore
from tavernbridge.filters import load_filter
from tavernbridge.tavern import TavernClient


def main() -> None:
    """
    Top-level entry point for the bridge.

    Sets up logging, loads configuration, and delegates to an async function
    that manages the connection lifecycle. Catches KeyboardInterrupt for clean
    Ctrl+C shutdown and logs any unexpected crashes.
    """
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)

    config = load_config()
    logging.info(
        "tavernbridge starting (character=%s, service=%s, api=%s, sync=%s)",
        config.fchat_character,
        config.tavern_api_url,
        config.tavern_api_style,
        config.sync_target,
    )
    conversation_filter = load_filter(config.conversations_path)

    async def _init_and_run() -> None:
        tavern = TavernClient(
            config.tavern_api_url,
            style=config.tavern_api_style,
            timeout_seconds=config.http_timeout_seconds,
        )
        store = FileChatStore(config.data_dir) if config.sync_target == "file" and config.data_dir else tavern

        bridge = Bridge(
            store,
            data_dir=config.data_dir,
            conversation_filter=conversation_filter,
            name_style=config.message_name_style,
            target_character=config.tavern_target_character,
            tavern=tavern,
            login_enabled=config.tavern_login_enabled,
            login_handle=config.tavern_handle,
            login_password=config.tavern_password,
        )
        connection = FChatConnection(
            account=config.fchat_account,
            password=config.fchat_password,
            character=config.fchat_character,
            url=config.fchat_url,
            ticket_url=config.fchat_ticket_url,
            channels=config.fchat_channels,
        )
        bridge.attach(connection)

        try:
            await tavern.start()
            await connection.run()
        except FChatError as e:
            logging.error("Chat login failed: %s", e)
        finally:
            # Shutdown in reverse order of startup
            await connection.close()
            await bridge.drain()
            await tavern.close()

    try:
        asyncio.run(_init_and_run())
    except KeyboardInterrupt:
        logging.info("tavernbridge stopped.")
    except Exception:
        logging.exception("tavernbridge crashed")


if __name__ == "__main__":
    main()
