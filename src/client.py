"""Telegram client factory for watgbridge.

The bridge logs in as a bot and only sends: it never reads Telegram updates,
so the client is built with update handling off. The session file caches the
bot authorization and entity hashes between runs.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv
from telethon import TelegramClient

# FloodWait errors shorter than this are slept through by Telethon itself.
DEFAULT_FLOOD_SLEEP_THRESHOLD = 60


def _require_env(*names: str) -> dict[str, str]:
    load_dotenv()
    missing = [name for name in names if not os.getenv(name)]
    if missing:
        raise RuntimeError(f"Missing {', '.join(missing)} in environment")
    return {name: os.environ[name] for name in names}


def bot_token() -> str:
    return _require_env("BOT_TOKEN")["BOT_TOKEN"]


def build_client() -> TelegramClient:
    """Create the bot's Telethon client from API_ID, API_HASH and SESSION_NAME."""

    credentials = _require_env("API_ID", "API_HASH")
    session_name = os.getenv("SESSION_NAME", "watgbridge")
    flood_threshold = int(os.getenv("FLOOD_SLEEP_THRESHOLD", DEFAULT_FLOOD_SLEEP_THRESHOLD))

    logging.getLogger(__name__).info("Initializing Telegram bot client (session %s)", session_name)

    return TelegramClient(
        session_name,
        int(credentials["API_ID"]),
        credentials["API_HASH"],
        flood_sleep_threshold=flood_threshold,
        receive_updates=False,
    )
