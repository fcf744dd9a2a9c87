"""Application entry point for the WhatsApp to Telegram bridge."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

from art import tprint
from dotenv import load_dotenv
from telethon import TelegramClient

import settings
from adapters.sqlite_storage import SQLiteStorage
from adapters.telegram_destination import TelegramDestination
from adapters.whatsapp_sidecar import WhatsAppSidecar
from client import bot_token, build_client
from core.dispatcher import BridgeContext, EventDispatcher

NAME = "WATGBRIDGE"
FONT = "tarty-1"


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


# Secrets the bridge always needs; values from logging.redact.patterns are added.
_REQUIRED_SECRETS = ("BOT_TOKEN", "API_HASH")

# Library loggers that are noisy at INFO: Telethon logs reconnects and update
# gaps, httpx logs every profile-picture URL (which carries auth parameters).
_LIBRARY_LEVELS = {"telethon": "WARNING", "httpx": "WARNING", "PIL": "INFO"}

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class _RedactingFormatter(logging.Formatter):
    """Mask secret values anywhere in the rendered record, tracebacks included."""

    def __init__(self, secrets: list[str]) -> None:
        super().__init__(fmt=_LOG_FORMAT, datefmt=_DATE_FORMAT)
        # Longest first so a secret containing another is masked whole.
        self._secrets = sorted({secret for secret in secrets if secret}, key=len, reverse=True)

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _secret_values(redact_cfg: dict) -> list[str]:
    if not redact_cfg.get("enabled", True):
        return []
    names = list(_REQUIRED_SECRETS) + [name for name in redact_cfg.get("patterns", []) if name not in _REQUIRED_SECRETS]
    return [os.environ[name] for name in names if os.getenv(name)]


def _level(name: object, default: int) -> int:
    return getattr(logging, str(name).upper(), default)


def _file_handler(file_cfg: dict) -> RotatingFileHandler:
    path = file_cfg.get("path", "logs/watgbridge.log")
    if not os.path.isabs(path):
        path = os.path.join(settings.PROJECT_ROOT, path)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    return RotatingFileHandler(
        path,
        maxBytes=int(file_cfg.get("max_bytes", 5 * 1024 * 1024)),
        backupCount=int(file_cfg.get("backup_count", 5)),
        encoding="utf-8",
    )


def _configure_logging() -> None:
    """Set up console and rotating-file logging from the ``logging`` section.

    Logging is on unless the section sets ``enabled`` to false.
    """

    config = settings.LOGGING or {}
    if not config.get("enabled", True):
        return

    load_dotenv()
    level = _level(config.get("level", "INFO"), logging.INFO)
    formatter = _RedactingFormatter(_secret_values(config.get("redact", {})))

    handlers: list[logging.Handler] = []
    if config.get("console", True):
        handlers.append(logging.StreamHandler())
    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        handlers.append(_file_handler(file_cfg))
    if not handlers:
        return

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
    logging.basicConfig(level=level, handlers=handlers)

    library_levels = {**_LIBRARY_LEVELS, **config.get("libraries", {})}
    for name, library_level in library_levels.items():
        logging.getLogger(name).setLevel(max(level, _level(library_level, logging.WARNING)))


async def _serve(client: TelegramClient, storage: SQLiteStorage, source: WhatsAppSidecar) -> None:
    logger = logging.getLogger(__name__)

    await source.connect()
    context = BridgeContext(
        source=source,
        destination=TelegramDestination(client),
        store=storage,
        config=settings.build_bridge_config(),
    )
    dispatcher = EventDispatcher(context)

    listener = asyncio.create_task(source.listen(dispatcher.submit))
    disconnected = asyncio.ensure_future(client.disconnected)
    logger.info("Bridge started. Forwarding WhatsApp events to %s", context.config.target_chat_id)

    try:
        done, _ = await asyncio.wait({listener, disconnected}, return_when=asyncio.FIRST_COMPLETED)
        if listener in done and listener.exception() is not None:
            logger.error("WhatsApp event stream stopped", exc_info=listener.exception())
        elif listener in done:
            logger.warning("WhatsApp event stream ended")
        else:
            logger.warning("Telegram client disconnected")
    finally:
        for task in (listener, disconnected):
            if not task.done():
                task.cancel()
        await dispatcher.drain()
        await source.close()
        if client.is_connected():
            await client.disconnect()


def _run() -> None:
    _print_banner()
    _configure_logging()
    logger = logging.getLogger(__name__)

    storage = SQLiteStorage(settings.DB_PATH)
    storage.init_db()

    source = WhatsAppSidecar(
        settings.WA_SIDECAR_BINARY,
        data_dir=settings.WA_STORE_DIR,
        timeout=settings.WA_COMMAND_TIMEOUT,
    )

    client = build_client()
    # Explicit lifecycle management makes start/shutdown behavior obvious.
    client.start(bot_token=bot_token())
    logger.info("Telegram bot connected")

    try:
        client.loop.run_until_complete(_serve(client, storage, source))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")


def _init_db() -> None:
    _configure_logging()
    SQLiteStorage(settings.DB_PATH).init_db()
    logging.getLogger(__name__).info("Database ready at %s", settings.DB_PATH)


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="watgbridge")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start the bridge")
    subparsers.add_parser("init-db", help="Create the SQLite tables and exit")

    args = parser.parse_args(argv)
    if args.command == "init-db":
        _init_db()
        return
    _run()


if __name__ == "__main__":
    main()
