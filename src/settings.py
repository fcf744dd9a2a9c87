"""Static configuration for watgbridge.

All user-editable settings (target chat, filters, media switches, logging)
live in a single JSON file for quick edits without touching Python. Secrets
stay in the environment (.env).
"""

import json
import os

from core.config import DEFAULT_UPLOAD_SIZE_LIMIT, BridgeConfig, MediaSkipConfig
from core.jids import user_part

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

CONFIG_PATH = os.environ.get("WATGBRIDGE_CONFIG", os.path.join(PROJECT_ROOT, "config.json"))


def _load_json_config() -> dict:
    """Load config.json with a sectioned, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


def _chat_set(values: list) -> frozenset[str]:
    """Accept bare numbers or full JIDs; filters compare the user part."""

    return frozenset(user_part(str(value)) for value in values or [] if value)


def _resolve_path(path: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.join(PROJECT_ROOT, path)


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

_telegram = _CONFIG.get("telegram", {})
_whatsapp = _CONFIG.get("whatsapp", {})
_media = _whatsapp.get("media", {})

# Where to store the SQLite database.
DB_PATH = _resolve_path(_CONFIG.get("database", {}).get("path", "watgbridge.db"))

# Sidecar binary that owns the WhatsApp session; WA_SIDECAR overrides it.
WA_SIDECAR_BINARY = os.environ.get("WA_SIDECAR") or _whatsapp.get("sidecar_binary", "watg-sidecar")
WA_STORE_DIR = _resolve_path(_whatsapp.get("store_dir", "whatsapp"))
WA_COMMAND_TIMEOUT = float(_whatsapp.get("command_timeout", 120))

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})


def build_bridge_config() -> BridgeConfig:
    """Build the frozen config object handed to the dispatcher."""

    target_chat_id = _telegram.get("target_chat_id")
    if target_chat_id is None:
        raise ValueError("telegram.target_chat_id is required in config.json")

    return BridgeConfig(
        target_chat_id=int(target_chat_id),
        self_hosted_api=bool(_telegram.get("self_hosted_api", False)),
        upload_size_limit=int(_telegram.get("upload_size_limit", DEFAULT_UPLOAD_SIZE_LIMIT)),
        time_format=_CONFIG.get("time_format", "%d %B %Y, %H:%M:%S"),
        timezone=_CONFIG.get("timezone", "UTC"),
        skip_chat_details=bool(_whatsapp.get("skip_chat_details", False)),
        skip_status=bool(_whatsapp.get("skip_status", False)),
        status_ignored_chats=_chat_set(_whatsapp.get("status_ignored_chats", [])),
        ignore_chats=_chat_set(_whatsapp.get("ignore_chats", [])),
        tag_all_allowed_groups=_chat_set(_whatsapp.get("tag_all_allowed_groups", [])),
        send_my_messages_from_other_devices=bool(_whatsapp.get("send_my_messages_from_other_devices", False)),
        send_revoked_message_updates=bool(_whatsapp.get("send_revoked_message_updates", True)),
        skip_profile_picture_updates=bool(_whatsapp.get("skip_profile_picture_updates", False)),
        skip_group_settings_updates=bool(_whatsapp.get("skip_group_settings_updates", False)),
        media=MediaSkipConfig(
            skip_images=bool(_media.get("skip_images", False)),
            skip_gifs=bool(_media.get("skip_gifs", False)),
            skip_videos=bool(_media.get("skip_videos", False)),
            skip_voice_notes=bool(_media.get("skip_voice_notes", False)),
            skip_audios=bool(_media.get("skip_audios", False)),
            skip_documents=bool(_media.get("skip_documents", False)),
            skip_stickers=bool(_media.get("skip_stickers", False)),
            skip_contacts=bool(_media.get("skip_contacts", False)),
            skip_locations=bool(_media.get("skip_locations", False)),
        ),
    )
