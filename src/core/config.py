"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# Bot API upload ceiling for the public Telegram endpoint.
DEFAULT_UPLOAD_SIZE_LIMIT = 50 * 1024 * 1024


@dataclass(frozen=True)
class MediaSkipConfig:
    """Per-kind switches that replace an attachment with a text notice."""

    skip_images: bool = False
    skip_gifs: bool = False
    skip_videos: bool = False
    skip_voice_notes: bool = False
    skip_audios: bool = False
    skip_documents: bool = False
    skip_stickers: bool = False
    skip_contacts: bool = False
    skip_locations: bool = False

    def is_skipped(self, flag_name: str) -> bool:
        return bool(getattr(self, flag_name, False))


@dataclass(frozen=True)
class BridgeConfig:
    """Bridge settings consumed by the dispatcher and renderer."""

    target_chat_id: int
    self_hosted_api: bool = False
    upload_size_limit: int = DEFAULT_UPLOAD_SIZE_LIMIT
    time_format: str = "%d %B %Y, %H:%M:%S"
    timezone: str = "UTC"
    skip_chat_details: bool = False
    skip_status: bool = False
    status_ignored_chats: frozenset[str] = frozenset()
    ignore_chats: frozenset[str] = frozenset()
    tag_all_allowed_groups: frozenset[str] = frozenset()
    send_my_messages_from_other_devices: bool = False
    send_revoked_message_updates: bool = True
    skip_profile_picture_updates: bool = False
    skip_group_settings_updates: bool = False
    media: MediaSkipConfig = field(default_factory=MediaSkipConfig)
