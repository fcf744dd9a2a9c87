"""Media transfer pipeline.

For one attachment the pipeline walks a fixed ladder: missing URL, skip
flag, size ceiling, download, upload. Every rung that produces a destination
message reports its id so the caller can still write a correlation record.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from core.config import BridgeConfig
from core.errors import DestinationError, DownloadError
from core.models import MediaContent, MediaKind, Placement, UrlButton
from core.ports import DestinationPort, SourcePort
from core.rendering import (
    download_failed_note,
    render_caption,
    skip_note,
    too_large_note,
    upload_failed_note,
    with_note,
)
from core.transcode import animated_webp_to_gif

LOGGER = logging.getLogger(__name__)

Transcoder = Callable[[bytes], Optional[bytes]]

SENT = "sent"
SKIPPED = "skipped"
TOO_LARGE = "too_large"
DOWNLOAD_FAILED = "download_failed"
UPLOAD_FAILED = "upload_failed"
DROPPED = "dropped"


@dataclass(frozen=True)
class MediaSpec:
    """Per-kind policy: which skip flag applies and how notes name the media."""

    flag_name: str
    skip_noun: str
    noun: str
    takes_caption: bool = True


MEDIA_SPECS: dict[MediaKind, MediaSpec] = {
    MediaKind.IMAGE: MediaSpec("skip_images", "image", "photo"),
    MediaKind.GIF: MediaSpec("skip_gifs", "GIF", "GIF"),
    MediaKind.VIDEO: MediaSpec("skip_videos", "video", "video"),
    MediaKind.VOICE_NOTE: MediaSpec("skip_voice_notes", "voice note", "audio", takes_caption=False),
    MediaKind.AUDIO: MediaSpec("skip_audios", "audio", "audio", takes_caption=False),
    MediaKind.DOCUMENT: MediaSpec("skip_documents", "document", "document"),
    MediaKind.STICKER: MediaSpec("skip_stickers", "sticker", "sticker", takes_caption=False),
}


@dataclass(frozen=True)
class TransferOutcome:
    status: str
    message_id: Optional[int] = None


def video_file_name(mimetype: str) -> str:
    _, _, subtype = mimetype.partition("/")
    return f"video.{subtype or 'mp4'}"


class MediaTransfer:
    """Move one attachment from the source client to the destination client."""

    def __init__(
        self,
        source: SourcePort,
        destination: DestinationPort,
        config: BridgeConfig,
        transcoder: Transcoder = animated_webp_to_gif,
    ) -> None:
        self._source = source
        self._destination = destination
        self._config = config
        self._transcoder = transcoder

    def exceeds_limit(self, media: MediaContent) -> bool:
        if self._config.self_hosted_api:
            return False
        return media.file_length > self._config.upload_size_limit

    async def transfer(
        self,
        media: MediaContent,
        header: str,
        placement: Placement,
        button: Optional[UrlButton] = None,
    ) -> TransferOutcome:
        spec = MEDIA_SPECS[media.kind]

        # Expired or transient media has nothing to fetch.
        if not media.url:
            LOGGER.debug("Dropping %s without a retrievable URL", media.kind.value)
            return TransferOutcome(DROPPED)

        if self._config.media.is_skipped(spec.flag_name):
            note = skip_note(spec.skip_noun, spec.flag_name)
            return await self._send_notice(SKIPPED, header, note, placement)

        if self.exceeds_limit(media):
            LOGGER.info("Not downloading %s of %s bytes", media.kind.value, media.file_length)
            return await self._send_notice(TOO_LARGE, header, too_large_note(spec.noun), placement)

        try:
            data = await self._source.download_media(media)
        except DownloadError as exc:
            LOGGER.warning("Failed to download %s: %s", media.kind.value, exc)
            return await self._send_notice(DOWNLOAD_FAILED, header, download_failed_note(spec.noun), placement)

        caption = header + render_caption(media.caption) if spec.takes_caption else header
        try:
            message_id = await self._upload(media, data, caption, placement, button)
        except DestinationError as exc:
            LOGGER.error("Failed to upload %s: %s", media.kind.value, exc)
            return await self._send_notice(UPLOAD_FAILED, header, upload_failed_note(spec.noun), placement)
        return TransferOutcome(SENT, message_id)

    async def _send_notice(self, status: str, header: str, note: str, placement: Placement) -> TransferOutcome:
        try:
            message_id = await self._destination.send_text(
                placement.chat_id,
                with_note(header, note),
                thread_id=placement.thread_id,
                reply_to=placement.reply_to,
            )
        except DestinationError as exc:
            LOGGER.error("Failed to send %s notice: %s", status, exc)
            return TransferOutcome(status)
        return TransferOutcome(status, message_id)

    async def _upload(
        self,
        media: MediaContent,
        data: bytes,
        caption: str,
        placement: Placement,
        button: Optional[UrlButton],
    ) -> int:
        chat_id = placement.chat_id
        thread_id = placement.thread_id
        reply_to = placement.reply_to
        destination = self._destination

        if media.kind is MediaKind.IMAGE:
            return await destination.send_photo(chat_id, data, caption=caption, thread_id=thread_id, reply_to=reply_to)
        if media.kind is MediaKind.GIF:
            return await destination.send_animation(
                chat_id, data, caption=caption, thread_id=thread_id, reply_to=reply_to
            )
        if media.kind is MediaKind.VIDEO:
            return await destination.send_video(
                chat_id,
                data,
                video_file_name(media.mimetype),
                caption=caption,
                thread_id=thread_id,
                reply_to=reply_to,
            )
        if media.kind in (MediaKind.VOICE_NOTE, MediaKind.AUDIO):
            file_name = "audio.ogg" if media.kind is MediaKind.VOICE_NOTE else "audio.m4a"
            return await destination.send_audio(
                chat_id,
                data,
                file_name,
                duration=media.seconds,
                caption=caption,
                thread_id=thread_id,
                reply_to=reply_to,
            )
        if media.kind is MediaKind.DOCUMENT:
            return await destination.send_document(
                chat_id,
                data,
                media.file_name or "document",
                caption=caption,
                thread_id=thread_id,
                reply_to=reply_to,
            )
        return await self._upload_sticker(media, data, caption, placement, button)

    async def _upload_sticker(
        self,
        media: MediaContent,
        data: bytes,
        caption: str,
        placement: Placement,
        button: Optional[UrlButton],
    ) -> int:
        gif = None
        if media.is_animated:
            gif = await asyncio.to_thread(self._transcoder, data)
            if gif is None:
                LOGGER.info("Sending animated sticker as-is after failed transcode")

        if gif is not None:
            return await self._destination.send_animation(
                placement.chat_id,
                gif,
                caption=caption,
                thread_id=placement.thread_id,
                reply_to=placement.reply_to,
                button=button,
            )
        return await self._destination.send_sticker(
            placement.chat_id,
            data,
            thread_id=placement.thread_id,
            reply_to=placement.reply_to,
            button=button,
        )
