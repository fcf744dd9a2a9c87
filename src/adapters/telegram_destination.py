"""Telegram destination adapter.

Implements the core DestinationPort with a Telethon client logged in as a
bot. Messages are sent in HTML parse mode into forum threads of a single
target supergroup.
"""

from __future__ import annotations

import io
import logging
from typing import Any, Optional

from telethon import Button, TelegramClient, functions, types
from telethon.errors import RPCError

from core.errors import DestinationError
from core.models import UrlButton

LOGGER = logging.getLogger(__name__)

PARSE_MODE = "html"


def _named_buffer(data: bytes, file_name: str) -> io.BytesIO:
    # Telethon infers the upload's mime type from the buffer name.
    buffer = io.BytesIO(data)
    buffer.name = file_name
    return buffer


def _buttons(button: Optional[UrlButton]):
    if button is None:
        return None
    return Button.url(button.text, button.url)


def _reply_target(thread_id: int, reply_to: Optional[int]) -> Optional[int]:
    # Replying to the thread's root message is how a message lands in a forum
    # topic; a reply to any message inside the topic stays in that topic.
    if reply_to:
        return reply_to
    return thread_id or None


class TelegramDestination:
    """Destination adapter that sends everything through one Telethon bot client."""

    def __init__(self, client: TelegramClient) -> None:
        self._client = client

    async def _send_file(
        self,
        chat_id: int,
        file: Any,
        thread_id: int,
        reply_to: Optional[int],
        button: Optional[UrlButton],
        **kwargs: Any,
    ) -> int:
        try:
            message = await self._client.send_file(
                chat_id,
                file,
                reply_to=_reply_target(thread_id, reply_to),
                buttons=_buttons(button),
                parse_mode=PARSE_MODE,
                **kwargs,
            )
        except (RPCError, ValueError) as exc:
            raise DestinationError(f"Telegram rejected upload to {chat_id}: {exc}") from exc
        return message.id

    async def send_text(
        self,
        chat_id: int,
        text: str,
        thread_id: int = 0,
        reply_to: Optional[int] = None,
        button: Optional[UrlButton] = None,
    ) -> int:
        try:
            message = await self._client.send_message(
                chat_id,
                text,
                reply_to=_reply_target(thread_id, reply_to),
                buttons=_buttons(button),
                parse_mode=PARSE_MODE,
                link_preview=False,
            )
        except (RPCError, ValueError) as exc:
            raise DestinationError(f"Telegram rejected message to {chat_id}: {exc}") from exc
        return message.id

    async def send_photo(
        self,
        chat_id: int,
        data: bytes,
        caption: str = "",
        thread_id: int = 0,
        reply_to: Optional[int] = None,
        button: Optional[UrlButton] = None,
    ) -> int:
        return await self._send_file(
            chat_id, _named_buffer(data, "photo.jpg"), thread_id, reply_to, button, caption=caption
        )

    async def send_video(
        self,
        chat_id: int,
        data: bytes,
        file_name: str,
        caption: str = "",
        thread_id: int = 0,
        reply_to: Optional[int] = None,
        button: Optional[UrlButton] = None,
    ) -> int:
        return await self._send_file(
            chat_id,
            _named_buffer(data, file_name),
            thread_id,
            reply_to,
            button,
            caption=caption,
            supports_streaming=True,
        )

    async def send_animation(
        self,
        chat_id: int,
        data: bytes,
        caption: str = "",
        thread_id: int = 0,
        reply_to: Optional[int] = None,
        button: Optional[UrlButton] = None,
    ) -> int:
        return await self._send_file(
            chat_id,
            _named_buffer(data, "animation.gif"),
            thread_id,
            reply_to,
            button,
            caption=caption,
            attributes=[types.DocumentAttributeAnimated()],
        )

    async def send_audio(
        self,
        chat_id: int,
        data: bytes,
        file_name: str,
        duration: int = 0,
        caption: str = "",
        thread_id: int = 0,
        reply_to: Optional[int] = None,
        button: Optional[UrlButton] = None,
    ) -> int:
        return await self._send_file(
            chat_id,
            _named_buffer(data, file_name),
            thread_id,
            reply_to,
            button,
            caption=caption,
            attributes=[types.DocumentAttributeAudio(duration=duration)],
        )

    async def send_document(
        self,
        chat_id: int,
        data: bytes,
        file_name: str,
        caption: str = "",
        thread_id: int = 0,
        reply_to: Optional[int] = None,
        button: Optional[UrlButton] = None,
    ) -> int:
        return await self._send_file(
            chat_id,
            _named_buffer(data, file_name),
            thread_id,
            reply_to,
            button,
            caption=caption,
            force_document=True,
        )

    async def send_sticker(
        self,
        chat_id: int,
        data: bytes,
        thread_id: int = 0,
        reply_to: Optional[int] = None,
        button: Optional[UrlButton] = None,
    ) -> int:
        return await self._send_file(
            chat_id,
            _named_buffer(data, "sticker.webp"),
            thread_id,
            reply_to,
            button,
            force_document=True,
            attributes=[types.DocumentAttributeSticker(alt="", stickerset=types.InputStickerSetEmpty())],
        )

    async def send_contact(
        self,
        chat_id: int,
        phone_number: str,
        display_name: str,
        vcard: str,
        thread_id: int = 0,
        reply_to: Optional[int] = None,
        button: Optional[UrlButton] = None,
    ) -> int:
        media = types.InputMediaContact(
            phone_number=phone_number,
            first_name=display_name,
            last_name="",
            vcard=vcard,
        )
        return await self._send_file(chat_id, media, thread_id, reply_to, button)

    async def send_location(
        self,
        chat_id: int,
        latitude: float,
        longitude: float,
        accuracy: int = 0,
        thread_id: int = 0,
        reply_to: Optional[int] = None,
        button: Optional[UrlButton] = None,
    ) -> int:
        point = types.InputGeoPoint(lat=latitude, long=longitude, accuracy_radius=accuracy or None)
        return await self._send_file(chat_id, types.InputMediaGeoPoint(point), thread_id, reply_to, button)

    async def create_thread(self, chat_id: int, label: str) -> int:
        try:
            result = await self._client(functions.channels.CreateForumTopicRequest(channel=chat_id, title=label))
        except (RPCError, ValueError) as exc:
            raise DestinationError(f"Failed to create forum topic {label!r}: {exc}") from exc

        # The topic id is the id of the service message that opened it.
        for update in getattr(result, "updates", []):
            if isinstance(update, (types.UpdateNewChannelMessage, types.UpdateNewMessage)):
                return update.message.id
        for update in getattr(result, "updates", []):
            if isinstance(update, types.UpdateMessageID):
                return update.id
        raise DestinationError(f"Telegram returned no topic id for {label!r}")

    async def rename_thread(self, chat_id: int, thread_id: int, label: str) -> None:
        try:
            await self._client(
                functions.channels.EditForumTopicRequest(channel=chat_id, topic_id=thread_id, title=label)
            )
        except (RPCError, ValueError) as exc:
            raise DestinationError(f"Failed to rename forum topic {thread_id}: {exc}") from exc
        LOGGER.info("Renamed thread %s to %r", thread_id, label)
