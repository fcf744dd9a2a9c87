"""Ports (interfaces) used by the core bridge.

Ports define the minimal contracts for the correlation store and for both
chat platforms so that the core can be exercised with fakes and reused with
different backends.
"""

from __future__ import annotations

from typing import Optional, Protocol, Sequence, Tuple

from core.models import CorrelationRecord, GroupInfo, MediaContent, UrlButton


class CorrelationStorePort(Protocol):
    """Durable message-pair, topic and contact-name state.

    Every write raises ``StorageError`` on I/O failure.
    """

    def put_record(
        self,
        source_message_id: str,
        source_chat_id: str,
        source_sender_id: str,
        dest_chat_id: int,
        dest_message_id: int,
        dest_thread_id: int,
    ) -> None:
        ...

    def get_record(self, source_message_id: str, source_chat_id: str) -> Optional[CorrelationRecord]:
        ...

    def mark_read(self, source_chat_id: str, source_message_id: str) -> None:
        ...

    def get_topic(self, source_chat_key: str, dest_chat_id: int) -> Tuple[int, bool]:
        ...

    def put_topic(self, source_chat_key: str, dest_chat_id: int, dest_thread_id: int) -> None:
        ...

    def get_contact_name(self, user_id: str) -> Optional[str]:
        ...

    def put_contact_name(self, user_id: str, push_name: str) -> None:
        ...


class SourcePort(Protocol):
    """Capabilities consumed from the source (WhatsApp) client."""

    @property
    def own_user_id(self) -> str:
        ...

    async def send_message(
        self,
        chat_id: str,
        text: str,
        quoted_id: Optional[str] = None,
        quoted_sender: Optional[str] = None,
        mentions: Sequence[str] = (),
    ) -> str:
        ...

    async def download_media(self, media: MediaContent) -> bytes:
        ...

    async def get_profile_picture_url(self, subject_id: str) -> Optional[str]:
        ...

    async def download_url(self, url: str) -> bytes:
        ...

    async def fetch_contact_name(self, user_id: str) -> Optional[str]:
        ...

    async def fetch_group_info(self, group_id: str) -> Optional[GroupInfo]:
        ...


class DestinationPort(Protocol):
    """Capabilities consumed from the destination (Telegram) client.

    Send operations return the new destination message id and raise
    ``DestinationError`` on failure.
    """

    async def send_text(
        self,
        chat_id: int,
        text: str,
        thread_id: int = 0,
        reply_to: Optional[int] = None,
        button: Optional[UrlButton] = None,
    ) -> int:
        ...

    async def send_photo(
        self,
        chat_id: int,
        data: bytes,
        caption: str = "",
        thread_id: int = 0,
        reply_to: Optional[int] = None,
        button: Optional[UrlButton] = None,
    ) -> int:
        ...

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
        ...

    async def send_animation(
        self,
        chat_id: int,
        data: bytes,
        caption: str = "",
        thread_id: int = 0,
        reply_to: Optional[int] = None,
        button: Optional[UrlButton] = None,
    ) -> int:
        ...

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
        ...

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
        ...

    async def send_sticker(
        self,
        chat_id: int,
        data: bytes,
        thread_id: int = 0,
        reply_to: Optional[int] = None,
        button: Optional[UrlButton] = None,
    ) -> int:
        ...

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
        ...

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
        ...

    async def create_thread(self, chat_id: int, label: str) -> int:
        ...

    async def rename_thread(self, chat_id: int, thread_id: int, label: str) -> None:
        ...
