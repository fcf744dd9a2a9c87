"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any integration-specific types. Source events form a closed
union (``Event``); the dispatcher matches on it exhaustively.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Tuple, Union


class MediaKind(str, Enum):
    """Attachment kinds that go through the media transfer pipeline."""

    IMAGE = "image"
    GIF = "gif"
    VIDEO = "video"
    VOICE_NOTE = "voice_note"
    AUDIO = "audio"
    DOCUMENT = "document"
    STICKER = "sticker"


@dataclass(frozen=True)
class MessageInfo:
    """Envelope shared by every message-shaped source event."""

    chat_id: str
    sender_id: str
    message_id: str
    timestamp: datetime
    is_from_self: bool = False
    is_group: bool = False
    is_incoming_broadcast: bool = False
    push_name: str = ""


@dataclass(frozen=True)
class QuoteContext:
    """Reply, forward and mention metadata attached to a message."""

    stanza_id: Optional[str] = None
    participant: Optional[str] = None
    is_forwarded: bool = False
    forwarding_score: int = 0
    mentioned_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class TextContent:
    text: str


@dataclass(frozen=True)
class MediaContent:
    """A downloadable attachment.

    ``raw`` is the opaque source payload the source client needs to fetch
    the bytes again; the core never looks inside it.
    """

    kind: MediaKind
    url: str
    file_length: int = 0
    mimetype: str = ""
    caption: str = ""
    file_name: str = ""
    seconds: int = 0
    is_animated: bool = False
    raw: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class ContactContent:
    display_name: str
    vcard: str


@dataclass(frozen=True)
class ContactsArrayContent:
    contacts: Tuple[ContactContent, ...]


@dataclass(frozen=True)
class LocationContent:
    latitude: float
    longitude: float
    accuracy_meters: int = 0


@dataclass(frozen=True)
class LiveLocationContent:
    latitude: float = 0.0
    longitude: float = 0.0


@dataclass(frozen=True)
class PollContent:
    name: str
    selectable_count: int
    options: Tuple[str, ...]


Content = Union[
    TextContent,
    MediaContent,
    ContactContent,
    ContactsArrayContent,
    LocationContent,
    LiveLocationContent,
    PollContent,
]


@dataclass(frozen=True)
class MessageEvent:
    """A new message carrying one content payload."""

    info: MessageInfo
    content: Content
    quote: Optional[QuoteContext] = None


@dataclass(frozen=True)
class EditEvent:
    """A protocol-level edit of an earlier message."""

    info: MessageInfo
    target_message_id: str
    text: str


@dataclass(frozen=True)
class RevokeEvent:
    """A protocol-level delete ("revoke for everyone") of an earlier message."""

    info: MessageInfo
    target_message_id: str


@dataclass(frozen=True)
class ReceiptEvent:
    chat_id: str
    sender_id: str
    message_ids: Tuple[str, ...]
    timestamp: datetime
    is_read_self: bool = False


@dataclass(frozen=True)
class PictureEvent:
    jid: str
    author_id: str
    timestamp: datetime
    removed: bool = False


@dataclass(frozen=True)
class GroupNameChange:
    name: str
    set_by: str


@dataclass(frozen=True)
class GroupTopicChange:
    topic: str
    set_by: str


@dataclass(frozen=True)
class EphemeralChange:
    is_ephemeral: bool
    timer_seconds: int = 0


@dataclass(frozen=True)
class GroupDeletion:
    reason: str = ""


@dataclass(frozen=True)
class GroupInfoEvent:
    """A batch of group metadata changes reported together."""

    jid: str
    timestamp: datetime
    name: Optional[GroupNameChange] = None
    topic: Optional[GroupTopicChange] = None
    announce: Optional[bool] = None
    ephemeral: Optional[EphemeralChange] = None
    deletion: Optional[GroupDeletion] = None
    join: Tuple[str, ...] = ()
    join_reason: str = ""
    leave: Tuple[str, ...] = ()
    promote: Tuple[str, ...] = ()
    demote: Tuple[str, ...] = ()


@dataclass(frozen=True)
class PushNameEvent:
    jid: str
    old_push_name: str
    new_push_name: str
    timestamp: datetime


@dataclass(frozen=True)
class CallOfferEvent:
    call_creator: str
    call_id: str
    timestamp: datetime


Event = Union[
    MessageEvent,
    EditEvent,
    RevokeEvent,
    ReceiptEvent,
    PictureEvent,
    GroupInfoEvent,
    PushNameEvent,
    CallOfferEvent,
]


@dataclass(frozen=True)
class CorrelationRecord:
    """Persisted link between one source message and its destination artifact."""

    source_message_id: str
    source_chat_id: str
    source_sender_id: str
    dest_chat_id: int
    dest_message_id: int
    dest_thread_id: int
    read: bool = False


@dataclass(frozen=True)
class GroupInfo:
    """Group details fetched on demand from the source client."""

    name: str
    participants: Tuple[str, ...] = ()


@dataclass(frozen=True)
class UrlButton:
    text: str
    url: str


@dataclass(frozen=True)
class Placement:
    """Where a destination artifact goes: chat, thread and reply target."""

    chat_id: int
    thread_id: int
    reply_to: Optional[int] = None
