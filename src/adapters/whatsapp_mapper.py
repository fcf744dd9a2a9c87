"""WhatsApp-to-core event mapping adapter.

The source sidecar emits whatsmeow events as JSON objects of the form
``{"type": "<EventName>", "event": {...}}`` where ``event`` uses whatsmeow's
Go field names and the message payload uses protobuf JSON names. This keeps
those wire details out of the core dispatcher.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Tuple

from core.jids import BROADCAST_SERVER, split_jid
from core.models import (
    CallOfferEvent,
    Content,
    ContactContent,
    ContactsArrayContent,
    EditEvent,
    EphemeralChange,
    Event,
    GroupDeletion,
    GroupInfoEvent,
    GroupNameChange,
    GroupTopicChange,
    LiveLocationContent,
    LocationContent,
    MediaContent,
    MediaKind,
    MessageEvent,
    MessageInfo,
    PictureEvent,
    PollContent,
    PushNameEvent,
    QuoteContext,
    ReceiptEvent,
    RevokeEvent,
    TextContent,
)

REVOKE = "REVOKE"
MESSAGE_EDIT = "MESSAGE_EDIT"
READ_SELF = "read-self"

# Message kinds that may carry a contextInfo block, in lookup order.
_CONTEXT_CARRIERS = (
    "extendedTextMessage",
    "imageMessage",
    "videoMessage",
    "audioMessage",
    "documentMessage",
    "stickerMessage",
    "contactMessage",
    "contactsArrayMessage",
    "locationMessage",
    "liveLocationMessage",
    "pollCreationMessage",
    "pollCreationMessageV2",
    "pollCreationMessageV3",
)

_FRACTION_RE = re.compile(r"\.(\d{6})\d+")


def parse_timestamp(value: Any) -> datetime:
    """Parse RFC 3339 strings (nanosecond precision allowed) or epoch seconds."""

    if value is None or value == "":
        return datetime.now(timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    text = _FRACTION_RE.sub(r".\1", text)
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _int(value: Any) -> int:
    # protobuf JSON encodes 64-bit integers as strings.
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _jid_list(values: Any) -> Tuple[str, ...]:
    return tuple(str(value) for value in (values or []) if value)


def is_incoming_broadcast(chat: str, from_me: bool) -> bool:
    user, server = split_jid(chat)
    return not from_me and server == BROADCAST_SERVER and user != "status"


def _message_info(raw_info: Mapping[str, Any]) -> MessageInfo:
    source = raw_info.get("MessageSource") or raw_info
    chat = str(source.get("Chat", ""))
    from_me = bool(source.get("IsFromMe", False))
    return MessageInfo(
        chat_id=chat,
        sender_id=str(source.get("Sender", "")),
        message_id=str(raw_info.get("ID", "")),
        timestamp=parse_timestamp(raw_info.get("Timestamp")),
        is_from_self=from_me,
        is_group=bool(source.get("IsGroup", False)),
        is_incoming_broadcast=is_incoming_broadcast(chat, from_me),
        push_name=str(raw_info.get("PushName", "")),
    )


def _quote_context(message: Mapping[str, Any]) -> Optional[QuoteContext]:
    for key in _CONTEXT_CARRIERS:
        payload = message.get(key)
        if not payload:
            continue
        context = payload.get("contextInfo")
        if not context:
            return None
        return QuoteContext(
            stanza_id=context.get("stanzaId") or None,
            participant=context.get("participant") or None,
            is_forwarded=bool(context.get("isForwarded", False)),
            forwarding_score=_int(context.get("forwardingScore")),
            mentioned_ids=_jid_list(context.get("mentionedJid")),
        )
    return None


def _media(kind: MediaKind, payload: Mapping[str, Any]) -> MediaContent:
    return MediaContent(
        kind=kind,
        url=str(payload.get("url", "")),
        file_length=_int(payload.get("fileLength")),
        mimetype=str(payload.get("mimetype", "")),
        caption=str(payload.get("caption", "")),
        file_name=str(payload.get("fileName", "")),
        seconds=_int(payload.get("seconds")),
        is_animated=bool(payload.get("isAnimated") or payload.get("isAvatar")),
        raw=dict(payload),
    )


def _contact(payload: Mapping[str, Any]) -> ContactContent:
    return ContactContent(display_name=str(payload.get("displayName", "")), vcard=str(payload.get("vcard", "")))


def _text(message: Mapping[str, Any]) -> str:
    extended = (message.get("extendedTextMessage") or {}).get("text")
    if extended:
        return str(extended)
    return str(message.get("conversation") or "")


def extract_content(message: Mapping[str, Any]) -> Content:
    """Pick the single content payload of a protobuf message."""

    if message.get("imageMessage"):
        return _media(MediaKind.IMAGE, message["imageMessage"])

    video = message.get("videoMessage")
    if video:
        kind = MediaKind.GIF if video.get("gifPlayback") else MediaKind.VIDEO
        return _media(kind, video)

    audio = message.get("audioMessage")
    if audio:
        kind = MediaKind.VOICE_NOTE if audio.get("ptt") else MediaKind.AUDIO
        return _media(kind, audio)

    if message.get("documentMessage"):
        return _media(MediaKind.DOCUMENT, message["documentMessage"])

    if message.get("stickerMessage"):
        return _media(MediaKind.STICKER, message["stickerMessage"])

    if message.get("contactMessage"):
        return _contact(message["contactMessage"])

    contacts = message.get("contactsArrayMessage")
    if contacts:
        return ContactsArrayContent(contacts=tuple(_contact(item) for item in contacts.get("contacts") or []))

    location = message.get("locationMessage")
    if location:
        return LocationContent(
            latitude=float(location.get("degreesLatitude", 0.0)),
            longitude=float(location.get("degreesLongitude", 0.0)),
            accuracy_meters=_int(location.get("accuracyInMeters")),
        )

    live = message.get("liveLocationMessage")
    if live:
        return LiveLocationContent(
            latitude=float(live.get("degreesLatitude", 0.0)),
            longitude=float(live.get("degreesLongitude", 0.0)),
        )

    for key in ("pollCreationMessage", "pollCreationMessageV2", "pollCreationMessageV3"):
        poll = message.get(key)
        if poll:
            return PollContent(
                name=str(poll.get("name", "")),
                selectable_count=_int(poll.get("selectableOptionsCount")),
                options=tuple(str(option.get("optionName", "")) for option in poll.get("options") or []),
            )

    return TextContent(_text(message))


def map_message(raw: Mapping[str, Any]) -> Event:
    info = _message_info(raw.get("Info") or {})
    message = raw.get("Message") or {}

    protocol = message.get("protocolMessage")
    if protocol:
        target_id = str((protocol.get("key") or {}).get("id", ""))
        if protocol.get("type") == REVOKE:
            return RevokeEvent(info=info, target_message_id=target_id)
        if protocol.get("type") == MESSAGE_EDIT:
            return EditEvent(
                info=info,
                target_message_id=target_id,
                text=_text(protocol.get("editedMessage") or {}),
            )

    return MessageEvent(info=info, content=extract_content(message), quote=_quote_context(message))


def map_receipt(raw: Mapping[str, Any]) -> ReceiptEvent:
    source = raw.get("MessageSource") or raw
    return ReceiptEvent(
        chat_id=str(source.get("Chat", "")),
        sender_id=str(source.get("Sender", "")),
        message_ids=_jid_list(raw.get("MessageIDs")),
        timestamp=parse_timestamp(raw.get("Timestamp")),
        is_read_self=raw.get("Type") == READ_SELF,
    )


def map_picture(raw: Mapping[str, Any]) -> PictureEvent:
    return PictureEvent(
        jid=str(raw.get("JID", "")),
        author_id=str(raw.get("Author", "")),
        timestamp=parse_timestamp(raw.get("Timestamp")),
        removed=bool(raw.get("Remove", False)),
    )


def map_group_info(raw: Mapping[str, Any]) -> GroupInfoEvent:
    name = raw.get("Name")
    topic = raw.get("Topic")
    announce = raw.get("Announce")
    ephemeral = raw.get("Ephemeral")
    delete = raw.get("Delete")
    return GroupInfoEvent(
        jid=str(raw.get("JID", "")),
        timestamp=parse_timestamp(raw.get("Timestamp")),
        name=GroupNameChange(str(name.get("Name", "")), str(name.get("NameSetBy", ""))) if name else None,
        topic=GroupTopicChange(str(topic.get("Topic", "")), str(topic.get("TopicSetBy", ""))) if topic else None,
        announce=bool(announce.get("IsAnnounce")) if announce else None,
        ephemeral=(
            EphemeralChange(bool(ephemeral.get("IsEphemeral")), _int(ephemeral.get("DisappearingTimer")))
            if ephemeral
            else None
        ),
        deletion=GroupDeletion(str(delete.get("DeleteReason", ""))) if delete else None,
        join=_jid_list(raw.get("Join")),
        join_reason=str(raw.get("JoinReason") or ""),
        leave=_jid_list(raw.get("Leave")),
        promote=_jid_list(raw.get("Promote")),
        demote=_jid_list(raw.get("Demote")),
    )


def map_push_name(raw: Mapping[str, Any]) -> PushNameEvent:
    message_info = raw.get("Message") or {}
    return PushNameEvent(
        jid=str(raw.get("JID", "")),
        old_push_name=str(raw.get("OldPushName", "")),
        new_push_name=str(raw.get("NewPushName", "")),
        timestamp=parse_timestamp(message_info.get("Timestamp")),
    )


def map_call_offer(raw: Mapping[str, Any]) -> CallOfferEvent:
    meta = raw.get("BasicCallMeta") or raw
    return CallOfferEvent(
        call_creator=str(meta.get("CallCreator") or meta.get("From", "")),
        call_id=str(meta.get("CallID", "")),
        timestamp=parse_timestamp(meta.get("Timestamp")),
    )


_MAPPERS = {
    "Message": map_message,
    "Receipt": map_receipt,
    "Picture": map_picture,
    "GroupInfo": map_group_info,
    "PushName": map_push_name,
    "CallOffer": map_call_offer,
}


def map_event(envelope: Mapping[str, Any]) -> Optional[Event]:
    """Build a core event from one sidecar envelope; None for unsupported types."""

    mapper = _MAPPERS.get(str(envelope.get("type", "")))
    if mapper is None:
        return None
    return mapper(envelope.get("event") or {})
