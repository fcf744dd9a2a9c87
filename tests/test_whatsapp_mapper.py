from __future__ import annotations

from datetime import datetime, timezone

from adapters.whatsapp_mapper import map_event, parse_timestamp
from core.models import (
    CallOfferEvent,
    ContactsArrayContent,
    EditEvent,
    GroupInfoEvent,
    LocationContent,
    MediaContent,
    MediaKind,
    MessageEvent,
    PictureEvent,
    PollContent,
    PushNameEvent,
    ReceiptEvent,
    RevokeEvent,
    TextContent,
)


def _message(message: dict, **info) -> dict:
    raw_info = {
        "Chat": "111@s.whatsapp.net",
        "Sender": "111:3@s.whatsapp.net",
        "IsFromMe": False,
        "IsGroup": False,
        "ID": "3EB0ABC",
        "PushName": "Alice",
        "Timestamp": "2024-01-01T12:00:00.123456789Z",
    }
    raw_info.update(info)
    return {"type": "Message", "event": {"Info": raw_info, "Message": message}}


def test_plain_text_message() -> None:
    event = map_event(_message({"conversation": "hello"}))

    assert isinstance(event, MessageEvent)
    assert event.content == TextContent("hello")
    assert event.quote is None
    assert event.info.message_id == "3EB0ABC"
    assert event.info.sender_id == "111:3@s.whatsapp.net"
    assert event.info.push_name == "Alice"
    assert event.info.timestamp == datetime(2024, 1, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)


def test_extended_text_carries_quote_and_mentions() -> None:
    message = {
        "extendedTextMessage": {
            "text": "hi @222",
            "contextInfo": {
                "stanzaId": "3EB0PREV",
                "participant": "222@s.whatsapp.net",
                "mentionedJid": ["222@s.whatsapp.net"],
                "isForwarded": True,
                "forwardingScore": 2,
            },
        }
    }

    event = map_event(_message(message, Chat="1203630@g.us", IsGroup=True))

    assert event.content == TextContent("hi @222")
    assert event.info.is_group
    assert event.quote.stanza_id == "3EB0PREV"
    assert event.quote.mentioned_ids == ("222@s.whatsapp.net",)
    assert event.quote.is_forwarded and event.quote.forwarding_score == 2


def test_media_kinds() -> None:
    image = map_event(_message({"imageMessage": {"url": "https://mmg/x", "fileLength": "2048", "caption": "c"}}))
    gif = map_event(_message({"videoMessage": {"url": "u", "gifPlayback": True}}))
    voice = map_event(_message({"audioMessage": {"url": "u", "ptt": True, "seconds": 7}}))
    sticker = map_event(_message({"stickerMessage": {"url": "u", "isAnimated": True}}))
    document = map_event(_message({"documentMessage": {"url": "u", "fileName": "a.pdf"}}))

    assert isinstance(image.content, MediaContent)
    assert image.content.kind is MediaKind.IMAGE
    assert image.content.file_length == 2048
    assert image.content.caption == "c"
    assert gif.content.kind is MediaKind.GIF
    assert voice.content.kind is MediaKind.VOICE_NOTE and voice.content.seconds == 7
    assert sticker.content.kind is MediaKind.STICKER and sticker.content.is_animated
    assert document.content.file_name == "a.pdf"
    assert document.content.raw == {"url": "u", "fileName": "a.pdf"}


def test_structured_contents() -> None:
    location = map_event(
        _message({"locationMessage": {"degreesLatitude": 52.5, "degreesLongitude": 13.4, "accuracyInMeters": 20}})
    )
    contacts = map_event(
        _message({"contactsArrayMessage": {"contacts": [{"displayName": "A", "vcard": "v1"}, {"displayName": "B"}]}})
    )
    poll = map_event(
        _message(
            {
                "pollCreationMessageV3": {
                    "name": "Lunch?",
                    "selectableOptionsCount": 1,
                    "options": [{"optionName": "Pizza"}, {"optionName": "Sushi"}],
                }
            }
        )
    )

    assert location.content == LocationContent(52.5, 13.4, 20)
    assert isinstance(contacts.content, ContactsArrayContent)
    assert [contact.display_name for contact in contacts.content.contacts] == ["A", "B"]
    assert poll.content == PollContent("Lunch?", 1, ("Pizza", "Sushi"))


def test_protocol_messages_become_revoke_and_edit() -> None:
    revoke = map_event(_message({"protocolMessage": {"type": "REVOKE", "key": {"id": "3EB0OLD"}}}))
    edit = map_event(
        _message(
            {
                "protocolMessage": {
                    "type": "MESSAGE_EDIT",
                    "key": {"id": "3EB0OLD"},
                    "editedMessage": {"conversation": "fixed typo"},
                }
            }
        )
    )

    assert isinstance(revoke, RevokeEvent)
    assert revoke.target_message_id == "3EB0OLD"
    assert isinstance(edit, EditEvent)
    assert edit.target_message_id == "3EB0OLD"
    assert edit.text == "fixed typo"


def test_broadcast_flag_only_for_incoming_lists() -> None:
    incoming = map_event(_message({"conversation": "x"}, Chat="1700000@broadcast"))
    status = map_event(_message({"conversation": "x"}, Chat="status@broadcast"))
    own = map_event(_message({"conversation": "x"}, Chat="1700000@broadcast", IsFromMe=True))

    assert incoming.info.is_incoming_broadcast
    assert not status.info.is_incoming_broadcast
    assert not own.info.is_incoming_broadcast


def test_receipt_picture_push_name_and_call() -> None:
    receipt = map_event(
        {
            "type": "Receipt",
            "event": {
                "Chat": "111@s.whatsapp.net",
                "Sender": "999@s.whatsapp.net",
                "MessageIDs": ["a", "b"],
                "Timestamp": "2024-01-01T12:00:00Z",
                "Type": "read-self",
            },
        }
    )
    picture = map_event(
        {"type": "Picture", "event": {"JID": "1203630@g.us", "Author": "111@s.whatsapp.net", "Remove": True}}
    )
    push = map_event(
        {"type": "PushName", "event": {"JID": "111@s.whatsapp.net", "OldPushName": "A", "NewPushName": "Alice"}}
    )
    call = map_event(
        {
            "type": "CallOffer",
            "event": {"From": "111@s.whatsapp.net", "CallCreator": "111:2@s.whatsapp.net", "CallID": "C1"},
        }
    )

    assert isinstance(receipt, ReceiptEvent)
    assert receipt.is_read_self and receipt.message_ids == ("a", "b")
    assert isinstance(picture, PictureEvent) and picture.removed
    assert isinstance(push, PushNameEvent) and push.new_push_name == "Alice"
    assert isinstance(call, CallOfferEvent) and call.call_creator == "111:2@s.whatsapp.net"


def test_group_info_changes() -> None:
    event = map_event(
        {
            "type": "GroupInfo",
            "event": {
                "JID": "1203630@g.us",
                "Timestamp": "2024-01-01T12:00:00+05:30",
                "Name": {"Name": "Kin", "NameSetBy": "111@s.whatsapp.net"},
                "Ephemeral": {"IsEphemeral": True, "DisappearingTimer": 604800},
                "Join": ["222@s.whatsapp.net"],
                "JoinReason": "invite",
            },
        }
    )

    assert isinstance(event, GroupInfoEvent)
    assert event.name.name == "Kin" and event.name.set_by == "111@s.whatsapp.net"
    assert event.ephemeral.timer_seconds == 604800
    assert event.join == ("222@s.whatsapp.net",)
    assert event.announce is None and event.topic is None
    assert event.timestamp.utcoffset().total_seconds() == 5.5 * 3600


def test_unknown_event_types_are_ignored() -> None:
    assert map_event({"type": "Presence", "event": {}}) is None
    assert map_event({}) is None


def test_parse_timestamp_accepts_epoch_seconds() -> None:
    assert parse_timestamp(0) == datetime(1970, 1, 1, tzinfo=timezone.utc)
