"""Core event dispatcher.

This module is integration-agnostic. It only relies on ports for the two
chat platforms and the correlation store. For every source event it decides
what destination artifact to produce, where to place it, and records the
resulting correlation so later edits, deletes and replies can find it.

Message events follow a strict order:
1) Drop events older than process start
2) Route revokes to delete handling and edits to the original's correlation
3) Run operator commands on self-originated messages
4) Duplicate suppression against the correlation store
5) Status / ignored-chat filtering
6) Thread resolution, rendering, media transfer
7) Correlation record write (best effort)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional, Tuple

from core.config import BridgeConfig
from core.errors import (
    DestinationError,
    RenderError,
    StorageError,
    TopicUnavailableError,
    TransientNetworkError,
)
from core.identity import IdentityResolver
from core.jids import (
    CALLS_KEY,
    GROUP_SERVER,
    MENTIONS_KEY,
    STATUS_BROADCAST,
    STATUS_LABEL,
    USER_SERVER,
    profile_link,
    same_user,
    split_jid,
    to_non_ad,
    user_part,
)
from core.media import MediaTransfer, Transcoder
from core.models import (
    CallOfferEvent,
    Content,
    ContactContent,
    ContactsArrayContent,
    CorrelationRecord,
    EditEvent,
    Event,
    GroupInfoEvent,
    LiveLocationContent,
    LocationContent,
    MediaContent,
    MessageEvent,
    MessageInfo,
    PictureEvent,
    Placement,
    PollContent,
    PushNameEvent,
    QuoteContext,
    ReceiptEvent,
    RevokeEvent,
    TextContent,
    UrlButton,
)
from core.ports import CorrelationStorePort, DestinationPort, SourcePort
from core.rendering import (
    ID_COMMAND,
    ResolvedNames,
    escape,
    has_tag_all_token,
    parse_vcard_phone,
    render_call_notice,
    render_group_name_notice,
    render_group_notices,
    render_header,
    render_id_reply,
    render_mention_notice,
    render_picture_notice,
    render_poll,
    render_revoke_notice,
    render_tag_all,
    render_text_body,
    skip_note,
    with_note,
)
from core.topics import TopicResolver
from core.transcode import animated_webp_to_gif

LOGGER = logging.getLogger(__name__)

VCARD_PARSE_FAILED = "Couldn't send the vCard as failed to parse it"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class BridgeContext:
    """Everything the dispatcher needs, passed explicitly instead of globals."""

    source: SourcePort
    destination: DestinationPort
    store: CorrelationStorePort
    config: BridgeConfig
    start_time: datetime = field(default_factory=_utcnow)
    clock: Callable[[], datetime] = _utcnow


@dataclass(frozen=True)
class _Incoming:
    """A message or edit normalized for the bridging path."""

    info: MessageInfo
    content: Content
    quote: Optional[QuoteContext] = None
    edit_of: Optional[str] = None

    @property
    def correlation_id(self) -> str:
        return self.edit_of or self.info.message_id

    @property
    def text(self) -> str:
        if isinstance(self.content, TextContent):
            return self.content.text
        return ""


class EventDispatcher:
    """Classify source events and orchestrate rendering and delivery."""

    def __init__(self, context: BridgeContext, transcoder: Transcoder = animated_webp_to_gif) -> None:
        self._ctx = context
        self._config = context.config
        self._source: SourcePort = context.source
        self._destination: DestinationPort = context.destination
        self._store: CorrelationStorePort = context.store
        self._identity = IdentityResolver(context.source, context.store)
        self._topics = TopicResolver(context.store, context.destination, context.config.target_chat_id)
        self._media = MediaTransfer(context.source, context.destination, context.config, transcoder)
        self._tasks: set[asyncio.Task] = set()

    @property
    def identity(self) -> IdentityResolver:
        return self._identity

    # -- task management -------------------------------------------------

    def submit(self, event: Event) -> asyncio.Task:
        """Handle ``event`` on its own task so slow chats never block others."""

        task = asyncio.create_task(self._run(event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, event: Event) -> None:
        try:
            await self.handle(event)
        except Exception:
            LOGGER.exception("Error while handling %s", type(event).__name__)

    async def drain(self) -> None:
        """Wait for every in-flight event task."""

        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -- classification ----------------------------------------------------

    async def handle(self, event: Event) -> None:
        """Process one source event. Outcomes are side effects only."""

        if isinstance(event, (MessageEvent, EditEvent, RevokeEvent)):
            # Avoid replaying history the source client redelivers on reconnect.
            if event.info.timestamp < self._ctx.start_time:
                return

        if isinstance(event, RevokeEvent):
            await self._handle_revoke(event)
        elif isinstance(event, EditEvent):
            incoming = _Incoming(event.info, TextContent(event.text), edit_of=event.target_message_id)
            await self._handle_incoming(incoming)
        elif isinstance(event, MessageEvent):
            await self._handle_incoming(_Incoming(event.info, event.content, event.quote))
        elif isinstance(event, ReceiptEvent):
            self._handle_receipt(event)
        elif isinstance(event, PictureEvent):
            if not self._config.skip_profile_picture_updates:
                await self._handle_picture(event)
        elif isinstance(event, GroupInfoEvent):
            if not self._config.skip_group_settings_updates:
                await self._handle_group_info(event)
        elif isinstance(event, PushNameEvent):
            LOGGER.debug("Push name of %s changed to %r", event.jid, event.new_push_name)
            self._identity.update_push_name(event.jid, event.new_push_name)
        elif isinstance(event, CallOfferEvent):
            await self._handle_call_offer(event)
        else:
            LOGGER.warning("Ignoring unsupported event %s", type(event).__name__)

    async def _handle_incoming(self, incoming: _Incoming) -> None:
        if incoming.info.is_from_self:
            await self._handle_own_message(incoming)
            if not self._config.send_my_messages_from_other_devices:
                return
        await self._bridge_message(incoming)

    # -- self-originated commands ----------------------------------------

    async def _handle_own_message(self, incoming: _Incoming) -> None:
        info = incoming.info
        text = incoming.text

        if text == ID_COMMAND:
            try:
                await self._source.send_message(
                    info.chat_id,
                    render_id_reply(info.chat_id),
                    quoted_id=incoming.correlation_id,
                    quoted_sender=info.sender_id,
                )
            except TransientNetworkError as exc:
                LOGGER.error("Failed to reply to %s command in %s: %s", ID_COMMAND, info.chat_id, exc)

        if incoming.edit_of is None and info.is_group and has_tag_all_token(text, exact_words=True):
            await self._tag_all(info, incoming.correlation_id)

    async def _tag_all(self, info: MessageInfo, quoted_id: str) -> None:
        participants = await self._identity.group_participants(info.chat_id)
        if not participants:
            LOGGER.warning("No participants to tag in %s", info.chat_id)
            return
        text, mentions = render_tag_all(participants)
        try:
            await self._source.send_message(
                info.chat_id,
                text,
                quoted_id=quoted_id,
                quoted_sender=info.sender_id,
                mentions=mentions,
            )
        except TransientNetworkError as exc:
            LOGGER.error("Failed to tag everyone in %s: %s", info.chat_id, exc)

    # -- bridging ----------------------------------------------------------

    def _lookup_record(self, message_id: Optional[str], chat_id: str) -> Optional[CorrelationRecord]:
        if not message_id:
            return None
        try:
            record = self._store.get_record(message_id, chat_id)
        except StorageError:
            LOGGER.warning("Failed to read correlation for %s in %s", message_id, chat_id, exc_info=True)
            return None
        if record is None or record.dest_chat_id != self._config.target_chat_id:
            return None
        return record

    def _is_filtered(self, info: MessageInfo) -> bool:
        if info.is_from_self:
            return False
        if info.chat_id == STATUS_BROADCAST:
            return self._config.skip_status or user_part(info.sender_id) in self._config.status_ignored_chats
        return user_part(info.chat_id) in self._config.ignore_chats

    async def _resolve_names(self, incoming: _Incoming) -> ResolvedNames:
        info = incoming.info
        sender_name = await self._identity.contact_name(info.sender_id)
        chat_name = await self._identity.group_name(info.chat_id) if info.is_group else sender_name
        mention_names: dict[str, str] = {}
        if incoming.quote is not None and isinstance(incoming.content, TextContent):
            for jid in incoming.quote.mentioned_ids:
                mention_names[jid] = await self._identity.contact_name(jid)
        return ResolvedNames(sender_name=sender_name, chat_name=chat_name, mention_names=mention_names)

    async def _bridge_message(self, incoming: _Incoming) -> None:
        info = incoming.info
        message_id = incoming.correlation_id

        edit_record: Optional[CorrelationRecord] = None
        if incoming.edit_of is not None:
            edit_record = self._lookup_record(incoming.edit_of, info.chat_id)
        elif self._lookup_record(message_id, info.chat_id) is not None:
            LOGGER.debug("Skipping duplicate event %s in %s", message_id, info.chat_id)
            return

        if self._is_filtered(info):
            LOGGER.debug("Skipping event %s from filtered chat %s", message_id, info.chat_id)
            return

        if isinstance(incoming.content, TextContent) and not incoming.content.text:
            return

        names = await self._resolve_names(incoming)
        button = UrlButton(names.sender_name, profile_link(to_non_ad(info.sender_id)))

        if (
            incoming.edit_of is None
            and not info.is_from_self
            and info.is_group
            and user_part(info.chat_id) in self._config.tag_all_allowed_groups
            and has_tag_all_token(incoming.text, exact_words=False)
        ):
            LOGGER.debug("Tag-all requested in allowed group %s", info.chat_id)
            await self._tag_all(info, message_id)

        header = render_header(
            info,
            names,
            self._config,
            self._ctx.clock(),
            edited=incoming.edit_of is not None,
            quote=incoming.quote,
        )

        placement: Optional[Placement] = None
        if edit_record is not None:
            placement = Placement(
                edit_record.dest_chat_id, edit_record.dest_thread_id, reply_to=edit_record.dest_message_id
            )
        elif incoming.quote is not None:
            await self._announce_self_mention(incoming, names, button)
            quoted = self._lookup_record(incoming.quote.stanza_id, info.chat_id)
            if quoted is not None:
                placement = Placement(quoted.dest_chat_id, quoted.dest_thread_id, reply_to=quoted.dest_message_id)

        if placement is None:
            key, label = await self._thread_key(info, names)
            try:
                thread_id = await self._topics.resolve(key, label)
            except TopicUnavailableError as exc:
                await self._notify_operator(f"Failed to create/find thread id for <b>{escape(key)}</b>", exc)
                return
            placement = Placement(self._config.target_chat_id, thread_id)

        dest_message_id = await self._deliver(incoming, names, header, placement, button)
        if dest_message_id and (incoming.edit_of is None or edit_record is None):
            self._remember(message_id, info, placement, dest_message_id)

    async def _thread_key(self, info: MessageInfo, names: ResolvedNames) -> Tuple[str, str]:
        if info.chat_id == STATUS_BROADCAST:
            return STATUS_BROADCAST, STATUS_LABEL
        if info.is_incoming_broadcast:
            return to_non_ad(info.sender_id), names.sender_name
        if info.is_group:
            return to_non_ad(info.chat_id), names.chat_name
        chat_key = to_non_ad(info.chat_id)
        return chat_key, await self._identity.contact_name(chat_key)

    async def _announce_self_mention(self, incoming: _Incoming, names: ResolvedNames, button: UrlButton) -> None:
        if not incoming.info.is_group or incoming.quote is None:
            return
        own_id = self._source.own_user_id
        if not any(same_user(jid, own_id) for jid in incoming.quote.mentioned_ids):
            return
        try:
            thread_id = await self._topics.resolve(MENTIONS_KEY, MENTIONS_KEY)
        except TopicUnavailableError as exc:
            await self._notify_operator("Failed to create/find thread id for 'mentions'", exc)
            return
        try:
            await self._destination.send_text(
                self._config.target_chat_id,
                render_mention_notice(names.chat_name),
                thread_id=thread_id,
                button=button,
            )
        except DestinationError as exc:
            LOGGER.error("Failed to announce mention in %s: %s", incoming.info.chat_id, exc)

    async def _deliver(
        self,
        incoming: _Incoming,
        names: ResolvedNames,
        header: str,
        placement: Placement,
        button: UrlButton,
    ) -> Optional[int]:
        """Send the rendered content and return the destination message id."""

        content = incoming.content
        media_skip = self._config.media

        if isinstance(content, MediaContent):
            outcome = await self._media.transfer(content, header, placement, button)
            return outcome.message_id

        if isinstance(content, ContactContent):
            if media_skip.skip_contacts:
                return await self._send_text(placement, with_note(header, skip_note("contact", "skip_contacts")))
            return await self._send_contact(content, header, placement, button)

        if isinstance(content, ContactsArrayContent):
            if media_skip.skip_contacts:
                return await self._send_text(
                    placement, with_note(header, skip_note("contact array", "skip_contacts"))
                )
            first_id: Optional[int] = None
            for contact in content.contacts:
                sent_id = await self._send_contact(contact, "", placement, button)
                if first_id is None and sent_id:
                    first_id = sent_id
            return first_id

        if isinstance(content, LocationContent):
            if media_skip.skip_locations:
                return await self._send_text(placement, with_note(header, skip_note("location", "skip_locations")))
            try:
                return await self._destination.send_location(
                    placement.chat_id,
                    content.latitude,
                    content.longitude,
                    accuracy=content.accuracy_meters,
                    thread_id=placement.thread_id,
                    reply_to=placement.reply_to,
                )
            except DestinationError as exc:
                LOGGER.error("Failed to send location: %s", exc)
                return await self._send_text(placement, with_note(header, "Couldn't send the location"))

        if isinstance(content, LiveLocationContent):
            text = with_note(header, "Shared their live location with you")
            if media_skip.skip_locations:
                text = with_note(text, skip_note("live location", "skip_locations"))
            return await self._send_text(placement, text)

        if isinstance(content, PollContent):
            return await self._send_text(placement, render_poll(header, content))

        if isinstance(content, TextContent):
            if not content.text:
                return None
            return await self._send_text(placement, header + render_text_body(content.text, names))

        LOGGER.warning("Ignoring unsupported content %s", type(content).__name__)
        return None

    async def _send_contact(
        self,
        contact: ContactContent,
        header: str,
        placement: Placement,
        button: UrlButton,
    ) -> Optional[int]:
        try:
            phone = parse_vcard_phone(contact.vcard)
        except RenderError as exc:
            LOGGER.warning("Failed to parse vCard for %r: %s", contact.display_name, exc)
            return await self._send_text(placement, with_note(header, VCARD_PARSE_FAILED).lstrip("\n"))
        try:
            return await self._destination.send_contact(
                placement.chat_id,
                phone,
                contact.display_name,
                contact.vcard,
                thread_id=placement.thread_id,
                reply_to=placement.reply_to,
                button=button,
            )
        except DestinationError as exc:
            LOGGER.error("Failed to send contact %r: %s", contact.display_name, exc)
            return await self._send_text(placement, with_note(header, "Couldn't send the contact").lstrip("\n"))

    async def _send_text(self, placement: Placement, text: str) -> Optional[int]:
        try:
            return await self._destination.send_text(
                placement.chat_id,
                text,
                thread_id=placement.thread_id,
                reply_to=placement.reply_to,
            )
        except DestinationError as exc:
            LOGGER.error("Failed to send text to thread %s: %s", placement.thread_id, exc)
            return None

    def _remember(self, message_id: str, info: MessageInfo, placement: Placement, dest_message_id: int) -> None:
        try:
            self._store.put_record(
                message_id,
                info.chat_id,
                info.sender_id,
                placement.chat_id,
                dest_message_id,
                placement.thread_id,
            )
        except StorageError:
            LOGGER.warning("Failed to save correlation for %s in %s", message_id, info.chat_id, exc_info=True)

    async def _notify_operator(self, message: str, error: Exception) -> None:
        """Put a visible error in the target chat's general thread."""

        LOGGER.error("%s: %s", message, error)
        text = f"{message}\n\n<code>{escape(str(error))}</code>"
        try:
            await self._destination.send_text(self._config.target_chat_id, text)
        except DestinationError as exc:
            LOGGER.error("Failed to deliver operator notice: %s", exc)

    # -- delete / receipts --------------------------------------------------

    async def _handle_revoke(self, event: RevokeEvent) -> None:
        if not self._config.send_revoked_message_updates:
            return
        info = event.info
        record = self._lookup_record(event.target_message_id, info.chat_id)
        if record is None or not record.dest_message_id:
            LOGGER.debug("Revoke of untracked message %s in %s", event.target_message_id, info.chat_id)
            return

        deleter = "you" if info.is_from_self else await self._identity.contact_name(info.sender_id)
        try:
            await self._destination.send_text(
                record.dest_chat_id,
                render_revoke_notice(deleter),
                thread_id=record.dest_thread_id,
                reply_to=record.dest_message_id,
            )
        except DestinationError as exc:
            LOGGER.error("Failed to send revoke notice for %s: %s", event.target_message_id, exc)

    def _handle_receipt(self, event: ReceiptEvent) -> None:
        if not event.is_read_self:
            return
        for message_id in event.message_ids:
            try:
                self._store.mark_read(event.chat_id, message_id)
            except StorageError:
                LOGGER.warning("Failed to mark %s as read", message_id, exc_info=True)

    # -- auxiliary notices ------------------------------------------------

    def _existing_thread(self, jid: str, event_name: str) -> Optional[int]:
        try:
            thread_id = self._topics.lookup(to_non_ad(jid))
        except StorageError:
            LOGGER.warning("Failed to find thread for %s (handling %s event)", jid, event_name, exc_info=True)
            return None
        if thread_id is None:
            LOGGER.warning("No thread found for %s (handling %s event)", jid, event_name)
        return thread_id

    async def _send_notices(self, thread_id: int, notices: Iterable[str]) -> None:
        for notice in notices:
            try:
                await self._destination.send_text(self._config.target_chat_id, notice, thread_id=thread_id)
            except DestinationError as exc:
                LOGGER.error("Failed to send message: %s", exc)

    async def _handle_picture(self, event: PictureEvent) -> None:
        thread_id = self._existing_thread(event.jid, "Picture")
        if thread_id is None:
            return

        server = split_jid(event.jid)[1]
        if server == GROUP_SERVER:
            changer: Optional[str] = None
            if event.author_id:
                changer = await self._identity.contact_name(event.author_id)
        elif server == USER_SERVER:
            changer = None
        else:
            LOGGER.warning("Received Picture event for unknown JID type %s", event.jid)
            return

        notice = render_picture_notice(event.removed, changer)
        if event.removed:
            await self._send_notices(thread_id, [notice])
            return

        try:
            url = await self._source.get_profile_picture_url(to_non_ad(event.jid))
        except TransientNetworkError as exc:
            LOGGER.error("Failed to get profile picture info for %s: %s", event.jid, exc)
            return
        if not url:
            LOGGER.error("Failed to get profile picture info for %s, received none", event.jid)
            return
        try:
            picture = await self._source.download_url(url)
        except TransientNetworkError as exc:
            LOGGER.error("Failed to download profile picture for %s: %s", event.jid, exc)
            return
        try:
            await self._destination.send_photo(
                self._config.target_chat_id, picture, caption=notice, thread_id=thread_id
            )
        except DestinationError as exc:
            LOGGER.error("Failed to send profile picture for %s: %s", event.jid, exc)

    async def _handle_group_info(self, event: GroupInfoEvent) -> None:
        thread_id = self._existing_thread(event.jid, "GroupInfo")
        if thread_id is None:
            return

        members = set(event.join + event.leave + event.promote + event.demote)
        if event.topic is not None:
            members.add(event.topic.set_by)
        names = {jid: await self._identity.contact_name(jid) for jid in members if jid}
        await self._send_notices(thread_id, render_group_notices(event, names))

        if event.name is None:
            return
        try:
            await self._destination.rename_thread(self._config.target_chat_id, thread_id, event.name.name)
        except DestinationError as exc:
            LOGGER.error("Failed to change thread name for %s to %r: %s", event.jid, event.name.name, exc)
            return
        self._identity.update_group_name(event.jid, event.name.name)
        changer = await self._identity.contact_name(event.name.set_by)
        await self._send_notices(thread_id, [render_group_name_notice(changer, event.name.name)])

    async def _handle_call_offer(self, event: CallOfferEvent) -> None:
        try:
            thread_id = await self._topics.resolve(CALLS_KEY, CALLS_KEY)
        except TopicUnavailableError as exc:
            await self._notify_operator("Failed to create/retrieve corresponding thread id for calls", exc)
            return
        caller = await self._identity.contact_name(event.call_creator)
        await self._send_notices(thread_id, [render_call_notice(caller, event.timestamp, self._config)])
