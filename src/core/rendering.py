"""Pure rendering of source events into Telegram HTML text.

Every function here is deterministic: names are resolved by the caller and
passed in, and the current time is an argument. Output uses Telegram's HTML
parse mode, so all user-provided text is escaped.
"""

from __future__ import annotations

import html
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Mapping, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from core.config import BridgeConfig
from core.errors import RenderError
from core.jids import user_part
from core.models import GroupInfoEvent, MessageInfo, PollContent, QuoteContext

# Telegram allows 4096 chars per message and 1024 per caption; leave room
# for the ellipsis and the header.
MAX_TEXT_CHARS = 4000
MAX_CAPTION_CHARS = 1020
ELLIPSIS = "..."
STALE_AFTER = timedelta(seconds=60)

ID_COMMAND = ".id"
TAG_ALL_TOKENS = ("@all", "@everyone")


@dataclass(frozen=True)
class ResolvedNames:
    """Display names the renderer needs for one message."""

    sender_name: str
    chat_name: str
    mention_names: Mapping[str, str] = field(default_factory=dict)


def escape(value: str) -> str:
    return html.escape(value)


def truncate(value: str, limit: int) -> str:
    if len(value) <= limit:
        return value
    return value[:limit] + ELLIPSIS


def bold(value: str) -> str:
    return f"<b>{escape(value)}</b>"


def format_timestamp(timestamp: datetime, config: BridgeConfig) -> str:
    try:
        zone = ZoneInfo(config.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        zone = ZoneInfo("UTC")
    return timestamp.astimezone(zone).strftime(config.time_format)


def render_header(
    info: MessageInfo,
    names: ResolvedNames,
    config: BridgeConfig,
    now: datetime,
    edited: bool = False,
    quote: Optional[QuoteContext] = None,
) -> str:
    """Build the bold header block that precedes every bridged message.

    The header always ends with a blank line so the body starts cleanly.
    """

    lines: List[str] = []
    if config.skip_chat_details:
        if info.is_incoming_broadcast:
            lines.append("<b>#Broadcast</b>")
        elif info.is_from_self:
            lines.append("<b>You</b>")
        elif info.is_group:
            lines.append(bold(names.sender_name))
    else:
        lines.append("<b>You</b>" if info.is_from_self else bold(names.sender_name))
        if info.is_incoming_broadcast:
            lines.append("<b>#Broadcast</b>")
        elif info.is_group:
            lines.append(bold(names.chat_name))
        else:
            lines.append("<b>#Private</b>")

    if edited:
        lines.append("<b>Edited</b>")

    if now - info.timestamp > STALE_AFTER:
        lines.append(bold(format_timestamp(info.timestamp, config)))

    if quote is not None and quote.is_forwarded:
        lines.append(f"<b>Forwarded ({quote.forwarding_score})</b>")

    if not lines:
        return ""
    return "\n".join(lines) + "\n\n"


def rewrite_mentions(rendered: str, mention_names: Mapping[str, str]) -> str:
    """Turn ``@<number>`` tokens into links labelled with the contact name."""

    for jid, name in mention_names.items():
        user = user_part(jid)
        if not user:
            continue
        link = f'<a href="https://wa.me/{user}">@{escape(name)}</a>'
        rendered = rendered.replace(f"@{user}", link)
    return rendered


def render_text_body(text: str, names: ResolvedNames) -> str:
    body = escape(truncate(text, MAX_TEXT_CHARS))
    return rewrite_mentions(body, names.mention_names)


def render_caption(caption: str) -> str:
    if not caption:
        return ""
    return escape(truncate(caption, MAX_CAPTION_CHARS))


def render_poll(header: str, poll: PollContent) -> str:
    text = header + f"{escape(poll.name)}(<b>{poll.selectable_count}</b>)\n"
    for number, option in enumerate(poll.options, start=1):
        if len(text) > MAX_TEXT_CHARS:
            text += "\n" + ELLIPSIS
            break
        text += f"{number}. {escape(option)}\n"
    return text


def with_note(header: str, note: str) -> str:
    """Append an explanatory note to a header for degraded deliveries."""

    return header + "\n" + note


def skip_note(noun: str, flag_name: str) -> str:
    return f"Skipping {noun} because '{flag_name}' set in config file"


def too_large_note(noun: str) -> str:
    return f"Couldn't send the {noun} as it exceeds Telegram size restrictions."


def download_failed_note(noun: str) -> str:
    return f"Couldn't download the {noun} due to some errors"


def upload_failed_note(noun: str) -> str:
    return f"Couldn't upload the {noun} due to some errors"


def render_revoke_notice(deleter_name: str) -> str:
    return f"Revoked by {bold(deleter_name)}"


def render_mention_notice(group_name: str) -> str:
    return bold(group_name)


def render_call_notice(caller_name: str, timestamp: datetime, config: BridgeConfig) -> str:
    return f"<b>{escape(caller_name)}\n{escape(format_timestamp(timestamp, config))}</b>"


def render_id_reply(chat_id: str) -> str:
    return f"The ID of the current chat is:\n```{chat_id}```"


def has_tag_all_token(text: str, exact_words: bool) -> bool:
    """Check for @all/@everyone, as whole words or anywhere in the text."""

    lowered = text.lower()
    if exact_words:
        words = lowered.split()
        return any(token in words for token in TAG_ALL_TOKENS)
    return any(token in lowered for token in TAG_ALL_TOKENS)


def render_tag_all(participants: Sequence[str]) -> Tuple[str, Tuple[str, ...]]:
    """Return the text and mention list that pings every participant."""

    mentions = tuple(participants)
    text = " ".join(f"@{user_part(jid)}" for jid in mentions)
    return text, mentions


def render_picture_notice(removed: bool, changer_name: Optional[str]) -> str:
    action = "removed" if removed else "updated"
    if changer_name is None:
        return f"The profile picture was {action}"
    return f"The profile picture was {action} by {escape(changer_name)}"


def _format_duration(seconds: int) -> str:
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}h{minutes}m{secs}s"
    if minutes:
        return f"{minutes}m{secs}s"
    return f"{secs}s"


def _member_notice(members: Sequence[str], names: Mapping[str, str], single: str, plural: str) -> str:
    if len(members) == 1:
        return single.format(name=escape(names.get(members[0], user_part(members[0]))))
    lines = [plural]
    for member in members:
        lines.append(f"- {escape(names.get(member, user_part(member)))}")
    return "\n".join(lines) + "\n"


def render_group_notices(event: GroupInfoEvent, names: Mapping[str, str]) -> List[str]:
    """Render every non-name group change as its own notice, in a fixed order.

    ``names`` maps member JIDs to display names; missing entries fall back to
    the phone number.
    """

    notices: List[str] = []
    if event.announce is not None:
        if event.announce:
            notices.append("Group settings have been changed, only admins can send messages now")
        else:
            notices.append("Group settings have been changed, everybody can send messages now")

    if event.ephemeral is not None:
        if event.ephemeral.is_ephemeral:
            notices.append(
                "Group's auto deletion timer has been turned on:\n"
                f"Timer: {_format_duration(event.ephemeral.timer_seconds)}"
            )
        else:
            notices.append("Group's auto deletion timer has been disabled")

    if event.deletion is not None:
        text = "The group has been deleted"
        if event.deletion.reason:
            text += f"\nReason: <code>{escape(event.deletion.reason)}</code>"
        notices.append(text)

    if event.join:
        text = _member_notice(
            event.join, names, "{name} joined the group\n", "The following people joined the group:"
        )
        if event.join_reason:
            text += f"\nReason: {escape(event.join_reason)}"
        notices.append(text)

    if event.leave:
        notices.append(
            _member_notice(event.leave, names, "{name} left the group\n", "The following people left the group:")
        )

    if event.demote:
        notices.append(
            _member_notice(
                event.demote, names, "{name} was demoted in the group\n", "The following people were demoted:"
            )
        )

    if event.promote:
        notices.append(
            _member_notice(
                event.promote, names, "{name} was promoted in the group\n", "The following people were promoted:"
            )
        )

    if event.topic is not None:
        changer = names.get(event.topic.set_by, user_part(event.topic.set_by))
        notices.append(
            f"The group description was changed by {bold(changer)}:\n\n<code>{escape(event.topic.topic)}</code>"
        )

    return notices


def render_group_name_notice(changer_name: str, new_name: str) -> str:
    return f"The group name was changed by {bold(changer_name)}:\n\n<code>{escape(new_name)}</code>"


_VCARD_LINE_RE = re.compile(r"^(?P<name>[^:]+):(?P<value>.*)$")


def parse_vcard_phone(vcard: str) -> str:
    """Return the preferred telephone number of a single vCard.

    Raises ``RenderError`` when the card is not a BEGIN/END:VCARD block.
    A card without any TEL field yields an empty string.
    """

    unfolded: List[str] = []
    for raw_line in vcard.replace("\r\n", "\n").split("\n"):
        if raw_line[:1] in (" ", "\t") and unfolded:
            unfolded[-1] += raw_line[1:]
        elif raw_line.strip():
            unfolded.append(raw_line.strip())

    if not unfolded or unfolded[0].upper() != "BEGIN:VCARD":
        raise RenderError("vCard does not start with BEGIN:VCARD")
    if unfolded[-1].upper() != "END:VCARD":
        raise RenderError("vCard does not end with END:VCARD")

    phones: List[Tuple[bool, str]] = []
    for line in unfolded[1:-1]:
        match = _VCARD_LINE_RE.match(line)
        if not match:
            raise RenderError(f"Malformed vCard line: {line!r}")
        name, *params = match.group("name").split(";")
        # Apple-style grouping prefixes ("item1.TEL").
        if name.rpartition(".")[2].upper() != "TEL":
            continue
        params_upper = [param.upper() for param in params]
        preferred = any(
            param == "PREF" or param.startswith("PREF=") or ("TYPE=" in param and "PREF" in param)
            for param in params_upper
        )
        phones.append((preferred, match.group("value").strip()))

    if not phones:
        return ""
    for preferred, value in phones:
        if preferred:
            return value
    return phones[0][1]
