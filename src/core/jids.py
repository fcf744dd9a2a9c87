"""Helpers for working with WhatsApp JIDs and fixed thread keys."""

from __future__ import annotations

from typing import Tuple

USER_SERVER = "s.whatsapp.net"
GROUP_SERVER = "g.us"
BROADCAST_SERVER = "broadcast"
STATUS_BROADCAST = "status@broadcast"

# Fixed thread keys for cross-cutting categories. They are resolved like any
# conversation key but never collide with a real JID (no "@").
MENTIONS_KEY = "#Mentions"
CALLS_KEY = "#Calls"
STATUS_LABEL = "#Stories"


def split_jid(jid: str) -> Tuple[str, str]:
    """Split a JID into (user, server), dropping agent and device suffixes."""

    user, _, server = jid.partition("@")
    if not server:
        return jid, ""
    user = user.split(":", 1)[0]
    user = user.split(".", 1)[0]
    return user, server


def user_part(jid: str) -> str:
    """Return the bare user (phone number or group id) of a JID."""

    return split_jid(jid)[0]


def to_non_ad(jid: str) -> str:
    """Strip the multi-device suffix so every device maps to one key."""

    user, server = split_jid(jid)
    if not server:
        return jid
    return f"{user}@{server}"


def is_group(jid: str) -> bool:
    return split_jid(jid)[1] == GROUP_SERVER


def is_user(jid: str) -> bool:
    return split_jid(jid)[1] == USER_SERVER


def same_user(left: str, right: str) -> bool:
    """Compare two JIDs by their user part, ignoring device and server."""

    return bool(left) and user_part(left) == user_part(right)


def profile_link(jid: str) -> str:
    return f"https://wa.me/{user_part(jid)}"
