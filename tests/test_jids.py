from __future__ import annotations

from core.jids import (
    is_group,
    is_user,
    profile_link,
    same_user,
    split_jid,
    to_non_ad,
    user_part,
)


def test_split_jid_drops_device_and_agent() -> None:
    assert split_jid("12345@s.whatsapp.net") == ("12345", "s.whatsapp.net")
    assert split_jid("12345:7@s.whatsapp.net") == ("12345", "s.whatsapp.net")
    assert split_jid("12345.0:3@s.whatsapp.net") == ("12345", "s.whatsapp.net")


def test_split_jid_without_server() -> None:
    assert split_jid("#Calls") == ("#Calls", "")
    assert to_non_ad("#Calls") == "#Calls"


def test_to_non_ad_maps_every_device_to_one_key() -> None:
    assert to_non_ad("12345:7@s.whatsapp.net") == "12345@s.whatsapp.net"
    assert to_non_ad("12345@s.whatsapp.net") == "12345@s.whatsapp.net"
    assert to_non_ad("1203630@g.us") == "1203630@g.us"


def test_server_predicates() -> None:
    assert is_group("1203630@g.us")
    assert not is_group("12345@s.whatsapp.net")
    assert is_user("12345:2@s.whatsapp.net")
    assert not is_user("status@broadcast")


def test_same_user_ignores_device_and_empty_ids() -> None:
    assert same_user("12345:9@s.whatsapp.net", "12345@s.whatsapp.net")
    assert not same_user("12345@s.whatsapp.net", "54321@s.whatsapp.net")
    assert not same_user("", "")


def test_profile_link_uses_phone_number() -> None:
    assert user_part("12345:1@s.whatsapp.net") == "12345"
    assert profile_link("12345:1@s.whatsapp.net") == "https://wa.me/12345"
