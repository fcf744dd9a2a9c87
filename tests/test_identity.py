from __future__ import annotations

import asyncio
from typing import Optional

from core.errors import StorageError, TransientNetworkError
from core.identity import IdentityResolver
from core.models import GroupInfo


class FakeSource:
    def __init__(self) -> None:
        self.contacts: dict[str, str] = {}
        self.groups: dict[str, GroupInfo] = {}
        self.contact_calls: list[str] = []
        self.offline = False

    async def fetch_contact_name(self, user_id: str) -> Optional[str]:
        self.contact_calls.append(user_id)
        if self.offline:
            raise TransientNetworkError("sidecar unavailable")
        return self.contacts.get(user_id)

    async def fetch_group_info(self, group_id: str) -> Optional[GroupInfo]:
        if self.offline:
            raise TransientNetworkError("sidecar unavailable")
        return self.groups.get(group_id)


class FakeStore:
    def __init__(self) -> None:
        self.names: dict[str, str] = {}
        self.broken = False

    def get_contact_name(self, user_id: str) -> Optional[str]:
        if self.broken:
            raise StorageError("locked")
        return self.names.get(user_id)

    def put_contact_name(self, user_id: str, push_name: str) -> None:
        if self.broken:
            raise StorageError("locked")
        self.names[user_id] = push_name


def test_contact_name_is_fetched_once_and_cached() -> None:
    source = FakeSource()
    source.contacts["111@s.whatsapp.net"] = "Alice"
    resolver = IdentityResolver(source, FakeStore())

    async def runner() -> tuple[str, str]:
        return await resolver.contact_name("111:4@s.whatsapp.net"), await resolver.contact_name("111@s.whatsapp.net")

    assert asyncio.run(runner()) == ("Alice", "Alice")
    assert source.contact_calls == ["111@s.whatsapp.net"]


def test_contact_name_falls_back_to_push_name_then_number() -> None:
    source = FakeSource()
    source.offline = True
    store = FakeStore()
    store.names["111"] = "Ally"
    resolver = IdentityResolver(source, store)

    assert asyncio.run(resolver.contact_name("111@s.whatsapp.net")) == "Ally"
    assert asyncio.run(resolver.contact_name("222@s.whatsapp.net")) == "222"


def test_storage_errors_never_fail_name_lookup() -> None:
    store = FakeStore()
    store.broken = True
    resolver = IdentityResolver(FakeSource(), store)

    assert asyncio.run(resolver.contact_name("333@s.whatsapp.net")) == "333"
    resolver.update_push_name("333@s.whatsapp.net", "Carol")


def test_update_push_name_replaces_cached_name() -> None:
    store = FakeStore()
    store.names["111"] = "Old"
    resolver = IdentityResolver(FakeSource(), store)
    assert asyncio.run(resolver.contact_name("111@s.whatsapp.net")) == "Old"

    resolver.update_push_name("111@s.whatsapp.net", "New")

    assert store.names["111"] == "New"
    assert asyncio.run(resolver.contact_name("111@s.whatsapp.net")) == "New"


def test_group_name_uses_cache_and_falls_back_to_jid() -> None:
    source = FakeSource()
    source.groups["1203630@g.us"] = GroupInfo("Family", ("111@s.whatsapp.net",))
    resolver = IdentityResolver(source, FakeStore())

    assert asyncio.run(resolver.group_name("1203630@g.us")) == "Family"
    source.offline = True
    assert asyncio.run(resolver.group_name("1203630@g.us")) == "Family"
    assert asyncio.run(resolver.group_name("999@g.us")) == "999@g.us"

    resolver.update_group_name("1203630@g.us", "Kin")
    assert asyncio.run(resolver.group_name("1203630@g.us")) == "Kin"


def test_group_participants_empty_on_failure() -> None:
    source = FakeSource()
    source.groups["1203630@g.us"] = GroupInfo("Family", ("111@s.whatsapp.net", "222@s.whatsapp.net"))
    resolver = IdentityResolver(source, FakeStore())

    assert asyncio.run(resolver.group_participants("1203630@g.us")) == ("111@s.whatsapp.net", "222@s.whatsapp.net")
    source.offline = True
    assert asyncio.run(resolver.group_participants("1203630@g.us")) == ()
