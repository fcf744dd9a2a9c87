"""Display-name resolution for source users and groups."""

from __future__ import annotations

import logging
from typing import Optional, Tuple

from core.errors import StorageError, TransientNetworkError
from core.jids import to_non_ad, user_part
from core.ports import CorrelationStorePort, SourcePort

LOGGER = logging.getLogger(__name__)


class IdentityResolver:
    """Resolve JIDs to display names with an in-memory cache.

    Lookup order for users: cache, source client contact book, stored push
    name, raw phone number. A stale name is acceptable; a missing one falls
    back to the identifier and never fails the render.
    """

    def __init__(self, source: SourcePort, store: CorrelationStorePort) -> None:
        self._source = source
        self._store = store
        self._contacts: dict[str, str] = {}
        self._groups: dict[str, str] = {}

    async def contact_name(self, jid: str) -> str:
        user = user_part(jid)
        if not user:
            return jid
        cached = self._contacts.get(user)
        if cached:
            return cached

        name = await self._fetch_contact_name(jid)
        if not name:
            name = self._stored_push_name(user)
        if not name:
            return user
        self._contacts[user] = name
        return name

    async def _fetch_contact_name(self, jid: str) -> Optional[str]:
        try:
            return await self._source.fetch_contact_name(to_non_ad(jid))
        except TransientNetworkError as exc:
            LOGGER.debug("Contact lookup failed for %s: %s", jid, exc)
            return None

    def _stored_push_name(self, user: str) -> Optional[str]:
        try:
            return self._store.get_contact_name(user)
        except StorageError:
            LOGGER.warning("Failed to read cached push name for %s", user, exc_info=True)
            return None

    def update_push_name(self, jid: str, push_name: str) -> None:
        """Persist a new push name and drop the cached display name."""

        user = user_part(jid)
        self._contacts.pop(user, None)
        try:
            self._store.put_contact_name(user, push_name)
        except StorageError:
            LOGGER.warning("Failed to store push name for %s", user, exc_info=True)

    async def group_name(self, jid: str) -> str:
        key = to_non_ad(jid)
        cached = self._groups.get(key)
        if cached:
            return cached
        try:
            info = await self._source.fetch_group_info(key)
        except TransientNetworkError as exc:
            LOGGER.debug("Group lookup failed for %s: %s", key, exc)
            return key
        if info is None or not info.name:
            return key
        self._groups[key] = info.name
        return info.name

    def update_group_name(self, jid: str, name: str) -> None:
        self._groups[to_non_ad(jid)] = name

    async def group_participants(self, jid: str) -> Tuple[str, ...]:
        """Return the current participants, or an empty tuple on failure."""

        try:
            info = await self._source.fetch_group_info(to_non_ad(jid))
        except TransientNetworkError:
            LOGGER.warning("Failed to fetch participants for %s", jid, exc_info=True)
            return ()
        if info is None:
            return ()
        if info.name:
            self._groups[to_non_ad(jid)] = info.name
        return info.participants
