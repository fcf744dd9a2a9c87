"""Mapping from source conversations to destination forum threads."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from core.errors import DestinationError, StorageError, TopicUnavailableError
from core.ports import CorrelationStorePort, DestinationPort

LOGGER = logging.getLogger(__name__)

# Telegram rejects forum topic titles longer than this.
MAX_THREAD_LABEL = 128


class TopicResolver:
    """Find or lazily create the destination thread for a conversation key.

    Creation is serialized per key, so two events for a brand-new
    conversation cannot produce two threads. Lookups never take the lock.
    """

    def __init__(self, store: CorrelationStorePort, destination: DestinationPort, dest_chat_id: int) -> None:
        self._store = store
        self._destination = destination
        self._dest_chat_id = dest_chat_id
        self._locks: dict[str, asyncio.Lock] = {}

    def lookup(self, key: str) -> Optional[int]:
        """Return the existing thread id for ``key`` without creating one."""

        thread_id, found = self._store.get_topic(key, self._dest_chat_id)
        if not found or not thread_id:
            return None
        return thread_id

    async def resolve(self, key: str, label: str) -> int:
        """Return the thread id for ``key``, creating a thread named ``label`` on miss."""

        try:
            existing = self.lookup(key)
        except StorageError as exc:
            raise TopicUnavailableError(f"Failed to read thread mapping for {key}") from exc
        if existing:
            return existing

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            # Another task may have created the thread while we waited.
            try:
                existing = self.lookup(key)
            except StorageError as exc:
                raise TopicUnavailableError(f"Failed to read thread mapping for {key}") from exc
            if existing:
                return existing

            title = (label or key)[:MAX_THREAD_LABEL]
            try:
                thread_id = await self._destination.create_thread(self._dest_chat_id, title)
            except DestinationError as exc:
                raise TopicUnavailableError(f"Failed to create thread for {key}") from exc

            try:
                self._store.put_topic(key, self._dest_chat_id, thread_id)
            except StorageError as exc:
                raise TopicUnavailableError(f"Failed to save thread mapping for {key}") from exc

            # Later resolves for this key hit the stored mapping before the lock.
            self._locks.pop(key, None)
            LOGGER.info("Created thread %s for %s", thread_id, key)
            return thread_id
