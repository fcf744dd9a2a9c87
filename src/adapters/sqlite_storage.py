"""SQLite storage adapter.

Implements the core CorrelationStorePort using a simple SQLite database.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from typing import Optional, Tuple

from core.errors import StorageError
from core.models import CorrelationRecord


class SQLiteStorage:
    """Thin SQLite wrapper that satisfies the CorrelationStorePort contract."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=10)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - msg_id_pairs: source message to destination message correlation
        - chat_threads: source conversation key to destination thread
        - contact_names: push names reported by the source platform
        """

        try:
            with self._connect() as conn:
                # msg_id_pairs links one bridged source message to the artifact
                # it produced. Rows are only ever upserted, never deleted.
                # Fields:
                # - wa_msg_id / wa_chat_id: source identity (PRIMARY KEY)
                # - wa_sender_id: source sender JID
                # - tg_chat_id / tg_msg_id / tg_thread_id: destination placement
                # - marked_read: set by read receipts from the operator
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS msg_id_pairs (
                        wa_msg_id TEXT NOT NULL,
                        wa_chat_id TEXT NOT NULL,
                        wa_sender_id TEXT NOT NULL,
                        tg_chat_id INTEGER NOT NULL,
                        tg_msg_id INTEGER NOT NULL,
                        tg_thread_id INTEGER NOT NULL,
                        marked_read INTEGER NOT NULL DEFAULT 0,
                        created_at TIMESTAMP NOT NULL,
                        PRIMARY KEY (wa_msg_id, wa_chat_id)
                    )
                    """
                )
                # chat_threads maps a conversation key (JID or fixed key such as
                # "#Calls") to a forum thread inside the target chat.
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS chat_threads (
                        wa_chat_key TEXT NOT NULL,
                        tg_chat_id INTEGER NOT NULL,
                        tg_thread_id INTEGER NOT NULL,
                        PRIMARY KEY (wa_chat_key, tg_chat_id)
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS contact_names (
                        wa_user TEXT PRIMARY KEY,
                        push_name TEXT NOT NULL,
                        updated_at TIMESTAMP NOT NULL
                    )
                    """
                )
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to initialize {self._db_path}") from exc

    def put_record(
        self,
        source_message_id: str,
        source_chat_id: str,
        source_sender_id: str,
        dest_chat_id: int,
        dest_message_id: int,
        dest_thread_id: int,
    ) -> None:
        """Upsert the correlation for one source message."""

        now = datetime.now(timezone.utc)
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO msg_id_pairs (
                        wa_msg_id,
                        wa_chat_id,
                        wa_sender_id,
                        tg_chat_id,
                        tg_msg_id,
                        tg_thread_id,
                        created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(wa_msg_id, wa_chat_id) DO UPDATE SET
                        wa_sender_id = excluded.wa_sender_id,
                        tg_chat_id = excluded.tg_chat_id,
                        tg_msg_id = excluded.tg_msg_id,
                        tg_thread_id = excluded.tg_thread_id
                    """,
                    (
                        source_message_id,
                        source_chat_id,
                        source_sender_id,
                        dest_chat_id,
                        dest_message_id,
                        dest_thread_id,
                        now.isoformat(),
                    ),
                )
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to save correlation for {source_message_id}") from exc

    def get_record(self, source_message_id: str, source_chat_id: str) -> Optional[CorrelationRecord]:
        """Return the correlation for a source message, if any."""

        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    SELECT wa_msg_id, wa_chat_id, wa_sender_id, tg_chat_id, tg_msg_id, tg_thread_id, marked_read
                    FROM msg_id_pairs
                    WHERE wa_msg_id = ? AND wa_chat_id = ?
                    """,
                    (source_message_id, source_chat_id),
                ).fetchone()
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to read correlation for {source_message_id}") from exc
        if row is None:
            return None
        return CorrelationRecord(
            source_message_id=row["wa_msg_id"],
            source_chat_id=row["wa_chat_id"],
            source_sender_id=row["wa_sender_id"],
            dest_chat_id=int(row["tg_chat_id"]),
            dest_message_id=int(row["tg_msg_id"]),
            dest_thread_id=int(row["tg_thread_id"]),
            read=bool(row["marked_read"]),
        )

    def mark_read(self, source_chat_id: str, source_message_id: str) -> None:
        """Flag a message as read. Unknown messages are ignored."""

        try:
            with self._connect() as conn:
                conn.execute(
                    "UPDATE msg_id_pairs SET marked_read = 1 WHERE wa_msg_id = ? AND wa_chat_id = ?",
                    (source_message_id, source_chat_id),
                )
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to mark {source_message_id} as read") from exc

    def get_topic(self, source_chat_key: str, dest_chat_id: int) -> Tuple[int, bool]:
        """Return (thread_id, found) for a conversation key."""

        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT tg_thread_id FROM chat_threads WHERE wa_chat_key = ? AND tg_chat_id = ?",
                    (source_chat_key, dest_chat_id),
                ).fetchone()
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to read thread for {source_chat_key}") from exc
        if row is None:
            return 0, False
        return int(row["tg_thread_id"]), True

    def put_topic(self, source_chat_key: str, dest_chat_id: int, dest_thread_id: int) -> None:
        """Insert a thread mapping; an existing mapping wins."""

        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT OR IGNORE INTO chat_threads (wa_chat_key, tg_chat_id, tg_thread_id)
                    VALUES (?, ?, ?)
                    """,
                    (source_chat_key, dest_chat_id, dest_thread_id),
                )
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to save thread for {source_chat_key}") from exc

    def get_contact_name(self, user_id: str) -> Optional[str]:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT push_name FROM contact_names WHERE wa_user = ?",
                    (user_id,),
                ).fetchone()
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to read push name for {user_id}") from exc
        return row["push_name"] if row else None

    def put_contact_name(self, user_id: str, push_name: str) -> None:
        now = datetime.now(timezone.utc)
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO contact_names (wa_user, push_name, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(wa_user) DO UPDATE SET
                        push_name = excluded.push_name,
                        updated_at = excluded.updated_at
                    """,
                    (user_id, push_name, now.isoformat()),
                )
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to save push name for {user_id}") from exc
