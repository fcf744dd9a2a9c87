from __future__ import annotations

import pytest

from adapters.sqlite_storage import SQLiteStorage
from core.errors import StorageError


def _storage(tmp_path) -> SQLiteStorage:
    storage = SQLiteStorage(str(tmp_path / "bridge.db"))
    storage.init_db()
    return storage


def test_record_roundtrip_and_upsert(tmp_path) -> None:
    storage = _storage(tmp_path)
    assert storage.get_record("m1", "111@s.whatsapp.net") is None

    storage.put_record("m1", "111@s.whatsapp.net", "111@s.whatsapp.net", -100, 5, 7)
    record = storage.get_record("m1", "111@s.whatsapp.net")
    assert record is not None
    assert (record.dest_chat_id, record.dest_message_id, record.dest_thread_id) == (-100, 5, 7)
    assert record.read is False

    storage.put_record("m1", "111@s.whatsapp.net", "111@s.whatsapp.net", -100, 9, 7)
    assert storage.get_record("m1", "111@s.whatsapp.net").dest_message_id == 9


def test_records_are_scoped_by_chat(tmp_path) -> None:
    storage = _storage(tmp_path)
    storage.put_record("m1", "111@s.whatsapp.net", "111@s.whatsapp.net", -100, 5, 7)

    assert storage.get_record("m1", "222@s.whatsapp.net") is None


def test_mark_read_sets_flag_and_ignores_unknown(tmp_path) -> None:
    storage = _storage(tmp_path)
    storage.put_record("m1", "111@s.whatsapp.net", "111@s.whatsapp.net", -100, 5, 7)

    storage.mark_read("111@s.whatsapp.net", "m1")
    storage.mark_read("111@s.whatsapp.net", "missing")

    assert storage.get_record("m1", "111@s.whatsapp.net").read is True
    assert storage.get_record("missing", "111@s.whatsapp.net") is None


def test_topic_mapping_first_writer_wins(tmp_path) -> None:
    storage = _storage(tmp_path)
    assert storage.get_topic("111@s.whatsapp.net", -100) == (0, False)

    storage.put_topic("111@s.whatsapp.net", -100, 42)
    storage.put_topic("111@s.whatsapp.net", -100, 43)

    assert storage.get_topic("111@s.whatsapp.net", -100) == (42, True)
    assert storage.get_topic("111@s.whatsapp.net", -200) == (0, False)


def test_contact_names_are_upserted(tmp_path) -> None:
    storage = _storage(tmp_path)
    assert storage.get_contact_name("111") is None

    storage.put_contact_name("111", "Alice")
    storage.put_contact_name("111", "Alice B")

    assert storage.get_contact_name("111") == "Alice B"


def test_init_db_is_idempotent(tmp_path) -> None:
    storage = _storage(tmp_path)
    storage.put_topic("#Calls", -100, 3)
    storage.init_db()

    assert storage.get_topic("#Calls", -100) == (3, True)


def test_io_failures_raise_storage_error(tmp_path) -> None:
    # A directory cannot be opened as a database file.
    storage = SQLiteStorage(str(tmp_path))

    with pytest.raises(StorageError):
        storage.init_db()
    with pytest.raises(StorageError):
        storage.get_topic("#Calls", -100)
