import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from backup_messages.utils import APPLE_EPOCH_OFFSET, CONTACTS_DB_NAME, MESSAGES_DB_NAME

MESSAGES_SCHEMA = """
CREATE TABLE handle (ROWID INTEGER PRIMARY KEY AUTOINCREMENT, id TEXT);
CREATE TABLE chat (ROWID INTEGER PRIMARY KEY AUTOINCREMENT, style INTEGER, room_name TEXT, display_name TEXT);
CREATE TABLE chat_handle_join (chat_id INTEGER, handle_id INTEGER);
CREATE TABLE chat_message_join (chat_id INTEGER, message_id INTEGER);
CREATE TABLE message (
    ROWID INTEGER PRIMARY KEY AUTOINCREMENT,
    text TEXT,
    handle_id INTEGER DEFAULT 0,
    service TEXT,
    date INTEGER,
    is_from_me INTEGER DEFAULT 0,
    cache_has_attachments INTEGER DEFAULT 0,
    item_type INTEGER DEFAULT 0,
    group_action_type INTEGER DEFAULT 0,
    other_handle INTEGER DEFAULT 0,
    group_title TEXT
);
CREATE TABLE attachment (ROWID INTEGER PRIMARY KEY AUTOINCREMENT, filename TEXT, mime_type TEXT, transfer_name TEXT);
CREATE TABLE message_attachment_join (message_id INTEGER, attachment_id INTEGER);
"""

CONTACTS_SCHEMA = """
CREATE TABLE ABPerson (ROWID INTEGER PRIMARY KEY AUTOINCREMENT, First TEXT, Last TEXT);
CREATE TABLE ABMultiValue (UID INTEGER PRIMARY KEY, record_id INTEGER, property INTEGER, value TEXT);
"""

BASE_TIME = datetime(2015, 6, 1, 12, 0, tzinfo=timezone.utc)


def datetime_to_mach(dt):
    """Seconds since 2001-01-01 UTC, the format of message.date in older backups"""
    unix = (dt - datetime(1970, 1, 1, tzinfo=timezone.utc)) / timedelta(seconds=1)
    return int(unix) - APPLE_EPOCH_OFFSET


class MessageStore:
    """Small writer for a message store with the columns the exporter reads"""

    def __init__(self, conn):
        self.conn = conn
        self.conn.row_factory = sqlite3.Row

    def handle(self, identifier):
        return self.conn.execute("INSERT INTO handle (id) VALUES (?)", (identifier,)).lastrowid

    def chat(self, members, style=45, room_name=None, display_name=None):
        chat_id = self.conn.execute(
            "INSERT INTO chat (style, room_name, display_name) VALUES (?, ?, ?)",
            (style, room_name, display_name),
        ).lastrowid
        for handle_id in members:
            self.conn.execute("INSERT INTO chat_handle_join VALUES (?, ?)", (chat_id, handle_id))
        return chat_id

    def message(self, chat_id, text="hello", *, handle_id=0, service="iMessage", date=None,
                is_from_me=0, item_type=0, group_action_type=0, other_handle=0, group_title=None,
                attachments=()):
        if date is None:
            date = datetime_to_mach(BASE_TIME)
        message_id = self.conn.execute(
            "INSERT INTO message (text, handle_id, service, date, is_from_me, cache_has_attachments, "
            "item_type, group_action_type, other_handle, group_title) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (text, handle_id, service, date, is_from_me, 1 if attachments else 0,
             item_type, group_action_type, other_handle, group_title),
        ).lastrowid
        self.conn.execute("INSERT INTO chat_message_join VALUES (?, ?)", (chat_id, message_id))
        for filename, mime_type, transfer_name in attachments:
            attachment_id = self.conn.execute(
                "INSERT INTO attachment (filename, mime_type, transfer_name) VALUES (?, ?, ?)",
                (filename, mime_type, transfer_name),
            ).lastrowid
            self.conn.execute("INSERT INTO message_attachment_join VALUES (?, ?)", (message_id, attachment_id))
        return message_id

    def commit(self):
        self.conn.commit()


class ContactStore:
    def __init__(self, conn):
        self.conn = conn
        self.conn.row_factory = sqlite3.Row

    def person(self, first, last, phones=(), emails=()):
        person_id = self.conn.execute(
            "INSERT INTO ABPerson (First, Last) VALUES (?, ?)", (first, last)).lastrowid
        for phone in phones:
            self.value(person_id, 3, phone)
        for email in emails:
            self.value(person_id, 4, email)
        return person_id

    def value(self, record_id, prop, value):
        self.conn.execute(
            "INSERT INTO ABMultiValue (record_id, property, value) VALUES (?, ?, ?)",
            (record_id, prop, value))

    def commit(self):
        self.conn.commit()


@pytest.fixture
def backup_dir(tmp_path):
    path = tmp_path / "backup"
    path.mkdir()
    return path


@pytest.fixture
def message_store(backup_dir):
    conn = sqlite3.connect(str(backup_dir / MESSAGES_DB_NAME))
    conn.executescript(MESSAGES_SCHEMA)
    store = MessageStore(conn)
    yield store
    conn.close()


@pytest.fixture
def contact_store(backup_dir):
    conn = sqlite3.connect(str(backup_dir / CONTACTS_DB_NAME))
    conn.executescript(CONTACTS_SCHEMA)
    store = ContactStore(conn)
    yield store
    conn.close()


@pytest.fixture
def attachments_dir(tmp_path):
    path = tmp_path / "out" / "attachments"
    path.mkdir(parents=True)
    return path
