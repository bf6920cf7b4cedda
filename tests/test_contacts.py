import logging
import sqlite3

import pytest

from backup_messages.contacts import ContactLookup, bind_contacts, load_contact_lookup, load_handles
from backup_messages.models import ContactRecord, Handle


def test_load_handles_normalizes_identifiers(message_store):
    first = message_store.handle("+1 (555) 123-4567")
    second = message_store.handle("jane@example.com")
    message_store.commit()

    handles = load_handles(message_store.conn)

    assert handles == [Handle("5551234567", first), Handle("jane@example.com", second)]


def test_load_handles_skips_null_identifier(message_store, caplog):
    message_store.handle(None)
    kept = message_store.handle("5550001111")
    message_store.commit()

    with caplog.at_level(logging.WARNING):
        handles = load_handles(message_store.conn)

    assert handles == [Handle("5550001111", kept)]
    assert "no identifier" in caplog.text


def test_contact_lookup_reads_phones_and_emails(contact_store):
    contact_store.person("Jane", "Doe", phones=["+1 555-123-4567"], emails=["jane@example.com"])
    contact_store.person("Bob", None, phones=["555 000 1111"])
    contact_store.commit()

    lookup = load_contact_lookup(contact_store.conn)

    assert lookup.get_contact_name("5551234567") == "Jane Doe"
    assert lookup.get_contact_name("jane@example.com") == "Jane Doe"
    assert lookup.get_contact_name("5550001111") == "Bob"
    assert len(lookup) == 3


def test_contact_lookup_ignores_other_properties(contact_store):
    person = contact_store.person("Jane", "Doe")
    # property 5 is a postal address
    contact_store.value(person, 5, "1 Infinite Loop")
    contact_store.commit()

    lookup = load_contact_lookup(contact_store.conn)

    assert len(lookup) == 0


def test_contact_lookup_skips_values_without_owner(contact_store):
    contact_store.value(42, 3, "5559998888")
    contact_store.value(None, 3, "5559997777")
    contact_store.commit()

    lookup = ContactLookup.from_connection(contact_store.conn)

    assert lookup.get_contact_name("5559998888") is None
    assert lookup.get_contact_name("5559997777") is None


def test_contact_lookup_person_without_name_is_unresolved(contact_store):
    contact_store.person(None, None, phones=["5551112222"])
    contact_store.commit()

    lookup = load_contact_lookup(contact_store.conn)

    assert lookup.get_contact_name("5551112222") is None


def test_bind_contacts_one_record_per_handle():
    lookup = ContactLookup({"5551234567": "Jane Doe"})
    handles = [Handle("5551234567", 1), Handle("5550000000", 2)]

    records = bind_contacts(handles, lookup)

    assert records == {
        1: ContactRecord(1, "5551234567", "Jane Doe"),
        2: ContactRecord(2, "5550000000", None),
    }
    assert records[1].display_name == "Jane Doe"
    assert records[2].display_name == "5550000000"


def test_load_handles_propagates_read_errors():
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    with pytest.raises(sqlite3.OperationalError, match="handle"):
        load_handles(conn)
