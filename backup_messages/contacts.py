"""
Handle loading and AddressBook contact resolution.

The message store only knows handles (phone numbers and emails with an
internal id); names live in the AddressBook database. This module joins the
two into ContactRecord objects keyed by handle id.
"""

from __future__ import annotations
import logging
import sqlite3
from typing import Dict, Iterable, List, Optional

from .models import ContactRecord, Handle, HandleRow, MultiValueRow, PersonRow
from .utils import normalize_number

logger = logging.getLogger(__name__)

# ABMultiValue.property codes
PROPERTY_PHONE = 3
PROPERTY_EMAIL = 4


def load_handles(conn: sqlite3.Connection) -> List[Handle]:
    """Read every (normalized id, ROWID) pair from the handle table"""
    handles = []
    for row in conn.execute("SELECT id, ROWID FROM handle"):
        handle_row = HandleRow.from_row(row)
        if handle_row.identifier is None:
            logger.warning("Handle %d has no identifier, skipping", handle_row.rowid)
            continue
        handles.append(Handle(normalize_number(handle_row.identifier), handle_row.rowid))
    logger.info("Loaded %d handles", len(handles))
    return handles


class ContactLookup:
    """Normalized phone number / email -> contact name, built from an iPhone AddressBook"""

    def __init__(self, contacts: Optional[Dict[str, str]] = None):
        self.contacts = dict(contacts or {})

    @classmethod
    def from_connection(cls, conn: sqlite3.Connection) -> "ContactLookup":
        people: Dict[int, PersonRow] = {}
        for row in conn.execute("SELECT ROWID, First, Last FROM ABPerson"):
            person = PersonRow.from_row(row)
            people[person.rowid] = person

        lookup = cls()
        skipped = 0
        cursor = conn.execute(
            "SELECT record_id, value FROM ABMultiValue WHERE property = ? OR property = ?",
            (PROPERTY_PHONE, PROPERTY_EMAIL),
        )
        for row in cursor:
            entry = MultiValueRow.from_row(row)
            if entry.value is None:
                skipped += 1
                continue
            person = people.get(entry.record_id)
            if person is None:
                # Exports sometimes keep phone rows for deleted people
                logger.debug("No person %s for %r", entry.record_id, entry.value)
                skipped += 1
                continue
            name = person.full_name
            if name:
                lookup.contacts[normalize_number(str(entry.value))] = name

        logger.info("Loaded %d contact identifiers from %d people (%d skipped)",
                    len(lookup.contacts), len(people), skipped)
        return lookup

    def get_contact_name(self, normalized_id: str) -> Optional[str]:
        return self.contacts.get(normalized_id)

    def __len__(self) -> int:
        return len(self.contacts)


def load_contact_lookup(conn: sqlite3.Connection) -> ContactLookup:
    return ContactLookup.from_connection(conn)


def bind_contacts(handles: Iterable[Handle], lookup: ContactLookup) -> Dict[int, ContactRecord]:
    """Attach an AddressBook name (or None) to every handle"""
    records: Dict[int, ContactRecord] = {}
    unresolved = 0
    for handle in handles:
        name = lookup.get_contact_name(handle.normalized_id)
        if name is None:
            unresolved += 1
        records[handle.handle_id] = ContactRecord(handle.handle_id, handle.normalized_id, name)
    logger.info("Bound %d handles to contacts, %d without a name", len(records), unresolved)
    return records
