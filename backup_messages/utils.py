"""
Helpers shared by the loaders and the conversation builder: identifier
normalization, Apple timestamp conversion and backup content-hash names.
"""

from __future__ import annotations
import hashlib
import re
from datetime import datetime, timezone
from typing import Optional

# Seconds between the Unix epoch and Apple's epoch (2001-01-01 UTC)
APPLE_EPOCH_OFFSET = 978307200

# iOS 11+ stores message dates in nanoseconds instead of seconds
NANOSECOND_THRESHOLD = 10 ** 11

_NON_DIGITS = re.compile(r"\D")
_LEADING_TEXT = re.compile(r"[^\W\d]")


def normalize_number(value: str) -> str:
    """Normalize a phone number or identifier so handles and contacts compare equal.

    Email addresses and textual identifiers (short-code senders such as
    "Apple") are returned untouched. Everything else is reduced to its digits
    and, for numbers longer than 10 digits, to the last 10 (the country code
    is dropped, which only holds for North American numbers).
    """
    if "@" in value:
        return value
    if _LEADING_TEXT.match(value):
        return value
    digits = _NON_DIGITS.sub("", value)
    if len(digits) > 10:
        return digits[-10:]
    return digits


def mach_to_datetime(mach_value: Optional[float]) -> Optional[datetime]:
    """Convert a message store date (seconds or nanoseconds since 2001) to an aware UTC datetime"""
    if mach_value is None:
        return None
    seconds = mach_value
    if abs(seconds) > NANOSECOND_THRESHOLD:
        seconds = seconds / 1000000000.0
    return datetime.fromtimestamp(seconds + APPLE_EPOCH_OFFSET, tz=timezone.utc)


def backup_filename(domain_path: str) -> str:
    """Name under which an iTunes backup stores the file at domain_path"""
    return hashlib.sha1(domain_path.encode("utf-8")).hexdigest()


# HomeDomain-Library/SMS/sms.db
MESSAGES_DB_NAME = backup_filename("HomeDomain-Library/SMS/sms.db")
# HomeDomain-Library/AddressBook/AddressBook.sqlitedb
CONTACTS_DB_NAME = backup_filename("HomeDomain-Library/AddressBook/AddressBook.sqlitedb")
