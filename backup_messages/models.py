"""
Records read from the backup databases and the conversation documents built from them.

Row classes mirror one source table each and are validated where the row is
read; nullable columns stay Optional instead of relying on truthiness.
"""

from __future__ import annotations
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union


# --- Source rows -----------------------------------------------------------

@dataclass(frozen=True)
class HandleRow:
    """Row of the message store's handle table"""
    rowid: int
    identifier: Optional[str]

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "HandleRow":
        return cls(rowid=int(row["ROWID"]), identifier=row["id"])


@dataclass(frozen=True)
class ChatRow:
    """Row of the chat table"""
    rowid: int
    style: Optional[int]
    room_name: Optional[str]
    display_name: Optional[str]

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ChatRow":
        return cls(
            rowid=int(row["ROWID"]),
            style=row["style"],
            room_name=row["room_name"] or None,
            display_name=row["display_name"] or None,
        )


@dataclass(frozen=True)
class MessageRow:
    """Row of the message table, restricted to the columns the exporter reads"""
    rowid: int
    text: Optional[str]
    handle_id: Optional[int]
    service: Optional[str]
    date: Optional[int]
    is_from_me: int
    cache_has_attachments: int
    item_type: int
    group_action_type: int
    other_handle: Optional[int]
    group_title: Optional[str]

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "MessageRow":
        return cls(
            rowid=int(row["ROWID"]),
            text=row["text"],
            handle_id=row["handle_id"],
            service=row["service"],
            date=row["date"],
            is_from_me=row["is_from_me"] or 0,
            cache_has_attachments=row["cache_has_attachments"] or 0,
            item_type=row["item_type"] or 0,
            group_action_type=row["group_action_type"] or 0,
            other_handle=row["other_handle"],
            group_title=row["group_title"],
        )


@dataclass(frozen=True)
class AttachmentRow:
    """Row of the attachment table joined through message_attachment_join"""
    rowid: int
    filename: Optional[str]
    mime_type: Optional[str]
    transfer_name: Optional[str]

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "AttachmentRow":
        return cls(
            rowid=int(row["attachment_id"]),
            filename=row["filename"],
            mime_type=row["mime_type"],
            transfer_name=row["transfer_name"],
        )


@dataclass(frozen=True)
class PersonRow:
    """Row of the AddressBook ABPerson table"""
    rowid: int
    first: Optional[str]
    last: Optional[str]

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "PersonRow":
        return cls(rowid=int(row["ROWID"]), first=row["First"], last=row["Last"])

    @property
    def full_name(self) -> str:
        return f"{self.first or ''} {self.last or ''}".strip()


@dataclass(frozen=True)
class MultiValueRow:
    """Phone (property 3) or email (property 4) row of ABMultiValue"""
    record_id: Optional[int]
    value: Optional[str]

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "MultiValueRow":
        return cls(record_id=row["record_id"], value=row["value"])


# --- Contacts --------------------------------------------------------------

@dataclass(frozen=True)
class Handle:
    normalized_id: str
    handle_id: int


@dataclass(frozen=True)
class ContactRecord:
    """A message store handle bound to its AddressBook name, if any"""
    handle_id: int
    normalized_id: str
    name: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.name if self.name else self.normalized_id

    def to_dict(self) -> Dict[str, Any]:
        return {"handle": self.handle_id, "id": self.normalized_id, "name": self.name}


# --- Messages --------------------------------------------------------------

# Sender of an incoming message whose handle_id is NULL; None is reserved for the owner
UNKNOWN_HANDLE = -1

@dataclass
class Attachment:
    filename: str
    transfer_name: str
    is_image: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "filename": self.filename,
            "transfer_name": self.transfer_name,
            "isImage": self.is_image,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Attachment":
        return cls(
            filename=data["filename"],
            transfer_name=data["transfer_name"],
            is_image=bool(data.get("isImage", False)),
        )


@dataclass(frozen=True)
class TextBody:
    content: str
    type = "text"


@dataclass(frozen=True)
class AddMemberBody:
    other_handle: Optional[int]
    type = "add"


@dataclass(frozen=True)
class RemoveMemberBody:
    other_handle: Optional[int]
    type = "remove"


@dataclass(frozen=True)
class RenameBody:
    group_name: Optional[str]
    type = "name"


@dataclass(frozen=True)
class LeaveBody:
    type = "leave"


MessageBody = Union[TextBody, AddMemberBody, RemoveMemberBody, RenameBody, LeaveBody]


def body_to_dict(body: MessageBody) -> Dict[str, Any]:
    if isinstance(body, TextBody):
        return {"type": body.type, "content": body.content}
    if isinstance(body, (AddMemberBody, RemoveMemberBody)):
        return {"type": body.type, "other_handle": body.other_handle}
    if isinstance(body, RenameBody):
        return {"type": body.type, "group_name": body.group_name}
    return {"type": body.type}


def body_from_dict(data: Dict[str, Any]) -> MessageBody:
    kind = data.get("type", "text")
    if kind == "text":
        return TextBody(data["content"])
    if kind == "add":
        return AddMemberBody(data.get("other_handle"))
    if kind == "remove":
        return RemoveMemberBody(data.get("other_handle"))
    if kind == "name":
        return RenameBody(data.get("group_name"))
    if kind == "leave":
        return LeaveBody()
    raise ValueError(f"Unknown message type: {kind!r}")


@dataclass
class Message:
    """One message of a conversation. sender is None when the backup owner wrote it."""
    rowid: int
    timestamp: Optional[datetime]
    protocol: str
    sender: Optional[int]
    body: MessageBody
    attachments: List[Attachment] = field(default_factory=list)

    @property
    def is_from_me(self) -> bool:
        return self.sender is None

    @property
    def is_readable(self) -> bool:
        return isinstance(self.body, TextBody)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "ROWID": self.rowid,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "protocol": self.protocol,
            "sender": self.sender,
        }
        data.update(body_to_dict(self.body))
        data["attachments"] = [a.to_dict() for a in self.attachments]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        timestamp = data.get("timestamp")
        return cls(
            rowid=data["ROWID"],
            timestamp=datetime.fromisoformat(timestamp) if timestamp else None,
            protocol=data["protocol"],
            sender=data.get("sender"),
            body=body_from_dict(data),
            attachments=[Attachment.from_dict(a) for a in data.get("attachments", [])],
        )


ContactKey = Union[int, str]


@dataclass
class Conversation:
    chat_id: int
    is_group: bool
    contact_key: ContactKey
    members: List[int] = field(default_factory=list)
    group_name: Optional[str] = None
    messages: List[Message] = field(default_factory=list)
    human_name: Optional[str] = None
    merged_chat_ids: List[int] = field(default_factory=list)

    def sort_messages(self) -> None:
        self.messages.sort(key=lambda m: m.rowid)

    @property
    def first_timestamp(self) -> Optional[datetime]:
        for message in self.messages:
            if message.timestamp is not None:
                return message.timestamp
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dbid": self.chat_id,
            "group_message": self.is_group,
            "members": list(self.members),
            "contact_id": self.contact_key,
            "group_name": self.group_name,
            "human_name": self.human_name,
            "merged_dbids": list(self.merged_chat_ids),
            "messages": [m.to_dict() for m in self.messages],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Conversation":
        return cls(
            chat_id=data["dbid"],
            is_group=bool(data["group_message"]),
            contact_key=data["contact_id"],
            members=list(data.get("members", [])),
            group_name=data.get("group_name"),
            messages=[Message.from_dict(m) for m in data.get("messages", [])],
            human_name=data.get("human_name"),
            merged_chat_ids=list(data.get("merged_dbids", [])),
        )
