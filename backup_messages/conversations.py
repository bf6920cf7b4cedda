"""
Rebuild conversation threads from the message store.

Every chat row becomes a Conversation holding its member handles and its
messages (text, membership changes, renames, leaves) ordered by ROWID.
Attachments referenced by a message are located in the backup by the SHA-1
of their domain path and copied into the output attachments folder.
"""

from __future__ import annotations
import logging
import re
import shutil
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from tqdm import tqdm

from .errors import ConversationError
from .models import (
    AddMemberBody,
    Attachment,
    AttachmentRow,
    ChatRow,
    Conversation,
    LeaveBody,
    Message,
    MessageBody,
    MessageRow,
    RemoveMemberBody,
    UNKNOWN_HANDLE,
    RenameBody,
    TextBody,
)
from .utils import backup_filename, mach_to_datetime

logger = logging.getLogger(__name__)

# chat.style: 43 is a group thread, 45 (and anything else) a one-to-one thread
GROUP_CHAT_STYLE = 43

ITEM_TEXT = 0
ITEM_MEMBERSHIP = 1
ITEM_RENAME = 2
ITEM_LEAVE = 3

OBJECT_REPLACEMENT_CHAR = "\ufffc"
EMPTY_TEXT_PLACEHOLDER = "ERROR"

DEVICE_ROOT = "/var/mobile"
MEDIA_DOMAIN = "MediaDomain-"

_LAST_PATH_SEGMENT = re.compile(r"^.*[\\/]")

MESSAGE_COLUMNS = (
    "ROWID, text, handle_id, service, date, is_from_me, cache_has_attachments, "
    "item_type, group_action_type, other_handle, group_title"
)


def media_domain_path(device_path: str) -> str:
    """Turn an on-device attachment path into its backup domain path.

    /var/mobile/Library/SMS/Attachments/ab/01/IMG_0001.JPG becomes
    MediaDomain-Library/SMS/Attachments/ab/01/IMG_0001.JPG
    """
    path = device_path.replace(DEVICE_ROOT, "~", 1)
    return MEDIA_DOMAIN + path[2:]


def build_body(row: MessageRow) -> MessageBody:
    if row.item_type == ITEM_MEMBERSHIP:
        if row.group_action_type == 0:
            return AddMemberBody(row.other_handle)
        return RemoveMemberBody(row.other_handle)
    if row.item_type == ITEM_RENAME:
        return RenameBody(row.group_title)
    if row.item_type == ITEM_LEAVE:
        return LeaveBody()
    if row.item_type != ITEM_TEXT:
        logger.warning("Message %d has unknown item_type %s, treating it as text",
                       row.rowid, row.item_type)

    if not row.text:
        logger.warning("Message %d has empty text", row.rowid)
        return TextBody(EMPTY_TEXT_PLACEHOLDER)
    return TextBody(row.text.replace(OBJECT_REPLACEMENT_CHAR, ""))


def build_message(row: MessageRow) -> Message:
    """Build a Message (without attachments) from a message row"""
    if row.is_from_me == 1 or row.handle_id == 0:
        sender = None
    elif row.handle_id is None:
        logger.warning("Message %d has no sender handle", row.rowid)
        sender = UNKNOWN_HANDLE
    else:
        sender = row.handle_id
    return Message(
        rowid=row.rowid,
        timestamp=mach_to_datetime(row.date),
        protocol=row.service.lower() if row.service else "sms",
        sender=sender,
        body=build_body(row),
    )


@dataclass
class BuildReport:
    """Outcome of ConversationBuilder.build_all"""
    conversations: List[Conversation] = field(default_factory=list)
    failed_chats: List[int] = field(default_factory=list)
    skipped_messages: List[int] = field(default_factory=list)
    attachments_copied: int = 0
    attachments_missing: int = 0
    attachments_failed: int = 0

    @property
    def ok(self) -> bool:
        return not self.failed_chats


class ConversationBuilder:
    """Reads chats, messages and attachments from an open message store connection"""

    def __init__(self, conn: sqlite3.Connection, backup_dir, attachments_dir, *, strict: bool = False):
        self.conn = conn
        self.backup_dir = Path(backup_dir)
        self.attachments_dir = Path(attachments_dir)
        self.strict = strict
        self.report = BuildReport()

    def build_all(self, show_progress: bool = True) -> BuildReport:
        """Build every chat. Returns once all chats are processed."""
        chats = [ChatRow.from_row(row) for row in
                 self.conn.execute("SELECT ROWID, style, room_name, display_name FROM chat")]

        for chat in tqdm(chats, desc="Building conversations", unit="chat", disable=not show_progress):
            try:
                conversation = self.build_conversation(chat)
            except sqlite3.Error as e:
                if self.strict:
                    raise ConversationError(chat.rowid, e) from e
                logger.exception("Could not build conversation for chat %d", chat.rowid)
                self.report.failed_chats.append(chat.rowid)
                continue
            self.report.conversations.append(conversation)

        if self.report.failed_chats:
            logger.warning("%d of %d chats failed: %s", len(self.report.failed_chats),
                           len(chats), self.report.failed_chats)
        logger.info("Built %d conversations, copied %d attachments (%d missing, %d failed)",
                    len(self.report.conversations), self.report.attachments_copied,
                    self.report.attachments_missing, self.report.attachments_failed)
        return self.report

    def chat_members(self, chat_id: int) -> List[int]:
        cursor = self.conn.execute("SELECT handle_id FROM chat_handle_join WHERE chat_id = ?", (chat_id,))
        return [row["handle_id"] for row in cursor]

    def build_conversation(self, chat: ChatRow) -> Conversation:
        members = self.chat_members(chat.rowid)
        is_group = chat.style == GROUP_CHAT_STYLE

        if is_group:
            contact_key = chat.room_name
            group_name = chat.display_name
        else:
            contact_key = members[0] if members else None
            group_name = None
        if contact_key is None:
            contact_key = f"chat{chat.rowid}"
            logger.warning("Chat %d has no room name or member, using %s", chat.rowid, contact_key)

        conversation = Conversation(
            chat_id=chat.rowid,
            is_group=is_group,
            contact_key=contact_key,
            members=members,
            group_name=group_name,
        )
        conversation.messages = self.chat_messages(chat.rowid)
        conversation.sort_messages()
        return conversation

    def chat_messages(self, chat_id: int) -> List[Message]:
        ids = [row["message_id"] for row in
               self.conn.execute("SELECT message_id FROM chat_message_join WHERE chat_id = ?", (chat_id,))]
        messages = []
        for message_id in ids:
            try:
                row = self.conn.execute(
                    f"SELECT {MESSAGE_COLUMNS} FROM message WHERE ROWID = ?", (message_id,)
                ).fetchone()
            except sqlite3.Error as e:
                logger.warning("Could not read message %d of chat %d: %s", message_id, chat_id, e)
                self.report.skipped_messages.append(message_id)
                continue
            if row is None:
                logger.warning("Chat %d references missing message %d", chat_id, message_id)
                continue
            message_row = MessageRow.from_row(row)
            message = build_message(message_row)
            if message_row.cache_has_attachments == 1:
                message.attachments = self.message_attachments(message_row.rowid)
            messages.append(message)
        return messages

    def message_attachments(self, message_id: int) -> List[Attachment]:
        cursor = self.conn.execute(
            "SELECT filename, mime_type, transfer_name, attachment_id FROM attachment "
            "INNER JOIN message_attachment_join ON attachment.ROWID = message_attachment_join.attachment_id "
            "WHERE message_id = ?",
            (message_id,),
        )
        attachments = []
        for row in cursor:
            attachment = self.export_attachment(AttachmentRow.from_row(row))
            if attachment is not None:
                attachments.append(attachment)
        return attachments

    def export_attachment(self, row: AttachmentRow) -> Optional[Attachment]:
        """Describe one attachment and copy its backup file into the output folder"""
        if not row.filename:
            logger.warning("Attachment %d has no path, skipping", row.rowid)
            return None

        domain_path = media_domain_path(row.filename)
        # Only the last segment, the name must stay inside the attachments folder
        transfer_name = _LAST_PATH_SEGMENT.sub("", row.transfer_name or "")
        if not transfer_name:
            transfer_name = _LAST_PATH_SEGMENT.sub("", domain_path)
        hashed = backup_filename(domain_path)
        attachment = Attachment(
            filename=f"{hashed}-{transfer_name}",
            transfer_name=transfer_name,
            is_image=bool(row.mime_type and row.mime_type.startswith("image")),
        )

        source = self.backup_dir / hashed
        if source.is_file():
            try:
                shutil.copyfile(source, self.attachments_dir / attachment.filename)
            except OSError as e:
                logger.warning("Could not copy %s to %s: %s", source, attachment.filename, e)
                self.report.attachments_failed += 1
            else:
                self.report.attachments_copied += 1
        else:
            logger.warning("File doesn't exist: %s (%s)", domain_path, source)
            self.report.attachments_missing += 1
        return attachment
